"""Memory Vault Implementation.

In-process vault with the same conditional-write semantics as the managed vault.
Used in dev mode and as the reference backend in tests; state lives only as long
as the process.
"""
import logging
import threading
from typing import Any, Dict, Iterable, List, Optional

from rotator.domain.rotation.models import PasswordPolicy, SecretVersion, StagingLabel, StagingSlots
from rotator.domain.rotation.password import generate_password
from rotator.domain.rotation.ports import VaultClient
from rotator.errors import SecretNotFound, StaleVersionError, VersionConflict

logger = logging.getLogger(__name__)


class MemoryVault(VaultClient):
    def __init__(self):
        # secret_id -> version_id -> {"value": dict, "labels": set}; insertion ordered
        self._secrets: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._lock = threading.Lock()

    def generate_random_secret(self, policy: PasswordPolicy) -> str:
        return generate_password(policy)

    def get_secret_version(self, secret_id: str, staging_label: StagingLabel) -> SecretVersion:
        with self._lock:
            versions = self._secrets.get(secret_id, {})
            for version_id, entry in versions.items():
                if staging_label in entry["labels"]:
                    return SecretVersion(
                        version_id=version_id,
                        value=dict(entry["value"]),
                        labels=set(entry["labels"]),
                    )
        raise SecretNotFound(f"No version of {secret_id} holds {staging_label.value}")

    def put_secret_version(
        self,
        secret_id: str,
        value: Dict[str, Any],
        labels: Iterable[StagingLabel],
        request_token: str,
    ) -> None:
        with self._lock:
            versions = self._secrets.setdefault(secret_id, {})
            existing = versions.get(request_token)
            if existing is not None:
                if existing["value"] == value:
                    logger.debug(f"Version {request_token} of {secret_id} already stored")
                    return
                raise VersionConflict(
                    f"Version {request_token} of {secret_id} already exists with a different value"
                )

            versions[request_token] = {"value": dict(value), "labels": set()}
            for label in labels:
                self._attach(versions, label, request_token)

    def move_staging_label(
        self,
        secret_id: str,
        label: StagingLabel,
        to_version_id: str,
        from_version_id: Optional[str] = None,
    ) -> None:
        with self._lock:
            versions = self._secrets.get(secret_id, {})
            if to_version_id not in versions:
                raise SecretNotFound(f"Version {to_version_id} of {secret_id} does not exist")

            holder = self._holder(versions, label)
            if holder != from_version_id:
                raise StaleVersionError(
                    f"{label.value} of {secret_id} is held by {holder}, expected {from_version_id}"
                )
            if holder == to_version_id:
                return
            self._attach(versions, label, to_version_id)

    def seed(
        self,
        secret_id: str,
        version_id: str,
        value: Dict[str, Any],
        labels: Iterable[StagingLabel] = (),
    ) -> None:
        """Insert a version directly, bypassing the conditional-write checks."""
        with self._lock:
            versions = self._secrets.setdefault(secret_id, {})
            versions[version_id] = {"value": dict(value), "labels": set()}
            for label in labels:
                self._attach(versions, label, version_id)

    def staging(self, secret_id: str) -> StagingSlots:
        with self._lock:
            versions = self._secrets.get(secret_id, {})
            return StagingSlots.from_version_stages(
                {vid: [label.value for label in entry["labels"]] for vid, entry in versions.items()}
            )

    def version_ids(self, secret_id: str) -> List[str]:
        with self._lock:
            return list(self._secrets.get(secret_id, {}).keys())

    @staticmethod
    def _holder(versions: Dict[str, Dict[str, Any]], label: StagingLabel) -> Optional[str]:
        for version_id, entry in versions.items():
            if label in entry["labels"]:
                return version_id
        return None

    def _attach(self, versions: Dict[str, Dict[str, Any]], label: StagingLabel, version_id: str) -> None:
        """Give ``label`` to ``version_id``; CURRENT demotes its old holder to PREVIOUS."""
        old_holder = self._holder(versions, label)
        if old_holder == version_id:
            return
        if old_holder is not None:
            versions[old_holder]["labels"].discard(label)
        versions[version_id]["labels"].add(label)

        if label is StagingLabel.CURRENT and old_holder is not None:
            self._attach(versions, StagingLabel.PREVIOUS, old_holder)
