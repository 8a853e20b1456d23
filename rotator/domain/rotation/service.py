"""Secret Rotation Service.

This module implements the four rotation steps driven by the orchestrator:

    createSecret  - store a freshly generated value as the PENDING version
    setSecret     - make the target resource accept the PENDING credentials
    testSecret    - prove the PENDING credentials work before promotion
    finishSecret  - move CURRENT to the PENDING version

Every step may be invoked again with the same arguments. Safety comes from the
vault's conditional writes (token-keyed put, compare-and-move of labels); the
service keeps no state between invocations.
"""
import logging
from typing import Any, Dict, List, Optional, Sequence

from opentelemetry import trace

from rotator.errors import ApplyError, IdentityNotFound, SecretNotFound, ValidationError
from .models import AccessLevel, PasswordPolicy, SecretVersion, StagingLabel
from .ports import TargetUpdater, VaultClient

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class RotationService:
    """Rotation state machine for a single vault and target resource."""

    def __init__(
        self,
        vault: VaultClient,
        updater: TargetUpdater,
        policy: Optional[PasswordPolicy] = None,
        rotated_fields: Sequence[str] = ("authMasterKey",),
        access_level: AccessLevel = AccessLevel.READ,
        admin_secret_id: Optional[str] = None,
    ):
        if not rotated_fields:
            raise ValueError("At least one rotated field is required")
        self.vault = vault
        self.updater = updater
        self.policy = policy or PasswordPolicy()
        self.rotated_fields: List[str] = list(rotated_fields)
        self.access_level = access_level
        self.admin_secret_id = admin_secret_id

    def create_secret(self, secret_id: str, token: str) -> None:
        """Generate a candidate value and store it as PENDING under ``token``."""
        with tracer.start_as_current_span("rotation.createSecret") as span:
            span.set_attribute("rotation.secret_id", secret_id)
            span.set_attribute("rotation.step", "createSecret")

            pending = self._get_optional(secret_id, StagingLabel.PENDING)
            if pending is not None and pending.version_id == token:
                logger.info(f"createSecret: PENDING version {token} already exists for {secret_id}")
                return

            current = self._get_optional(secret_id, StagingLabel.CURRENT)
            value: Dict[str, Any] = dict(current.value) if current else {}
            for field in self.rotated_fields:
                value[field] = self.vault.generate_random_secret(self.policy)

            self.vault.put_secret_version(secret_id, value, [StagingLabel.PENDING], token)
            logger.info(
                f"createSecret: stored PENDING version {token} for {secret_id} "
                f"(rotated fields: {', '.join(self.rotated_fields)})"
            )

    def set_secret(self, secret_id: str, token: Optional[str] = None) -> None:
        """Apply the PENDING credentials to the target resource."""
        with tracer.start_as_current_span("rotation.setSecret") as span:
            span.set_attribute("rotation.secret_id", secret_id)
            span.set_attribute("rotation.step", "setSecret")

            pending = self._get_pending(secret_id, token)
            current = self._get_optional(secret_id, StagingLabel.CURRENT)
            authority = self._resolve_authority(secret_id, current)

            try:
                self.updater.apply(pending.value, authority)
            except IdentityNotFound:
                logger.info(
                    f"setSecret: identity for {secret_id} missing on target, creating it "
                    f"from version {current.version_id if current else '<none>'}"
                )
                self.updater.create_identity(
                    pending.value, authority, clone_from=current.value if current else None
                )
            logger.info(f"setSecret: applied PENDING version {pending.version_id} for {secret_id}")

    def test_secret(self, secret_id: str, token: Optional[str] = None) -> None:
        """Verify the PENDING credentials against the target. Never touches labels."""
        with tracer.start_as_current_span("rotation.testSecret") as span:
            span.set_attribute("rotation.secret_id", secret_id)
            span.set_attribute("rotation.step", "testSecret")

            pending = self._get_pending(secret_id, token)
            try:
                self.updater.verify(pending.value, self.access_level)
            except ApplyError as e:
                raise ValidationError(
                    f"Pending credentials for {secret_id} unusable: {e.message}"
                ) from e
            logger.info(
                f"testSecret: PENDING version {pending.version_id} for {secret_id} "
                f"passed {self.access_level.value} check"
            )

    def finish_secret(self, secret_id: str, token: str) -> None:
        """Promote ``token`` to CURRENT; the old CURRENT becomes PREVIOUS."""
        with tracer.start_as_current_span("rotation.finishSecret") as span:
            span.set_attribute("rotation.secret_id", secret_id)
            span.set_attribute("rotation.step", "finishSecret")

            current = self._get_optional(secret_id, StagingLabel.CURRENT)
            if current is not None and current.version_id == token:
                logger.info(f"finishSecret: version {token} already CURRENT for {secret_id}")
                return

            from_version_id = current.version_id if current else None
            self.vault.move_staging_label(
                secret_id,
                StagingLabel.CURRENT,
                to_version_id=token,
                from_version_id=from_version_id,
            )
            logger.info(
                f"finishSecret: promoted {token} to CURRENT for {secret_id} "
                f"(demoted {from_version_id or '<none>'})"
            )

    def _get_optional(self, secret_id: str, label: StagingLabel) -> Optional[SecretVersion]:
        try:
            return self.vault.get_secret_version(secret_id, label)
        except SecretNotFound:
            return None

    def _get_pending(self, secret_id: str, token: Optional[str]) -> SecretVersion:
        pending = self.vault.get_secret_version(secret_id, StagingLabel.PENDING)
        if token and pending.version_id != token:
            logger.warning(
                f"PENDING version of {secret_id} is {pending.version_id}, not {token}; "
                "another rotation may be in progress"
            )
        return pending

    def _resolve_authority(self, secret_id: str, current: Optional[SecretVersion]) -> Dict[str, Any]:
        """Credentials used to change the target: admin secret first, else CURRENT.

        Empty when neither exists; updaters that need an authority reject that.
        """
        if self.admin_secret_id:
            admin = self.vault.get_secret_version(self.admin_secret_id, StagingLabel.CURRENT)
            return admin.value
        if current is None:
            logger.info(f"setSecret: {secret_id} has no CURRENT version and no admin secret is configured")
            return {}
        return current.value
