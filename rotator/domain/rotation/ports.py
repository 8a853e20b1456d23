"""Rotation Domain Ports (Interfaces)."""
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, Optional

from .models import AccessLevel, PasswordPolicy, SecretVersion, StagingLabel


class VaultClient(ABC):
    """Abstract Port for the managed secret vault.

    The four operations are the only way the rotation steps touch stored state.
    Writes are conditional: ``put_secret_version`` is keyed by request token and
    ``move_staging_label`` is a compare-and-move on the label's current holder.
    """

    @abstractmethod
    def generate_random_secret(self, policy: PasswordPolicy) -> str:
        """Return a random string satisfying ``policy``. Raises GenerationError."""
        ...

    @abstractmethod
    def get_secret_version(self, secret_id: str, staging_label: StagingLabel) -> SecretVersion:
        """Return the version holding ``staging_label``. Raises SecretNotFound."""
        ...

    @abstractmethod
    def put_secret_version(
        self,
        secret_id: str,
        value: Dict[str, Any],
        labels: Iterable[StagingLabel],
        request_token: str,
    ) -> None:
        """Write a new version identified by ``request_token``.

        Succeeds silently if the token already maps to an identical value.
        Raises VersionConflict if it maps to a different value.
        """
        ...

    @abstractmethod
    def move_staging_label(
        self,
        secret_id: str,
        label: StagingLabel,
        to_version_id: str,
        from_version_id: Optional[str] = None,
    ) -> None:
        """Atomically move ``label`` from ``from_version_id`` to ``to_version_id``.

        Moving CURRENT demotes the old holder to PREVIOUS. Raises
        StaleVersionError if ``from_version_id`` no longer holds ``label``.
        """
        ...


class TargetUpdater(ABC):
    """Abstract Port for the resource whose credentials are being rotated."""

    @abstractmethod
    def apply(self, pending: Dict[str, Any], authority: Dict[str, Any]) -> None:
        """Make the target accept ``pending``, authorized by ``authority``.

        ``authority`` is empty when the secret has no CURRENT version and no admin
        secret is configured. Must be a no-op when ``pending`` is already in
        effect. Raises IdentityNotFound when the identity does not exist yet,
        ApplyError otherwise.
        """
        ...

    @abstractmethod
    def create_identity(
        self,
        pending: Dict[str, Any],
        authority: Dict[str, Any],
        clone_from: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Create the identity in ``pending`` with the grants of ``clone_from``."""
        ...

    @abstractmethod
    def verify(self, pending: Dict[str, Any], access_level: AccessLevel) -> None:
        """Exercise ``pending`` the way consumers will. Raises ValidationError."""
        ...
