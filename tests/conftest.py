import pytest
from typing import Any, Dict, Optional

from rotator.adapters.memory_store.vault import MemoryVault
from rotator.domain.rotation.models import AccessLevel, PasswordPolicy, StagingLabel
from rotator.domain.rotation.ports import TargetUpdater
from rotator.domain.rotation.service import RotationService
from rotator.errors import ApplyError, IdentityNotFound, ValidationError


class FakeTarget(TargetUpdater):
    """Target resource that remembers which key each identity accepts."""

    def __init__(self, known_identities=("app",)):
        self.accepted: Dict[str, str] = {identity: "old" for identity in known_identities}
        self.grants: Dict[str, list] = {identity: ["reader"] for identity in known_identities}
        self.reachable = True
        self.apply_calls = 0
        self.authorities = []

    def _identity(self, value: Dict[str, Any]) -> str:
        return value.get("username", "app")

    def apply(self, pending, authority):
        self.apply_calls += 1
        self.authorities.append(authority)
        if not self.reachable:
            raise ApplyError("target unreachable")
        identity = self._identity(pending)
        if identity not in self.accepted:
            raise IdentityNotFound(f"{identity} missing")
        self.accepted[identity] = pending["authMasterKey"]

    def create_identity(self, pending, authority, clone_from: Optional[Dict[str, Any]] = None):
        identity = self._identity(pending)
        self.accepted[identity] = pending["authMasterKey"]
        template = self._identity(clone_from) if clone_from else None
        self.grants[identity] = list(self.grants.get(template, []))

    def verify(self, pending, access_level):
        if not self.reachable:
            raise ValidationError("target unreachable")
        if self.accepted.get(self._identity(pending)) != pending.get("authMasterKey"):
            raise ValidationError("pending key rejected")


@pytest.fixture
def vault():
    v = MemoryVault()
    v.seed("s1", "v0", {"authMasterKey": "old", "host": "db.internal"}, [StagingLabel.CURRENT])
    return v


@pytest.fixture
def target():
    return FakeTarget()


@pytest.fixture
def service(vault, target):
    return RotationService(
        vault=vault,
        updater=target,
        policy=PasswordPolicy(length=24),
        rotated_fields=["authMasterKey"],
        access_level=AccessLevel.READ,
    )
