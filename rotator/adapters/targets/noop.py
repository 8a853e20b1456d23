"""Target updater for secrets with no external system to update."""
import logging
from typing import Any, Dict, Optional, Sequence

from rotator.domain.rotation.models import AccessLevel
from rotator.domain.rotation.ports import TargetUpdater
from rotator.errors import ValidationError

logger = logging.getLogger(__name__)


class NoopTargetUpdater(TargetUpdater):
    """Default updater: nothing to push, verification checks the payload shape."""

    def __init__(self, required_fields: Sequence[str] = ("authMasterKey",)):
        self.required_fields = list(required_fields)

    def apply(self, pending: Dict[str, Any], authority: Dict[str, Any]) -> None:
        logger.debug("No target resource configured; nothing to apply")

    def create_identity(
        self,
        pending: Dict[str, Any],
        authority: Dict[str, Any],
        clone_from: Optional[Dict[str, Any]] = None,
    ) -> None:
        logger.debug("No target resource configured; nothing to create")

    def verify(self, pending: Dict[str, Any], access_level: AccessLevel) -> None:
        missing = [f for f in self.required_fields if not pending.get(f)]
        if missing:
            raise ValidationError(f"Pending secret is missing {', '.join(missing)}")
