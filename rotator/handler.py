"""Event entry point for the rotation orchestrator.

The orchestrator invokes ``handler`` with::

    {"Step": "createSecret", "ClientRequestToken": "<token>", "SecretId": "<id>"}

Errors propagate to the caller unchanged; the orchestrator owns retries.
"""
import logging
from typing import Any, Dict, Optional

from rotator.core.config import settings
from rotator.dependencies import get_rotation_service
from rotator.domain.rotation.dispatcher import dispatch_request
from rotator.domain.rotation.models import RotationRequest
from rotator.domain.rotation.service import RotationService
from rotator.logging_hardening import configure_logging

logger = logging.getLogger(__name__)

configure_logging(settings.LOG_LEVEL)


def handler(event: Dict[str, Any], context: Any = None, service: Optional[RotationService] = None) -> None:
    logger.info(f"Rotation event: {event}")
    request = RotationRequest.model_validate(event)
    dispatch_request(service or get_rotation_service(), request)
    return None
