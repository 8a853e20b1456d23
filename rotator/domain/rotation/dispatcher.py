"""Step dispatch for rotation invocations."""
import logging
from typing import Callable, Dict

from .models import RotationRequest, RotationStep
from .service import RotationService

logger = logging.getLogger(__name__)

STEP_HANDLERS: Dict[str, Callable[[RotationService, str, str], None]] = {
    RotationStep.CREATE.value: RotationService.create_secret,
    RotationStep.SET.value: RotationService.set_secret,
    RotationStep.TEST.value: RotationService.test_secret,
    RotationStep.FINISH.value: RotationService.finish_secret,
}


def dispatch(service: RotationService, step: str, secret_id: str, token: str) -> None:
    """Route ``step`` to its handler. Unknown steps are ignored."""
    handler = STEP_HANDLERS.get(step)
    if handler is None:
        logger.info(f"Ignoring unhandled rotation step {step!r} for {secret_id}")
        return None
    handler(service, secret_id, token)
    return None


def dispatch_request(service: RotationService, request: RotationRequest) -> None:
    return dispatch(service, request.step, request.secret_id, request.client_request_token)
