"""Rotation API Router.

    POST /rotation/v1/steps   invoke one rotation step (204 on success)

Step failures map to the typed error body
``{"error": {"code", "message", "details": {"retryable", ...}}}`` so an orchestrator calling over
HTTP can apply the same retry policy as an in-process caller.
"""
import logging

from fastapi import APIRouter, Depends, Response

from rotator.dependencies import get_rotation_service
from rotator.domain.rotation.dispatcher import dispatch_request
from rotator.domain.rotation.models import RotationRequest
from rotator.domain.rotation.service import RotationService
from rotator.errors import RotationError, raise_rotation_error

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/rotation/v1/steps", status_code=204)
def invoke_step(
    request: RotationRequest,
    service: RotationService = Depends(get_rotation_service),
):
    try:
        dispatch_request(service, request)
    except RotationError as e:
        logger.warning(
            f"Step {request.step} failed for {request.secret_id}: {e.code} ({e.message})"
        )
        raise_rotation_error(
            e.code,
            e.status_code,
            e.message,
            details={"retryable": e.retryable, **e.details},
        )
    return Response(status_code=204)


@router.get("/health/live")
async def liveness():
    """Liveness check: service is running."""
    return {"status": "ok", "checks": {"api": "ok"}}
