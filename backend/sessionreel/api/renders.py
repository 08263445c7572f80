"""Render job endpoints."""
from fastapi import APIRouter, HTTPException, status

from sessionreel.constants import QueueStatus
from sessionreel.schemas import RenderAccepted, RenderRequest
from sessionreel.utils.exceptions import conflict_error, service_unavailable_error, validation_error
from sessionreel.utils.logger import logger
from sessionreel.utils.video_queue import queue_render_job

router = APIRouter(prefix="/api", tags=["renders"])


@router.post("/render", response_model=RenderAccepted, status_code=status.HTTP_202_ACCEPTED)
async def request_render(request: RenderRequest):
    """
    Queue a recording for rendering.

    The result is POSTed to ``callback_url`` when the job finishes.
    """
    try:
        if not request.source.host.startswith(("http://", "https://")):
            raise validation_error("source.host must be an http(s) URL")

        queue_status = await queue_render_job(request)
        if queue_status == QueueStatus.UNAVAILABLE:
            raise service_unavailable_error("Render queue is unavailable, try again later")
        if queue_status == QueueStatus.DUPLICATE:
            raise conflict_error("A render for this recording is already queued or running")

        logger.info(f"[RENDER_API] Queued render for recording {request.source.recording_id}")
        return RenderAccepted(success=True, recording_id=request.source.recording_id, queued=True)

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Failed to queue render for recording {request.source.recording_id}: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to queue render: {str(e)}",
        )
