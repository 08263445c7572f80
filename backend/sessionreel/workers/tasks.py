"""ARQ background tasks for recording renders."""
from typing import Any, Dict

from pydantic import ValidationError

from sessionreel.schemas import RenderRequest
from sessionreel.services.callback import post_callback
from sessionreel.services.pipeline import failure, run_render_job
from sessionreel.utils.logger import logger


async def render_recording(ctx: Dict[str, Any], payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Render one recording to video and report the result.

    Args:
        ctx: ARQ context
        payload: A serialized RenderRequest

    Returns:
        Dict with success status and details
    """
    try:
        request = RenderRequest.model_validate(payload)
    except ValidationError as e:
        recording_id = str(payload.get("source", {}).get("recording_id", "unknown"))
        logger.error(f"Invalid render payload for recording {recording_id}: {e}")
        return failure(recording_id, f"Invalid render request: {e}")

    logger.info(f"Rendering recording {request.source.recording_id} (job try {ctx.get('job_try', 1)})")
    result = await run_render_job(request)

    if request.callback_url:
        await post_callback(request.callback_url, result)
    return result
