"""Render job queue utilities."""
from arq import create_pool

from sessionreel.constants import QueueStatus
from sessionreel.schemas import RenderRequest
from sessionreel.utils.logger import logger
from sessionreel.workers.config import redis_settings


def render_job_id(request: RenderRequest) -> str:
    return f"render:{request.source.project_id}:{request.source.recording_id}"


async def queue_render_job(request: RenderRequest) -> str:
    """
    Queue a render job for a recording.

    The job id is derived from the recording, so a recording that is still
    queued or rendering is not queued twice. Finished jobs keep no result,
    so a recording can be queued again as soon as its last render is done.

    Args:
        request: Validated render request

    Returns:
        QueueStatus.QUEUED, QueueStatus.DUPLICATE if the recording is already
        in flight, or QueueStatus.UNAVAILABLE if Redis could not be reached
    """
    recording_id = request.source.recording_id
    try:
        redis = await create_pool(redis_settings)
        try:
            job = await redis.enqueue_job(
                "render_recording",
                request.model_dump(mode="json"),
                _job_id=render_job_id(request),
            )
        finally:
            await redis.close()
    except Exception as e:
        logger.error(f"Failed to queue render for recording {recording_id}: {e}", exc_info=True)
        return QueueStatus.UNAVAILABLE

    if job is None:
        logger.info(f"Render for recording {recording_id} is already queued or running")
        return QueueStatus.DUPLICATE
    return QueueStatus.QUEUED
