"""End-to-end render job: fetch, decode, assemble, compress, render, probe, upload."""
import os
import shutil
import tempfile
from typing import Any, Dict, List, Optional

from sessionreel.config import settings
from sessionreel.models import RenderArtifact, Timeline
from sessionreel.schemas.render import MouseTail, RenderRequest
from sessionreel.services.decoder import decode_batch
from sessionreel.services.idle import compress_idle
from sessionreel.services.posthog import SnapshotFetcher
from sessionreel.services.probe import probe_duration, trim_black_intro, validate_artifact
from sessionreel.services.storage import StorageService, storage_service
from sessionreel.services.timeline import assemble_timeline, patch_meta_events
from sessionreel.services.video import (
    RenderOptions,
    RenderOrchestrator,
    expected_video_seconds,
    render_orchestrator,
    resolve_viewport,
)
from sessionreel.utils.exceptions import ReplayRenderError, UploadError
from sessionreel.utils.logger import logger


def failure(recording_id: str, error: str) -> Dict[str, Any]:
    return {"success": False, "error": error, "recording_id": recording_id}


async def build_timeline(fetcher: SnapshotFetcher) -> Timeline:
    """Fetch every batch, decode it and assemble the timeline."""
    events: List[Dict[str, Any]] = []
    batches = 0
    warnings = 0
    async for batch in fetcher.iter_batches():
        batches += 1
        result = decode_batch(batch)
        events.extend(result.events)
        warnings += len(result.warnings)

    logger.info(f"[FETCH] {fetcher.recording_id}: {len(events)} events from {batches} batches ({warnings} decode warnings)")
    return patch_meta_events(assemble_timeline(events))


async def resolve_active_duration(request: RenderRequest, fetcher: SnapshotFetcher) -> Optional[float]:
    """Caller's duration hint, else the recording's ``active_seconds``."""
    if request.active_duration is not None:
        return request.active_duration
    try:
        metadata = await fetcher.fetch_recording_metadata()
    except ReplayRenderError as e:
        logger.warning(f"[FETCH] Could not read recording metadata: {e}")
        return None
    active = metadata.get("active_seconds")
    return float(active) if isinstance(active, (int, float)) else None


def default_object_path(request: RenderRequest) -> str:
    source = request.source
    return f"videos/{source.project_id}/{source.recording_id}/replay.webm"


async def run_render_job(
    request: RenderRequest,
    fetcher: Optional[SnapshotFetcher] = None,
    orchestrator: Optional[RenderOrchestrator] = None,
    storage: Optional[StorageService] = None,
) -> Dict[str, Any]:
    """
    Turn one recording into an uploaded video.

    Never raises: every failure comes back as
    ``{"success": False, "error": ..., "recording_id": ...}``.

    Args:
        request: Validated render request
        fetcher: Snapshot fetcher, built from ``request.source`` when omitted
        orchestrator: Renderer, defaults to the shared stateless orchestrator
        storage: Uploader, defaults to the configured storage service

    Returns:
        Dict with success status, video URL and duration
    """
    source = request.source
    recording_id = source.recording_id
    config = request.config
    fetcher = fetcher or SnapshotFetcher(source.host, source.api_key, source.project_id, recording_id)
    orchestrator = orchestrator or render_orchestrator
    storage = storage or storage_service
    output_dir = None

    try:
        timeline = await build_timeline(fetcher)
        compressed, summary = compress_idle(timeline, gap_ms=config.compressed_gap_ms)
        active_duration = await resolve_active_duration(request, fetcher)

        width, height = resolve_viewport(compressed, config.width, config.height)
        mouse_tail = config.mouse_tail.model_dump() if isinstance(config.mouse_tail, MouseTail) else config.mouse_tail
        options = RenderOptions(
            width=width,
            height=height,
            speed=config.speed or settings.render_speed,
            skip_inactive=settings.render_skip_inactive if config.skip_inactive is None else config.skip_inactive,
            mouse_tail=mouse_tail,
            strategy=config.strategy or settings.render_strategy,
        )

        output_dir = tempfile.mkdtemp(prefix=f"video_output_{recording_id}_")
        result = await orchestrator.render(compressed, options, output_dir, recording_id, active_duration)

        video_path = result.video_path
        if settings.render_trim_black_intro:
            video_path = await trim_black_intro(video_path)

        duration = await probe_duration(video_path, compressed)
        validate_artifact(video_path, expected_video_seconds(compressed, options), duration)
        artifact = RenderArtifact(
            video_path=video_path,
            video_duration=duration,
            size_bytes=os.path.getsize(video_path),
        )

        upload = await storage.upload_video(
            artifact.video_path,
            request.destination.object_path or default_object_path(request),
            bucket=request.destination.bucket,
        )
        if not upload.success:
            raise UploadError(upload.error or "Upload failed")
        artifact.url = upload.url

        logger.info(
            f"Video rendered and uploaded for recording {recording_id}: "
            f"{artifact.video_duration:.1f}s, {artifact.size_bytes} bytes, "
            f"{summary.saved_ms / 1000:.1f}s idle removed"
        )
        return {
            "success": True,
            "recording_id": recording_id,
            "url": artifact.url,
            "video_duration": artifact.video_duration,
            "size_bytes": artifact.size_bytes,
        }

    except ReplayRenderError as e:
        logger.error(f"Render job failed for recording {recording_id}: {e}", exc_info=True)
        return failure(recording_id, str(e))
    except Exception as e:
        logger.error(f"Unexpected error rendering recording {recording_id}: {e}", exc_info=True)
        return failure(recording_id, str(e))
    finally:
        if output_dir and os.path.exists(output_dir):
            shutil.rmtree(output_dir, ignore_errors=True)
