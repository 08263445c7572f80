"""Video rendering using Playwright's native video recording."""
import asyncio
import os
import shutil
import tempfile
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from sessionreel.config import settings
from sessionreel.constants import RenderStrategy
from sessionreel.models import RenderResult, RenderSession, Timeline
from sessionreel.schemas import ReplaySignal
from sessionreel.services.player import SIGNAL_BINDING, build_page
from sessionreel.services.segments import build_segments
from sessionreel.utils.exceptions import RenderError, RenderTimeoutError
from sessionreel.utils.logger import logger

BROWSER_ARGS = [
    "--no-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
    "--disable-web-security",
    "--disable-features=IsolateOrigins,site-per-process",
]


@dataclass
class RenderOptions:
    """Resolved render configuration for one job."""
    width: int
    height: int
    speed: float = 1.0
    skip_inactive: bool = True
    mouse_tail: Any = False
    strategy: str = RenderStrategy.SEGMENTS


def render_timeout_seconds(active_duration: Optional[float]) -> float:
    """Hard playback timeout: max(floor, multiplier × expected active seconds)."""
    expected = active_duration or 0
    return float(max(settings.render_timeout_floor_seconds, settings.render_timeout_multiplier * expected))


def resolve_viewport(timeline: Timeline, width: Optional[int] = None, height: Optional[int] = None):
    """Explicit overrides win, then the recording's largest viewport, then settings."""
    detected = timeline.viewport()
    if detected is None:
        logger.warning("[RENDER] No viewport recorded, using default size")
        detected = (settings.render_width, settings.render_height)
    return width or detected[0], height or detected[1]


def expected_video_seconds(timeline: Timeline, options: RenderOptions) -> float:
    """
    Rough length of the video a render should produce.

    When inactivity is fast-forwarded only the active segments play at the
    base speed, so they set the expectation; otherwise the whole timeline
    does.
    """
    speed = options.speed or 1.0
    if options.strategy == RenderStrategy.SEGMENTS or options.skip_inactive:
        active_ms = sum(s.duration for s in build_segments(timeline) if s.is_active)
        return active_ms / 1000 / speed
    return timeline.duration_seconds / speed


class RenderOrchestrator:
    """Plays a timeline in headless Chromium and records it to a video file."""

    def __init__(self, playwright_factory=None):
        # Injected in tests; defaults to playwright.async_api.async_playwright
        self._playwright_factory = playwright_factory

    def _playwright(self):
        if self._playwright_factory is not None:
            return self._playwright_factory()
        from playwright.async_api import async_playwright
        return async_playwright()

    async def render(
        self,
        timeline: Timeline,
        options: RenderOptions,
        output_dir: str,
        job_id: str,
        active_duration: Optional[float] = None,
    ) -> RenderResult:
        """
        Render a timeline to ``output_dir/replay.webm``.

        Args:
            timeline: Compressed timeline
            options: Viewport, speed and strategy
            output_dir: Directory that receives the video
            job_id: Recording identifier, used for naming and logs
            active_duration: Expected active seconds, scales the timeout

        Returns:
            RenderResult with the video path

        Raises:
            RenderTimeoutError: If playback never finishes
            RenderError: If the browser or player fails
        """
        session = RenderSession(job_id=job_id, work_dir=tempfile.mkdtemp(prefix=f"render_{job_id}_"))
        timeout = render_timeout_seconds(active_duration)
        os.makedirs(session.video_dir, exist_ok=True)
        os.makedirs(output_dir, exist_ok=True)

        segments: List[Dict[str, Any]] = []
        if options.strategy == RenderStrategy.SEGMENTS:
            segments = [segment.to_dict() for segment in build_segments(timeline)]

        html = build_page(
            events=timeline.events,
            strategy=options.strategy,
            width=options.width,
            height=options.height,
            speed=options.speed,
            skip_inactive=options.skip_inactive,
            mouse_tail=options.mouse_tail,
            segments=segments,
        )

        logger.info(
            f"[RENDER] {job_id}: {len(timeline)} events, {timeline.duration_seconds:.1f}s, "
            f"{options.width}x{options.height}, strategy={options.strategy}, timeout={timeout:.0f}s"
        )

        video = None
        try:
            async with self._playwright() as p:
                try:
                    session.browser = await p.chromium.launch(headless=True, args=BROWSER_ARGS)
                    session.context = await session.browser.new_context(
                        record_video_dir=session.video_dir,
                        record_video_size={"width": options.width, "height": options.height},
                        viewport={"width": options.width, "height": options.height},
                    )
                    session.page = await session.context.new_page()
                    video = session.page.video
                    self._attach_listeners(session)
                    await session.page.expose_function(SIGNAL_BINDING, self._signal_handler(session))

                    await session.page.set_content(html, wait_until="load")
                    await self._start_playback(session)
                    await self._wait_for_finish(session, timeout)
                finally:
                    # The video is only flushed once the context closes
                    await session.close()

            video_path = await video.path() if video is not None else None
            if not video_path or not os.path.exists(video_path):
                raise RenderError("No video file generated")

            output_path = os.path.join(output_dir, "replay.webm")
            shutil.move(video_path, output_path)
            size = os.path.getsize(output_path)
            logger.info(f"[RENDER] {job_id}: video written to {output_path} ({size} bytes)")
            return RenderResult(
                success=True,
                video_path=output_path,
                video_duration=timeline.duration_seconds,
                size_bytes=size,
            )
        finally:
            session.discard()

    def _attach_listeners(self, session: RenderSession) -> None:
        job_id = session.job_id

        def on_console(msg):
            if msg.type == "error":
                logger.warning(f"[RENDER] {job_id} console error: {msg.text}")
            else:
                logger.debug(f"[RENDER] {job_id} console [{msg.type}]: {msg.text}")

        session.page.on("console", on_console)
        session.page.on("pageerror", lambda err: logger.warning(f"[RENDER] {job_id} page error: {err}"))

    def _signal_handler(self, session: RenderSession):
        def handle(message: Any) -> None:
            try:
                signal = ReplaySignal.model_validate(message)
            except ValidationError as e:
                logger.warning(f"[RENDER] {session.job_id} ignored malformed signal {message!r}: {e}")
                return
            if signal.kind == "finish":
                logger.info(f"[RENDER] {session.job_id} replay finished")
                session.mark_finished()
            elif signal.progress is not None:
                session.progress = signal.progress
                logger.debug(f"[RENDER] {session.job_id} progress {signal.progress:.0%}")

        return handle

    async def _start_playback(self, session: RenderSession) -> None:
        page = session.page
        try:
            await page.wait_for_function(
                "() => window.pageReady === true || window.loadError !== null",
                timeout=30000,
            )
        except Exception as e:
            raise RenderError(f"Failed to load replay player - timeout: {e}") from e

        load_error = await page.evaluate("() => window.loadError")
        if load_error:
            raise RenderError(f"Failed to load replay player: {load_error}")

        started = await page.evaluate("() => window.startPlayback()")
        if not started:
            load_error = await page.evaluate("() => window.loadError")
            raise RenderError(f"Failed to start playback: {load_error}")

    async def _wait_for_finish(self, session: RenderSession, timeout: float) -> None:
        try:
            await asyncio.wait_for(session.finished.wait(), timeout=timeout)
        except asyncio.TimeoutError as e:
            logger.error(
                f"[RENDER] {session.job_id} timed out after {timeout:.0f}s "
                f"at {session.progress:.0%} progress"
            )
            raise RenderTimeoutError(timeout) from e


render_orchestrator = RenderOrchestrator()
