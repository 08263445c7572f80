"""Per-job render state and render outputs."""
import asyncio
import os
import shutil
from dataclasses import dataclass, field
from typing import Any, Optional

from sessionreel.utils.logger import logger


@dataclass
class RenderResult:
    """Result of playing a timeline into a video file."""
    success: bool
    video_path: Optional[str] = None
    video_duration: float = 0.0
    size_bytes: int = 0
    error: Optional[str] = None


@dataclass
class RenderArtifact:
    """A rendered video with its probed duration and, once uploaded, its URL."""
    video_path: str
    video_duration: float
    size_bytes: int
    url: Optional[str] = None


@dataclass
class RenderSession:
    """Everything one render job owns in the browser.

    A session is created per job and never shared; closing it releases the
    page, context and browser in that order.
    """
    job_id: str
    work_dir: str
    browser: Any = None
    context: Any = None
    page: Any = None
    finished: asyncio.Event = field(default_factory=asyncio.Event)
    progress: float = 0.0

    @property
    def video_dir(self) -> str:
        return os.path.join(self.work_dir, "recordings")

    def mark_finished(self) -> None:
        self.progress = 1.0
        self.finished.set()

    async def close(self) -> None:
        """Close the browser context and browser, logging instead of raising."""
        if self.context is not None:
            try:
                await self.context.close()
            except Exception as e:
                logger.warning(f"[RENDER] Failed to close context for {self.job_id}: {e}")
            self.context = None
        if self.browser is not None:
            try:
                await self.browser.close()
            except Exception as e:
                logger.warning(f"[RENDER] Failed to close browser for {self.job_id}: {e}")
            self.browser = None

    def discard(self) -> None:
        """Remove the work directory and anything recorded into it."""
        if self.work_dir and os.path.exists(self.work_dir):
            shutil.rmtree(self.work_dir, ignore_errors=True)
