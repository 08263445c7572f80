"""Video duration probing, artifact sanity checks and black intro trimming."""
import asyncio
import math
import os
import re
from typing import List, Optional, Tuple

from sessionreel.config import settings
from sessionreel.models import Timeline
from sessionreel.utils.logger import logger

BLACK_SEGMENT_PATTERN = re.compile(
    r"black_start:(\d+\.?\d*)\s+black_end:(\d+\.?\d*)\s+black_duration:(\d+\.?\d*)"
)
INTRO_START_TOLERANCE = 0.05
MIN_INTRO_SECONDS = 0.1
MAX_INTRO_SECONDS = 10.0
MIN_DURATION_RATIO = 0.5  # Probed duration below this share of the expected one is suspicious


async def _run(*cmd: str) -> Tuple[int, str, str]:
    process = await asyncio.create_subprocess_exec(
        *cmd,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    stdout, stderr = await process.communicate()
    return process.returncode, stdout.decode("utf-8", "replace"), stderr.decode("utf-8", "replace")


def _finite_non_negative(value: Optional[float]) -> bool:
    return value is not None and math.isfinite(value) and value >= 0


async def ffprobe_duration(path: str) -> Optional[float]:
    """Container duration in seconds as reported by ffprobe, or None."""
    try:
        code, stdout, stderr = await _run(
            settings.ffprobe_binary,
            "-v", "error",
            "-show_entries", "format=duration",
            "-of", "default=noprint_wrappers=1:nokey=1",
            path,
        )
    except OSError as e:
        logger.warning(f"[PROBE] ffprobe unavailable: {e}")
        return None

    if code != 0:
        logger.warning(f"[PROBE] ffprobe failed with code {code}: {stderr.strip()[:200]}")
        return None
    try:
        return float(stdout.strip())
    except ValueError:
        logger.warning(f"[PROBE] ffprobe returned no duration: {stdout.strip()[:100]!r}")
        return None


async def probe_duration(path: str, timeline: Optional[Timeline] = None) -> float:
    """
    Authoritative duration of a rendered video.

    Uses ffprobe; falls back to the timeline span, then to 0.

    Args:
        path: Video file
        timeline: Compressed timeline the video was rendered from

    Returns:
        Duration in seconds, always finite and >= 0
    """
    duration = await ffprobe_duration(path)
    if _finite_non_negative(duration):
        return duration

    if timeline is not None and len(timeline):
        estimate = timeline.duration_ms / 1000
        if _finite_non_negative(estimate):
            logger.info(f"[PROBE] Using timeline estimate of {estimate:.1f}s for {path}")
            return estimate

    logger.warning(f"[PROBE] Could not determine duration of {path}; reporting 0, video is likely corrupt")
    return 0.0


def validate_artifact(
    path: str,
    expected_seconds: Optional[float] = None,
    duration_seconds: Optional[float] = None,
) -> List[str]:
    """
    Check a rendered file for signs of silent corruption.

    Nothing is raised; every problem found is logged as a warning.

    Args:
        path: Video file
        expected_seconds: Duration the video should have, from the timeline
        duration_seconds: Duration actually probed from the file

    Returns:
        The warnings that were logged
    """
    problems = []
    size = os.path.getsize(path) if os.path.exists(path) else 0

    if size < settings.min_video_bytes:
        problems.append(f"Video file is empty or corrupted (size: {size} bytes)")
    elif expected_seconds:
        expected_min = int(expected_seconds * settings.min_video_bytes_per_second)
        if size < expected_min:
            problems.append(
                f"Video file is suspiciously small: {size} bytes for {expected_seconds:.1f}s "
                f"(expected at least {expected_min} bytes)"
            )

    if duration_seconds is not None:
        if duration_seconds <= 0:
            problems.append("Video duration could not be determined (0s)")
        elif expected_seconds and duration_seconds < expected_seconds * MIN_DURATION_RATIO:
            problems.append(
                f"Video duration is implausibly low: {duration_seconds:.1f}s "
                f"for an expected {expected_seconds:.1f}s"
            )

    for problem in problems:
        logger.warning(f"[PROBE] {problem}: {path}")
    return problems


def find_intro_black_end(blackdetect_output: str) -> Optional[float]:
    """End of the black segment that starts the video, if any."""
    for match in BLACK_SEGMENT_PATTERN.finditer(blackdetect_output):
        black_start, black_end = float(match.group(1)), float(match.group(2))
        if black_start <= INTRO_START_TOLERANCE:
            return black_end
        logger.debug(f"[TRIM] Skipping mid-video black segment {black_start:.2f}-{black_end:.2f}s")
    return None


async def trim_black_intro(path: str) -> str:
    """
    Cut the black frames Chromium records before the first paint.

    Args:
        path: Video file

    Returns:
        Path of the trimmed video, or the original path if nothing was trimmed
    """
    try:
        code, _, stderr = await _run(
            settings.ffmpeg_binary,
            "-i", path,
            "-vf", "blackdetect=d=0.1:pix_th=0.1",
            "-an",
            "-f", "null",
            "-",
        )
    except OSError as e:
        logger.warning(f"[TRIM] ffmpeg unavailable: {e}")
        return path
    if code != 0:
        logger.warning(f"[TRIM] blackdetect failed with code {code}")
        return path

    black_end = find_intro_black_end(stderr)
    if black_end is None:
        logger.info("[TRIM] No black intro detected")
        return path
    if black_end <= MIN_INTRO_SECONDS:
        logger.info(f"[TRIM] Black intro too short ({black_end:.2f}s), keeping original")
        return path
    if black_end > MAX_INTRO_SECONDS:
        logger.warning(f"[TRIM] Black intro suspiciously long ({black_end:.2f}s), keeping original")
        return path

    root, ext = os.path.splitext(path)
    trimmed = f"{root}-trimmed{ext or '.webm'}"
    code, _, stderr = await _run(
        settings.ffmpeg_binary,
        "-ss", str(black_end),
        "-i", path,
        "-c", "copy",
        "-y",
        trimmed,
    )
    if code != 0 or not os.path.exists(trimmed):
        logger.warning(f"[TRIM] Trim failed with code {code}: {stderr.strip()[-200:]}")
        return path

    logger.info(f"[TRIM] Trimmed {black_end:.2f}s black intro from {path}")
    return trimmed
