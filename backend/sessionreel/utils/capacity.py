"""Render concurrency derived from available memory."""
from typing import Optional

import psutil

from sessionreel.config import settings
from sessionreel.utils.logger import logger

MEMORY_HEADROOM = 0.9  # Share of available memory renders may use


def available_memory_mb() -> int:
    return int(psutil.virtual_memory().available / (1024 * 1024))


def compute_render_concurrency(
    available_mb: Optional[int] = None,
    budget_mb: Optional[int] = None,
    per_job_mb: Optional[int] = None,
) -> int:
    """
    How many renders can run at once without exhausting memory.

    ``floor(min(budget, 90% of available) / per-job memory)``, at least 1.
    ``settings.render_max_concurrency`` overrides the computation.

    Args:
        available_mb: Available memory, read from the system when omitted
        budget_mb: Configured memory budget for renders
        per_job_mb: Memory one headless browser render needs

    Returns:
        Number of concurrent render jobs
    """
    if settings.render_max_concurrency:
        return max(1, settings.render_max_concurrency)

    available = available_memory_mb() if available_mb is None else available_mb
    budget = settings.render_memory_budget_mb if budget_mb is None else budget_mb
    per_job = per_job_mb or settings.render_memory_per_job_mb

    usable = available * MEMORY_HEADROOM
    if budget:
        usable = min(budget, usable)

    concurrency = max(1, int(usable // per_job))
    logger.debug(f"[CAPACITY] {available}MB available, {per_job}MB per render -> {concurrency} concurrent renders")
    return concurrency
