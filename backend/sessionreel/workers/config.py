"""ARQ worker configuration."""
from urllib.parse import urlparse

from arq.connections import RedisSettings

from sessionreel.config import settings
from sessionreel.utils.capacity import compute_render_concurrency
from sessionreel.utils.logger import logger
from sessionreel.workers.tasks import render_recording


def parse_redis_url(url: str) -> RedisSettings:
    """Parse Redis URL into RedisSettings."""
    parsed = urlparse(url)
    return RedisSettings(
        host=parsed.hostname or "localhost",
        port=parsed.port or 6379,
        password=parsed.password,
        database=int(parsed.path[1:]) if parsed.path and len(parsed.path) > 1 else 0,
    )


redis_settings = parse_redis_url(settings.redis_url)


async def startup(ctx):
    """Worker startup hook."""
    logger.info(f"ARQ render worker starting up with max_jobs={WorkerSettings.max_jobs}...")
    ctx["startup_complete"] = True


async def shutdown(ctx):
    """Worker shutdown hook."""
    logger.info("ARQ render worker shutting down...")


class WorkerSettings:
    """ARQ worker settings."""

    functions = [
        render_recording,
    ]

    on_startup = startup
    on_shutdown = shutdown

    redis_settings = redis_settings

    # Job configuration
    max_jobs = compute_render_concurrency()
    job_timeout = settings.worker_job_timeout_seconds
    keep_result = 0  # Results go out through the callback; a finished recording can be queued again
    retry_jobs = False  # Failures go out through the result and callback
    max_tries = 1
