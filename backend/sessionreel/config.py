"""Application configuration using Pydantic settings."""
from pydantic_settings import BaseSettings
from typing import List, Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    environment: str = "development"

    # CORS
    allowed_origins: str = "http://localhost:3000,http://localhost:3001"

    # Redis (for ARQ worker)
    redis_url: str = "redis://127.0.0.1:6379"

    # Supabase Storage
    supabase_url: Optional[str] = None
    supabase_secret_key: Optional[str] = None  # Secret key (sb_secret_...) for server-side operations
    storage_bucket: str = "session-videos"

    # PostHog snapshot fetching
    posthog_host: str = "https://us.posthog.com"
    fetch_timeout_seconds: float = 30.0
    fetch_max_attempts: int = 3
    fetch_backoff_ms: int = 500
    fetch_max_keys_per_call: int = 20

    # Rendering
    render_width: int = 1400
    render_height: int = 900
    render_speed: float = 1.0
    render_strategy: str = "segments"  # "player" or "segments"
    render_skip_inactive: bool = True
    render_timeout_floor_seconds: int = 300
    render_timeout_multiplier: int = 10
    render_max_speed: int = 360
    render_trim_black_intro: bool = True
    worker_job_timeout_seconds: int = 4 * 3600  # Must exceed the longest render timeout
    rrweb_version: str = "1.1.3"
    rrweb_player_version: str = "1.0.0-alpha.4"
    rrweb_assets_dir: Optional[str] = None  # Local copies of the rrweb bundles, skips the CDN

    # Render concurrency
    render_memory_per_job_mb: int = 512
    render_memory_budget_mb: Optional[int] = None
    render_max_concurrency: Optional[int] = None

    # Idle compression
    idle_compressed_gap_ms: int = 1000
    idle_window_hidden_min_ms: int = 10000

    # Artifact validation
    min_video_bytes: int = 1000
    min_video_bytes_per_second: int = 5000

    # Upload
    upload_mode: str = "auto"  # "auto", "direct" or "resumable"
    upload_chunk_size: int = 6 * 1024 * 1024
    upload_max_attempts: int = 3
    signed_url_expiry_seconds: int = 7 * 24 * 3600

    # External tools
    ffmpeg_binary: str = "ffmpeg"
    ffprobe_binary: str = "ffprobe"

    @property
    def cors_origins(self) -> List[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.allowed_origins.split(",")]

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    class Config:
        env_file = ".env"
        case_sensitive = False


settings = Settings()
