"""Schemas for render job requests."""
from pydantic import BaseModel, Field
from typing import Literal, Optional, Union


class RecordingSource(BaseModel):
    """Where to fetch the recording from."""
    host: str = Field(..., description="PostHog host, e.g. https://us.posthog.com")
    api_key: str = Field(..., description="Personal API key with recording read access")
    project_id: str
    recording_id: str


class MouseTail(BaseModel):
    """Mouse tail styling forwarded to the replayer."""
    duration: int = 500
    lineCap: str = "round"
    lineWidth: int = 3
    strokeStyle: str = "red"


class RenderConfig(BaseModel):
    """Optional render overrides; unset fields fall back to settings."""
    width: Optional[int] = Field(None, gt=0)
    height: Optional[int] = Field(None, gt=0)
    speed: Optional[float] = Field(None, gt=0)
    skip_inactive: Optional[bool] = None
    mouse_tail: Union[MouseTail, bool] = False
    strategy: Optional[Literal["player", "segments"]] = None
    compressed_gap_ms: Optional[int] = Field(None, ge=0)


class Destination(BaseModel):
    """Where the finished video goes."""
    bucket: Optional[str] = None
    object_path: Optional[str] = None


class RenderRequest(BaseModel):
    """Request schema for POST /api/render."""
    source: RecordingSource
    active_duration: Optional[float] = Field(None, ge=0, description="Expected active seconds")
    config: RenderConfig = Field(default_factory=RenderConfig)
    destination: Destination = Field(default_factory=Destination)
    callback_url: Optional[str] = None


class RenderAccepted(BaseModel):
    """Response schema for POST /api/render."""
    success: bool
    recording_id: str
    queued: bool


class ReplaySignal(BaseModel):
    """Message sent from the replay page to the host."""
    kind: Literal["finish", "progress"]
    progress: Optional[float] = Field(None, ge=0, le=1)
