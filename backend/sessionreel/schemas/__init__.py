"""Pydantic schemas for request/response validation."""
from sessionreel.schemas.render import (
    RecordingSource,
    RenderConfig,
    Destination,
    RenderRequest,
    RenderAccepted,
    ReplaySignal,
)

__all__ = [
    "RecordingSource",
    "RenderConfig",
    "Destination",
    "RenderRequest",
    "RenderAccepted",
    "ReplaySignal",
]
