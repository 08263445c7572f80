"""Models package."""
from sessionreel.models.snapshot import RawSnapshotBatch, DecodeWarning, DecodeResult
from sessionreel.models.timeline import Timeline, IdlePeriod, RecordingSegment, CompressionSummary
from sessionreel.models.render import RenderSession, RenderResult, RenderArtifact

__all__ = [
    "RawSnapshotBatch",
    "DecodeWarning",
    "DecodeResult",
    "Timeline",
    "IdlePeriod",
    "RecordingSegment",
    "CompressionSummary",
    "RenderSession",
    "RenderResult",
    "RenderArtifact",
]
