"""Timeline, idle period and segment value types."""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from sessionreel.constants import EventType, IncrementalSource


@dataclass
class IdlePeriod:
    """A span of inactivity in original (pre-compression) time."""
    start: int
    end: int
    reason: str

    @property
    def duration(self) -> int:
        return self.end - self.start


@dataclass
class RecordingSegment:
    """A stretch of the recording that plays at one speed.

    ``kind`` is ``window`` for stretches backed by events, ``gap`` for holes
    between them and ``buffer`` for the tail after the last segment.
    """
    kind: str
    start: int
    end: int
    is_active: bool
    window_id: Optional[str] = None

    @property
    def duration(self) -> int:
        return self.end - self.start

    def to_dict(self) -> Dict[str, Any]:
        """Shape consumed by the in-page segment player."""
        return {
            "kind": self.kind,
            "startTimestamp": self.start,
            "endTimestamp": self.end,
            "duration": self.duration,
            "isActive": self.is_active,
            "windowId": self.window_id,
        }


@dataclass
class CompressionSummary:
    """Outcome of idle compression."""
    original_ms: int
    compressed_ms: int
    periods: List[IdlePeriod] = field(default_factory=list)

    @property
    def saved_ms(self) -> int:
        return self.original_ms - self.compressed_ms


def positive_int(value: Any) -> int:
    try:
        number = int(float(value))
    except (TypeError, ValueError):
        return 0
    return number if number > 0 else 0


@dataclass
class Timeline:
    """Globally ordered rrweb events for one recording.

    Full snapshots always come first, then everything else by timestamp.
    """
    events: List[Dict[str, Any]]

    def __len__(self) -> int:
        return len(self.events)

    @property
    def first_timestamp(self) -> int:
        return min(event["timestamp"] for event in self.events)

    @property
    def last_timestamp(self) -> int:
        return max(event["timestamp"] for event in self.events)

    @property
    def duration_ms(self) -> int:
        if not self.events:
            return 0
        return self.last_timestamp - self.first_timestamp

    @property
    def duration_seconds(self) -> float:
        return self.duration_ms / 1000

    def viewport(self) -> Optional[Tuple[int, int]]:
        """
        Find the largest viewport the recording ever had.

        Looks at Meta events, viewport resize events and the attributes of
        the first body child in full snapshots.

        Returns:
            (width, height) or None when nothing usable was recorded
        """
        width = height = 0
        for event in self.events:
            data = event.get("data")
            if not isinstance(data, dict):
                continue
            event_type = event.get("type")
            candidates = []
            if event_type == EventType.META:
                candidates.append(data)
            elif (
                event_type == EventType.INCREMENTAL_SNAPSHOT
                and data.get("source") == IncrementalSource.VIEWPORT_RESIZE
            ):
                candidates.append(data)
            elif event_type == EventType.FULL_SNAPSHOT:
                attributes = body_child_attributes(data.get("node"))
                if attributes:
                    candidates.append(attributes)
            for candidate in candidates:
                width = max(width, positive_int(candidate.get("width")))
                height = max(height, positive_int(candidate.get("height")))

        if not width or not height:
            return None
        return width, height


def body_child_attributes(node: Any) -> Optional[Dict[str, Any]]:
    # document -> <html> -> <body> -> first child
    try:
        attributes = node["childNodes"][1]["childNodes"][1]["childNodes"][0]["attributes"]
    except (KeyError, IndexError, TypeError):
        return None
    return attributes if isinstance(attributes, dict) else None
