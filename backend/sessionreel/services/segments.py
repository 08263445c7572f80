"""Active/inactive segments that drive the segment-aware player."""
from typing import Any, Dict, List, Optional

from sessionreel.constants import ACTIVE_SOURCES, ACTIVITY_THRESHOLD_MS, MAIN_WINDOW, EventType
from sessionreel.models import RecordingSegment, Timeline
from sessionreel.utils.logger import logger


def is_active_event(event: Dict[str, Any]) -> bool:
    event_type = event.get("type")
    if event_type in (EventType.FULL_SNAPSHOT, EventType.META):
        return True
    if event_type != EventType.INCREMENTAL_SNAPSHOT:
        return False
    data = event.get("data")
    return isinstance(data, dict) and data.get("source") in ACTIVE_SOURCES


def _window_of(event: Dict[str, Any]) -> str:
    return event.get("windowId") or MAIN_WINDOW


def build_segments(timeline: Timeline, threshold_ms: int = ACTIVITY_THRESHOLD_MS) -> List[RecordingSegment]:
    """
    Split a timeline into active and inactive stretches.

    A new segment starts when activity resumes, when no active event was
    seen for ``threshold_ms``, when an active event comes from another
    window, or after the last event of a window. Holes between segments are
    filled with inactive ``gap`` segments, and a ``buffer`` segment covers
    whatever is left until the end of the recording.

    Args:
        timeline: Timeline, usually already idle-compressed
        threshold_ms: Inactivity that ends an active segment

    Returns:
        Segments in chronological order, covering the whole recording
    """
    events = sorted(timeline.events, key=lambda e: e["timestamp"])
    if not events:
        return []

    start, end = events[0]["timestamp"], events[-1]["timestamp"]

    by_window: Dict[str, List[int]] = {}
    for event in events:
        by_window.setdefault(_window_of(event), []).append(event["timestamp"])
    last_index_of_window = {}
    for index, event in enumerate(events):
        last_index_of_window[_window_of(event)] = index

    segments: List[RecordingSegment] = []
    current: Optional[RecordingSegment] = None
    last_active = 0

    for index, event in enumerate(events):
        timestamp = event["timestamp"]
        active = is_active_event(event)
        window_id = _window_of(event)

        if current is None:
            new_segment = True
        else:
            new_segment = (
                (active and not current.is_active)
                or (current.is_active and last_active + threshold_ms < timestamp)
                or (active and current.window_id != window_id)
                # previous event was the last one of its window
                or last_index_of_window[_window_of(events[index - 1])] == index - 1
            )

        if active:
            last_active = timestamp

        if new_segment:
            if current is not None:
                segments.append(current)
            current = RecordingSegment(
                kind="window", start=timestamp, end=timestamp, is_active=active, window_id=window_id,
            )
        else:
            current.end = timestamp

    if current is not None:
        segments.append(current)

    def window_at(timestamp: int, preferred: Optional[str]) -> Optional[str]:
        candidates = list(by_window)
        if preferred in by_window:
            candidates.remove(preferred)
            candidates.insert(0, preferred)
        for window_id in candidates:
            stamps = by_window[window_id]
            if stamps[0] <= timestamp <= stamps[-1]:
                return window_id
        return None

    filled: List[RecordingSegment] = []
    for segment in segments:
        previous = filled[-1] if filled else None
        if previous is not None and segment.start != previous.end:
            filled.append(RecordingSegment(
                kind="gap",
                start=previous.end,
                end=segment.start,
                is_active=False,
                window_id=window_at(previous.end + 1, previous.window_id),
            ))
        filled.append(segment)

    latest = filled[-1].end
    if latest < end:
        filled.append(RecordingSegment(kind="buffer", start=latest + 1, end=end, is_active=False))

    if filled[0].start > start:
        filled.insert(0, RecordingSegment(kind="gap", start=start, end=filled[0].start, is_active=False))

    active_ms = sum(s.duration for s in filled if s.is_active)
    logger.debug(
        f"[SEGMENTS] {len(filled)} segments, {active_ms / 1000:.1f}s active, "
        f"{(end - start - active_ms) / 1000:.1f}s inactive"
    )
    return filled
