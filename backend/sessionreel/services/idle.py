"""Idle period detection and timeline compression.

Long stretches where the user was away (PostHog ``sessionIdle`` markers) or
the tab was hidden are squeezed down to a short visible gap so the rendered
video only shows the part of the session where something happened.
"""
from typing import Any, Dict, List, Optional, Tuple

from sessionreel.config import settings
from sessionreel.constants import USER_INTERACTION_SOURCES, EventType, IdleReason
from sessionreel.models import CompressionSummary, IdlePeriod, Timeline
from sessionreel.utils.logger import logger

SESSION_IDLE_TAG = "sessionIdle"
SESSION_NO_LONGER_IDLE_TAG = "sessionNoLongerIdle"
WINDOW_HIDDEN_TAG = "window hidden"
WINDOW_VISIBLE_TAG = "window visible"

# Serialized DOM payloads carry no timestamps
_DOM_KEYS = frozenset({"node", "adds", "removes", "texts", "attributes"})


def _custom_tag(event: Dict[str, Any]) -> Optional[str]:
    if event.get("type") != EventType.CUSTOM:
        return None
    data = event.get("data")
    return data.get("tag") if isinstance(data, dict) else None


def is_user_interaction(event: Dict[str, Any]) -> bool:
    """Mouse, click, scroll and input events count as the user being back."""
    if event.get("type") != EventType.INCREMENTAL_SNAPSHOT:
        return False
    data = event.get("data")
    return isinstance(data, dict) and data.get("source") in USER_INTERACTION_SOURCES


def detect_idle_periods(
    timeline: Timeline,
    window_hidden_min_ms: Optional[int] = None,
) -> List[IdlePeriod]:
    """
    Find idle spans opened by ``sessionIdle`` and ``window hidden`` markers.

    Each span closes at its matching marker, at the next user interaction,
    or at the end of the recording, whichever comes first.

    Args:
        timeline: Assembled timeline
        window_hidden_min_ms: Hidden-window spans must be longer than this

    Returns:
        Unmerged idle periods in original time
    """
    min_hidden = settings.idle_window_hidden_min_ms if window_hidden_min_ms is None else window_hidden_min_ms
    events = sorted(timeline.events, key=lambda e: e["timestamp"])
    if not events:
        return []
    recording_end = events[-1]["timestamp"]
    periods: List[IdlePeriod] = []

    for i, event in enumerate(events):
        tag = _custom_tag(event)
        start = event["timestamp"]

        if tag == SESSION_IDLE_TAG:
            end, reason = None, IdleReason.SESSION_TIMEOUT
            for j in range(i + 1, len(events)):
                later = events[j]
                if _custom_tag(later) == SESSION_NO_LONGER_IDLE_TAG:
                    end, reason = later["timestamp"], IdleReason.USER_RETURNED
                    break
                if is_user_interaction(later):
                    end, reason = later["timestamp"], IdleReason.USER_ACTIVITY
                    break
            if end is None:
                end, reason = recording_end, IdleReason.RECORDING_ENDED
            if end > start:
                periods.append(IdlePeriod(start=start, end=end, reason=reason))

        elif tag == WINDOW_HIDDEN_TAG:
            end = None
            for j in range(i + 1, len(events)):
                later = events[j]
                if _custom_tag(later) == WINDOW_VISIBLE_TAG or is_user_interaction(later):
                    end = later["timestamp"]
                    break
            if end is None:
                end = recording_end
            if end > start + min_hidden:
                periods.append(IdlePeriod(start=start, end=end, reason=IdleReason.WINDOW_HIDDEN))

    return periods


def merge_idle_periods(periods: List[IdlePeriod]) -> List[IdlePeriod]:
    """Union overlapping or touching periods, joining their reasons with " + "."""
    merged: List[IdlePeriod] = []
    for period in sorted(periods, key=lambda p: p.start):
        if merged and period.start <= merged[-1].end:
            last = merged[-1]
            last.end = max(last.end, period.end)
            last.reason = f"{last.reason} + {period.reason}"
        else:
            merged.append(IdlePeriod(start=period.start, end=period.end, reason=period.reason))
    return merged


def _shift_nested_timestamps(value: Any, amount: int) -> Any:
    if isinstance(value, dict):
        shifted = {}
        for key, item in value.items():
            if key in _DOM_KEYS:
                shifted[key] = item
            elif key == "timestamp" and isinstance(item, (int, float)) and not isinstance(item, bool):
                shifted[key] = item - amount
            else:
                shifted[key] = _shift_nested_timestamps(item, amount)
        return shifted
    if isinstance(value, list):
        return [_shift_nested_timestamps(item, amount) for item in value]
    return value


def compress_timeline(
    timeline: Timeline,
    periods: List[IdlePeriod],
    gap_ms: Optional[int] = None,
) -> Tuple[Timeline, CompressionSummary]:
    """
    Rewrite timestamps so every idle period lasts ``gap_ms``.

    Events after a period move back by ``duration - gap_ms``; events inside
    it are scaled into the remaining gap so order is kept. Periods that are
    already no longer than the gap are left alone.

    Args:
        timeline: Timeline to compress; it is not modified
        periods: Merged, non-overlapping idle periods in original time
        gap_ms: Visible gap kept for each period

    Returns:
        The compressed timeline and a summary of what was removed
    """
    gap = settings.idle_compressed_gap_ms if gap_ms is None else gap_ms
    spans = [
        (p.start, p.end, p.duration - gap)
        for p in sorted(periods, key=lambda p: p.start)
        if p.duration > gap
    ]
    original_ms = timeline.duration_ms

    if not spans:
        return timeline, CompressionSummary(original_ms=original_ms, compressed_ms=original_ms, periods=[])

    def remap(timestamp):
        shift = 0.0
        for start, end, amount in spans:
            if timestamp > end:
                shift += amount
                continue
            if timestamp > start:
                shift += (timestamp - start) * amount / (end - start)
            break
        return int(round(timestamp - shift))

    compressed = []
    for event in timeline.events:
        new_timestamp = remap(event["timestamp"])
        amount = event["timestamp"] - new_timestamp
        if amount == 0:
            compressed.append(event)
            continue
        moved = dict(event)
        moved["timestamp"] = new_timestamp
        if isinstance(event.get("data"), (dict, list)):
            moved["data"] = _shift_nested_timestamps(event["data"], amount)
        compressed.append(moved)

    result = Timeline(events=compressed)
    kept = [p for p in periods if p.duration > gap]
    summary = CompressionSummary(original_ms=original_ms, compressed_ms=result.duration_ms, periods=kept)
    return result, summary


def compress_idle(timeline: Timeline, gap_ms: Optional[int] = None) -> Tuple[Timeline, CompressionSummary]:
    """Detect, merge and compress the idle periods of a timeline."""
    periods = merge_idle_periods(detect_idle_periods(timeline))
    if not periods:
        logger.info("[IDLE] No idle periods found")
    for period in periods:
        logger.info(f"[IDLE] {period.duration / 1000:.1f}s idle ({period.reason})")

    compressed, summary = compress_timeline(timeline, periods, gap_ms)
    if summary.periods:
        logger.info(
            f"[IDLE] Compressed {summary.original_ms / 1000:.1f}s to "
            f"{summary.compressed_ms / 1000:.1f}s ({len(summary.periods)} periods)"
        )
    return compressed, summary
