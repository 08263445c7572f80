"""Assembly of decoded events into one ordered timeline."""
import hashlib
import json
from typing import Any, Dict, Iterable, List

from sessionreel.config import settings
from sessionreel.constants import MAIN_WINDOW, EventType
from sessionreel.models import Timeline
from sessionreel.models.timeline import body_child_attributes, positive_int
from sessionreel.utils.exceptions import EmptyTimelineError
from sessionreel.utils.logger import logger


def event_sort_key(event: Dict[str, Any]):
    """Full snapshots first, then by timestamp."""
    return (0 if event.get("type") == EventType.FULL_SNAPSHOT else 1, event["timestamp"])


def content_hash(event: Dict[str, Any]) -> str:
    """Hash of an event's content, ignoring the playback ``delay`` field."""
    stripped = {key: value for key, value in event.items() if key != "delay"}
    encoded = json.dumps(stripped, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha1(encoded.encode("utf-8")).hexdigest()


def assemble_timeline(events: Iterable[Dict[str, Any]]) -> Timeline:
    """
    Build the canonical timeline from every decoded event of a recording.

    Exact duplicates (overlapping blob ranges deliver the same event twice)
    are dropped; the sort is stable so equal keys keep arrival order.

    Args:
        events: All decoded events, across all batches

    Returns:
        Timeline sorted full-snapshots-first, then by timestamp

    Raises:
        EmptyTimelineError: If there are no events at all
    """
    seen = set()
    unique: List[Dict[str, Any]] = []
    total = 0
    for event in events:
        total += 1
        digest = content_hash(event)
        if digest in seen:
            continue
        seen.add(digest)
        unique.append(event)

    if not unique:
        raise EmptyTimelineError()

    if total != len(unique):
        logger.info(f"[TIMELINE] Dropped {total - len(unique)} duplicate events")

    unique.sort(key=event_sort_key)
    return Timeline(events=unique)


def _meta_for_snapshot(snapshot: Dict[str, Any]) -> Dict[str, Any]:
    data = snapshot.get("data") if isinstance(snapshot.get("data"), dict) else {}
    attributes = body_child_attributes(data.get("node")) or {}
    meta = {
        "type": EventType.META,
        "timestamp": snapshot["timestamp"],
        "data": {
            "width": positive_int(attributes.get("width")) or settings.render_width,
            "height": positive_int(attributes.get("height")) or settings.render_height,
            "href": data.get("href") or "",
        },
    }
    if snapshot.get("windowId"):
        meta["windowId"] = snapshot["windowId"]
    return meta


def patch_meta_events(timeline: Timeline) -> Timeline:
    """
    Give every window that has a full snapshot but no Meta event one.

    The Replayer takes its iframe size and URL from Meta events, so a window
    without one would play in a zero-sized frame. The synthesized event goes
    right before the window's first full snapshot and takes its size from the
    snapshot's body attributes, falling back to the configured render size.

    Args:
        timeline: Assembled timeline

    Returns:
        The same timeline when nothing was missing, else a patched copy
    """
    windows_with_meta = {
        event.get("windowId") or MAIN_WINDOW
        for event in timeline.events
        if event.get("type") == EventType.META
    }
    patched: List[Dict[str, Any]] = []
    inserted = 0
    for event in timeline.events:
        if event.get("type") == EventType.FULL_SNAPSHOT:
            window_id = event.get("windowId") or MAIN_WINDOW
            if window_id not in windows_with_meta:
                patched.append(_meta_for_snapshot(event))
                windows_with_meta.add(window_id)
                inserted += 1
        patched.append(event)

    if not inserted:
        return timeline
    logger.info(f"[TIMELINE] Inserted {inserted} missing Meta events")
    return Timeline(events=patched)
