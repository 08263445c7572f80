"""Application-wide constants."""

# rrweb event types
class EventType:
    """rrweb top-level event types."""
    DOM_CONTENT_LOADED = 0
    LOAD = 1
    FULL_SNAPSHOT = 2
    INCREMENTAL_SNAPSHOT = 3
    META = 4
    CUSTOM = 5
    PLUGIN = 6


class IncrementalSource:
    """Sources of rrweb incremental snapshot events."""
    MUTATION = 0
    MOUSE_MOVE = 1
    MOUSE_INTERACTION = 2
    SCROLL = 3
    VIEWPORT_RESIZE = 4
    INPUT = 5
    TOUCH_MOVE = 6
    MEDIA_INTERACTION = 7
    STYLE_SHEET_RULE = 8
    CANVAS_MUTATION = 9
    FONT = 10
    LOG = 11
    DRAG = 12
    STYLE_DECLARATION = 13
    SELECTION = 14
    ADOPTED_STYLE_SHEET = 15


class NodeType:
    """rrweb serialized DOM node types."""
    DOCUMENT = 0
    DOCUMENT_TYPE = 1
    ELEMENT = 2
    TEXT = 3
    CDATA = 4
    COMMENT = 5


class SnapshotSource:
    """PostHog snapshot source encodings."""
    BLOB = "blob"
    BLOB_V2 = "blob_v2"
    REALTIME = "realtime"


class RenderStrategy:
    """Playback strategies for the render orchestrator."""
    PLAYER = "player"
    SEGMENTS = "segments"


class UploadMode:
    """Upload path selection."""
    AUTO = "auto"
    DIRECT = "direct"
    RESUMABLE = "resumable"


class IdleReason:
    """Reasons attached to detected idle periods."""
    SESSION_TIMEOUT = "session timeout"
    USER_RETURNED = "user returned"
    USER_ACTIVITY = "user activity"
    WINDOW_HIDDEN = "window hidden"
    RECORDING_ENDED = "recording ended"


# Incremental sources produced by the user directly; they close idle periods
USER_INTERACTION_SOURCES = frozenset({
    IncrementalSource.MOUSE_MOVE,
    IncrementalSource.MOUSE_INTERACTION,
    IncrementalSource.SCROLL,
    IncrementalSource.INPUT,
})

# Incremental sources that keep a segment active
ACTIVE_SOURCES = frozenset({
    IncrementalSource.MOUSE_MOVE,
    IncrementalSource.MOUSE_INTERACTION,
    IncrementalSource.SCROLL,
    IncrementalSource.VIEWPORT_RESIZE,
    IncrementalSource.INPUT,
    IncrementalSource.TOUCH_MOVE,
    IncrementalSource.MEDIA_INTERACTION,
    IncrementalSource.DRAG,
})

ACTIVITY_THRESHOLD_MS = 5000  # No active event for this long ends a segment
MUTATION_CHUNK_SIZE = 5000  # Max mutation adds per event handed to the player
COMPRESSED_EVENT_VERSION = "2024-10"  # PostHog "cv" marker for gzip-in-string fields
MAIN_WINDOW = "main"  # Window id for events recorded without one


class QueueStatus:
    """Outcome of enqueueing a render job."""
    QUEUED = "queued"
    DUPLICATE = "duplicate"
    UNAVAILABLE = "unavailable"
