"""Decoding of raw PostHog/rrweb snapshots into well-formed rrweb events.

Snapshots arrive in several shapes: plain events, ``{windowId, data: [...]}``
envelopes, legacy ``[windowId, event]`` pairs, NDJSON lines, lz-string base64
strings and gzip data smuggled through latin-1 strings (PostHog ``cv``
"2024-10" events). Everything here is best effort: malformed values are left
in place and reported as ``DecodeWarning`` entries, never raised.
"""
import gzip
import json
import zlib
from typing import Any, Dict, List, Optional, Tuple

import lzstring

from sessionreel.constants import (
    COMPRESSED_EVENT_VERSION,
    MUTATION_CHUNK_SIZE,
    EventType,
    IncrementalSource,
    NodeType,
)
from sessionreel.models import DecodeResult, RawSnapshotBatch
from sessionreel.utils.logger import logger

MUTATION_FIELDS = ("adds", "removes", "texts", "attributes")
STYLE_SHEET_FIELDS = ("adds", "removes")

_lz = lzstring.LZString()


def decode_batch(batch: RawSnapshotBatch) -> DecodeResult:
    """Decode every item of a fetched batch and log what could not be decoded."""
    result = DecodeResult()
    for item in batch.payload:
        result.extend(decode_snapshot(item))

    if result.warnings:
        logger.warning(
            f"[DECODE] {len(result.warnings)} undecodable values in {batch.source} batch {batch.key}"
        )
        for warning in result.warnings[:10]:
            logger.debug(f"[DECODE] {warning.path}: {warning.message}")
    return result


def decode_snapshot(raw: Any, window_id: Optional[str] = None) -> DecodeResult:
    """
    Expand one raw snapshot into zero or more rrweb events.

    The input is never mutated and decoding an already decoded event returns
    an equal event.

    Args:
        raw: A snapshot as received (dict, list, NDJSON line, compressed string)
        window_id: Window id inherited from an enclosing envelope

    Returns:
        DecodeResult with the events and any warnings
    """
    result = DecodeResult()
    _decode_into(raw, window_id, result, "snapshot", line=True)
    return result


def _is_legacy_pair(value: List[Any]) -> bool:
    """``[windowId, event]`` as written by old recorders; the id never decodes to an object."""
    if len(value) != 2 or not isinstance(value[0], str) or not isinstance(value[1], (dict, str)):
        return False
    _, first = decode_value(value[0])
    return not isinstance(first, (dict, list))


def _decode_into(
    raw: Any,
    window_id: Optional[str],
    result: DecodeResult,
    path: str,
    line: bool = False,
) -> None:
    if raw is None or raw == "" or raw == b"":
        return

    if isinstance(raw, (str, bytes, bytearray)):
        ok, value = decode_value(raw)
        if not ok:
            result.warn(path, "unparseable snapshot string", window_id)
            return
        if isinstance(value, (str, bytes, bytearray)):
            result.warn(path, "snapshot decoded to a bare string", window_id)
            return
        _decode_into(value, window_id, result, path, line=line)
        return

    if isinstance(raw, list):
        # Legacy pairs only appear as whole snapshot lines
        if line and _is_legacy_pair(raw):
            _decode_into(raw[1], raw[0] or window_id, result, f"{path}[1]")
            return
        for index, item in enumerate(raw):
            _decode_into(item, window_id, result, f"{path}[{index}]")
        return

    if isinstance(raw, dict):
        if is_event(raw):
            result.events.extend(_decode_event(raw, window_id, result))
            return
        if "data" in raw:
            envelope_window = raw.get("windowId") or raw.get("window_id") or window_id
            _decode_into(raw["data"], envelope_window, result, f"{path}.data")
            return

    result.warn(path, f"unrecognised snapshot shape: {type(raw).__name__}", window_id)


def is_event(value: Any) -> bool:
    """True if value already looks like an rrweb event."""
    if not isinstance(value, dict):
        return False
    event_type = value.get("type")
    timestamp = value.get("timestamp")
    return (
        isinstance(event_type, int) and not isinstance(event_type, bool)
        and isinstance(timestamp, (int, float)) and not isinstance(timestamp, bool)
    )


def decode_value(value: Any) -> Tuple[bool, Any]:
    """
    Decode a possibly compressed value.

    Tries gzip (for byte strings or latin-1 strings carrying the gzip magic),
    then lz-string base64, then plain JSON.

    Returns:
        (decoded, value): ``decoded`` is False when nothing worked, in which
        case the original value is returned untouched
    """
    if isinstance(value, (bytes, bytearray)):
        raw = bytes(value)
        if _has_gzip_magic(raw):
            ok, parsed = _gunzip_json(raw)
            if ok:
                return True, parsed
        try:
            return True, json.loads(raw.decode("utf-8"))
        except ValueError:
            return False, value

    if not isinstance(value, str):
        return True, value

    if _has_gzip_magic(value):
        try:
            ok, parsed = _gunzip_json(value.encode("latin-1"))
        except UnicodeEncodeError:
            ok = False
        if ok:
            return True, parsed

    try:
        decompressed = _lz.decompressFromBase64(value)
    except Exception:
        # lzstring fails in arbitrary ways on text that is not lz-compressed
        decompressed = None
    if decompressed:
        try:
            return True, json.loads(decompressed)
        except ValueError:
            pass

    try:
        return True, json.loads(value)
    except ValueError:
        return False, value


def _has_gzip_magic(value: Any) -> bool:
    if len(value) < 2:
        return False
    if isinstance(value, str):
        first, second = ord(value[0]), ord(value[1])
    else:
        first, second = value[0], value[1]
    return first == 0x1F and second in (0x8B, 0x08)


def _gunzip_json(data: bytes) -> Tuple[bool, Any]:
    try:
        text = gzip.decompress(data).decode("utf-8")
        return True, json.loads(text)
    except (OSError, EOFError, zlib.error, ValueError):
        return False, None


def infer_node_type(node: Dict[str, Any]) -> int:
    """Guess the serialized node type of a node that lost its ``type``."""
    if "tagName" in node:
        return NodeType.ELEMENT
    if "textContent" in node:
        return NodeType.TEXT
    if node.get("name") == "document":
        return NodeType.DOCUMENT
    return NodeType.DOCUMENT_TYPE


def repair_node_tree(root: Any) -> Any:
    """Return a copy of a serialized DOM tree with types set and null children dropped."""
    if not isinstance(root, dict):
        return root

    repaired = dict(root)
    stack = [repaired]
    while stack:
        node = stack.pop()
        node_type = node.get("type")
        if not isinstance(node_type, int) or isinstance(node_type, bool):
            node["type"] = infer_node_type(node)
        children = node.get("childNodes")
        if isinstance(children, list):
            copies = [dict(child) for child in children if isinstance(child, dict)]
            node["childNodes"] = copies
            stack.extend(copies)
        elif "childNodes" in node:
            node["childNodes"] = []
    return repaired


def _decode_event(raw_event: Dict[str, Any], window_id: Optional[str], result: DecodeResult) -> List[Dict[str, Any]]:
    event = dict(raw_event)
    path = f"event@{event['timestamp']}"

    version = event.get("cv")
    if version is not None:
        if version == COMPRESSED_EVENT_VERSION:
            event.pop("cv")
        else:
            result.warn(path, f"unknown compression version {version}", window_id)

    data = event.get("data")
    if isinstance(data, (str, bytes, bytearray)):
        ok, decoded = decode_value(data)
        if ok:
            data = decoded
        else:
            result.warn(f"{path}.data", "could not decode event data", window_id)

    if isinstance(data, dict):
        if event["type"] == EventType.FULL_SNAPSHOT:
            data = _decode_full_snapshot(data, path, window_id, result)
        elif event["type"] == EventType.INCREMENTAL_SNAPSHOT:
            data = _decode_incremental(data, path, window_id, result)
    if "data" in event:
        event["data"] = data

    if window_id and not event.get("windowId"):
        event["windowId"] = window_id

    return chunk_mutation(event)


def _decode_full_snapshot(data: Dict[str, Any], path: str, window_id: Optional[str], result: DecodeResult) -> Dict[str, Any]:
    data = dict(data)
    node = data.get("node")
    if isinstance(node, (str, bytes, bytearray)):
        ok, decoded = decode_value(node)
        if ok and isinstance(decoded, dict):
            node = decoded
        else:
            result.warn(f"{path}.data.node", "could not decode full snapshot node", window_id)
            return data
    if isinstance(node, dict):
        data["node"] = repair_node_tree(node)
    return data


def _decode_incremental(data: Dict[str, Any], path: str, window_id: Optional[str], result: DecodeResult) -> Dict[str, Any]:
    source = data.get("source")
    if source == IncrementalSource.MUTATION:
        fields, coerce = MUTATION_FIELDS, True
    elif source == IncrementalSource.STYLE_SHEET_RULE:
        fields, coerce = STYLE_SHEET_FIELDS, False
    else:
        return data

    data = dict(data)
    for name in fields:
        value = data.get(name)
        if isinstance(value, (str, bytes, bytearray)):
            ok, decoded = decode_value(value)
            if ok:
                value = decoded
            else:
                result.warn(f"{path}.data.{name}", "could not decode mutation field", window_id)
        if coerce and not isinstance(value, list):
            if value is not None:
                result.warn(f"{path}.data.{name}", f"replaced non-list {type(value).__name__} with []", window_id)
            value = []
        if name in data or coerce:
            data[name] = value
    return data


def chunk_mutation(event: Dict[str, Any]) -> List[Dict[str, Any]]:
    """
    Split a mutation event with a huge ``adds`` list into several events.

    Removes go with the first chunk, texts and attributes with the last one,
    so applying the chunks in order equals applying the original.
    """
    data = event.get("data")
    if (
        event.get("type") != EventType.INCREMENTAL_SNAPSHOT
        or not isinstance(data, dict)
        or data.get("source") != IncrementalSource.MUTATION
        or not isinstance(data.get("adds"), list)
        or len(data["adds"]) <= MUTATION_CHUNK_SIZE
    ):
        return [event]

    adds = data["adds"]
    count = (len(adds) + MUTATION_CHUNK_SIZE - 1) // MUTATION_CHUNK_SIZE
    chunks = []
    for i in range(count):
        first, last = i == 0, i == count - 1
        chunk = dict(event)
        chunk["data"] = {
            **data,
            "adds": adds[i * MUTATION_CHUNK_SIZE:(i + 1) * MUTATION_CHUNK_SIZE],
            "removes": data.get("removes", []) if first else [],
            "texts": data.get("texts", []) if last else [],
            "attributes": data.get("attributes", []) if last else [],
        }
        chunks.append(chunk)
    logger.debug(f"[DECODE] Split mutation at {event['timestamp']} into {count} chunks")
    return chunks
