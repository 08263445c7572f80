from __future__ import annotations

import copy
import gzip
import json

import lzstring

from sessionreel.constants import MUTATION_CHUNK_SIZE, EventType, IncrementalSource, NodeType
from sessionreel.models import RawSnapshotBatch
from sessionreel.services.decoder import (
    chunk_mutation,
    decode_batch,
    decode_snapshot,
    decode_value,
    infer_node_type,
    repair_node_tree,
)

from conftest import full_snapshot, incremental, meta, mutation

lz = lzstring.LZString()


def gzip_string(value) -> str:
    return gzip.compress(json.dumps(value).encode("utf-8")).decode("latin-1")


def test_plain_event_passes_through():
    event = incremental(1000, x=1, y=2)
    result = decode_snapshot(event)
    assert result.events == [event]
    assert result.warnings == []


def test_decoding_is_idempotent():
    raw = {
        "windowId": "w1",
        "data": [
            full_snapshot(1000),
            mutation(1100, removes="not-an-array"),
            meta(900),
        ],
    }
    once = decode_snapshot(raw).events
    twice = []
    for event in once:
        twice.extend(decode_snapshot(event).events)
    assert twice == once


def test_input_is_not_mutated():
    raw = {"windowId": "w1", "data": [mutation(1100, removes="garbage", texts=None)]}
    snapshot = copy.deepcopy(raw)
    decode_snapshot(raw)
    assert raw == snapshot


def test_mutation_fields_are_coerced_to_lists():
    result = decode_snapshot(mutation(1000, removes="not-an-array", texts={"a": 1}, attributes=None))
    data = result.events[0]["data"]
    assert data["removes"] == []
    assert data["texts"] == []
    assert data["attributes"] == []
    assert any(w.path.endswith("removes") for w in result.warnings)


def test_missing_mutation_fields_are_added():
    event = incremental(1000, IncrementalSource.MUTATION, adds=[{"parentId": 1}])
    data = decode_snapshot(event).events[0]["data"]
    assert data["adds"] == [{"parentId": 1}]
    assert data["removes"] == []
    assert data["texts"] == []
    assert data["attributes"] == []


def test_envelope_window_id_is_propagated():
    raw = {"window_id": "abc", "data": [incremental(1000), incremental(1001, windowId="own")]}
    events = decode_snapshot(raw).events
    assert events[0]["windowId"] == "abc"
    assert events[1]["windowId"] == "own"


def test_legacy_window_pair():
    line = json.dumps(["win-1", incremental(1000)])
    events = decode_snapshot(line).events
    assert len(events) == 1
    assert events[0]["windowId"] == "win-1"


def test_ndjson_line_with_envelope():
    line = json.dumps({"windowId": "w", "data": [meta(1), full_snapshot(2)]})
    events = decode_snapshot(line).events
    assert [e["type"] for e in events] == [EventType.META, EventType.FULL_SNAPSHOT]


def test_lz_compressed_string_is_decoded():
    compressed = lz.compressToBase64(json.dumps([incremental(5), incremental(6)]))
    events = decode_snapshot(compressed).events
    assert [e["timestamp"] for e in events] == [5, 6]


def test_gzip_compressed_event_version():
    snapshot = full_snapshot(1000)
    event = {
        "type": EventType.FULL_SNAPSHOT,
        "timestamp": 1000,
        "cv": "2024-10",
        "data": gzip_string(snapshot["data"]),
    }
    decoded = decode_snapshot(event).events[0]
    assert "cv" not in decoded
    assert decoded["data"]["node"]["childNodes"][1]["tagName"] == "html"


def test_gzip_mutation_fields():
    adds = [{"parentId": 1, "node": {"type": 3, "textContent": "hi", "id": 9}}]
    event = {
        "type": EventType.INCREMENTAL_SNAPSHOT,
        "timestamp": 10,
        "cv": "2024-10",
        "data": {
            "source": IncrementalSource.MUTATION,
            "adds": gzip_string(adds),
            "removes": gzip_string([]),
            "texts": gzip_string([]),
            "attributes": gzip_string([]),
        },
    }
    data = decode_snapshot(event).events[0]["data"]
    assert data["adds"] == adds
    assert data["removes"] == []


def test_gzip_bytes_value():
    ok, value = decode_value(gzip.compress(b'{"a": 1}'))
    assert ok
    assert value == {"a": 1}


def test_unknown_compression_version_warns():
    event = {"type": EventType.META, "timestamp": 1, "cv": "1999-01", "data": {"width": 1}}
    result = decode_snapshot(event)
    assert result.events[0]["cv"] == "1999-01"
    assert "unknown compression version" in result.warnings[0].message


def test_undecodable_string_is_left_with_warning():
    event = {"type": EventType.CUSTOM, "timestamp": 1, "data": "%%% not json %%%"}
    result = decode_snapshot(event)
    assert result.events[0]["data"] == "%%% not json %%%"
    assert len(result.warnings) == 1


def test_garbage_never_raises():
    for raw in [None, "", 42, "{broken", [None, 3.5, {"nope": True}], {"data": "xyz{"}, "+sui", {"data": ["+sui"]}]:
        result = decode_snapshot(raw)
        assert result.events == []


def test_strings_that_break_lzstring_are_treated_as_plain():
    # "+sui" makes lzstring fail inside its own decoder
    ok, value = decode_value("+sui")
    assert not ok
    assert value == "+sui"

    result = decode_snapshot(mutation(1, removes="+sui"))
    assert result.events[0]["data"]["removes"] == []
    assert result.warnings

    result = decode_snapshot({"type": EventType.FULL_SNAPSHOT, "timestamp": 2, "data": {"node": "+sui"}})
    assert result.events[0]["data"]["node"] == "+sui"
    assert result.warnings[0].path.endswith("node")


def test_two_event_strings_in_an_envelope_are_not_a_window_pair():
    first, second = incremental(1, x=1), incremental(2, x=2)
    raw = {"windowId": "w1", "data": [json.dumps(first), json.dumps(second)]}
    events = decode_snapshot(raw).events
    assert [e["timestamp"] for e in events] == [1, 2]
    assert all(e["windowId"] == "w1" for e in events)

    compressed = {"windowId": "w1", "data": [lz.compressToBase64(json.dumps(e)) for e in (first, second)]}
    assert [e["timestamp"] for e in decode_snapshot(compressed).events] == [1, 2]


def test_full_snapshot_node_string_is_decompressed_and_repaired():
    node = {
        "childNodes": [
            None,
            {"name": "html", "publicId": ""},
            {"tagName": "html", "attributes": {}, "childNodes": [{"textContent": "x"}, None]},
        ],
        "name": "document",
    }
    event = {"type": EventType.FULL_SNAPSHOT, "timestamp": 1, "data": {"node": lz.compressToBase64(json.dumps(node))}}
    repaired = decode_snapshot(event).events[0]["data"]["node"]
    assert repaired["type"] == NodeType.DOCUMENT
    doctype, html = repaired["childNodes"]
    assert doctype["type"] == NodeType.DOCUMENT_TYPE
    assert html["type"] == NodeType.ELEMENT
    assert html["childNodes"] == [{"textContent": "x", "type": NodeType.TEXT}]


def test_infer_node_type():
    assert infer_node_type({"tagName": "div"}) == NodeType.ELEMENT
    assert infer_node_type({"textContent": ""}) == NodeType.TEXT
    assert infer_node_type({"name": "document"}) == NodeType.DOCUMENT
    assert infer_node_type({}) == NodeType.DOCUMENT_TYPE


def test_repair_keeps_existing_types():
    node = {"type": NodeType.COMMENT, "textContent": "c"}
    assert repair_node_tree(node) == node


def test_large_mutation_is_chunked():
    adds = [{"parentId": 1, "node": {"id": i}} for i in range(MUTATION_CHUNK_SIZE * 2 + 1)]
    event = mutation(1000, adds=adds, removes=[{"id": 1}], texts=[{"id": 2}], attributes=[{"id": 3}])
    chunks = chunk_mutation(event)
    assert len(chunks) == 3
    assert [len(c["data"]["adds"]) for c in chunks] == [MUTATION_CHUNK_SIZE, MUTATION_CHUNK_SIZE, 1]
    assert chunks[0]["data"]["removes"] == [{"id": 1}]
    assert chunks[1]["data"]["removes"] == []
    assert chunks[-1]["data"]["texts"] == [{"id": 2}]
    assert chunks[0]["data"]["attributes"] == []
    assert all(c["timestamp"] == 1000 for c in chunks)


def test_decode_batch_collects_events_from_all_lines():
    batch = RawSnapshotBatch(
        source="blob_v2",
        key="0-1",
        payload=[
            json.dumps({"windowId": "w", "data": [meta(1)]}),
            "",
            json.dumps({"windowId": "w", "data": [incremental(2)]}),
            "not json at all {",
        ],
    )
    result = decode_batch(batch)
    assert [e["timestamp"] for e in result.events] == [1, 2]
    assert len(result.warnings) == 1
