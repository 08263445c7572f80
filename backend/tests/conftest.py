"""Shared fixtures and event builders."""
from __future__ import annotations

import pytest

from sessionreel.constants import EventType, IncrementalSource


def full_snapshot(timestamp: int, **extra) -> dict:
    return {
        "type": EventType.FULL_SNAPSHOT,
        "timestamp": timestamp,
        "data": {
            "node": {
                "type": 0,
                "childNodes": [
                    {"type": 1, "name": "html", "publicId": "", "systemId": ""},
                    {"type": 2, "tagName": "html", "attributes": {}, "childNodes": []},
                ],
            },
            "initialOffset": {"top": 0, "left": 0},
        },
        **extra,
    }


def meta(timestamp: int, width: int = 1280, height: int = 720) -> dict:
    return {"type": EventType.META, "timestamp": timestamp, "data": {"href": "https://example.com", "width": width, "height": height}}


def incremental(timestamp: int, source: int = IncrementalSource.MOUSE_MOVE, **data) -> dict:
    return {"type": EventType.INCREMENTAL_SNAPSHOT, "timestamp": timestamp, "data": {"source": source, **data}}


def mutation(timestamp: int, **fields) -> dict:
    data = {"adds": [], "removes": [], "texts": [], "attributes": []}
    data.update(fields)
    return incremental(timestamp, IncrementalSource.MUTATION, **data)


def custom(timestamp: int, tag: str, payload: dict | None = None) -> dict:
    return {"type": EventType.CUSTOM, "timestamp": timestamp, "data": {"tag": tag, "payload": payload or {}}}


@pytest.fixture
def recording_events():
    """A short recording: meta, snapshot, some activity and a hidden tab."""
    return [
        meta(1000),
        full_snapshot(1001),
        incremental(1500),
        incremental(2000, IncrementalSource.MOUSE_INTERACTION, type=2, id=5),
        custom(3000, "window hidden"),
        mutation(20000),
        custom(50000, "window visible"),
        incremental(51000),
    ]
