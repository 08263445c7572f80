from __future__ import annotations

import json
import re
from unittest.mock import patch

import pytest

from sessionreel.constants import RenderStrategy
from sessionreel.services import player
from sessionreel.services.player import SIGNAL_BINDING, build_page, safe_json

from conftest import custom, full_snapshot


@pytest.fixture(autouse=True)
def fake_assets():
    with patch.object(player, "load_assets", return_value=("/* rrweb bundle */", ".rr-player {}")) as assets:
        yield assets


def embedded(html: str, name: str):
    match = re.search(rf"window\.{name} = (.*);\n", html)
    return json.loads(match.group(1))


def test_safe_json_escapes_closing_tags():
    assert safe_json({"html": "</script><script>alert(1)</script>"}) == (
        '{"html":"<\\/script><script>alert(1)<\\/script>"}'
    )


def test_page_embeds_events_and_config():
    events = [full_snapshot(0), custom(10, "note", {"text": "</script>"})]
    html = build_page(
        events,
        RenderStrategy.SEGMENTS,
        width=1280,
        height=720,
        speed=2.0,
        skip_inactive=True,
        segments=[{"kind": "window", "startTimestamp": 0, "endTimestamp": 10}],
        max_speed=100,
    )
    assert '"text":"<\\/script>"' in html
    assert embedded(html, "__events") == events
    assert embedded(html, "__segments")[0]["kind"] == "window"
    assert embedded(html, "__config") == {
        "width": 1280,
        "height": 720,
        "speed": 2.0,
        "skipInactive": True,
        "mouseTail": False,
        "maxSpeed": 100,
    }
    assert f"window.{SIGNAL_BINDING}(message)" in html
    assert "/* rrweb bundle */" in html
    assert "width: 1280px" in html


def test_player_strategy_uses_rrweb_player_script(fake_assets):
    html = build_page([full_snapshot(0)], RenderStrategy.PLAYER, 800, 600, 1.0, False)
    fake_assets.assert_called_with(RenderStrategy.PLAYER)
    assert "rrwebPlayer.default" in html
    assert embedded(html, "__segments") == []


def test_segments_strategy_uses_replayer_script():
    html = build_page([full_snapshot(0)], RenderStrategy.SEGMENTS, 800, 600, 1.0, True)
    assert "new rrweb.Replayer" in html
    assert "skip-overlay" in html


def test_mouse_tail_is_forwarded():
    tail = {"duration": 500, "lineCap": "round", "lineWidth": 3, "strokeStyle": "red"}
    html = build_page([full_snapshot(0)], RenderStrategy.PLAYER, 800, 600, 1.0, True, mouse_tail=tail)
    assert embedded(html, "__config")["mouseTail"] == tail
