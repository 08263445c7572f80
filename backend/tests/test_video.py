from __future__ import annotations

import os
from unittest.mock import patch

import pytest

from sessionreel.config import settings
from sessionreel.constants import RenderStrategy
from sessionreel.models import RenderSession, Timeline
from sessionreel.services import player
from sessionreel.services.video import (
    RenderOptions,
    RenderOrchestrator,
    expected_video_seconds,
    render_timeout_seconds,
    resolve_viewport,
)
from sessionreel.utils.exceptions import RenderError, RenderTimeoutError

from conftest import full_snapshot, incremental, meta, mutation


class FakeVideo:
    def __init__(self, path):
        self._path = path

    async def path(self):
        return self._path


class FakePage:
    def __init__(self, video_path, behaviour):
        self.video = FakeVideo(video_path)
        self.behaviour = behaviour
        self.bindings = {}
        self.listeners = {}
        self.content = None

    def on(self, event, callback):
        self.listeners[event] = callback

    async def expose_function(self, name, callback):
        self.bindings[name] = callback

    async def set_content(self, html, wait_until=None):
        self.content = html

    async def wait_for_function(self, expression, timeout=None):
        return True

    async def evaluate(self, expression):
        if "startPlayback" in expression:
            signal = self.bindings[player.SIGNAL_BINDING]
            signal({"kind": "progress", "progress": 0.5})
            signal("garbage")
            if self.behaviour == "finish":
                signal({"kind": "finish"})
            return self.behaviour != "refuse"
        if "loadError" in expression:
            return "rrweb failed" if self.behaviour == "load-error" else None
        return None


class FakeContext:
    def __init__(self, page):
        self.page = page
        self.closed = False
        self.kwargs = None

    async def new_page(self):
        return self.page

    async def close(self):
        self.closed = True


class FakeBrowser:
    def __init__(self, context):
        self.context = context
        self.closed = False

    async def new_context(self, **kwargs):
        self.context.kwargs = kwargs
        return self.context

    async def close(self):
        self.closed = True


class FakePlaywright:
    """Stands in for ``async_playwright()``: an async context manager with ``chromium``."""

    def __init__(self, tmp_path, behaviour="finish"):
        video_path = tmp_path / "recorded.webm"
        video_path.write_bytes(b"\x1a\x45\xdf\xa3" * 1000)
        self.page = FakePage(str(video_path), behaviour)
        self.context = FakeContext(self.page)
        self.browser = FakeBrowser(self.context)
        self.chromium = self

    async def launch(self, headless=True, args=None):
        return self.browser

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


@pytest.fixture(autouse=True)
def fake_assets():
    with patch.object(player, "load_assets", return_value=("", "")):
        yield


@pytest.fixture
def timeline():
    return Timeline(events=[meta(0), full_snapshot(0), incremental(1000), incremental(4000)])


def options(strategy=RenderStrategy.SEGMENTS):
    return RenderOptions(width=1024, height=768, strategy=strategy)


def test_timeout_has_a_floor_and_scales_with_activity(monkeypatch):
    monkeypatch.setattr(settings, "render_timeout_floor_seconds", 300)
    monkeypatch.setattr(settings, "render_timeout_multiplier", 10)
    assert render_timeout_seconds(None) == 300
    assert render_timeout_seconds(12) == 300
    assert render_timeout_seconds(95.5) == 955


def test_viewport_overrides_then_detected_then_default(monkeypatch):
    detected = Timeline(events=[meta(0, width=1920, height=1080)])
    assert resolve_viewport(detected, 800, None) == (800, 1080)
    assert resolve_viewport(detected) == (1920, 1080)

    monkeypatch.setattr(settings, "render_width", 1400)
    monkeypatch.setattr(settings, "render_height", 900)
    assert resolve_viewport(Timeline(events=[full_snapshot(0)])) == (1400, 900)


async def test_render_records_until_finish_signal(tmp_path, timeline):
    fake = FakePlaywright(tmp_path)
    orchestrator = RenderOrchestrator(playwright_factory=lambda: fake)
    output_dir = tmp_path / "out"

    result = await orchestrator.render(timeline, options(), str(output_dir), "rec-1", active_duration=4)

    assert result.success
    assert result.video_path == str(output_dir / "replay.webm")
    assert os.path.exists(result.video_path)
    assert result.size_bytes == 4000
    assert result.video_duration == 4.0
    assert fake.context.closed and fake.browser.closed
    assert fake.context.kwargs["record_video_size"] == {"width": 1024, "height": 768}
    assert "window.__segments = [{" in fake.page.content


async def test_player_strategy_skips_segments(tmp_path, timeline):
    fake = FakePlaywright(tmp_path)
    orchestrator = RenderOrchestrator(playwright_factory=lambda: fake)
    await orchestrator.render(timeline, options(RenderStrategy.PLAYER), str(tmp_path / "out"), "rec-1")
    assert "window.__segments = [];" in fake.page.content


async def test_render_timeout_closes_browser(tmp_path, timeline, monkeypatch):
    monkeypatch.setattr(settings, "render_timeout_floor_seconds", 0.05)
    fake = FakePlaywright(tmp_path, behaviour="hang")
    orchestrator = RenderOrchestrator(playwright_factory=lambda: fake)

    with pytest.raises(RenderTimeoutError):
        await orchestrator.render(timeline, options(), str(tmp_path / "out"), "rec-1")
    assert fake.context.closed and fake.browser.closed
    assert not os.path.exists(tmp_path / "out" / "replay.webm")


async def test_player_load_error_is_a_render_error(tmp_path, timeline):
    fake = FakePlaywright(tmp_path, behaviour="load-error")
    orchestrator = RenderOrchestrator(playwright_factory=lambda: fake)

    with pytest.raises(RenderError, match="rrweb failed"):
        await orchestrator.render(timeline, options(), str(tmp_path / "out"), "rec-1")
    assert fake.browser.closed


async def test_missing_video_file_is_a_render_error(tmp_path, timeline):
    fake = FakePlaywright(tmp_path)
    os.remove(fake.page.video._path)
    orchestrator = RenderOrchestrator(playwright_factory=lambda: fake)

    with pytest.raises(RenderError, match="No video file generated"):
        await orchestrator.render(timeline, options(), str(tmp_path / "out"), "rec-1")


def test_signal_handler_tracks_progress_and_ignores_garbage(tmp_path):
    session = RenderSession(job_id="rec-1", work_dir=str(tmp_path))
    handle = RenderOrchestrator()._signal_handler(session)

    handle({"kind": "progress", "progress": 0.25})
    assert session.progress == 0.25
    handle({"kind": "progress", "progress": 7})
    handle({"type": "finish"})
    handle(None)
    assert session.progress == 0.25
    assert not session.finished.is_set()

    handle({"kind": "finish"})
    assert session.finished.is_set()
    assert session.progress == 1.0


def test_expected_video_length_counts_active_time_when_skipping():
    timeline = Timeline(events=[
        full_snapshot(0),
        incremental(2000),
        mutation(30000),
        incremental(40000),
        incremental(44000),
    ])
    assert expected_video_seconds(timeline, RenderOptions(width=1, height=1, speed=2.0)) == 3.0
    no_skip = RenderOptions(width=1, height=1, strategy=RenderStrategy.PLAYER, skip_inactive=False)
    assert expected_video_seconds(timeline, no_skip) == 44.0
