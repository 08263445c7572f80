from __future__ import annotations

import json

import httpx
import pytest

from sessionreel.services.posthog import (
    NO_SOURCES_MESSAGE,
    REALTIME_ONLY_MESSAGE,
    SnapshotFetcher,
    backoff_delay_ms,
)
from sessionreel.utils.exceptions import SnapshotFetchError, SourceUnavailableError

from conftest import full_snapshot, incremental


def make_fetcher(handler, **kwargs) -> SnapshotFetcher:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return SnapshotFetcher(
        host="https://posthog.test/",
        api_key="phx_key",
        project_id="42",
        recording_id="rec-1",
        client=client,
        backoff_ms=0,
        **kwargs,
    )


async def collect(fetcher: SnapshotFetcher):
    return [batch async for batch in fetcher.iter_batches()]


def test_backoff_is_linear():
    assert [backoff_delay_ms(attempt, 500) for attempt in (1, 2, 3)] == [500, 1000, 1500]


def test_backoff_uses_settings_default(monkeypatch):
    from sessionreel.config import settings

    monkeypatch.setattr(settings, "fetch_backoff_ms", 200)
    assert backoff_delay_ms(2) == 400


async def test_blob_v2_keys_are_sorted_and_grouped():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["Authorization"] == "Bearer phx_key"
        params = request.url.params
        if params.get("blob_v2") == "true":
            sources = [{"source": "blob_v2", "blob_key": str(k)} for k in (3, 0, 2, 1, 4)]
            sources.append({"source": "realtime", "blob_key": None})
            return httpx.Response(200, json={"sources": sources})
        seen.append((params["start_blob_key"], params["end_blob_key"]))
        lines = [json.dumps({"windowId": "w", "data": [incremental(int(params["start_blob_key"]))]}), ""]
        return httpx.Response(200, text="\n".join(lines))

    batches = await collect(make_fetcher(handler, max_keys_per_call=2))
    assert seen == [("0", "1"), ("2", "3"), ("4", "4")]
    assert [b.key for b in batches] == ["0-1", "2-3", "4-4"]
    assert all(b.source == "blob_v2" for b in batches)
    assert len(batches[0].payload) == 1


async def test_legacy_blob_sources_fetched_one_at_a_time():
    keys = []

    def handler(request: httpx.Request) -> httpx.Response:
        params = request.url.params
        if params.get("blob_v2") == "true":
            return httpx.Response(200, json={"sources": [
                {"source": "blob", "blob_key": "a"},
                {"source": "blob", "blob_key": "b"},
            ]})
        keys.append(params["blob_key"])
        if params["blob_key"] == "a":
            return httpx.Response(200, json={"snapshots": [full_snapshot(1)]})
        return httpx.Response(200, json=[incremental(2)])

    batches = await collect(make_fetcher(handler))
    assert keys == ["a", "b"]
    assert batches[0].payload[0]["timestamp"] == 1
    assert batches[1].payload[0]["timestamp"] == 2


async def test_realtime_only_is_unavailable():
    def handler(request):
        return httpx.Response(200, json={"sources": [{"source": "realtime"}]})

    with pytest.raises(SourceUnavailableError) as exc:
        await collect(make_fetcher(handler))
    assert str(exc.value) == REALTIME_ONLY_MESSAGE


async def test_no_sources_is_unavailable():
    def handler(request):
        return httpx.Response(200, json={"sources": []})

    with pytest.raises(SourceUnavailableError, match="too fresh"):
        await collect(make_fetcher(handler))
    assert NO_SOURCES_MESSAGE.endswith("too fresh).")


async def test_transient_failures_are_retried():
    calls = {"count": 0}

    def handler(request):
        calls["count"] += 1
        if calls["count"] < 3:
            return httpx.Response(502, text="bad gateway")
        return httpx.Response(200, json={"sources": []})

    fetcher = make_fetcher(handler)
    assert await fetcher.list_sources(fetcher._client) == []
    assert calls["count"] == 3


async def test_persistent_error_raises_with_status_and_truncated_body():
    calls = {"count": 0}

    def handler(request):
        calls["count"] += 1
        return httpx.Response(403, text="x" * 2000)

    fetcher = make_fetcher(handler)
    with pytest.raises(SnapshotFetchError) as exc:
        await collect(fetcher)
    assert exc.value.status_code == 403
    assert len(exc.value.body) == 500
    assert calls["count"] == 3


async def test_network_errors_become_fetch_errors():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(SnapshotFetchError) as exc:
        await collect(make_fetcher(handler, max_attempts=2))
    assert exc.value.status_code == 0


async def test_batches_can_only_be_iterated_once():
    def handler(request):
        return httpx.Response(200, json={"sources": [{"source": "blob", "blob_key": "k"}]}) \
            if request.url.params.get("blob_v2") else httpx.Response(200, json=[])

    fetcher = make_fetcher(handler)
    await collect(fetcher)
    with pytest.raises(RuntimeError):
        await collect(fetcher)


async def test_recording_metadata():
    def handler(request):
        assert request.url.path == "/api/projects/42/session_recordings/rec-1"
        return httpx.Response(200, json={"id": "rec-1", "active_seconds": 37})

    metadata = await make_fetcher(handler).fetch_recording_metadata()
    assert metadata["active_seconds"] == 37
