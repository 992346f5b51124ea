import asyncio

import httpx
import pytest

from provenance.client import RequestScheduler, SleeperClient
from provenance.errors import SourceUnavailableError

BASE = "https://sleeper.test/v1"


def fetch(handler, call, scheduler=None):
    """Run ``call(client)`` against a SleeperClient backed by ``handler``."""
    async def go():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            client = SleeperClient(http, scheduler or RequestScheduler.immediate(max_attempts=3), base_url=BASE)
            return await call(client)
    return asyncio.run(go())


def scripted(*responses):
    seen = []

    def handler(request):
        seen.append(str(request.url))
        response = responses[min(len(seen), len(responses)) - 1]
        if isinstance(response, Exception):
            raise response
        return httpx.Response(response.status_code, content=response.content, headers=response.headers)

    return handler, seen


def test_get_league_returns_json():
    handler, seen = scripted(httpx.Response(200, json={"league_id": "1", "season": "2023"}))
    data = fetch(handler, lambda c: c.get_league("1"))
    assert data == {"league_id": "1", "season": "2023"}
    assert seen == [f"{BASE}/league/1"]


def test_retries_rate_limited_then_succeeds():
    handler, seen = scripted(httpx.Response(429), httpx.Response(200, json=[{"roster_id": 1}]))
    data = fetch(handler, lambda c: c.get_league_rosters("1"))
    assert data == [{"roster_id": 1}]
    assert len(seen) == 2


def test_server_errors_exhaust_attempts():
    handler, seen = scripted(httpx.Response(503))
    with pytest.raises(SourceUnavailableError) as excinfo:
        fetch(handler, lambda c: c.get_league("1"))
    assert excinfo.value.status_code == 503
    assert excinfo.value.url == f"{BASE}/league/1"
    assert len(seen) == 3


def test_non_retryable_status_fails_immediately():
    handler, seen = scripted(httpx.Response(400))
    with pytest.raises(SourceUnavailableError) as excinfo:
        fetch(handler, lambda c: c.get_league("1"))
    assert excinfo.value.status_code == 400
    assert len(seen) == 1


def test_transport_errors_are_retried():
    handler, seen = scripted(httpx.ConnectError("boom"), httpx.Response(200, json={"season": "2023", "week": 3}))
    assert fetch(handler, lambda c: c.get_nfl_state()) == {"season": "2023", "week": 3}
    assert len(seen) == 2


def test_missing_week_collection_is_empty():
    handler, _ = scripted(httpx.Response(404))
    assert fetch(handler, lambda c: c.get_league_transactions("1", 5)) == []


def test_backoff_grows_and_caps():
    sleeps = []

    async def record(seconds):
        sleeps.append(seconds)

    scheduler = RequestScheduler(
        min_interval=0.0, max_attempts=4, backoff_base=2.0, backoff_cap=5.0, jitter=0.0, sleep=record
    )
    handler, seen = scripted(httpx.Response(500), httpx.Response(502), httpx.Response(429), httpx.Response(200, json={}))
    fetch(handler, lambda c: c.get_league("1"), scheduler=scheduler)
    assert len(seen) == 4
    assert sleeps == [2.0, 4.0, 5.0]


def test_jitter_stays_within_bound():
    scheduler = RequestScheduler(min_interval=0.0, max_attempts=5, backoff_base=2.0, backoff_cap=15.0, jitter=0.25)
    for attempt in range(1, 6):
        base = min(2.0 * 2 ** (attempt - 1), 15.0)
        assert base <= scheduler.backoff_delay(attempt) <= base + 0.25


def test_scheduler_spaces_calls():
    sleeps = []

    async def record(seconds):
        sleeps.append(seconds)

    scheduler = RequestScheduler(
        min_interval=0.1, max_attempts=1, backoff_base=0.0, backoff_cap=0.0, sleep=record, clock=lambda: 100.0
    )

    async def go():
        for _ in range(3):
            await scheduler.wait_turn()

    asyncio.run(go())
    assert sleeps == [pytest.approx(0.1), pytest.approx(0.2)]


def test_immediate_scheduler_never_sleeps():
    handler, seen = scripted(httpx.Response(500), httpx.Response(200, json=[]))
    assert fetch(handler, lambda c: c.get_league_drafts("1")) == []
    assert len(seen) == 2
