"""HTTP surface tests."""

import asyncio

import httpx
import pytest

from epg_sync.main import app
from epg_sync.routers import get_scheduler
from epg_sync.services.scheduler_service import SyncScheduler
from epg_sync.utils.timezone import ms_to_utc_datetime

from conftest import HOUR_MS, NOW_MS, two_channel_source

INPUT_ID = "tv-input"
WINDOW_START = NOW_MS - NOW_MS % HOUR_MS


@pytest.fixture
def source():
    return two_channel_source(WINDOW_START)


@pytest.fixture
def scheduler(sqlite_store, notifier, clock, source):
    sync_scheduler = SyncScheduler(sqlite_store, notifier=notifier, clock=clock)
    sync_scheduler.register_source(INPUT_ID, source)
    app.dependency_overrides[get_scheduler] = lambda: sync_scheduler
    yield sync_scheduler
    app.dependency_overrides.pop(get_scheduler, None)
    sync_scheduler.shutdown()


@pytest.fixture
async def client(scheduler):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http_client:
        yield http_client


async def run_sync(client, scheduler, body=None):
    response = await client.post(f"/inputs/{INPUT_ID}/sync", json=body)
    assert response.status_code == 200
    await scheduler.coordinator.wait(INPUT_ID)
    return response


class TestServiceEndpoints:
    async def test_root_lists_inputs(self, client):
        response = await client.get("/")
        assert response.status_code == 200
        assert response.json()["inputs"] == [INPUT_ID]

    async def test_health(self, client):
        response = await client.get("/health")
        assert response.json() == {"status": "ok", "scheduler_running": False, "active_syncs": []}


class TestSyncEndpoints:
    async def test_immediate_sync_stores_channels(self, client, scheduler):
        response = await run_sync(client, scheduler, {"period_hours": 2})

        assert response.json()["status"] == "started"
        channels = (await client.get(f"/inputs/{INPUT_ID}/channels")).json()
        assert [c["external_id"] for c in channels] == ["loop", "news"]
        assert channels[0]["repeatable"] is True

    async def test_status_reports_last_event(self, client, scheduler):
        await run_sync(client, scheduler)

        status = (await client.get(f"/inputs/{INPUT_ID}/sync/status")).json()

        assert status["syncing"] is False
        assert status["last_event"]["status"] == "finished"

    async def test_unknown_input_is_404(self, client):
        assert (await client.post("/inputs/missing/sync")).status_code == 404
        assert (await client.put("/inputs/missing/sync/periodic")).status_code == 404

    async def test_request_during_sync_is_skipped(self, client, scheduler, source):
        source.gates["loop"] = asyncio.Event()
        source.entered["loop"] = asyncio.Event()
        await client.post(f"/inputs/{INPUT_ID}/sync")
        await source.entered["loop"].wait()

        response = await client.post(f"/inputs/{INPUT_ID}/sync")

        assert response.json()["status"] == "skipped"
        source.gates["loop"].set()
        await scheduler.coordinator.wait(INPUT_ID)

    async def test_invalid_period_is_rejected(self, client):
        response = await client.post(f"/inputs/{INPUT_ID}/sync", json={"period_hours": 0})
        assert response.status_code == 422

    async def test_periodic_registration(self, client, scheduler):
        scheduler.start()

        response = await client.put(
            f"/inputs/{INPUT_ID}/sync/periodic",
            json={"period_hours": 48, "interval_hours": 6},
        )

        body = response.json()
        assert body["status"] == "scheduled"
        assert body["next_run_time"] is not None
        registration = scheduler.get_periodic_registration(INPUT_ID)
        assert (registration.period_ms, registration.interval_ms) == (48 * HOUR_MS, 6 * HOUR_MS)

    async def test_cancel(self, client, scheduler):
        scheduler.request_periodic_sync(INPUT_ID, HOUR_MS)

        first = (await client.delete(f"/inputs/{INPUT_ID}/sync")).json()
        second = (await client.delete(f"/inputs/{INPUT_ID}/sync")).json()

        assert first == {"input_id": INPUT_ID, "status": "cancelled", "message": None, "next_run_time": None}
        assert second["message"] == "No sync requests were active"
        assert scheduler.get_periodic_registration(INPUT_ID) is None


class TestEpgEndpoint:
    async def test_programs_in_requested_timezone(self, client, scheduler):
        await run_sync(client, scheduler, {"period_hours": 4})
        channels = {c["external_id"]: c["id"] for c in (await client.get(f"/inputs/{INPUT_ID}/channels")).json()}

        response = await client.post(
            "/epg",
            json={
                "channel_ids": [channels["loop"], channels["news"], 999],
                "timezone": "Europe/London",
                "from_date": ms_to_utc_datetime(WINDOW_START).isoformat(),
                "to_date": ms_to_utc_datetime(WINDOW_START + 2 * HOUR_MS).isoformat(),
            },
        )

        assert response.status_code == 200
        body = response.json()
        assert body["channels_requested"] == 3
        assert body["channels_found"] == 2
        assert len(body["epg"][str(channels["loop"])]) == 2
        assert len(body["epg"][str(channels["news"])]) == 1
        assert body["epg"]["999"] == []
        # January: London is on UTC+00:00
        assert body["epg"][str(channels["news"])][0]["start_time"].endswith("+00:00")

    @pytest.mark.parametrize(
        "payload",
        [
            {"channel_ids": [1], "timezone": "Mars/Olympus", "from_date": "2025-01-15T00:00:00Z", "to_date": "2025-01-16T00:00:00Z"},
            {"channel_ids": [1], "from_date": "2025-01-16T00:00:00Z", "to_date": "2025-01-15T00:00:00Z"},
            {"channel_ids": [1], "from_date": "yesterday", "to_date": "2025-01-15T00:00:00Z"},
            {"channel_ids": [], "from_date": "2025-01-15T00:00:00Z", "to_date": "2025-01-16T00:00:00Z"},
        ],
    )
    async def test_invalid_requests_are_rejected(self, client, payload):
        response = await client.post("/epg", json=payload)
        assert response.status_code == 422
        assert response.json()["detail"]
