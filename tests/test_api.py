"""
Integration tests for the REST API endpoints.

Runs the real application against the temp-file SQLite database from
``conftest``.  The DB session and dispatch scheduler dependencies are
overridden so no background timers start; rate limiting is disabled.
"""

from __future__ import annotations

from datetime import timedelta

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from drivehire.api.app import create_app
from drivehire.api.dependencies import get_db, get_dispatcher
from drivehire.api.middleware import limiter
from drivehire.domain.entities import utcnow
from tests.conftest import DROP, PICKUP, FakeClock, RecordingDispatcher


@pytest.fixture
def clock() -> FakeClock:
    # the routes run on the wall clock, so fixtures must too
    return FakeClock(utcnow())


@pytest_asyncio.fixture
async def api(session_factory):
    """``(client, dispatcher)`` for an app wired to the test database."""

    async def _test_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    dispatcher = RecordingDispatcher()
    app = create_app(session_factory=session_factory)
    app.dependency_overrides[get_db] = _test_db
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    limiter.enabled = False

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac, dispatcher

    limiter.enabled = True


@pytest.fixture
def client(api) -> AsyncClient:
    return api[0]


def _ride_body(**overrides) -> dict:
    body = {
        "vehicle_class": "CAR",
        "pickup_lat": PICKUP.latitude,
        "pickup_lng": PICKUP.longitude,
        "pickup_address": "Banjara Hills",
        "drop_lat": DROP.latitude,
        "drop_lng": DROP.longitude,
        "drop_address": "HITEC City",
        "scheduled_at": (utcnow() + timedelta(minutes=10)).isoformat(),
    }
    body.update(overrides)
    return body


async def _create(client: AsyncClient, requester_id: int, **overrides) -> int:
    resp = await client.post(
        "/api/v1/rides",
        json=_ride_body(**overrides),
        headers={"X-Requester-Id": str(requester_id)},
    )
    assert resp.status_code == 201, resp.text
    return resp.json()["order"]["id"]


def _driver(driver_id: int) -> dict:
    return {"X-Driver-Id": str(driver_id)}


# ── Health / rates ────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_health(client: AsyncClient):
    resp = await client.get("/api/v1/admin/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


@pytest.mark.asyncio
async def test_hourly_rates(client: AsyncClient):
    resp = await client.get("/api/v1/rides/hourly-rates")
    assert resp.status_code == 200
    data = resp.json()
    assert data["rates"]["CAR"] == 200
    assert data["rates"]["HEAVY_VEHICLE"] == 600
    assert data["heavy_block_hours"] == 8
    assert data["heavy_block_charge"] == 4800
    assert data["return_rate_per_km"] == 10


# ── Creation ──────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_create_ride_returns_201(api, make_requester):
    client, dispatcher = api
    requester_id = await make_requester()

    resp = await client.post(
        "/api/v1/rides",
        json=_ride_body(),
        headers={"X-Requester-Id": str(requester_id)},
    )

    assert resp.status_code == 201
    data = resp.json()
    assert data["hourly_rate"] == 200
    assert data["order"]["status"] == "SEARCHING"
    assert data["order"]["requester_id"] == requester_id
    assert data["order"]["driver_id"] is None
    assert dispatcher.scheduled == [data["order"]["id"]]


@pytest.mark.asyncio
async def test_create_ride_without_balance(client: AsyncClient, make_requester):
    requester_id = await make_requester(wallet_balance=0)

    resp = await client.post(
        "/api/v1/rides",
        json=_ride_body(),
        headers={"X-Requester-Id": str(requester_id)},
    )

    assert resp.status_code == 403
    assert "wallet" in resp.json()["detail"]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "overrides",
    [
        {"pickup_lat": 91},
        {"drop_lng": -181},
        {"vehicle_class": "BICYCLE"},
        {"scheduled_at": None},
    ],
)
async def test_create_ride_validation(client: AsyncClient, make_requester, overrides):
    requester_id = await make_requester()

    resp = await client.post(
        "/api/v1/rides",
        json=_ride_body(**overrides),
        headers={"X-Requester-Id": str(requester_id)},
    )

    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_create_ride_requires_identity(client: AsyncClient):
    resp = await client.post("/api/v1/rides", json=_ride_body())
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_idempotency_key(api, make_requester):
    client, dispatcher = api
    requester_id = await make_requester()

    first = await _create(client, requester_id, idempotency_key="unique-key-123")
    second = await _create(client, requester_id, idempotency_key="unique-key-123")

    assert first == second
    assert dispatcher.scheduled == [first]


# ── Queries ───────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_get_ride(client: AsyncClient, make_requester):
    order_id = await _create(client, await make_requester())

    resp = await client.get(f"/api/v1/rides/{order_id}")

    assert resp.status_code == 200
    assert resp.json()["id"] == order_id
    assert resp.json()["route_points"] == []


@pytest.mark.asyncio
async def test_get_ride_not_found(client: AsyncClient):
    resp = await client.get("/api/v1/rides/9999")
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_my_rides(client: AsyncClient, make_requester):
    mine = await make_requester(name="Me")
    other = await make_requester(name="Other")
    first = await _create(client, mine)
    second = await _create(client, mine)
    await _create(client, other)

    resp = await client.get("/api/v1/rides/mine", headers={"X-Requester-Id": str(mine)})

    assert resp.status_code == 200
    assert [o["id"] for o in resp.json()] == [second, first]


# ── Driver flow ───────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_accept_start_end(client: AsyncClient, make_requester, make_driver):
    requester_id = await make_requester(wallet_balance=5000)
    driver_id = await make_driver()
    order_id = await _create(client, requester_id)

    resp = await client.post(
        f"/api/v1/rides/{order_id}/accept", headers=_driver(driver_id)
    )
    assert resp.status_code == 200
    assert resp.json()["status"] == "ACCEPTED"
    assert resp.json()["driver_id"] == driver_id

    resp = await client.post(
        f"/api/v1/rides/{order_id}/start",
        json={"lat": PICKUP.latitude, "lng": PICKUP.longitude},
        headers=_driver(driver_id),
    )
    assert resp.status_code == 200
    assert resp.json()["status"] == "ACTIVE"

    resp = await client.post(
        f"/api/v1/rides/{order_id}/end",
        json={"lat": DROP.latitude, "lng": DROP.longitude},
        headers=_driver(driver_id),
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["turnaround"] is False
    assert data["order"]["status"] == "COMPLETED"
    assert data["order"]["drop_classification"] == "VALID_DROP"
    assert data["fare"] == {
        "hourly_rate": 200,
        "ride_hours": 1,
        "base_fare": 200,
        "return_distance_km": 0,
        "return_charges": 0,
        "final_amount": 200,
        "platform_commission": 20,
        "driver_earnings": 180,
    }


@pytest.mark.asyncio
async def test_second_accept_conflicts(client: AsyncClient, make_requester, make_driver):
    order_id = await _create(client, await make_requester())
    first = await make_driver(name="First")
    second = await make_driver(name="Second")

    ok = await client.post(f"/api/v1/rides/{order_id}/accept", headers=_driver(first))
    late = await client.post(f"/api/v1/rides/{order_id}/accept", headers=_driver(second))

    assert ok.status_code == 200
    assert late.status_code == 409
    assert late.json()["detail"] == "Ride no longer available"


@pytest.mark.asyncio
async def test_blocked_driver_cannot_accept(
    client: AsyncClient, make_requester, make_driver
):
    order_id = await _create(client, await make_requester())
    driver_id = await make_driver(is_blocked=True)

    resp = await client.post(
        f"/api/v1/rides/{order_id}/accept", headers=_driver(driver_id)
    )

    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_start_requires_acceptance(
    client: AsyncClient, make_requester, make_driver
):
    order_id = await _create(client, await make_requester())
    driver_id = await make_driver()

    resp = await client.post(
        f"/api/v1/rides/{order_id}/start",
        json={"lat": PICKUP.latitude, "lng": PICKUP.longitude},
        headers=_driver(driver_id),
    )

    assert resp.status_code == 409


# ── Cancellation ──────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_cancel_searching_ride(api, make_requester):
    client, dispatcher = api
    requester_id = await make_requester()
    order_id = await _create(client, requester_id)

    resp = await client.post(
        f"/api/v1/rides/{order_id}/cancel",
        json={"reason": "Plans changed"},
        headers={"X-Requester-Id": str(requester_id)},
    )

    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "CANCELLED"
    assert data["cancelled_by"] == "REQUESTER"
    assert data["cancel_reason"] == "Plans changed"
    assert dispatcher.cancelled == [order_id]


@pytest.mark.asyncio
async def test_cancel_already_cancelled_ride_fails(client: AsyncClient, make_requester):
    requester_id = await make_requester()
    order_id = await _create(client, requester_id)
    headers = {"X-Requester-Id": str(requester_id)}

    await client.post(f"/api/v1/rides/{order_id}/cancel", headers=headers)
    resp = await client.post(f"/api/v1/rides/{order_id}/cancel", headers=headers)

    assert resp.status_code == 409


@pytest.mark.asyncio
async def test_cancel_someone_elses_ride(client: AsyncClient, make_requester):
    order_id = await _create(client, await make_requester(name="Owner"))
    stranger = await make_requester(name="Stranger")

    resp = await client.post(
        f"/api/v1/rides/{order_id}/cancel",
        headers={"X-Requester-Id": str(stranger)},
    )

    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_admin_cancel(client: AsyncClient, make_requester):
    order_id = await _create(client, await make_requester())

    resp = await client.post(
        f"/api/v1/rides/{order_id}/cancel", headers={"X-Admin-Id": "1"}
    )

    assert resp.status_code == 200
    assert resp.json()["cancelled_by"] == "ADMIN"


@pytest.mark.asyncio
async def test_cancel_without_identity(client: AsyncClient, make_requester):
    order_id = await _create(client, await make_requester())

    resp = await client.post(f"/api/v1/rides/{order_id}/cancel")

    assert resp.status_code == 401


# ── Driver presence ───────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_driver_online_offline(client: AsyncClient, make_driver):
    driver_id = await make_driver(is_online=False)

    resp = await client.put(
        "/api/v1/drivers/me/online",
        json={"lat": 17.41, "lng": 78.49},
        headers=_driver(driver_id),
    )
    assert resp.status_code == 200
    assert resp.json()["is_online"] is True
    assert resp.json()["current_lat"] == 17.41
    assert resp.json()["h3_cell"]

    resp = await client.put("/api/v1/drivers/me/offline", headers=_driver(driver_id))
    assert resp.status_code == 200
    assert resp.json() == {"driver_id": driver_id, "is_online": False}


@pytest.mark.asyncio
async def test_unapproved_driver_cannot_go_online(client: AsyncClient, make_driver):
    driver_id = await make_driver(is_online=False, is_approved=False)

    resp = await client.put("/api/v1/drivers/me/online", headers=_driver(driver_id))

    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_driver_location_update(client: AsyncClient, make_driver):
    driver_id = await make_driver(is_online=False)

    resp = await client.put(
        "/api/v1/drivers/me/location",
        json={"lat": 17.43, "lng": 78.44},
        headers=_driver(driver_id),
    )

    assert resp.status_code == 200
    assert resp.json()["current_lng"] == 78.44
    assert resp.json()["is_online"] is False


@pytest.mark.asyncio
async def test_driver_location_rejects_bad_coordinate(
    client: AsyncClient, make_driver
):
    driver_id = await make_driver()

    resp = await client.put(
        "/api/v1/drivers/me/location",
        json={"lat": 120, "lng": 78.44},
        headers=_driver(driver_id),
    )

    assert resp.status_code == 422


# ── Admin ─────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_admin_rides_filter(client: AsyncClient, make_requester):
    requester_id = await make_requester()
    kept = await _create(client, requester_id)
    dropped = await _create(client, requester_id)
    await client.post(
        f"/api/v1/rides/{dropped}/cancel",
        headers={"X-Requester-Id": str(requester_id)},
    )

    resp = await client.get(
        "/api/v1/admin/rides", params={"status": "SEARCHING"}, headers={"X-Admin-Id": "1"}
    )

    assert resp.status_code == 200
    assert [o["id"] for o in resp.json()] == [kept]


@pytest.mark.asyncio
async def test_admin_speed_violations_empty(client: AsyncClient):
    resp = await client.get(
        "/api/v1/admin/speed-violations", headers={"X-Admin-Id": "1"}
    )
    assert resp.status_code == 200
    assert resp.json() == []


@pytest.mark.asyncio
async def test_admin_endpoints_require_admin(client: AsyncClient):
    resp = await client.get("/api/v1/admin/rides")
    assert resp.status_code == 422
