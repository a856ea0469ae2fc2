"""
Integration tests for the REST API endpoints.

The app's session factory, request-scoped session and lock manager are
overridden so routes run against the test SQLite database with
in-process locks.  ``ASGITransport`` does not fire lifespan events, so
the retention worker never starts.
"""

from __future__ import annotations

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from ridepool.api.app import create_app
from ridepool.api.dependencies import get_db, get_locks, get_session_factory
from ridepool.api.middleware import limiter
from ridepool.domain.enums import VehicleType
from ridepool.infrastructure.locks import LocalLockManager

RIDE_BODY = {
    "pickup_lat": 23.7808,
    "pickup_lng": 90.4167,
    "dropoff_lat": 23.8103,
    "dropoff_lng": 90.4125,
    "vehicle_type": "CAR",
}


@pytest_asyncio.fixture
async def client(session_factory, scoring_config):
    app = create_app()
    locks = LocalLockManager(wait_seconds=2.0)

    async def _db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_db] = _db
    app.dependency_overrides[get_locks] = lambda: locks
    limiter.enabled = False

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    limiter.enabled = True


def _as(user) -> dict:
    return {"X-User-Id": str(user.id)}


async def _request_ride(client, user, **overrides) -> dict:
    resp = await client.post("/api/v1/rides", json={**RIDE_BODY, **overrides}, headers=_as(user))
    assert resp.status_code == 201, resp.text
    return resp.json()


class TestHealth:
    @pytest.mark.asyncio
    async def test_health(self, client):
        resp = await client.get("/api/v1/admin/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}


class TestRideEndpoints:
    @pytest.mark.asyncio
    async def test_first_request_opens_pool(self, client, make_user):
        alice = await make_user()
        data = await _request_ride(client, alice)

        assert data["created_pool"] is True
        assert data["ride"]["status"] == "IN_POOL"
        assert data["ride"]["user_id"] == alice.id
        assert data["join"]["accepted"] is True
        assert data["pool_id"] is not None

    @pytest.mark.asyncio
    async def test_second_request_joins(self, client, make_user):
        alice, bob = await make_user(), await make_user()
        first = await _request_ride(client, alice)
        second = await _request_ride(client, bob)

        assert second["created_pool"] is False
        assert second["pool_id"] == first["pool_id"]
        assert second["join"]["score"] == 100.0

        pool = (await client.get(f"/api/v1/pools/{first['pool_id']}")).json()
        assert pool["status"] == "WAITING_FOR_DRIVER"
        assert pool["current_passengers"] == 2
        assert [m["user_id"] for m in pool["members"]] == [alice.id, bob.id]

    @pytest.mark.asyncio
    async def test_missing_caller_header(self, client):
        resp = await client.post("/api/v1/rides", json=RIDE_BODY)
        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_out_of_range_coordinates(self, client, make_user):
        user = await make_user()
        resp = await client.post(
            "/api/v1/rides", json={**RIDE_BODY, "pickup_lat": 95.0}, headers=_as(user)
        )
        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_unknown_vehicle_class(self, client, make_user):
        user = await make_user()
        resp = await client.post(
            "/api/v1/rides", json={**RIDE_BODY, "vehicle_type": "BUS"}, headers=_as(user)
        )
        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_pickup_equals_dropoff(self, client, make_user):
        user = await make_user()
        resp = await client.post(
            "/api/v1/rides",
            json={**RIDE_BODY, "dropoff_lat": 23.7808, "dropoff_lng": 90.4167},
            headers=_as(user),
        )
        assert resp.status_code == 422
        assert resp.json()["code"] == "validation"

    @pytest.mark.asyncio
    async def test_get_ride_owner_only(self, client, make_user):
        alice, bob = await make_user(), await make_user()
        data = await _request_ride(client, alice)
        ride_id = data["ride"]["id"]

        assert (await client.get(f"/api/v1/rides/{ride_id}", headers=_as(alice))).status_code == 200
        resp = await client.get(f"/api/v1/rides/{ride_id}", headers=_as(bob))
        assert resp.status_code == 403
        assert resp.json()["code"] == "forbidden"

    @pytest.mark.asyncio
    async def test_get_unknown_ride(self, client, make_user):
        user = await make_user()
        resp = await client.get("/api/v1/rides/999", headers=_as(user))
        assert resp.status_code == 404
        assert resp.json()["code"] == "not_found"

    @pytest.mark.asyncio
    async def test_active_ride(self, client, make_user):
        user = await make_user()
        assert (await client.get("/api/v1/rides/active", headers=_as(user))).status_code == 404
        data = await _request_ride(client, user)
        resp = await client.get("/api/v1/rides/active", headers=_as(user))
        assert resp.status_code == 200
        assert resp.json()["id"] == data["ride"]["id"]

    @pytest.mark.asyncio
    async def test_leave(self, client, make_user):
        alice, bob = await make_user(), await make_user()
        await _request_ride(client, alice)
        second = await _request_ride(client, bob)

        resp = await client.post(
            f"/api/v1/rides/{second['ride']['id']}/leave", headers=_as(bob)
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == "WAITING_FOR_RIDERS"
        assert resp.json()["current_passengers"] == 1


class TestPoolEndpoints:
    @pytest.mark.asyncio
    async def test_search(self, client, make_user):
        alice = await make_user()
        data = await _request_ride(client, alice)

        resp = await client.get(
            "/api/v1/pools/search",
            params={
                "pickup_lat": 23.7808,
                "pickup_lng": 90.4167,
                "dropoff_lat": 23.8103,
                "dropoff_lng": 90.4125,
            },
        )
        assert resp.status_code == 200
        assert [m["pool_id"] for m in resp.json()] == [data["pool_id"]]

    @pytest.mark.asyncio
    async def test_join_with_pooled_ride_conflicts(self, client, make_user):
        alice, bob = await make_user(), await make_user()
        first = await _request_ride(client, alice)
        # Different destination opens a second pool
        second = await _request_ride(client, bob, dropoff_lat=23.8400)
        assert second["created_pool"] is True

        resp = await client.post(
            f"/api/v1/pools/{first['pool_id']}/join",
            json={"ride_id": second["ride"]["id"]},
            headers=_as(bob),
        )
        assert resp.status_code == 409
        assert resp.json()["code"] == "invalid_state"

    @pytest.mark.asyncio
    async def test_unknown_pool(self, client):
        resp = await client.get("/api/v1/pools/999")
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_cancel(self, client, make_user):
        alice, bob = await make_user(), await make_user()
        data = await _request_ride(client, alice)
        await _request_ride(client, bob)
        url = f"/api/v1/pools/{data['pool_id']}/cancel"

        resp = await client.post(url, json={"reason": "nope"}, headers=_as(bob))
        assert resp.status_code == 403

        resp = await client.post(url, json={"reason": "Flight delayed"}, headers=_as(alice))
        assert resp.status_code == 200
        assert resp.json()["status"] == "CANCELLED"

        ride = await client.get(f"/api/v1/rides/{data['ride']['id']}", headers=_as(alice))
        assert ride.json()["status"] == "CANCELLED"
        assert ride.json()["cancelled_reason"] == "Flight delayed"

    @pytest.mark.asyncio
    async def test_driver_trip_flow(self, client, make_user, make_vehicle):
        alice, bob = await make_user(), await make_user()
        data = await _request_ride(client, alice)
        await _request_ride(client, bob)
        driver = await make_user(is_driver=True)
        car = await make_vehicle(driver, VehicleType.CAR)
        pool_url = f"/api/v1/pools/{data['pool_id']}"

        resp = await client.post(
            f"{pool_url}/driver",
            json={"driver_id": driver.id, "vehicle_id": car.id},
            headers=_as(driver),
        )
        assert resp.status_code == 200, resp.text
        assert resp.json()["status"] == "READY_TO_START"

        resp = await client.post(
            f"{pool_url}/driver",
            json={"driver_id": driver.id, "vehicle_id": car.id},
            headers=_as(driver),
        )
        assert resp.status_code == 409
        assert resp.json()["code"] == "conflict"

        resp = await client.post(f"{pool_url}/start", headers=_as(driver))
        assert resp.status_code == 200
        assert resp.json()["status"] == "STARTED"
        assert len(resp.json()["route_stops"]) == 3

        resp = await client.post(f"{pool_url}/complete", headers=_as(driver))
        assert resp.status_code == 200
        assert resp.json()["status"] == "COMPLETED"


class TestDriverEndpoints:
    @pytest.mark.asyncio
    async def test_location_and_nearest(self, client, make_user, make_vehicle):
        driver = await make_user(is_driver=True)
        car = await make_vehicle(driver)

        resp = await client.post(
            "/api/v1/drivers/location",
            json={"vehicle_id": car.id, "lat": 23.7830, "lng": 90.4160, "heading": 90},
            headers=_as(driver),
        )
        assert resp.status_code == 201, resp.text
        assert resp.json()["is_available"] is True

        resp = await client.get(
            "/api/v1/drivers/nearest", params={"lat": 23.7808, "lng": 90.4167}
        )
        assert resp.status_code == 200
        assert [d["driver_id"] for d in resp.json()] == [driver.id]

    @pytest.mark.asyncio
    async def test_bad_heading(self, client, make_user, make_vehicle):
        driver = await make_user(is_driver=True)
        car = await make_vehicle(driver)
        resp = await client.post(
            "/api/v1/drivers/location",
            json={"vehicle_id": car.id, "lat": 23.78, "lng": 90.41, "heading": 400},
            headers=_as(driver),
        )
        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_pools_for_driver(self, client, make_user):
        alice, bob = await make_user(), await make_user()
        data = await _request_ride(client, alice)
        await _request_ride(client, bob)
        driver = await make_user(is_driver=True)

        resp = await client.get(
            "/api/v1/drivers/pools",
            params={"lat": 23.7850, "lng": 90.4160},
            headers=_as(driver),
        )
        assert resp.status_code == 200
        assert [m["pool_id"] for m in resp.json()] == [data["pool_id"]]

        resp = await client.get(
            "/api/v1/drivers/pools",
            params={"lat": 23.7850, "lng": 90.4160},
            headers=_as(alice),
        )
        assert resp.status_code == 422


class TestAdminEndpoints:
    @pytest.mark.asyncio
    async def test_publish_scoring_config(self, client, make_user):
        admin = await make_user()
        resp = await client.post(
            "/api/v1/admin/scoring-configs",
            json={"config_name": "default", "min_viable_score": 70},
            headers=_as(admin),
        )
        assert resp.status_code == 201, resp.text
        assert resp.json()["version"] == 2
        assert resp.json()["is_active"] is True

    @pytest.mark.asyncio
    async def test_weights_must_sum_to_100(self, client, make_user):
        admin = await make_user()
        resp = await client.post(
            "/api/v1/admin/scoring-configs",
            json={"destination_proximity_weight": 80},
            headers=_as(admin),
        )
        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_active_pools(self, client, make_user):
        alice = await make_user()
        data = await _request_ride(client, alice)
        resp = await client.get("/api/v1/admin/active-pools")
        assert resp.status_code == 200
        assert [p["id"] for p in resp.json()] == [data["pool_id"]]
