"""
Booking endpoint tests
Drives the FastAPI app through httpx with the service, user and rate limiter overridden
"""

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

from app.core.database import get_session
from app.core.redis import RateLimiter, RedisManager, booking_rate_limiter, redis_manager
from app.core.security import get_current_user
from app.api.v1.endpoints.bookings import get_booking_service
from app.main import app
from app.models.tour import TourPackage

from conftest import booking_payload, fetch, make_tour

API = "/api/v1"


@pytest_asyncio.fixture
async def current_user(test_user):
    """Mutable holder so a test can switch the authenticated user"""
    return {"user": test_user}


@pytest_asyncio.fixture
async def client(booking_service, current_user):
    """Create test client with dependency override"""
    app.dependency_overrides[get_booking_service] = lambda: booking_service
    app.dependency_overrides[get_current_user] = lambda: current_user["user"]
    app.dependency_overrides[booking_rate_limiter] = lambda: None

    try:
        transport = ASGITransport(app=app, raise_app_exceptions=False)
        async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
            yield ac
    finally:
        app.dependency_overrides.clear()


async def create_booking(client, tour_id, **kwargs):
    response = await client.post(f"{API}/bookings", json=booking_payload(tour_id, **kwargs))
    assert response.status_code == 201, response.text
    return response.json()["data"]


class TestCreateEndpoint:

    @pytest.mark.asyncio
    async def test_create_booking(self, client, test_tour, session_factory):
        data = await create_booking(client, test_tour.id)

        booking = data["booking"]
        assert booking["status"] == "confirmed"
        assert booking["payment_status"] == "completed"
        assert booking["total_amount"] == "575.00"
        assert booking["tax_amount"] == "50.00"
        assert booking["booking_reference"].startswith("TT")
        assert booking["travelers"][0]["gender"] == "male"
        assert data["reward_points"] == 5
        assert data["email_sent"] is True
        assert data["payment_receipt"]["receipt_number"].startswith("RCP-")
        assert Decimal(data["payment_receipt"]["fees"]) == Decimal("16.98")

        tour = await fetch(session_factory, TourPackage, test_tour.id)
        assert tour.available_slots == 4

    @pytest.mark.asyncio
    async def test_missing_travelers_is_validation_error(self, client, test_tour):
        payload = booking_payload(test_tour.id)
        payload["travelers"] = []

        response = await client.post(f"{API}/bookings", json=payload)

        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["error"]["code"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_reversed_dates_are_rejected(self, client, test_tour):
        payload = booking_payload(test_tour.id)
        dates = payload["travel_dates"]
        dates["start_date"], dates["end_date"] = dates["end_date"], dates["start_date"]

        response = await client.post(f"{API}/bookings", json=payload)

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_unknown_payment_method(self, client, test_tour):
        response = await client.post(
            f"{API}/bookings", json=booking_payload(test_tour.id, payment_method="bitcoin")
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_traveler_age_bounds(self, client, test_tour):
        payload = booking_payload(test_tour.id)
        payload["travelers"][0]["age"] = 0

        response = await client.post(f"{API}/bookings", json=payload)

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_unknown_tour(self, client):
        response = await client.post(f"{API}/bookings", json=booking_payload(uuid4()))

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_FOUND"

    @pytest.mark.asyncio
    async def test_sold_out_tour(self, client, db_session):
        tour = await make_tour(db_session, slots=0)

        response = await client.post(f"{API}/bookings", json=booking_payload(tour.id))

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "CAPACITY_EXCEEDED"

    @pytest.mark.asyncio
    async def test_payment_failure(self, client, test_tour, payment_adapter):
        payment_adapter.succeed = False

        response = await client.post(f"{API}/bookings", json=booking_payload(test_tour.id))

        assert response.status_code == 402
        error = response.json()["error"]
        assert error["code"] == "PAYMENT_FAILED"
        assert error["details"]["error"] == "Your card was declined."


class TestCancelEndpoints:

    @pytest.mark.asyncio
    async def test_delete_with_reason(self, client, test_tour):
        data = await create_booking(client, test_tour.id)

        response = await client.request(
            "DELETE",
            f"{API}/bookings/{data['booking']['id']}",
            json={"cancellation_reason": "Family emergency"},
        )

        assert response.status_code == 200
        body = response.json()["data"]
        assert body["booking"]["status"] == "cancelled"
        assert body["booking"]["cancellation_reason"] == "Family emergency"
        assert body["refund_percentage"] == 100
        assert Decimal(body["refund_amount"]) == Decimal("575.00")

    @pytest.mark.asyncio
    async def test_post_cancel_twice(self, client, test_tour):
        data = await create_booking(client, test_tour.id)
        url = f"{API}/bookings/{data['booking']['id']}/cancel"

        first = await client.post(url, json={})
        second = await client.post(url, json={"cancellation_reason": "again"})

        assert first.status_code == 200
        assert second.status_code == 409
        assert second.json()["error"]["code"] == "INVALID_STATE"

    @pytest.mark.asyncio
    async def test_cancel_someone_elses_booking(self, client, test_tour, other_user, current_user):
        data = await create_booking(client, test_tour.id)
        current_user["user"] = other_user

        response = await client.post(f"{API}/bookings/{data['booking']['id']}/cancel")

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "FORBIDDEN"


class TestReadAndAdminEndpoints:

    @pytest.mark.asyncio
    async def test_get_booking(self, client, test_tour):
        data = await create_booking(client, test_tour.id)

        response = await client.get(f"{API}/bookings/{data['booking']['id']}")

        assert response.status_code == 200
        assert response.json()["data"]["booking_reference"] == data["booking"]["booking_reference"]

    @pytest.mark.asyncio
    async def test_get_missing_booking(self, client):
        response = await client.get(f"{API}/bookings/{uuid4()}")

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_list_requires_admin(self, client):
        response = await client.get(f"{API}/bookings")

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_admin_list_and_status_update(self, client, test_tour, admin_user, current_user):
        data = await create_booking(client, test_tour.id)
        await create_booking(client, test_tour.id)
        current_user["user"] = admin_user

        listing = await client.get(f"{API}/bookings", params={"per_page": 1, "status": "confirmed"})
        assert listing.status_code == 200
        body = listing.json()
        assert len(body["data"]) == 1
        assert body["pagination"]["total"] == 2
        assert body["pagination"]["total_pages"] == 2
        assert body["pagination"]["has_next"] is True

        update = await client.put(
            f"{API}/bookings/{data['booking']['id']}/status",
            json={"status": "completed", "notes": "Tour finished"},
        )
        assert update.status_code == 200
        assert update.json()["data"]["status"] == "completed"
        assert update.json()["data"]["notes"] == "Tour finished"

        invalid = await client.put(
            f"{API}/bookings/{data['booking']['id']}/status",
            json={"status": "no_show"},
        )
        assert invalid.status_code == 409


class TestMyBookingsEndpoint:

    @pytest.mark.asyncio
    async def test_lists_only_own_bookings(self, client, test_tour, other_user, current_user):
        mine = await create_booking(client, test_tour.id)
        await create_booking(client, test_tour.id)
        owner = current_user["user"]

        current_user["user"] = other_user
        await create_booking(client, test_tour.id)

        current_user["user"] = owner
        response = await client.get(f"{API}/bookings/mine")

        assert response.status_code == 200
        body = response.json()
        assert body["pagination"]["total"] == 2
        assert {b["user_id"] for b in body["data"]} == {str(owner.id)}
        assert mine["booking"]["id"] in {b["id"] for b in body["data"]}

    @pytest.mark.asyncio
    async def test_status_filter(self, client, test_tour):
        data = await create_booking(client, test_tour.id)
        await create_booking(client, test_tour.id)
        await client.post(f"{API}/bookings/{data['booking']['id']}/cancel")

        response = await client.get(f"{API}/bookings/mine", params={"status": "cancelled"})

        body = response.json()
        assert body["pagination"]["total"] == 1
        assert body["data"][0]["status"] == "cancelled"


class TestRateLimiting:

    @pytest.mark.asyncio
    async def test_limit_exceeded(self, test_user, monkeypatch):
        from app.config import settings
        from app.core.exceptions import RateLimitError

        monkeypatch.setattr(settings, "RATE_LIMIT_ENABLED", True)
        manager = AsyncMock()
        manager.is_rate_limited.return_value = (True, 11)
        limiter = RateLimiter("bookings", 10, manager=manager)

        with pytest.raises(RateLimitError) as exc_info:
            await limiter(current_user=test_user)

        assert exc_info.value.status_code == 429
        manager.is_rate_limited.assert_awaited_once_with(f"user:{test_user.id}:bookings", 10, 60)

    @pytest.mark.asyncio
    async def test_redis_outage_fails_open(self):
        client = MagicMock()
        client.pipeline.side_effect = ConnectionError("redis down")
        manager = RedisManager(client=client)

        assert await manager.is_rate_limited("user:1:bookings", 10) == (False, 0)


class TestHealthEndpoints:

    @pytest.mark.asyncio
    async def test_liveness(self):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
            response = await ac.get(f"{API}/health/live")

        assert response.status_code == 200
        assert response.json()["status"] == "alive"

    @pytest.mark.asyncio
    async def test_readiness_ignores_redis_outage(self, session_factory, monkeypatch):
        async def override_session():
            async with session_factory() as session:
                yield session

        broken = MagicMock()
        broken.ping = AsyncMock(side_effect=ConnectionError("redis down"))
        monkeypatch.setattr(redis_manager, "client", broken)
        app.dependency_overrides[get_session] = override_session

        try:
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
                response = await ac.get(f"{API}/health/ready")
        finally:
            app.dependency_overrides.clear()

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ready"
        assert body["services"] == {"database": "up", "redis": "down"}
