"""
Integration tests for delivery partner and location endpoints.
"""

from decimal import Decimal

import pytest
from fastapi import status
from fastapi.testclient import TestClient

from conftest import RESTAURANT_COORDINATES, bearer, order_payload
from delivery_tracker.core import geo
from delivery_tracker.database.models.user import UserRole

PARTNERS_URL = "/api/v1/partners"
LOCATION_URL = "/api/v1/location"


@pytest.fixture
def api_partner(seed_user):
    return seed_user(
        UserRole.DELIVERY_PARTNER,
        is_online=True,
        is_verified=True,
        current_latitude=RESTAURANT_COORDINATES["latitude"],
        current_longitude=RESTAURANT_COORDINATES["longitude"],
    )


@pytest.fixture
def api_customer(seed_user):
    return seed_user(UserRole.CUSTOMER)


@pytest.fixture
def picked_up_order(test_client: TestClient, api_customer, api_partner) -> dict:
    order = test_client.post(
        "/api/v1/orders", json=order_payload(), headers=bearer(api_customer)
    ).json()
    test_client.post(f"/api/v1/orders/{order['id']}/accept", headers=bearer(api_partner))
    response = test_client.patch(
        f"/api/v1/orders/{order['id']}/status",
        json={"status": "picked_up"},
        headers=bearer(api_partner),
    )
    assert response.status_code == status.HTTP_200_OK
    return response.json()


# ============================================================================
# Dashboard and Availability Tests
# ============================================================================


class TestDashboard:
    """Test GET /partners/dashboard."""

    def test_fresh_partner(self, test_client: TestClient, api_partner) -> None:
        response = test_client.get(f"{PARTNERS_URL}/dashboard", headers=bearer(api_partner))

        assert response.status_code == status.HTTP_200_OK
        body = response.json()
        assert body["partner"]["id"] == str(api_partner.id)
        assert body["stats"]["total_orders"] == 0
        assert body["stats"]["rating"]["count"] == 0
        assert body["active_orders"] == []

    def test_counts_active_order(
        self, test_client: TestClient, picked_up_order: dict, api_partner
    ) -> None:
        body = test_client.get(f"{PARTNERS_URL}/dashboard", headers=bearer(api_partner)).json()

        assert body["stats"]["total_orders"] == 1
        assert body["stats"]["completed_orders"] == 0
        assert [order["id"] for order in body["active_orders"]] == [picked_up_order["id"]]

    def test_customer_forbidden(self, test_client: TestClient, api_customer) -> None:
        response = test_client.get(f"{PARTNERS_URL}/dashboard", headers=bearer(api_customer))
        assert response.status_code == status.HTTP_403_FORBIDDEN


class TestAvailability:
    """Test toggling and listing available orders."""

    def test_toggle_status(self, test_client: TestClient, api_partner) -> None:
        first = test_client.post(f"{PARTNERS_URL}/toggle-status", headers=bearer(api_partner))
        second = test_client.post(f"{PARTNERS_URL}/toggle-status", headers=bearer(api_partner))

        assert first.json() == {"is_online": False}
        assert second.json() == {"is_online": True}

    def test_available_orders(
        self, test_client: TestClient, api_customer, api_partner
    ) -> None:
        placed = test_client.post(
            "/api/v1/orders", json=order_payload(), headers=bearer(api_customer)
        ).json()

        response = test_client.get(
            f"{PARTNERS_URL}/available-orders", headers=bearer(api_partner)
        )

        assert response.status_code == status.HTTP_200_OK
        assert [order["id"] for order in response.json()] == [placed["id"]]

    def test_offline_partner_rejected(self, test_client: TestClient, seed_user) -> None:
        offline = seed_user(UserRole.DELIVERY_PARTNER, is_verified=True)

        response = test_client.get(f"{PARTNERS_URL}/available-orders", headers=bearer(offline))

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["details"]["is_online"] is False


# ============================================================================
# Earnings and Verification Tests
# ============================================================================


class TestEarnings:
    """Test POST /partners/update-earnings."""

    def test_add_then_withdraw(self, test_client: TestClient, api_partner) -> None:
        added = test_client.post(
            f"{PARTNERS_URL}/update-earnings",
            json={"amount": "150.00"},
            headers=bearer(api_partner),
        )
        withdrawn = test_client.post(
            f"{PARTNERS_URL}/update-earnings",
            json={"amount": "50.00", "mode": "withdraw"},
            headers=bearer(api_partner),
        )

        assert added.status_code == status.HTTP_200_OK
        assert Decimal(withdrawn.json()["total"]) == Decimal("150.00")
        assert Decimal(withdrawn.json()["pending"]) == Decimal("100.00")

    def test_overdraw_rejected(self, test_client: TestClient, api_partner) -> None:
        response = test_client.post(
            f"{PARTNERS_URL}/update-earnings",
            json={"amount": "10.00", "mode": "withdraw"},
            headers=bearer(api_partner),
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["error"] == "INSUFFICIENT_FUNDS"

    @pytest.mark.parametrize("body", [{"amount": "0"}, {"amount": "5", "mode": "borrow"}])
    def test_invalid_request(self, test_client: TestClient, api_partner, body: dict) -> None:
        response = test_client.post(
            f"{PARTNERS_URL}/update-earnings", json=body, headers=bearer(api_partner)
        )
        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY


class TestVerify:
    """Test POST /partners/{id}/verify."""

    def test_admin_verifies(self, test_client: TestClient, seed_user) -> None:
        admin = seed_user(UserRole.ADMIN)
        partner = seed_user(UserRole.DELIVERY_PARTNER)

        response = test_client.post(
            f"{PARTNERS_URL}/{partner.id}/verify",
            json={"verified": True},
            headers=bearer(admin),
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["is_verified"] is True

    def test_partner_cannot_self_verify(self, test_client: TestClient, seed_user) -> None:
        partner = seed_user(UserRole.DELIVERY_PARTNER)

        response = test_client.post(
            f"{PARTNERS_URL}/{partner.id}/verify", json={}, headers=bearer(partner)
        )

        assert response.status_code == status.HTTP_403_FORBIDDEN


# ============================================================================
# Location Tests
# ============================================================================


class TestLocationUpdate:
    """Test POST /location/update."""

    def test_update_without_active_orders(self, test_client: TestClient, api_partner) -> None:
        response = test_client.post(
            f"{LOCATION_URL}/update",
            json={"latitude": 28.65, "longitude": 77.15},
            headers=bearer(api_partner),
        )

        assert response.status_code == status.HTTP_200_OK
        body = response.json()
        assert body["latitude"] == 28.65
        assert body["longitude"] == 77.15
        assert body["notified_orders"] == []

    def test_update_extends_route(
        self, test_client: TestClient, picked_up_order: dict, api_partner, api_customer
    ) -> None:
        response = test_client.post(
            f"{LOCATION_URL}/update",
            json={"latitude": 28.65, "longitude": 77.15},
            headers=bearer(api_partner),
        )

        assert response.json()["notified_orders"] == [picked_up_order["id"]]
        order = test_client.get(
            f"/api/v1/orders/{picked_up_order['id']}", headers=bearer(api_customer)
        ).json()
        assert order["current_location"]["latitude"] == 28.65
        assert len(order["route"]) == 1

    def test_out_of_range_coordinates(self, test_client: TestClient, api_partner) -> None:
        response = test_client.post(
            f"{LOCATION_URL}/update",
            json={"latitude": 91, "longitude": 77.15},
            headers=bearer(api_partner),
        )
        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY

    def test_customer_forbidden(self, test_client: TestClient, api_customer) -> None:
        response = test_client.post(
            f"{LOCATION_URL}/update",
            json={"latitude": 28.65, "longitude": 77.15},
            headers=bearer(api_customer),
        )
        assert response.status_code == status.HTTP_403_FORBIDDEN


class TestNearbyPartners:
    """Test GET /location/nearby-partners."""

    def test_lists_partner_with_estimates(
        self, test_client: TestClient, api_partner, api_customer
    ) -> None:
        response = test_client.get(
            f"{LOCATION_URL}/nearby-partners",
            params={**RESTAURANT_COORDINATES, "radius": 5},
            headers=bearer(api_customer),
        )

        assert response.status_code == status.HTTP_200_OK
        body = response.json()
        assert body["count"] == 1
        assert body["radius_km"] == 5
        nearby = body["partners"][0]
        assert nearby["id"] == str(api_partner.id)
        assert nearby["distance_km"] == 0.0
        assert nearby["eta_minutes"] == geo.estimate_travel_minutes(0.0, "bike")
        assert "email" not in nearby

    def test_excludes_unverified_partner(
        self, test_client: TestClient, seed_user, api_customer
    ) -> None:
        seed_user(
            UserRole.DELIVERY_PARTNER,
            is_online=True,
            current_latitude=RESTAURANT_COORDINATES["latitude"],
            current_longitude=RESTAURANT_COORDINATES["longitude"],
        )

        body = test_client.get(
            f"{LOCATION_URL}/nearby-partners",
            params=RESTAURANT_COORDINATES,
            headers=bearer(api_customer),
        ).json()

        assert body["count"] == 0

    def test_requires_authentication(self, test_client: TestClient) -> None:
        response = test_client.get(
            f"{LOCATION_URL}/nearby-partners", params=RESTAURANT_COORDINATES
        )
        assert response.status_code == status.HTTP_401_UNAUTHORIZED
