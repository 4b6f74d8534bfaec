"""
Integration tests for user account endpoints.

Registration, login and profile lookups through the HTTP API with the
in-memory storage backend.
"""

import pytest
from fastapi import status
from fastapi.testclient import TestClient

from conftest import bearer, build_user
from delivery_tracker.core.security import identity_from_token
from delivery_tracker.database.models.user import UserRole

USERS_URL = "/api/v1/users"


@pytest.fixture
def registration() -> dict:
    return {
        "name": "Ravi Kumar",
        "email": "ravi@example.com",
        "phone": "+919800000001",
        "password": "pass1234",
        "role": "delivery_partner",
        "vehicle_type": "bike",
        "license_number": "DL-0420110012345",
        "vehicle_number": "DL01AB1234",
    }


class TestRegister:
    """Test account registration."""

    def test_register_returns_token(self, test_client: TestClient, registration: dict) -> None:
        response = test_client.post(USERS_URL, json=registration)

        assert response.status_code == status.HTTP_201_CREATED
        body = response.json()
        assert body["token_type"] == "bearer"
        assert body["expires_in"] > 0
        assert body["user"]["email"] == "ravi@example.com"
        assert body["user"]["role"] == "delivery_partner"
        assert body["user"]["is_verified"] is False
        assert "password" not in body["user"]
        assert "password_hash" not in body["user"]

        identity = identity_from_token(body["access_token"])
        assert str(identity.user_id) == body["user"]["id"]
        assert identity.role == UserRole.DELIVERY_PARTNER

    def test_duplicate_email_conflicts(self, test_client: TestClient, registration: dict) -> None:
        test_client.post(USERS_URL, json=registration)
        registration["phone"] = "+919800000009"

        response = test_client.post(USERS_URL, json=registration)

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.json()["error"] == "CONFLICT"
        assert response.json()["details"]["field"] == "email"

    def test_admin_self_registration_rejected(
        self, test_client: TestClient, registration: dict
    ) -> None:
        registration["role"] = "admin"

        response = test_client.post(USERS_URL, json=registration)

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
        assert response.json()["error"] == "VALIDATION_ERROR"

    @pytest.mark.parametrize(
        "field,value",
        [("email", "not-an-email"), ("password", "123"), ("phone", "12")],
    )
    def test_invalid_fields(
        self, test_client: TestClient, registration: dict, field: str, value: str
    ) -> None:
        registration[field] = value

        response = test_client.post(USERS_URL, json=registration)

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
        fields = [error["field"] for error in response.json()["details"]["errors"]]
        assert f"body.{field}" in fields


class TestLogin:
    """Test credential exchange."""

    def test_login_after_register(self, test_client: TestClient, registration: dict) -> None:
        test_client.post(USERS_URL, json=registration)

        response = test_client.post(
            f"{USERS_URL}/login",
            json={"email": "RAVI@example.com", "password": "pass1234"},
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["user"]["email"] == "ravi@example.com"

    def test_wrong_password(self, test_client: TestClient, registration: dict) -> None:
        test_client.post(USERS_URL, json=registration)

        response = test_client.post(
            f"{USERS_URL}/login",
            json={"email": "ravi@example.com", "password": "wrong-pass"},
        )

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.headers["WWW-Authenticate"] == "Bearer"


class TestMe:
    """Test the caller profile endpoint."""

    def test_me(self, test_client: TestClient, seed_user) -> None:
        user = seed_user(UserRole.CUSTOMER, name="Asha Rao")

        response = test_client.get(f"{USERS_URL}/me", headers=bearer(user))

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["name"] == "Asha Rao"

    def test_me_requires_token(self, test_client: TestClient) -> None:
        response = test_client.get(f"{USERS_URL}/me")
        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    def test_me_rejects_garbage_token(self, test_client: TestClient) -> None:
        response = test_client.get(
            f"{USERS_URL}/me", headers={"Authorization": "Bearer not-a-token"}
        )
        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    def test_deleted_user_not_found(self, test_client: TestClient) -> None:
        ghost = build_user(UserRole.CUSTOMER)

        response = test_client.get(f"{USERS_URL}/me", headers=bearer(ghost))

        assert response.status_code == status.HTTP_404_NOT_FOUND
