"""Tests for JWT authentication middleware."""

from datetime import UTC, datetime
from unittest.mock import MagicMock
from uuid import uuid4

import jwt
import pytest
from fastapi import Depends, FastAPI, HTTPException
from fastapi.testclient import TestClient

from loyalty.config import JwtSettings
from loyalty.core.auth.jwt import JwtService
from loyalty.core.auth.types import RoleType
from loyalty.entrypoints.api.middleware.jwt_auth import (
    JwtContext,
    RequireAdmin,
    optional_jwt,
    require_roles,
    verify_jwt,
)


def _request(jwt_service: JwtService) -> MagicMock:
    request = MagicMock()
    request.app.state.jwt_service = jwt_service
    return request


def _context(*roles: RoleType) -> JwtContext:
    return JwtContext(
        user_id=str(uuid4()),
        username="alice",
        email="alice@example.com",
        roles=frozenset(roles),
    )


class TestVerifyJwt:
    """Test JWT verification dependency."""

    async def test_valid_token(self, jwt_service: JwtService) -> None:
        """Should return JwtContext for valid token."""
        user_id = uuid4()
        token = jwt_service.generate_token(
            user_id, "alice", "alice@example.com", [RoleType.STAFF]
        )
        request = _request(jwt_service)

        context = await verify_jwt(request, f"Bearer {token}")

        assert context.user_uuid == user_id
        assert context.roles == {RoleType.STAFF}
        assert request.state.user == context

    async def test_missing_token(self, jwt_service: JwtService) -> None:
        """Should raise 401 for missing token."""
        with pytest.raises(HTTPException) as exc_info:
            await verify_jwt(_request(jwt_service), None)

        assert exc_info.value.status_code == 401

    async def test_non_bearer_header(self, jwt_service: JwtService) -> None:
        """Should raise 401 for other schemes."""
        with pytest.raises(HTTPException) as exc_info:
            await verify_jwt(_request(jwt_service), "Basic dXNlcjpwYXNz")

        assert exc_info.value.status_code == 401

    async def test_invalid_token(self, jwt_service: JwtService) -> None:
        """Should raise 401 for invalid token."""
        with pytest.raises(HTTPException) as exc_info:
            await verify_jwt(_request(jwt_service), "Bearer invalid.token.here")

        assert exc_info.value.status_code == 401
        assert exc_info.value.detail == "Invalid token"

    async def test_expired_token(
        self, jwt_service: JwtService, jwt_settings: JwtSettings
    ) -> None:
        """Should raise 401 with an expiry message."""
        now = int(datetime.now(UTC).timestamp())
        token = jwt.encode(
            {
                "sub": str(uuid4()),
                "username": "alice",
                "email": "alice@example.com",
                "roles": [],
                "iat": now - 120,
                "exp": now - 60,
                "iss": jwt_settings.issuer,
                "aud": jwt_settings.audience,
            },
            jwt_settings.secret,
            algorithm="HS256",
        )

        with pytest.raises(HTTPException) as exc_info:
            await verify_jwt(_request(jwt_service), f"Bearer {token}")

        assert exc_info.value.detail == "Token has expired"

    async def test_optional_jwt(self, jwt_service: JwtService) -> None:
        """Missing or bad tokens yield None instead of 401."""
        request = _request(jwt_service)

        assert await optional_jwt(request, None) is None
        assert await optional_jwt(request, "Bearer nope") is None


class TestRequireRoles:
    """Test role requirement dependency."""

    async def test_allows_any_listed_role(self) -> None:
        """Should allow when the user holds one of the roles."""
        context = _context(RoleType.CUSTOMER, RoleType.STORE_MANAGER)

        checker = require_roles(RoleType.STORE_MANAGER, RoleType.ADMIN)
        result = await checker(context)

        assert result == context

    async def test_blocks_missing_role(self) -> None:
        """Should raise 403 when no listed role is held."""
        checker = require_roles(RoleType.ADMIN)

        with pytest.raises(HTTPException) as exc_info:
            await checker(_context(RoleType.CUSTOMER))

        assert exc_info.value.status_code == 403

    def test_requires_at_least_one_role(self) -> None:
        """An empty role list is a programming error."""
        with pytest.raises(ValueError):
            require_roles()


class TestAppIntegration:
    """Test the dependencies mounted on a FastAPI app."""

    @pytest.fixture
    def client(self, jwt_service: JwtService) -> TestClient:
        """Return a client for an app with one admin-only route."""
        app = FastAPI()
        app.state.jwt_service = jwt_service

        @app.get("/me")
        async def me(auth: JwtContext = Depends(verify_jwt)) -> dict:  # noqa: B008
            return {"username": auth.username}

        @app.get("/admin")
        async def admin(auth: RequireAdmin) -> dict:
            return {"user_id": auth.user_id}

        return TestClient(app)

    def test_authenticated_route(self, client: TestClient, jwt_service: JwtService) -> None:
        """Valid bearer tokens reach the handler."""
        token = jwt_service.generate_token(uuid4(), "alice", "alice@example.com", ["customer"])

        response = client.get("/me", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 200
        assert response.json() == {"username": "alice"}

    def test_missing_header(self, client: TestClient) -> None:
        """Requests without a token get 401 and a Bearer challenge."""
        response = client.get("/me")

        assert response.status_code == 401
        assert response.headers["www-authenticate"] == "Bearer"

    def test_admin_route_forbidden_for_customer(
        self, client: TestClient, jwt_service: JwtService
    ) -> None:
        """Customers get 403 on admin routes."""
        token = jwt_service.generate_token(uuid4(), "alice", "alice@example.com", ["customer"])

        response = client.get("/admin", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 403

    def test_admin_route_allowed(self, client: TestClient, jwt_service: JwtService) -> None:
        """Admins reach admin routes."""
        token = jwt_service.generate_token(uuid4(), "root", "root@example.com", ["admin"])

        response = client.get("/admin", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 200
