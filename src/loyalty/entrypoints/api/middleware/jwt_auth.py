"""JWT authentication middleware."""

from collections.abc import Callable
from dataclasses import dataclass
from typing import Annotated, Any
from uuid import UUID

import structlog
from fastapi import Depends, Header, HTTPException, Request

from loyalty.core.auth.jwt import JwtService
from loyalty.core.auth.types import RoleType
from loyalty.core.exceptions import TokenError, TokenExpiredError

logger = structlog.get_logger()


@dataclass
class JwtContext:
    """Context from a verified JWT token."""

    user_id: str
    username: str
    email: str
    roles: frozenset[RoleType]

    @property
    def user_uuid(self) -> UUID:
        """Get user ID as UUID."""
        return UUID(self.user_id)

    def has_any_role(self, *roles: RoleType) -> bool:
        """Check whether the caller holds at least one of the roles."""
        return bool(self.roles & set(roles))


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=401,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def _known_roles(values: list[str]) -> frozenset[RoleType]:
    roles = set()
    for value in values:
        try:
            roles.add(RoleType.parse(value))
        except ValueError:
            logger.warning("jwt_unknown_role_ignored", role=value)
    return frozenset(roles)


async def verify_jwt(
    request: Request,
    authorization: Annotated[str | None, Header()] = None,
) -> JwtContext:
    """Verify JWT token and return context.

    The JwtService is read from `request.app.state.jwt_service`.

    Args:
        request: The current request.
        authorization: Raw Authorization header.

    Returns:
        JwtContext with user info.

    Raises:
        HTTPException: 401 if token is missing or invalid.
    """
    jwt_service: JwtService = request.app.state.jwt_service

    found, token = jwt_service.try_parse_token_from_auth_header(authorization)
    if not found or token is None:
        raise _unauthorized("Missing authentication token")

    try:
        payload = jwt_service.validate_token(token)
    except TokenExpiredError:
        logger.info("jwt_expired")
        raise _unauthorized("Token has expired") from None
    except TokenError as e:
        logger.warning("jwt_validation_failed", error=str(e))
        raise _unauthorized("Invalid token") from None

    roles = _known_roles(payload.roles)
    context = JwtContext(
        user_id=payload.sub,
        username=payload.username,
        email=payload.email,
        roles=roles,
    )

    # Store in request state for downstream use
    request.state.user = context

    logger.debug("jwt_verified", user_id=context.user_id, roles=sorted(r.value for r in roles))

    return context


def require_roles(*roles: RoleType) -> Callable[..., Any]:
    """Dependency that admits callers holding any of the given roles.

    Usage:
        @router.post("/stores")
        async def create_store(
            auth: Annotated[JwtContext, Depends(require_roles(RoleType.ADMIN))],
        ):
            ...

    Args:
        roles: Accepted roles.

    Returns:
        Dependency function that validates roles.
    """
    if not roles:
        raise ValueError("require_roles needs at least one role")

    async def role_checker(
        auth: Annotated[JwtContext, Depends(verify_jwt)],
    ) -> JwtContext:
        if not auth.has_any_role(*roles):
            logger.info("jwt_role_denied", user_id=auth.user_id)
            raise HTTPException(
                status_code=403,
                detail=f"One of roles {sorted(r.value for r in roles)} required",
            )
        return auth

    return role_checker


# Common role dependencies for convenience
RequireStaff = Annotated[
    JwtContext,
    Depends(
        require_roles(
            RoleType.STAFF, RoleType.STORE_MANAGER, RoleType.BRAND_MANAGER, RoleType.ADMIN
        )
    ),
]
RequireAdmin = Annotated[JwtContext, Depends(require_roles(RoleType.ADMIN))]


# Optional JWT - returns None if no token provided
async def optional_jwt(
    request: Request,
    authorization: Annotated[str | None, Header()] = None,
) -> JwtContext | None:
    """Optionally verify JWT, returning None if not provided."""
    if not authorization:
        return None

    try:
        return await verify_jwt(request, authorization)
    except HTTPException:
        return None
