"""Tests for role assignment."""

from uuid import uuid4

import pytest

from loyalty.adapters.auth.memory import InMemoryAuthRepository
from loyalty.core.auth.results import AuthErrorKind
from loyalty.core.auth.roles import RoleService, parse_roles
from loyalty.core.auth.types import DEFAULT_ROLE, RoleType, User


@pytest.fixture
def service(repo: InMemoryAuthRepository) -> RoleService:
    """Return a RoleService over the in-memory store."""
    return RoleService(repo)


class TestParseRoles:
    """Test role name parsing."""

    def test_accepts_values_and_names(self) -> None:
        """Both 'store_manager' and 'StoreManager' resolve."""
        roles, unknown = parse_roles(["store_manager", "BrandManager", RoleType.ADMIN])
        assert roles == {RoleType.STORE_MANAGER, RoleType.BRAND_MANAGER, RoleType.ADMIN}
        assert unknown == []

    def test_reports_unknown(self) -> None:
        """Unrecognized names are returned separately."""
        roles, unknown = parse_roles(["staff", "wizard"])
        assert roles == {RoleType.STAFF}
        assert unknown == ["wizard"]


class TestAddRoles:
    """Test granting roles."""

    async def test_adds_new_roles(
        self, service: RoleService, repo: InMemoryAuthRepository, active_user: User
    ) -> None:
        """Should grant roles the user lacks."""
        result = await service.add_roles(active_user.id, [RoleType.STAFF, RoleType.ADMIN])

        assert result.success
        assert result.data is not None
        assert result.data.added == {RoleType.STAFF, RoleType.ADMIN}
        assert result.data.current == {RoleType.CUSTOMER, RoleType.STAFF, RoleType.ADMIN}
        user = await repo.get_user_by_id(active_user.id)
        assert user is not None
        assert user.roles == result.data.current

    async def test_adding_held_role_is_idempotent(
        self, service: RoleService, active_user: User
    ) -> None:
        """Adding a held role changes nothing."""
        result = await service.add_roles(active_user.id, [RoleType.CUSTOMER])

        assert result.success
        assert result.data is not None
        assert not result.data.changed
        assert result.data.current == {RoleType.CUSTOMER}

    async def test_unknown_role(self, service: RoleService, active_user: User) -> None:
        """Unknown role names fail validation."""
        result = await service.add_roles(active_user.id, ["wizard"])

        assert result.error == AuthErrorKind.VALIDATION
        assert result.details == ["wizard"]

    async def test_unknown_user(self, service: RoleService) -> None:
        """Unknown user is NOT_FOUND."""
        result = await service.add_roles(uuid4(), [RoleType.STAFF])
        assert result.error == AuthErrorKind.NOT_FOUND


class TestRemoveRoles:
    """Test revoking roles."""

    async def test_removes_held_roles(
        self, service: RoleService, repo: InMemoryAuthRepository, active_user: User
    ) -> None:
        """Should revoke held roles and ignore the rest."""
        await service.add_roles(active_user.id, [RoleType.STAFF])

        result = await service.remove_roles(active_user.id, [RoleType.STAFF, RoleType.ADMIN])

        assert result.data is not None
        assert result.data.removed == {RoleType.STAFF}
        assert result.data.current == {RoleType.CUSTOMER}

    async def test_last_role_falls_back_to_customer(
        self, service: RoleService, repo: InMemoryAuthRepository, active_user: User
    ) -> None:
        """Removing every role leaves the customer role."""
        await service.add_roles(active_user.id, [RoleType.ADMIN])
        await service.remove_roles(active_user.id, [RoleType.CUSTOMER])

        result = await service.remove_roles(active_user.id, [RoleType.ADMIN])

        assert result.data is not None
        assert result.data.current == {DEFAULT_ROLE}
        user = await repo.get_user_by_id(active_user.id)
        assert user is not None
        assert user.roles == {DEFAULT_ROLE}

    async def test_cannot_remove_only_customer_role(
        self, service: RoleService, active_user: User
    ) -> None:
        """The role set never becomes empty."""
        result = await service.remove_roles(active_user.id, [RoleType.CUSTOMER])

        assert result.success
        assert result.data is not None
        assert result.data.current == {RoleType.CUSTOMER}
        assert not result.data.removed

    async def test_removing_admin_again_is_noop(
        self, service: RoleService, repo: InMemoryAuthRepository, active_user: User
    ) -> None:
        """Revoking a role that is no longer held succeeds and changes nothing."""
        await service.add_roles(active_user.id, [RoleType.ADMIN])
        first = await service.remove_roles(active_user.id, [RoleType.ADMIN])
        assert first.data is not None
        assert first.data.removed == {RoleType.ADMIN}

        result = await service.remove_roles(active_user.id, [RoleType.ADMIN])

        assert result.success
        assert result.data is not None
        assert not result.data.removed
        assert result.data.current == {RoleType.CUSTOMER}
        user = await repo.get_user_by_id(active_user.id)
        assert user is not None
        assert user.roles == {RoleType.CUSTOMER}

    async def test_add_then_remove_restores_set(
        self, service: RoleService, active_user: User
    ) -> None:
        """Granting then revoking a role returns to the original set."""
        before = (await service.get_roles(active_user.id)).data
        assert before is not None

        await service.add_roles(active_user.id, [RoleType.BRAND_MANAGER])
        await service.remove_roles(active_user.id, [RoleType.BRAND_MANAGER])

        after = (await service.get_roles(active_user.id)).data
        assert after is not None
        assert after.current == before.current

    async def test_unknown_user(self, service: RoleService) -> None:
        """Unknown user is NOT_FOUND."""
        result = await service.remove_roles(uuid4(), [RoleType.STAFF])
        assert result.error == AuthErrorKind.NOT_FOUND
