"""Role assignment for user accounts."""

from collections.abc import Iterable
from dataclasses import dataclass, field
from uuid import UUID

import structlog

from loyalty.core.auth.repository import AuthRepository
from loyalty.core.auth.results import AuthErrorKind, OperationResult
from loyalty.core.auth.types import DEFAULT_ROLE, RoleType

logger = structlog.get_logger()


@dataclass(frozen=True)
class RoleChange:
    """Outcome of a role grant or revocation."""

    user_id: UUID
    current: frozenset[RoleType]
    added: frozenset[RoleType] = field(default_factory=frozenset)
    removed: frozenset[RoleType] = field(default_factory=frozenset)

    @property
    def changed(self) -> bool:
        """Whether the call altered the role set."""
        return bool(self.added or self.removed)


def parse_roles(roles: Iterable[RoleType | str]) -> tuple[frozenset[RoleType], list[str]]:
    """Split requested roles into known roles and the names that matched none."""
    parsed = set()
    unknown = []
    for role in roles:
        try:
            parsed.add(RoleType.parse(role))
        except ValueError:
            unknown.append(str(role))
    return frozenset(parsed), unknown


class RoleService:
    """Grants and revokes roles.

    Role sets never contain duplicates and never become empty: revoking the
    last role leaves the account with the customer role.
    """

    def __init__(self, repo: AuthRepository) -> None:
        self._repo = repo

    async def get_roles(self, user_id: UUID) -> OperationResult[RoleChange]:
        """Return the user's current roles."""
        user = await self._repo.get_user_by_id(user_id)
        if user is None:
            return OperationResult.fail(AuthErrorKind.NOT_FOUND, "User not found.")
        return OperationResult.ok(RoleChange(user_id=user.id, current=user.roles))

    async def add_roles(
        self, user_id: UUID, roles: Iterable[RoleType | str]
    ) -> OperationResult[RoleChange]:
        """Grant roles. Roles the user already holds are ignored.

        Args:
            user_id: Account to modify.
            roles: Roles to grant, as RoleType or role names.

        Returns:
            The roles actually added and the resulting set.
        """
        requested, unknown = parse_roles(roles)
        if unknown:
            return OperationResult.fail(AuthErrorKind.VALIDATION, "Unknown roles.", unknown)

        async with self._repo.transaction():
            user = await self._repo.get_user_by_id(user_id, for_update=True)
            if user is None:
                return OperationResult.fail(AuthErrorKind.NOT_FOUND, "User not found.")

            added = requested - user.roles
            current = user.roles
            if added:
                current = await self._repo.add_user_roles(user.id, added)

        if added:
            logger.info("roles_added", user_id=str(user_id), roles=sorted(r.value for r in added))
        return OperationResult.ok(RoleChange(user_id=user_id, current=current, added=added))

    async def remove_roles(
        self, user_id: UUID, roles: Iterable[RoleType | str]
    ) -> OperationResult[RoleChange]:
        """Revoke roles. Roles the user does not hold are ignored.

        Args:
            user_id: Account to modify.
            roles: Roles to revoke, as RoleType or role names.

        Returns:
            The roles actually removed and the resulting set.
        """
        requested, unknown = parse_roles(roles)
        if unknown:
            return OperationResult.fail(AuthErrorKind.VALIDATION, "Unknown roles.", unknown)

        async with self._repo.transaction():
            user = await self._repo.get_user_by_id(user_id, for_update=True)
            if user is None:
                return OperationResult.fail(AuthErrorKind.NOT_FOUND, "User not found.")

            removed = requested & user.roles
            remaining = user.roles - removed
            if not remaining:
                # Floor: keep the default role rather than leave the set empty
                removed = removed - {DEFAULT_ROLE}
                remaining = frozenset({DEFAULT_ROLE})
                if DEFAULT_ROLE not in user.roles:
                    await self._repo.add_user_roles(user.id, remaining)

            current = user.roles
            if removed:
                current = await self._repo.remove_user_roles(user.id, removed)
            elif remaining != user.roles:
                current = remaining

        if removed:
            logger.info(
                "roles_removed", user_id=str(user_id), roles=sorted(r.value for r in removed)
            )
        return OperationResult.ok(RoleChange(user_id=user_id, current=current, removed=removed))
