"""Password reset flow: request a link, then spend it once."""

import structlog

from loyalty.config import TokenSettings
from loyalty.core.auth.notifications import dispatch, password_reset_email
from loyalty.core.auth.password import hash_password, password_policy_errors
from loyalty.core.auth.repository import AuthRepository
from loyalty.core.auth.results import AuthErrorKind, OperationResult
from loyalty.core.auth.tokens import (
    generate_secure_token,
    get_token_expiry,
    hash_token,
    is_token_expired,
)
from loyalty.core.auth.types import AuthIdentifierType, TokenPurpose, User
from loyalty.core.interfaces import EmailSender

logger = structlog.get_logger()


class PasswordResetService:
    """Issues and consumes single-use password reset tokens."""

    def __init__(
        self,
        repo: AuthRepository,
        email_sender: EmailSender,
        settings: TokenSettings,
    ) -> None:
        """Initialize the service.

        Args:
            repo: Auth repository for database operations.
            email_sender: Delivers the reset link.
            settings: Token lifetimes and the frontend base URL.
        """
        self._repo = repo
        self._email = email_sender
        self._settings = settings

    async def request_reset(
        self,
        identifier: str,
        identifier_type: AuthIdentifierType = AuthIdentifierType.EMAIL,
    ) -> OperationResult[None]:
        """Request a password reset.

        For security, this always succeeds (doesn't reveal if the account
        exists). If it does and is active, any earlier unused reset tokens
        are invalidated, a new one is stored, and the link is emailed.

        Args:
            identifier: Email address or username.
            identifier_type: Which of the two `identifier` is.

        Returns:
            A successful result in every non-fatal case.
        """
        user = await self._find_user(identifier, identifier_type)
        if user is None:
            # Silently succeed - don't reveal if the account exists
            logger.info(
                "password_reset_requested_unknown_account",
                identifier_type=identifier_type.value,
            )
            return OperationResult.ok()

        if not user.is_active:
            # Silently succeed - don't reveal account status
            logger.info("password_reset_requested_inactive_user", user_id=str(user.id))
            return OperationResult.ok()

        token = generate_secure_token()
        async with self._repo.transaction():
            superseded = await self._repo.invalidate_user_tokens(
                TokenPurpose.PASSWORD_RESET, user.id
            )
            await self._repo.create_token(
                TokenPurpose.PASSWORD_RESET,
                user_id=user.id,
                token_hash=hash_token(token),
                expires_at=get_token_expiry(self._settings.password_reset_ttl),
            )

        logger.info("password_reset_token_issued", user_id=str(user.id), superseded=superseded)
        await dispatch(
            self._email,
            password_reset_email(user.email, token, self._settings.frontend_url),
            "password_reset",
            user_id=str(user.id),
        )
        return OperationResult.ok()

    async def consume_reset(self, token: str, new_password: str) -> OperationResult[None]:
        """Reset a password with a valid token.

        The token row is locked, checked, flipped to used and the new hash
        stored in one transaction, so two concurrent attempts with the same
        token cannot both succeed.

        Args:
            token: The plaintext token from the reset link.
            new_password: The new password to set.

        Returns:
            Success, or a failure whose message never says which token check
            failed.
        """
        policy_errors = password_policy_errors(new_password)
        if policy_errors:
            return OperationResult.fail(
                AuthErrorKind.VALIDATION, "Password does not meet requirements.", policy_errors
            )

        password_hash = hash_password(new_password)

        async with self._repo.transaction():
            record = await self._repo.get_token(
                TokenPurpose.PASSWORD_RESET, hash_token(token), for_update=True
            )
            if record is None:
                logger.warning("password_reset_invalid_token")
                return OperationResult.token_failure(AuthErrorKind.NOT_FOUND)

            if is_token_expired(record.expires_at):
                logger.warning("password_reset_token_expired", token_id=str(record.id))
                return OperationResult.token_failure(AuthErrorKind.EXPIRED)

            if record.is_used:
                logger.warning("password_reset_token_already_used", token_id=str(record.id))
                return OperationResult.token_failure(AuthErrorKind.ALREADY_USED)

            user = await self._repo.get_user_by_id(record.user_id, for_update=True)
            if user is None or not user.is_active:
                logger.warning("password_reset_user_not_found", user_id=str(record.user_id))
                return OperationResult.token_failure(AuthErrorKind.NOT_FOUND)

            if not await self._repo.consume_token(TokenPurpose.PASSWORD_RESET, record.id):
                # Lost the race to a concurrent consumer
                logger.warning("password_reset_token_already_used", token_id=str(record.id))
                return OperationResult.token_failure(AuthErrorKind.ALREADY_USED)

            await self._repo.update_user(user.id, password_hash=password_hash)

        logger.info("password_reset_successful", user_id=str(user.id))
        return OperationResult.ok()

    async def _find_user(self, identifier: str, identifier_type: AuthIdentifierType) -> User | None:
        if identifier_type == AuthIdentifierType.USERNAME:
            return await self._repo.get_user_by_username(identifier.strip())
        return await self._repo.get_user_by_email(identifier.strip().lower())
