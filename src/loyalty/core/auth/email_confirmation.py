"""Email confirmation flow: prove address ownership, activate the account."""

from uuid import UUID

import structlog

from loyalty.config import TokenSettings
from loyalty.core.auth.notifications import dispatch, email_confirmation_email
from loyalty.core.auth.repository import AuthRepository
from loyalty.core.auth.results import AuthErrorKind, OperationResult
from loyalty.core.auth.tokens import (
    generate_secure_token,
    get_token_expiry,
    hash_token,
    is_token_expired,
)
from loyalty.core.auth.types import TokenPurpose, User, UserStatus
from loyalty.core.interfaces import EmailSender

logger = structlog.get_logger()


class EmailConfirmationService:
    """Issues and consumes single-use email confirmation tokens."""

    def __init__(
        self,
        repo: AuthRepository,
        email_sender: EmailSender,
        settings: TokenSettings,
    ) -> None:
        self._repo = repo
        self._email = email_sender
        self._settings = settings

    async def issue_token(self, user: User) -> str:
        """Store a fresh confirmation token for the user and return its plaintext.

        Earlier unused tokens are invalidated. Callers that need this to be
        atomic with other writes (registration) run it inside their own
        transaction; the email is sent separately with `send_confirmation`.
        """
        token = generate_secure_token()
        async with self._repo.transaction():
            await self._repo.invalidate_user_tokens(TokenPurpose.EMAIL_CONFIRMATION, user.id)
            await self._repo.create_token(
                TokenPurpose.EMAIL_CONFIRMATION,
                user_id=user.id,
                token_hash=hash_token(token),
                expires_at=get_token_expiry(self._settings.email_confirmation_ttl),
            )
        logger.info("email_confirmation_token_issued", user_id=str(user.id))
        return token

    async def send_confirmation(self, user: User, token: str) -> bool:
        """Email the confirmation link. Delivery failures are logged only."""
        return await dispatch(
            self._email,
            email_confirmation_email(user.email, user.id, token, self._settings.frontend_url),
            "email_confirmation",
            user_id=str(user.id),
        )

    async def request_confirmation(self, user_id: UUID) -> OperationResult[None]:
        """Issue and send a new confirmation link.

        Args:
            user_id: Account to confirm.

        Returns:
            NOT_FOUND for an unknown user; success otherwise, including the
            no-op case of an already confirmed address or active account.
        """
        user = await self._repo.get_user_by_id(user_id)
        if user is None:
            return OperationResult.fail(AuthErrorKind.NOT_FOUND, "User not found.")

        if not _awaiting_confirmation(user):
            logger.info("email_already_confirmed", user_id=str(user.id))
            return OperationResult.ok()

        token = await self.issue_token(user)
        await self.send_confirmation(user, token)
        return OperationResult.ok()

    async def request_confirmation_by_email(self, email: str) -> OperationResult[None]:
        """Resend the confirmation link to an address.

        For security, this always succeeds (doesn't reveal if the account
        exists or is already confirmed). Pending accounts can't sign in, so
        the address is the only handle their owner has.

        Args:
            email: Address the account registered with.

        Returns:
            A successful result in every non-fatal case.
        """
        user = await self._repo.get_user_by_email(email.strip().lower())
        if user is None:
            # Silently succeed - don't reveal if the account exists
            logger.info("email_confirmation_requested_unknown_account")
            return OperationResult.ok()

        if not _awaiting_confirmation(user):
            logger.info("email_confirmation_requested_not_needed", user_id=str(user.id))
            return OperationResult.ok()

        token = await self.issue_token(user)
        await self.send_confirmation(user, token)
        return OperationResult.ok()

    async def confirm_email(self, user_id: UUID, token: str) -> OperationResult[None]:
        """Confirm the user's email address and activate a pending account.

        Confirming an address that is already confirmed, or an account that
        is already active, is a no-op success.

        Args:
            user_id: Account the link was issued to.
            token: Plaintext token from the link.

        Returns:
            Success, or a failure with the generic token message.
        """
        async with self._repo.transaction():
            user = await self._repo.get_user_by_id(user_id, for_update=True)
            if user is None:
                logger.warning("email_confirmation_user_not_found", user_id=str(user_id))
                return OperationResult.token_failure(AuthErrorKind.NOT_FOUND)

            if not _awaiting_confirmation(user):
                # Active accounts are left as they are; the token is not checked or spent
                logger.info(
                    "email_already_confirmed",
                    user_id=str(user.id),
                    is_email_confirmed=user.is_email_confirmed,
                )
                return OperationResult.ok()

            record = await self._repo.get_token(
                TokenPurpose.EMAIL_CONFIRMATION, hash_token(token), for_update=True
            )
            if record is None or record.user_id != user.id:
                logger.warning("email_confirmation_invalid_token", user_id=str(user.id))
                return OperationResult.token_failure(AuthErrorKind.NOT_FOUND)

            if is_token_expired(record.expires_at):
                logger.warning("email_confirmation_token_expired", token_id=str(record.id))
                return OperationResult.token_failure(AuthErrorKind.EXPIRED)

            if record.is_used:
                logger.warning("email_confirmation_token_already_used", token_id=str(record.id))
                return OperationResult.token_failure(AuthErrorKind.ALREADY_USED)

            if not await self._repo.consume_token(TokenPurpose.EMAIL_CONFIRMATION, record.id):
                logger.warning("email_confirmation_token_already_used", token_id=str(record.id))
                return OperationResult.token_failure(AuthErrorKind.ALREADY_USED)

            # Suspended or deactivated accounts stay that way
            status = UserStatus.ACTIVE if user.status == UserStatus.PENDING else None
            await self._repo.update_user(user.id, is_email_confirmed=True, status=status)

        logger.info("email_confirmed", user_id=str(user.id))
        return OperationResult.ok()


def _awaiting_confirmation(user: User) -> bool:
    return not user.is_email_confirmed and not user.is_active
