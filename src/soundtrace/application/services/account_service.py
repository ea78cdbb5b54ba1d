"""Linking and unlinking Spotify accounts."""

import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

import httpx

from soundtrace.application.services.token_manager import SessionScope
from soundtrace.domain.dtos import SpotifyProfile, TokenResponse
from soundtrace.domain.entities import LinkedAccount
from soundtrace.domain.exceptions import (
    EntityNotFoundException,
    ExternalServiceException,
)
from soundtrace.domain.ports import ISpotifyClient
from soundtrace.infrastructure.persistence.repositories import (
    LinkedAccountRepository,
    UserRepository,
)

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(UTC)


class AccountService:
    """Creates, updates and removes the linked Spotify account of a user.

    Unlike the gateway, the linking flow is user-initiated, so upstream failures
    are raised (ExternalServiceException) instead of swallowed.
    """

    def __init__(
        self,
        spotify_client: ISpotifyClient,
        session_scope: SessionScope,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._client = spotify_client
        self._session_scope = session_scope
        self._clock = clock

    async def get_account(self, user_id: str) -> LinkedAccount | None:
        async with self._session_scope() as session:
            return await LinkedAccountRepository(session).get_by_user_id(user_id)

    async def has_linked_account(self, user_id: str) -> bool:
        account = await self.get_account(user_id)
        return account is not None and account.is_linked()

    # Hey future me, linking twice is an UPDATE of the existing row (one account per user), so a
    # user who re-authorizes keeps their account id and sync history.
    async def link_account(
        self,
        user_id: str,
        tokens: TokenResponse,
        profile: SpotifyProfile | None = None,
    ) -> LinkedAccount:
        """Create or update the linked account with fresh tokens and profile fields."""
        now = self._clock()
        expires_at = now + timedelta(seconds=tokens.expires_in)

        async with self._session_scope() as session:
            if await UserRepository(session).get_by_id(user_id) is None:
                raise EntityNotFoundException("User", user_id)

            repository = LinkedAccountRepository(session)
            account = await repository.get_by_user_id(user_id)
            is_new = account is None
            if account is None:
                account = LinkedAccount(user_id=user_id, access_token=None, linked_at=now)

            account.update_tokens(tokens.access_token, expires_at, tokens.refresh_token)
            if profile is not None:
                account.spotify_user_id = profile.id
                account.spotify_email = profile.email
                account.display_name = profile.display_name
            account.last_sync_at = now

            if is_new:
                await repository.add(account)
            else:
                await repository.update(account)

        logger.info(
            "account.linked",
            extra={
                "user_id": user_id,
                "spotify_user_id": account.spotify_user_id,
                "created": is_new,
            },
        )
        return account

    async def link_from_authorization_code(self, user_id: str, code: str) -> LinkedAccount:
        """Complete the OAuth flow: exchange the code, load the profile, link the account."""
        try:
            tokens = TokenResponse.from_api(await self._client.exchange_code(code))
            profile = SpotifyProfile.from_api(
                await self._client.get_current_user(tokens.access_token)
            )
        except (httpx.HTTPError, KeyError, ValueError, TypeError) as e:
            logger.error(
                "account.link.failed",
                extra={"user_id": user_id, "error": str(e), "error_type": type(e).__name__},
            )
            raise ExternalServiceException("spotify", f"account linking failed: {e}") from e

        return await self.link_account(user_id, tokens, profile)

    async def update_tokens(
        self,
        user_id: str,
        access_token: str,
        expires_in: int,
        refresh_token: str | None = None,
    ) -> LinkedAccount:
        """Store new tokens for an existing account. A missing refresh token keeps the old one."""
        async with self._session_scope() as session:
            repository = LinkedAccountRepository(session)
            account = await repository.get_by_user_id(user_id)
            if account is None:
                raise EntityNotFoundException("LinkedAccount", user_id)
            account.update_tokens(
                access_token,
                self._clock() + timedelta(seconds=expires_in),
                refresh_token,
            )
            await repository.update(account)
        return account

    # Only the account row goes away. Listening history and documents stay, so re-linking
    # later resumes from the old watermark.
    async def unlink_account(self, user_id: str) -> bool:
        """Remove the linked account. Returns False if the user had none."""
        async with self._session_scope() as session:
            deleted = await LinkedAccountRepository(session).delete_by_user_id(user_id)

        if deleted:
            logger.info("account.unlinked", extra={"user_id": user_id})
        else:
            logger.warning("account.unlink.not_found", extra={"user_id": user_id})
        return deleted

    async def mark_synced(self, user_id: str) -> None:
        """Record the time of the last successful sync."""
        async with self._session_scope() as session:
            repository = LinkedAccountRepository(session)
            account = await repository.get_by_user_id(user_id)
            if account is None:
                return
            account.last_sync_at = self._clock()
            await repository.update(account)
