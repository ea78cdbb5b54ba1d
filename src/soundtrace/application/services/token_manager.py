"""Token manager - owns the OAuth token lifecycle of linked Spotify accounts.

Hey future me - this is THE place that decides whether a stored access token is still usable and
refreshes it when it isn't. Everything that talks to Spotify on behalf of a user (gateway, sync,
analytics) asks this class for a token and treats None as "user unreachable this cycle".

Two entry points trigger refreshes:
- get_valid_access_token(): demand-driven, right before an API call
- refresh_expiring(): the proactive sweep run by TokenRefreshWorker

Both go through _refresh(), which holds a per-account asyncio.Lock and re-reads the account after
acquiring it. Spotify may rotate refresh tokens, so two concurrent exchanges of the same refresh
token can invalidate each other. The lock makes the second caller see the first caller's result.
"""

import asyncio
import logging
import weakref
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from datetime import UTC, datetime, timedelta

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from soundtrace.config.settings import SpotifySettings
from soundtrace.domain.dtos import TokenResponse
from soundtrace.domain.entities import LinkedAccount
from soundtrace.domain.exceptions import TokenRefreshException
from soundtrace.domain.ports import ISpotifyClient
from soundtrace.infrastructure.persistence.repositories import LinkedAccountRepository

logger = logging.getLogger(__name__)

SessionScope = Callable[[], AbstractAsyncContextManager[AsyncSession]]


def _utc_now() -> datetime:
    return datetime.now(UTC)


class TokenManager:
    """Hands out valid access tokens and refreshes them when needed."""

    def __init__(
        self,
        spotify_client: ISpotifyClient,
        session_scope: SessionScope,
        settings: SpotifySettings,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        """Initialize token manager.

        Args:
            spotify_client: HTTP client used for the refresh-token exchange
            session_scope: Factory returning a transactional session context
                (Database.session_scope)
            settings: Spotify settings (refresh buffer, sweep window)
            clock: Returns "now" as an aware UTC datetime
        """
        self._client = spotify_client
        self._session_scope = session_scope
        self._settings = settings
        self._clock = clock
        # Weak values: a lock lives only while someone holds or waits on it
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    @property
    def buffer_seconds(self) -> int:
        return self._settings.token_refresh_buffer_seconds

    def _lock_for(self, account_id: str) -> asyncio.Lock:
        # No await between lookup and insert, so two callers in one tick share the same lock
        lock = self._locks.get(account_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[account_id] = lock
        return lock

    async def _load_account(self, user_id: str) -> LinkedAccount | None:
        async with self._session_scope() as session:
            return await LinkedAccountRepository(session).get_by_user_id(user_id)

    async def get_valid_access_token(self, user_id: str) -> str | None:
        """Get a usable access token for the user, refreshing it if it is about to expire.

        Never raises for upstream or token problems. Returns None when:
        - the user has no linked account (or it holds no access token)
        - the token is expired and there's no refresh token
        - the refresh exchange failed (network, revoked grant, malformed response)
        """
        account = await self._load_account(user_id)
        if account is None or not account.is_linked():
            logger.debug("token.no_linked_account", extra={"user_id": user_id})
            return None

        if not account.is_expired(self._clock(), self.buffer_seconds):
            return account.access_token

        return await self._refresh(
            account,
            still_needed=lambda a: a.is_expired(self._clock(), self.buffer_seconds),
        )

    async def has_valid_account(self, user_id: str) -> bool:
        """Check if the user's linked account can produce a token without re-linking.

        True when a token is present and either still valid or refreshable.
        """
        account = await self._load_account(user_id)
        if account is None or not account.is_linked():
            return False
        return bool(account.refresh_token) or not account.is_expired(
            self._clock(), self.buffer_seconds
        )

    # Listen up, this is the proactive sweep. It only picks accounts that HAVE a refresh token
    # (list_expiring_before filters on that), refreshes them one after the other and reports
    # (refreshed, total) so the worker can log "3/4 refreshed".
    async def refresh_expiring(self, window: timedelta | None = None) -> tuple[int, int]:
        """Refresh every token that expires within the window.

        Args:
            window: Look-ahead window, defaults to proactive_refresh_window_minutes

        Returns:
            Tuple of (refreshed, total candidates)
        """
        if window is None:
            window = timedelta(minutes=self._settings.proactive_refresh_window_minutes)

        cutoff = self._clock() + window
        async with self._session_scope() as session:
            accounts = await LinkedAccountRepository(session).list_expiring_before(cutoff)

        refreshed = 0
        for account in accounts:
            token = await self._refresh(
                account,
                still_needed=lambda a: a.expires_within(self._clock(), window),
            )
            if token is not None:
                refreshed += 1

        logger.info(
            "token.sweep.completed",
            extra={"refreshed": refreshed, "total": len(accounts)},
        )
        return refreshed, len(accounts)

    async def _refresh(
        self,
        account: LinkedAccount,
        still_needed: Callable[[LinkedAccount], bool],
    ) -> str | None:
        async with self._lock_for(account.id):
            # Re-read: a concurrent refresh may have finished while we waited for the lock
            current = await self._load_account(account.user_id)
            if current is None or not current.is_linked():
                return None
            if not still_needed(current):
                logger.debug(
                    "token.refresh.already_done", extra={"user_id": current.user_id}
                )
                return current.access_token

            if not current.refresh_token:
                logger.warning(
                    "token.refresh.skipped",
                    extra={"user_id": current.user_id, "reason": "no_refresh_token"},
                )
                return None

            try:
                payload = await self._client.refresh_token(current.refresh_token)
                tokens = TokenResponse.from_api(payload)
            except TokenRefreshException as e:
                logger.warning(
                    "token.refresh.failed",
                    extra={
                        "user_id": current.user_id,
                        "error_code": e.error_code,
                        "http_status": e.http_status,
                        "requires_reauth": e.requires_reauth,
                    },
                )
                return None
            except (httpx.HTTPError, KeyError, ValueError, TypeError) as e:
                logger.warning(
                    "token.refresh.failed",
                    extra={
                        "user_id": current.user_id,
                        "error": str(e),
                        "error_type": type(e).__name__,
                    },
                )
                return None

            current.update_tokens(
                access_token=tokens.access_token,
                expires_at=self._clock() + timedelta(seconds=tokens.expires_in),
                refresh_token=tokens.refresh_token,
            )
            async with self._session_scope() as session:
                await LinkedAccountRepository(session).update(current)

            logger.info(
                "token.refresh.succeeded",
                extra={
                    "user_id": current.user_id,
                    "expires_at": current.token_expires_at.isoformat()
                    if current.token_expires_at
                    else None,
                    "refresh_token_rotated": tokens.refresh_token is not None,
                },
            )
            return current.access_token
