"""
Token bucket rate limiter for outbound Spotify Web API calls.

Spotify allows roughly 180 requests per minute per app. A sync of a fresh
account fans out into one artist lookup per new artist, so without throttling
the first sync of a large history runs straight into 429s.

USAGE:
    limiter = get_spotify_limiter()

    async with limiter:
        response = await client.get(url)

    # On 429:
    await limiter.handle_rate_limit_response(retry_after)
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


@dataclass
class RateLimiterConfig:
    """Configuration for rate limiter.

    Spotify can send Retry-After values of several minutes under heavy usage,
    so max_backoff_seconds must stay high or we'd retry into another 429.
    """

    max_tokens: int = 10  # Bucket size (burst)
    refill_rate: float = 2.0  # Tokens per second (sustained)
    max_backoff_seconds: float = 600.0
    initial_backoff_seconds: float = 1.0
    backoff_multiplier: float = 2.0


@dataclass
class RateLimiter:
    """Token bucket rate limiter with adaptive backoff on 429."""

    config: RateLimiterConfig = field(default_factory=RateLimiterConfig)
    name: str = "default"

    _tokens: float = field(default=0.0, init=False)
    _last_refill: float = field(default_factory=time.monotonic, init=False)
    _current_backoff: float = field(default=0.0, init=False)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False)

    def __post_init__(self) -> None:
        self._tokens = float(self.config.max_tokens)
        self._current_backoff = self.config.initial_backoff_seconds

    @classmethod
    def for_spotify(cls) -> "RateLimiter":
        """Conservative limiter for the Spotify Web API: 2 req/s sustained, burst of 10."""
        return cls(
            config=RateLimiterConfig(
                max_tokens=10,
                refill_rate=2.0,
                max_backoff_seconds=600.0,
                initial_backoff_seconds=1.0,
            ),
            name="spotify",
        )

    def _refill_tokens(self) -> None:
        now = time.monotonic()
        elapsed = now - self._last_refill
        self._tokens = min(
            float(self.config.max_tokens), self._tokens + elapsed * self.config.refill_rate
        )
        self._last_refill = now

    async def acquire(self) -> None:
        """Take one token, sleeping until one is available."""
        while True:
            async with self._lock:
                self._refill_tokens()
                if self._tokens >= 1.0:
                    self._tokens -= 1.0
                    return
                wait_time = (1.0 - self._tokens) / self.config.refill_rate
            logger.debug(
                "rate_limiter.waiting",
                extra={"limiter": self.name, "wait_seconds": round(wait_time, 2)},
            )
            await asyncio.sleep(wait_time)

    async def handle_rate_limit_response(self, retry_after: int | None = None) -> float:
        """Back off after a 429 and return the time waited.

        Retry-After wins when present; otherwise the backoff doubles per consecutive 429.
        """
        async with self._lock:
            wait_time = float(retry_after) if retry_after is not None else self._current_backoff
            wait_time = min(wait_time, self.config.max_backoff_seconds)
            self._current_backoff = min(
                self._current_backoff * self.config.backoff_multiplier,
                self.config.max_backoff_seconds,
            )
            # Drain the bucket so concurrent callers wait too
            self._tokens = 0.0

        logger.warning(
            "rate_limiter.backoff",
            extra={"limiter": self.name, "wait_seconds": wait_time},
        )
        await asyncio.sleep(wait_time)
        return wait_time

    def reset_backoff(self) -> None:
        """Reset backoff after a successful request."""
        self._current_backoff = self.config.initial_backoff_seconds

    async def __aenter__(self) -> "RateLimiter":
        await self.acquire()
        return self

    async def __aexit__(
        self, exc_type: type | None, exc_val: Exception | None, exc_tb: object
    ) -> None:
        if exc_type is None:
            self.reset_backoff()

    @property
    def available_tokens(self) -> float:
        """Current token count (for debugging and tests)."""
        self._refill_tokens()
        return self._tokens


# One limiter per upstream, shared by every client instance in the process
_spotify_limiter: RateLimiter | None = None


def get_spotify_limiter() -> RateLimiter:
    """Get singleton Spotify rate limiter."""
    global _spotify_limiter
    if _spotify_limiter is None:
        _spotify_limiter = RateLimiter.for_spotify()
    return _spotify_limiter


__all__ = ["RateLimiter", "RateLimiterConfig", "get_spotify_limiter"]
