"""Single-slot bearer token cache with early refresh.

A cached token is served while ``now + buffer_seconds < expires_at`` and it
was minted for the same owner (tenant hostname and username). Otherwise one
authentication exchange runs and its result replaces the slot.
Concurrent callers that miss at the same time share that one exchange: the
refresh runs under an asyncio.Lock and the slot is re-checked after acquiring
it.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Hashable
from dataclasses import dataclass, field
from datetime import datetime, timezone

from .metrics import token_cache_total
from .models import TokenGrant

logger = logging.getLogger("appgen.token_cache")

__all__ = ["DEFAULT_BUFFER_SECONDS", "CachedToken", "TokenCache"]

DEFAULT_BUFFER_SECONDS = 300


@dataclass(frozen=True)
class CachedToken:
    """A bearer token, its absolute expiry (unix seconds) and its owner."""

    value: str = field(repr=False)
    expires_at: float
    owner: Hashable = None


class TokenCache:
    """Owns the current bearer token for a process.

    Attributes:
        buffer_seconds: Refresh this many seconds before expiry

    Example:
        >>> cache = TokenCache(authenticator.authenticate)
        >>> token = await cache.get_valid_token()
    """

    def __init__(
        self,
        authenticate: Callable[[], Awaitable[TokenGrant]],
        buffer_seconds: int = DEFAULT_BUFFER_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the cache.

        Args:
            authenticate: Coroutine factory running one full authentication
                exchange
            buffer_seconds: Early-refresh window in seconds (default: 300)
            clock: Returns current unix time in seconds, injectable for tests
        """
        self._authenticate = authenticate
        self.buffer_seconds = buffer_seconds
        self._clock = clock
        self._cached: CachedToken | None = None
        self._lock = asyncio.Lock()

    @property
    def cached(self) -> CachedToken | None:
        """Current cache entry, if any."""
        return self._cached

    def _is_fresh(self, entry: CachedToken | None, now: float, owner: Hashable) -> bool:
        return (
            entry is not None
            and entry.owner == owner
            and now + self.buffer_seconds < entry.expires_at
        )

    async def get_valid_token(self, owner: Hashable = None) -> str:
        """Return a token that stays valid for at least ``buffer_seconds``.

        Args:
            owner: Identity the token must belong to; a cached token minted
                for a different owner is replaced

        Raises:
            AuthenticationError: If a needed refresh fails
        """
        entry = self._cached
        if self._is_fresh(entry, self._clock(), owner):
            token_cache_total.labels(result="hit").inc()
            logger.debug("token_cache_hit")
            return entry.value

        async with self._lock:
            # Another caller may have refreshed while we waited
            now = self._clock()
            entry = self._cached
            if self._is_fresh(entry, now, owner):
                token_cache_total.labels(result="hit").inc()
                return entry.value

            token_cache_total.labels(result="miss").inc()
            if entry is not None and entry.owner != owner:
                logger.info("token_owner_changed")
            logger.info("token_refresh_started")
            grant = await self._authenticate()

            entry = CachedToken(
                value=grant.access_token,
                expires_at=now + grant.expires_in,
                owner=owner,
            )
            self._cached = entry
            logger.info(
                "token_refreshed",
                extra={
                    "expires_in_seconds": grant.expires_in,
                    "expires_at": datetime.fromtimestamp(
                        entry.expires_at, tz=timezone.utc
                    ).isoformat(),
                },
            )
            return entry.value

    def invalidate(self) -> None:
        """Drop the cached token so the next call re-authenticates."""
        self._cached = None
        logger.debug("token_cache_invalidated")
