"""
Credential cache for vendor access credentials.

Holds short-lived vendor credentials (GoCardless access/refresh token pairs,
EnableBanking signed application JWTs) in the shared key/value cache so every
worker reuses the same credential until it nears expiry.

Acquisition order for a key:
    1. cached credential with more than five minutes of validity left
    2. refresh exchange with a cached refresh credential
    3. full credential exchange

Concurrent acquisitions for the same key are single-flighted behind a
per-key ``asyncio.Lock`` so a cold cache triggers one exchange, not one per
caller.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Protocol

from bankbridge.core.cache import KeyValueCache
from bankbridge.core.logging_config import get_logger

logger = get_logger(__name__)

# Reuse a credential only while it has more than this much validity left
MIN_REMAINING_VALIDITY_SECONDS = 300

# Cache entries expire this long before the vendor's own expiry
EXPIRY_SAFETY_MARGIN_SECONDS = 3600


@dataclass
class CredentialGrant:
    """Result of a credential exchange. Lifetimes are in seconds from issue."""

    access_token: str
    expires_in: int
    refresh_token: Optional[str] = None
    refresh_expires_in: Optional[int] = None


class CredentialIssuer(Protocol):
    """Vendor-specific credential exchange."""

    supports_refresh: bool

    async def issue(self) -> CredentialGrant:
        """Perform a full exchange using the application's long-lived secret."""
        ...

    async def refresh(self, refresh_token: str) -> CredentialGrant:
        """Exchange a refresh credential for a new access credential."""
        ...


def cache_ttl(expires_in: int) -> int:
    """Cache lifetime for a credential valid for ``expires_in`` seconds."""
    ttl = expires_in - EXPIRY_SAFETY_MARGIN_SECONDS
    if ttl <= 0:
        # Short-lived credentials still get half their lifetime
        ttl = expires_in // 2
    return max(ttl, 0)


class CredentialCache:
    """TTL-based credential store with refresh fallback and single-flight exchange."""

    def __init__(self, cache: KeyValueCache, clock: Callable[[], float] = time.time):
        self._cache = cache
        self._clock = clock
        self._issuers: Dict[str, CredentialIssuer] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def register(self, key: str, issuer: CredentialIssuer) -> None:
        self._issuers[key] = issuer

    def is_registered(self, key: str) -> bool:
        return key in self._issuers

    @staticmethod
    def _access_key(key: str) -> str:
        return f"{key}_access_token"

    @staticmethod
    def _refresh_key(key: str) -> str:
        return f"{key}_refresh_token"

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    async def _cached_access(self, key: str) -> Optional[str]:
        entry = await self._cache.get(self._access_key(key))
        if not entry:
            return None
        if entry["expires_at"] - self._clock() <= MIN_REMAINING_VALIDITY_SECONDS:
            return None
        return entry["token"]

    async def acquire(self, key: str) -> str:
        """Return a usable access credential for ``key``."""
        issuer = self._issuers.get(key)
        if issuer is None:
            raise KeyError(f"No credential issuer registered for {key!r}")

        token = await self._cached_access(key)
        if token:
            return token

        async with self._lock_for(key):
            # Another waiter may have completed the exchange while we queued
            token = await self._cached_access(key)
            if token:
                return token

            grant = await self._refresh(key, issuer)
            if grant is None:
                grant = await issuer.issue()
                logger.info("credential_issued", provider=key, expires_in=grant.expires_in)

            await self._store(key, grant)
            return grant.access_token

    async def _refresh(self, key: str, issuer: CredentialIssuer) -> Optional[CredentialGrant]:
        if not getattr(issuer, "supports_refresh", False):
            return None

        refresh_entry = await self._cache.get(self._refresh_key(key))
        if not refresh_entry:
            return None

        try:
            grant = await issuer.refresh(refresh_entry["token"])
        except Exception as exc:
            logger.warning(
                "credential_refresh_failed",
                provider=key,
                error=type(exc).__name__,
            )
            await self._cache.delete(self._refresh_key(key))
            return None

        logger.info("credential_refreshed", provider=key, expires_in=grant.expires_in)
        return grant

    async def _store(self, key: str, grant: CredentialGrant) -> None:
        now = self._clock()
        await self._cache.set(
            self._access_key(key),
            {"token": grant.access_token, "expires_at": now + grant.expires_in},
            cache_ttl(grant.expires_in),
        )

        if grant.refresh_token and grant.refresh_expires_in:
            await self._cache.set(
                self._refresh_key(key),
                {"token": grant.refresh_token, "expires_at": now + grant.refresh_expires_in},
                cache_ttl(grant.refresh_expires_in),
            )

    async def invalidate(self, key: str) -> None:
        """Drop the cached access credential, e.g. after the vendor rejected it."""
        await self._cache.delete(self._access_key(key))
