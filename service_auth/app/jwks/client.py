"""
JWKS key cache for Azure AD signing keys.
"""

import asyncio
from datetime import datetime, timedelta
from typing import Iterable, Optional

import httpx

from shared.errors import InternalInvariantError, KeySetFetchFailed
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from .models import KeyRecord, KeySet


DEFAULT_EXPIRATION_WINDOW = timedelta(hours=24)
DEFAULT_RETRY_WINDOW = timedelta(hours=1)


class RetryBudget:
    """Bounded retry-on-miss bookkeeping.

    At most one retry refresh per rolling ``window``. A spent attempt counts
    whether or not the retried lookup succeeded.
    """

    def __init__(self, enabled: bool = True, window: timedelta = DEFAULT_RETRY_WINDOW):
        self.enabled = enabled
        self.window = window
        self.last_attempt: Optional[datetime] = None
        self.attempts = 0

    def available(self, now: datetime) -> bool:
        if not self.enabled:
            return False
        return self.last_attempt is None or now - self.last_attempt >= self.window

    def consume(self, now: datetime) -> None:
        self.last_attempt = now
        self.attempts += 1

    def disable(self) -> None:
        self.enabled = False

    def copy(self) -> "RetryBudget":
        budget = RetryBudget(self.enabled, self.window)
        budget.last_attempt = self.last_attempt
        return budget


class JWKSClient:
    """Holds the current signing keys and decides when to fetch new ones.

    The key set is only ever replaced, never edited. Every fetch happens
    under ``_lock`` so concurrent callers share one refresh instead of each
    issuing their own. In offline mode nothing here talks to the network
    unless the owner calls ``refresh`` explicitly.
    """

    def __init__(
        self,
        jwks_uri: Optional[str],
        http_client: Optional[httpx.AsyncClient] = None,
        *,
        expiration_window: timedelta = DEFAULT_EXPIRATION_WINDOW,
        retry_budget: Optional[RetryBudget] = None,
        offline: bool = False,
        key_set: Optional[KeySet] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.jwks_uri = jwks_uri
        self.expiration_window = expiration_window
        self.retry_budget = retry_budget or RetryBudget()
        self.offline = offline
        self.metrics = metrics
        self.logger = get_logger("auth.jwks")

        self._client = http_client
        self._key_set = key_set
        self._lock = asyncio.Lock()

    @property
    def key_set(self) -> Optional[KeySet]:
        return self._key_set

    def is_fresh(self, now: datetime) -> bool:
        """True iff a key set exists and is no older than the expiration window."""
        if self._key_set is None:
            return False
        return now - self._key_set.fetched_at <= self.expiration_window

    def should_retry_on_miss(self, now: datetime) -> bool:
        """Whether an unknown ``kid`` may trigger a refresh right now.

        Keys fetched within the last retry window are never refetched on a
        miss, so a stale refresh followed by a miss costs one request.
        """
        return (
            not self.offline
            and self._key_set is not None
            and now - self._key_set.fetched_at >= self.retry_budget.window
            and self.retry_budget.available(now)
        )

    async def refresh(self, now: datetime, reason: str = "manual") -> KeySet:
        """Fetch the key set and replace the cached one."""
        async with self._lock:
            return await self._refresh_locked(now, reason)

    async def ensure_fresh(self, now: datetime) -> Optional[KeySet]:
        """Return a usable key set, refreshing first when stale and online."""
        if self.offline or self.is_fresh(now):
            return self._key_set

        async with self._lock:
            # Another task may have refreshed while we waited for the lock.
            if self.is_fresh(now):
                return self._key_set
            return await self._refresh_locked(now, "stale")

    async def refresh_on_miss(self, observed: KeySet, now: datetime) -> Optional[KeySet]:
        """Spend the retry budget on one refresh after a failed key lookup.

        ``observed`` is the snapshot the lookup ran against. If the cache was
        replaced meanwhile, the new snapshot is returned without fetching or
        spending budget. Returns ``None`` when no retry is allowed.
        """
        async with self._lock:
            if self._key_set is not observed:
                return self._key_set

            if not self.should_retry_on_miss(now):
                self.logger.info(
                    "Key lookup retry not allowed",
                    offline=self.offline,
                    retry_enabled=self.retry_budget.enabled,
                    last_retry=self.retry_budget.last_attempt.isoformat()
                    if self.retry_budget.last_attempt else None,
                )
                return None

            self.retry_budget.consume(now)
            self.logger.info("Unknown key id, refreshing JWKS once", attempts=self.retry_budget.attempts)
            return await self._refresh_locked(now, "key_miss")

    def set_keys(self, records: Iterable[KeyRecord], now: datetime) -> KeySet:
        """Replace the cached keys with caller-supplied records."""
        key_set = KeySet(records, now)
        self._key_set = key_set
        self.logger.info("JWKS replaced manually", keys_count=len(key_set))
        return key_set

    def set_expiration_window(self, hours: int) -> None:
        self.expiration_window = timedelta(hours=hours)

    def disable_retry(self) -> None:
        self.retry_budget.disable()

    def clear(self) -> None:
        """Drop the cached key set."""
        self._key_set = None
        self.logger.info("JWKS cache cleared")

    def clone(self) -> "JWKSClient":
        """Copy sharing the current snapshot, with its own lock and retry budget."""
        return JWKSClient(
            self.jwks_uri,
            self._client,
            expiration_window=self.expiration_window,
            retry_budget=self.retry_budget.copy(),
            offline=self.offline,
            key_set=self._key_set,
            metrics=self.metrics,
        )

    async def _refresh_locked(self, now: datetime, reason: str) -> KeySet:
        if not self.jwks_uri or self._client is None:
            raise InternalInvariantError(
                "Key refresh requested without a JWKS endpoint",
                details={"offline": self.offline},
            )

        try:
            if self.metrics:
                with self.metrics.time_operation("jwks_refresh_duration_seconds"):
                    key_set = await self._fetch(now)
            else:
                key_set = await self._fetch(now)
        except (httpx.HTTPError, ValueError, InternalInvariantError) as exc:
            self.logger.error("Failed to fetch JWKS", url=self.jwks_uri, reason=reason, error=str(exc))
            if self.metrics:
                self.metrics.record_refresh("error", reason)
            raise KeySetFetchFailed(
                "Could not refresh signing keys",
                url=self.jwks_uri,
                cause=exc,
            ) from exc

        self._key_set = key_set
        if self.metrics:
            self.metrics.record_refresh("ok", reason)
        self.logger.info(
            "JWKS refreshed successfully",
            reason=reason,
            keys_count=len(key_set),
        )
        return key_set

    async def _fetch(self, now: datetime) -> KeySet:
        response = await self._client.get(self.jwks_uri)
        response.raise_for_status()
        return KeySet.from_jwks(response.json(), now)
