"""
Rate-limit retry for vendor calls.

Only rate-limit signals (HTTP 429 or a vendor rate-limit code) are retried.
The wait honours the vendor's reset header, then ``Retry-After``, and falls
back to capped exponential backoff with jitter. Every other failure
propagates on the first attempt, and exhausting the attempt ceiling re-raises
the last vendor error unchanged.
"""

import asyncio
import random
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Awaitable, Callable, Mapping, Optional, TypeVar

import httpx

from bankbridge.core.exceptions import ProviderError, ProviderErrorCode
from bankbridge.core.logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

# Vendor-specific "seconds until the window resets" headers, checked in order
RESET_HEADERS = (
    "x-ratelimit-account-success-reset",
    "http_x_ratelimit_account_success_reset",
    "x-ratelimit-reset",
    "ratelimit-reset",
)

RATE_LIMIT_BODY_MARKERS = ("RATE_LIMIT_EXCEEDED", "TOO_MANY_REQUESTS", "RateLimitError")

# Reset values above this are absolute epoch timestamps, not relative seconds
_EPOCH_THRESHOLD = 1_000_000_000


@dataclass
class RetryPolicy:
    """Bounds for rate-limit retries."""

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 60.0
    jitter_factor: float = 0.1

    @classmethod
    def from_settings(cls, settings: Any) -> "RetryPolicy":
        return cls(
            max_attempts=settings.RATE_LIMIT_MAX_ATTEMPTS,
            base_delay=settings.RATE_LIMIT_BASE_DELAY_SECONDS,
            max_delay=settings.RATE_LIMIT_MAX_DELAY_SECONDS,
        )


def _status_of(exc: BaseException) -> Optional[int]:
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code
    # plaid.ApiException and similar SDK errors expose ``status``
    for attr in ("status", "status_code"):
        value = getattr(exc, attr, None)
        if isinstance(value, int):
            return value
    return None


def _headers_of(exc: BaseException) -> Mapping[str, str]:
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.headers
    headers = getattr(exc, "headers", None)
    if headers is None:
        return {}
    return {str(k).lower(): str(v) for k, v in dict(headers).items()}


def is_rate_limited(exc: BaseException) -> bool:
    """True when ``exc`` carries a vendor rate-limit signal."""
    if isinstance(exc, ProviderError):
        return exc.code is ProviderErrorCode.RATE_LIMITED

    if _status_of(exc) == 429:
        return True

    if isinstance(exc, httpx.HTTPStatusError):
        body = exc.response.text
    else:
        body = getattr(exc, "body", None)
    if isinstance(body, (str, bytes)):
        text = body.decode("utf-8", "replace") if isinstance(body, bytes) else body
        return any(marker in text for marker in RATE_LIMIT_BODY_MARKERS)
    return False


def _parse_seconds(value: str, now: datetime) -> Optional[float]:
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        return None

    if seconds > _EPOCH_THRESHOLD:
        seconds = seconds - now.timestamp()
    return max(seconds, 0.0)


def delay_from_headers(headers: Mapping[str, str], now: Optional[datetime] = None) -> Optional[float]:
    """
    Seconds to wait according to vendor response headers.

    Vendor reset headers win over ``Retry-After``. ``Retry-After`` accepts
    either delta-seconds or an HTTP date. Returns None when neither is usable.
    """
    now = now or datetime.now(timezone.utc)
    lowered = {str(k).lower(): v for k, v in headers.items()}

    for name in RESET_HEADERS:
        if name in lowered:
            seconds = _parse_seconds(lowered[name], now)
            if seconds is not None:
                return seconds

    retry_after = lowered.get("retry-after")
    if retry_after is None:
        return None

    seconds = _parse_seconds(retry_after, now)
    if seconds is not None:
        return seconds

    try:
        retry_at = parsedate_to_datetime(retry_after)
    except (TypeError, ValueError):
        return None
    if retry_at.tzinfo is None:
        retry_at = retry_at.replace(tzinfo=timezone.utc)
    return max((retry_at - now).total_seconds(), 0.0)


def calculate_backoff(attempt: int, policy: RetryPolicy) -> float:
    """
    Exponential backoff for the given 1-based attempt, capped, plus jitter.

    attempt 1 -> base, attempt 2 -> base*2, attempt 3 -> base*4 ...
    """
    delay = min(policy.base_delay * (2 ** (attempt - 1)), policy.max_delay)
    jitter = random.uniform(0, delay * policy.jitter_factor)
    return delay + jitter


async def with_rate_limit_retry(
    operation: Callable[[], Awaitable[T]],
    policy: Optional[RetryPolicy] = None,
    provider: Optional[str] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """
    Run ``operation`` and retry it while the vendor answers with a rate limit.

    Args:
        operation: Zero-argument coroutine factory; called once per attempt
        policy: Attempt ceiling and backoff bounds
        provider: Provider tag, used for log context only
        sleep: Awaitable sleep, injectable for tests

    Raises:
        The vendor error from the last attempt once retries are exhausted, or
        any non-rate-limit error immediately.
    """
    policy = policy or RetryPolicy()
    attempt = 0

    while True:
        attempt += 1
        try:
            return await operation()
        except Exception as exc:
            if not is_rate_limited(exc):
                raise

            if attempt >= policy.max_attempts:
                logger.warning(
                    "rate_limit_retries_exhausted",
                    provider=provider,
                    attempts=attempt,
                )
                raise

            header_delay = delay_from_headers(_headers_of(exc))
            if header_delay is not None and header_delay > policy.max_delay:
                logger.warning(
                    "rate_limit_reset_beyond_max_delay",
                    provider=provider,
                    attempts=attempt,
                    reset_seconds=header_delay,
                    max_delay=policy.max_delay,
                )
                raise

            delay = header_delay if header_delay is not None else calculate_backoff(attempt, policy)
            logger.info(
                "rate_limited_retrying",
                provider=provider,
                attempt=attempt,
                max_attempts=policy.max_attempts,
                delay_seconds=round(delay, 3),
                source="header" if header_delay is not None else "backoff",
            )
            await sleep(delay)
