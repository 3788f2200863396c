"""Provider error taxonomy and per-vendor error code mapping."""

import logging
from enum import Enum
from typing import Any, Mapping, Optional

import httpx

logger = logging.getLogger(__name__)


class ProviderErrorCode(str, Enum):
    """Canonical error codes surfaced to callers."""

    DISCONNECTED = "disconnected"
    RATE_LIMITED = "rate_limited"
    ALREADY_AUTHORIZED = "already_authorized"
    UNKNOWN = "unknown"


class ProviderError(Exception):
    """Error raised by a provider adapter after vendor error translation."""

    def __init__(
        self,
        code: ProviderErrorCode,
        message: str,
        provider: Optional[str] = None,
        status_code: Optional[int] = None,
        raw_code: Optional[str] = None,
    ):
        super().__init__(message)
        self.code = ProviderErrorCode(code)
        self.message = message
        self.provider = provider
        self.status_code = status_code
        self.raw_code = raw_code

    def __repr__(self) -> str:
        return (
            f"ProviderError(code={self.code.value!r}, provider={self.provider!r}, "
            f"status_code={self.status_code!r}, raw_code={self.raw_code!r})"
        )


# ── Vendor error code tables ────────────────────────────────────────────────

PLAID_DISCONNECTED_CODES = frozenset(
    {
        "ITEM_LOGIN_REQUIRED",
        "INVALID_CREDENTIALS",
        "INVALID_MFA",
        "ITEM_LOCKED",
        "USER_SETUP_REQUIRED",
        "MFA_NOT_SUPPORTED",
        "NO_ACCOUNTS",
        "INSUFFICIENT_CREDENTIALS",
        "ITEM_NOT_SUPPORTED",
        "ACCESS_NOT_GRANTED",
        "INVALID_ACCESS_TOKEN",
        "ITEM_NOT_FOUND",
        "PENDING_EXPIRATION",
    }
)

PLAID_RATE_LIMIT_CODES = frozenset({"RATE_LIMIT_EXCEEDED", "RATE_LIMIT"})

TELLER_DISCONNECTED_PREFIX = "enrollment.disconnected"

GOCARDLESS_DISCONNECTED_CODES = frozenset(
    {
        "AccessExpiredError",
        "AccountInactiveError",
        "EUA expired",
        "Account suspended",
        "Requisition is suspended",
        "Requisition expired",
    }
)

GOCARDLESS_RATE_LIMIT_CODES = frozenset({"RateLimitError", "Rate limit exceeded"})

ENABLEBANKING_DISCONNECTED_CODES = frozenset(
    {
        "EXPIRED_SESSION",
        "CLOSED_SESSION",
        "REVOKED_SESSION",
        "UNAUTHORIZED_ACCESS",
        "ACCOUNT_NOT_ACCESSIBLE",
        "EXPIRED_CONSENT",
    }
)

ENABLEBANKING_RATE_LIMIT_CODES = frozenset({"TOO_MANY_REQUESTS", "ASPSP_RATE_LIMIT_EXCEEDED"})


def _classify(
    provider: str,
    raw_code: Optional[str],
    status_code: Optional[int],
) -> ProviderErrorCode:
    if provider == "plaid":
        if raw_code in PLAID_DISCONNECTED_CODES:
            return ProviderErrorCode.DISCONNECTED
        if raw_code in PLAID_RATE_LIMIT_CODES:
            return ProviderErrorCode.RATE_LIMITED
    elif provider == "teller":
        if raw_code and raw_code.startswith(TELLER_DISCONNECTED_PREFIX):
            return ProviderErrorCode.DISCONNECTED
    elif provider == "gocardless":
        if raw_code in GOCARDLESS_DISCONNECTED_CODES:
            return ProviderErrorCode.DISCONNECTED
        if raw_code in GOCARDLESS_RATE_LIMIT_CODES:
            return ProviderErrorCode.RATE_LIMITED
    elif provider == "enablebanking":
        if raw_code in ENABLEBANKING_DISCONNECTED_CODES:
            return ProviderErrorCode.DISCONNECTED
        if raw_code == "ALREADY_AUTHORIZED":
            return ProviderErrorCode.ALREADY_AUTHORIZED
        if raw_code in ENABLEBANKING_RATE_LIMIT_CODES:
            return ProviderErrorCode.RATE_LIMITED

    if status_code == 429:
        return ProviderErrorCode.RATE_LIMITED
    return ProviderErrorCode.UNKNOWN


def extract_raw_code(provider: str, body: Any) -> Optional[str]:
    """Pull the vendor's machine-readable error code out of an error body."""
    if not isinstance(body, Mapping):
        return None

    if provider == "plaid":
        return body.get("error_code")
    if provider == "teller":
        error = body.get("error")
        if isinstance(error, Mapping):
            return error.get("code")
        return None
    if provider == "gocardless":
        # GoCardless reports either a typed error or a human summary
        return body.get("type") or body.get("summary")
    if provider == "enablebanking":
        return body.get("error") or body.get("code")
    return None


def classify_error(
    provider: str,
    raw_code: Optional[str],
    message: str,
    status_code: Optional[int] = None,
) -> ProviderError:
    """Translate a vendor error code into a canonical ProviderError."""
    code = _classify(provider, raw_code, status_code)
    if code is ProviderErrorCode.UNKNOWN:
        logger.warning(
            "Unmapped %s error (status=%s, raw_code=%s): %s",
            provider,
            status_code,
            raw_code,
            message,
        )
    return ProviderError(
        code,
        message,
        provider=provider,
        status_code=status_code,
        raw_code=raw_code,
    )


def from_http_error(provider: str, exc: httpx.HTTPStatusError) -> ProviderError:
    """Build a ProviderError from a non-2xx vendor response."""
    response = exc.response
    try:
        body = response.json()
    except ValueError:
        body = None

    raw_code = extract_raw_code(provider, body)
    message = _extract_message(body) or f"{provider} request failed with status {response.status_code}"
    return classify_error(provider, raw_code, message, status_code=response.status_code)


def _extract_message(body: Any) -> Optional[str]:
    if not isinstance(body, Mapping):
        return None

    for key in ("error_message", "message", "detail", "summary"):
        value = body.get(key)
        if isinstance(value, str) and value:
            return value

    error = body.get("error")
    if isinstance(error, Mapping):
        message = error.get("message")
        if isinstance(message, str):
            return message
    return None
