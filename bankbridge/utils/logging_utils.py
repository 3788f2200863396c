"""Logging utilities for redacting credentials and account identifiers."""

import hashlib
from typing import Optional


def redact_token(token: Optional[str]) -> str:
    """
    Redact an access token or secret for logging.

    Keeps a short hash so two log lines about the same token can be
    correlated without exposing it.

    Examples:
        >>> redact_token(None)
        'N/A'
        >>> redact_token("access-sandbox-123").startswith("hash:")
        True
    """
    if not token:
        return "N/A"

    token_hash = hashlib.sha256(token.encode()).hexdigest()[:8]
    return f"hash:{token_hash}"


def redact_iban(iban: Optional[str]) -> str:
    """
    Redact an IBAN or account number, keeping the country prefix and last four.

    Examples:
        >>> redact_iban("DE89370400440532013000")
        'DE***3000'
        >>> redact_iban("1234")
        '***'
        >>> redact_iban(None)
        'N/A'
    """
    if not iban:
        return "N/A"

    compact = iban.replace(" ", "")
    if len(compact) <= 6:
        return "***"

    return f"{compact[:2]}***{compact[-4:]}"
