"""Text helpers for transaction and account names."""

import re
from typing import Iterable, Optional

_WORD_SPLIT = re.compile(r"[^\w]+|_+")


def capital_case(text: Optional[str]) -> str:
    """
    Split ``text`` into words and capitalize each one.

    >>> capital_case("COFFEE SHOP")
    'Coffee Shop'
    >>> capital_case("amzn_mktp-us")
    'Amzn Mktp Us'
    """
    if not text:
        return ""
    words = [word for word in _WORD_SPLIT.split(text) if word]
    return " ".join(word[:1].upper() + word[1:].lower() for word in words)


def first_non_empty(values: Iterable[Optional[str]]) -> Optional[str]:
    """First value that is a non-blank string, stripped."""
    for value in values:
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def name_tokens(name: Optional[str]) -> set:
    """Lower-case alphanumeric tokens of an account or merchant name."""
    if not name:
        return set()
    return {token for token in _WORD_SPLIT.split(name.lower()) if token}
