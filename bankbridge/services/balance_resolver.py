"""
Primary balance selection.

Open-banking vendors return several balance records per account (booked,
available, expected, intraday, end-of-day), sometimes in more than one
currency. The resolver picks the single record that best represents what the
account holds right now.

Tier order (ISO 20022 name / short code):
    1. interimBooked / ITBD    intraday booked
    2. closingBooked / CLBD    end-of-day booked
    3. interimAvailable / ITAV intraday available
    4. expected / XPCD         expected
"""

from typing import List, Optional, Sequence

from bankbridge.schemas.banking import BalanceRecord
from bankbridge.utils.currency import is_valid_currency, normalize_currency

BALANCE_TIERS: List[frozenset] = [
    frozenset({"interimbooked", "itbd"}),
    frozenset({"closingbooked", "clbd"}),
    frozenset({"interimavailable", "itav"}),
    frozenset({"expected", "xpcd"}),
]

# Types that describe spendable funds rather than the booked position
AVAILABLE_BALANCE_TYPES = frozenset(
    {
        "interimavailable",
        "itav",
        "closingavailable",
        "clav",
        "openingavailable",
        "opav",
        "forwardavailable",
        "fwav",
        "available",
    }
)


def _tier_key(balance_type: Optional[str]) -> str:
    return (balance_type or "").replace("_", "").replace(" ", "").lower()


def _matches_currency(record: BalanceRecord, currency: str) -> bool:
    return normalize_currency(record.currency) == currency


def _pick_in_tier(records: Sequence[BalanceRecord], currency: Optional[str]) -> BalanceRecord:
    if currency:
        for record in records:
            if _matches_currency(record, currency):
                return record
    # No usable currency hint, or none of the tier's records carry it:
    # the largest magnitude is the most likely real position
    return max(records, key=lambda record: abs(record.amount))


def select_primary_balance(
    records: Sequence[BalanceRecord],
    preferred_currency: Optional[str] = None,
) -> Optional[BalanceRecord]:
    """
    Pick one balance record from a vendor's balance list.

    Args:
        records: Vendor balance records in vendor order
        preferred_currency: The account's currency, if known. Missing or
            placeholder values disable the currency preference.

    Returns:
        The selected record, or None for an empty list
    """
    if not records:
        return None

    currency = normalize_currency(preferred_currency) if is_valid_currency(preferred_currency) else None

    for tier in BALANCE_TIERS:
        in_tier = [record for record in records if _tier_key(record.balance_type) in tier]
        if in_tier:
            return _pick_in_tier(in_tier, currency)

    if currency:
        for record in records:
            if _matches_currency(record, currency):
                return record
    return records[0]


def find_available_balance(records: Sequence[BalanceRecord]) -> Optional[BalanceRecord]:
    """First record whose type describes available (spendable) funds."""
    for record in records:
        if _tier_key(record.balance_type) in AVAILABLE_BALANCE_TYPES:
            return record
    return None
