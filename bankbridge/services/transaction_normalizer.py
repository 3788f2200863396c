"""
Transaction identity and shared transaction heuristics.

Identity resolution order:
    1. the vendor's own unique transaction id
    2. the vendor's entry / posting reference
    3. an MD5 fingerprint over the transaction's fundamental values

The fingerprint keeps every position in its input tuple. Missing values are
encoded as empty strings instead of being dropped, so two transactions that
differ only in which nullable field is set never share an id.
"""

import hashlib
import json
from decimal import Decimal
from typing import Iterable, Optional, Sequence, Union

from bankbridge.schemas.banking import AccountType, TransactionMethod
from bankbridge.utils.text import capital_case, first_non_empty

FieldValue = Union[str, int, float, Decimal, None]

CREDIT_CARD_PAYMENT_CATEGORY = "credit-card-payment"
INCOME_CATEGORY = "income"
DEFAULT_TRANSACTION_NAME = "No Information"
FEES_CATEGORY = "fees"


def transaction_fingerprint(
    booking_date: FieldValue = None,
    value_date: FieldValue = None,
    amount: FieldValue = None,
    currency: FieldValue = None,
    credit_debit_indicator: FieldValue = None,
    reference_number: FieldValue = None,
    remittance_information: Optional[Sequence[str]] = None,
    balance_after: FieldValue = None,
) -> str:
    """
    MD5 fingerprint of a transaction's fundamental values.

    The values are hashed as a JSON array, so a separator character inside
    one value cannot shift it into the next position. Remittance lines stay
    a nested list.
    """
    scalars = [
        "" if value is None else str(value)
        for value in (booking_date, value_date, amount, currency, credit_debit_indicator, reference_number)
    ]
    balance = "" if balance_after is None else str(balance_after)
    payload = json.dumps([*scalars, list(remittance_information or []), balance], separators=(",", ":"))
    return hashlib.md5(payload.encode("utf-8")).hexdigest()


def resolve_transaction_id(
    vendor_id: Optional[str],
    entry_reference: Optional[str] = None,
    **fingerprint_fields,
) -> str:
    """Stable transaction id: vendor id, then entry reference, then fingerprint."""
    if vendor_id:
        return vendor_id
    if entry_reference:
        return entry_reference
    return transaction_fingerprint(**fingerprint_fields)


# ── Shared naming / categorization ───────────────────────────────────────────


def build_description(lines: Optional[Iterable[Optional[str]]], name: str) -> Optional[str]:
    """
    Capital-cased description from free-text lines.

    Returns None when there is no text or it just repeats ``name``.
    """
    if not lines:
        return None

    parts = [line.strip() for line in lines if line and line.strip()]
    if not parts:
        return None

    description = capital_case(" ".join(parts))
    if description == name:
        return None
    return description


def counterparty_for(
    is_inflow: bool,
    debtor_name: Optional[str],
    creditor_name: Optional[str],
) -> Optional[str]:
    """The other side of the transaction: payer for inflows, payee for outflows."""
    name = debtor_name if is_inflow else creditor_name
    if not name:
        return None
    return capital_case(name)


def categorize_inflow(
    amount: Decimal,
    account_type: Optional[AccountType],
    transaction_code: Optional[str] = None,
) -> Optional[str]:
    """
    Rule-based category for money coming in.

    On credit accounts an inflow is a card payment when the bank labels it a
    transfer or payment; other credit-account inflows (refunds) are left
    uncategorized. On any other account an inflow is income.
    """
    if amount <= 0:
        return None

    if account_type == AccountType.CREDIT:
        if transaction_code in ("Transfer", "Payment"):
            return CREDIT_CARD_PAYMENT_CATEGORY
        return None
    return INCOME_CATEGORY


def method_for(is_inflow: bool, transaction_code: Optional[str] = None) -> TransactionMethod:
    """Payment method from direction and bank transaction code description."""
    if is_inflow:
        return TransactionMethod.PAYMENT
    if transaction_code == "Transfer":
        return TransactionMethod.TRANSFER
    return TransactionMethod.OTHER


def pick_name(*candidates: Optional[str], default: str = DEFAULT_TRANSACTION_NAME) -> str:
    """First non-blank candidate, capital-cased."""
    return capital_case(first_non_empty(candidates) or default)
