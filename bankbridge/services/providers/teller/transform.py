"""Teller wire payloads to canonical schemas."""

from decimal import Decimal
from typing import Any, Dict, List, Optional

from bankbridge.schemas.banking import (
    Account,
    AccountType,
    Balance,
    BalanceRecord,
    Institution,
    ProviderTag,
    Transaction,
    TransactionMethod,
    TransactionStatus,
)
from bankbridge.services.balance_resolver import select_primary_balance
from bankbridge.services.transaction_normalizer import (
    CREDIT_CARD_PAYMENT_CATEGORY,
    FEES_CATEGORY,
    INCOME_CATEGORY,
    resolve_transaction_id,
)
from bankbridge.utils.currency import resolve_currency
from bankbridge.utils.datetime_utils import parse_date
from bankbridge.utils.text import capital_case

TELLER_LOGO_URL = "https://teller.io/images/banks/{institution_id}.jpg"

# Teller only serves US institutions; transactions carry no currency
TELLER_DEFAULT_CURRENCY = "USD"

_METHODS = {
    "payment": TransactionMethod.PAYMENT,
    "bill_payment": TransactionMethod.PAYMENT,
    "card_payment": TransactionMethod.CARD_PURCHASE,
    "atm": TransactionMethod.CARD_ATM,
    "transfer": TransactionMethod.TRANSFER,
    "ach": TransactionMethod.ACH,
    "deposit": TransactionMethod.DEPOSIT,
    "wire": TransactionMethod.WIRE,
    "fee": TransactionMethod.FEE,
}

_CATEGORIES = {
    "accommodation": "travel",
    "advertising": "advertising",
    "bar": "meals",
    "dining": "meals",
    "education": "training",
    "electronics": "equipment",
    "fuel": "travel",
    "insurance": "insurance",
    "office": "office-supplies",
    "phone": "utilities",
    "software": "software",
    "tax": "taxes",
    "transport": "travel",
    "transportation": "travel",
    "utilities": "utilities",
}


def map_account_type(teller_type: Optional[str]) -> AccountType:
    if teller_type == "credit":
        return AccountType.CREDIT
    return AccountType.DEPOSITORY


def map_transaction_method(teller_type: Optional[str]) -> TransactionMethod:
    return _METHODS.get(teller_type or "", TransactionMethod.OTHER)


def map_transaction_category(
    transaction: Dict[str, Any],
    amount: Decimal,
    account_type: AccountType,
) -> Optional[str]:
    """Category from Teller's transaction type, direction and detail category."""
    transaction_type = transaction.get("type")

    if transaction_type == "fee":
        return FEES_CATEGORY

    if amount > 0 and account_type == AccountType.DEPOSITORY:
        return INCOME_CATEGORY

    if account_type == AccountType.CREDIT and transaction_type == "payment":
        return CREDIT_CARD_PAYMENT_CATEGORY

    details = transaction.get("details") or {}
    return _CATEGORIES.get(details.get("category") or "")


def transform_description(transaction: Dict[str, Any]) -> Optional[str]:
    """Counterparty name when it adds something beyond the description."""
    counterparty = (transaction.get("details") or {}).get("counterparty") or {}
    name = counterparty.get("name")
    if not name:
        return None

    description = capital_case(name)
    if description == transaction.get("description"):
        return None
    return description


def transform_transaction(transaction: Dict[str, Any], account_type: AccountType) -> Transaction:
    """
    Teller reports credit-account amounts from the card issuer's side, so
    they are inverted; depository amounts are already signed inflow-positive.
    """
    amount = Decimal(str(transaction["amount"]))
    if account_type == AccountType.CREDIT:
        amount = -amount

    counterparty = (transaction.get("details") or {}).get("counterparty") or {}
    running_balance = transaction.get("running_balance")

    return Transaction(
        id=resolve_transaction_id(
            transaction.get("id"),
            booking_date=transaction.get("date"),
            amount=transaction.get("amount"),
            currency=TELLER_DEFAULT_CURRENCY,
            reference_number=transaction.get("description"),
            balance_after=running_balance,
        ),
        amount=amount,
        currency=TELLER_DEFAULT_CURRENCY,
        date=parse_date(transaction["date"]),
        status=(
            TransactionStatus.PENDING
            if transaction.get("status") == "pending"
            else TransactionStatus.POSTED
        ),
        name=capital_case(transaction.get("description")),
        description=transform_description(transaction),
        balance=Decimal(str(running_balance)) if running_balance is not None else None,
        category=map_transaction_category(transaction, amount, account_type),
        method=map_transaction_method(transaction.get("type")),
        counterparty_name=capital_case(counterparty.get("name")) or None,
        merchant_name=(
            capital_case(counterparty.get("name"))
            if counterparty.get("type") == "organization"
            else None
        ),
    )


def balance_records(balances: Optional[Dict[str, Any]], currency: str) -> List[BalanceRecord]:
    """Teller's ledger balance is the booked position, ``available`` the spendable one."""
    if not balances:
        return []

    records = []
    if balances.get("ledger") is not None:
        records.append(
            BalanceRecord(balance_type="interimBooked", amount=Decimal(str(balances["ledger"])), currency=currency)
        )
    if balances.get("available") is not None:
        records.append(
            BalanceRecord(
                balance_type="interimAvailable",
                amount=Decimal(str(balances["available"])),
                currency=currency,
            )
        )
    return records


def _normalize_credit(amount: Optional[Decimal], account_type: AccountType) -> Optional[Decimal]:
    if amount is not None and account_type == AccountType.CREDIT and amount < 0:
        return abs(amount)
    return amount


def transform_account_balance(
    balance: Dict[str, Any],
    account_type: AccountType,
    balances: Optional[Dict[str, Any]] = None,
) -> Balance:
    """
    Args:
        balance: ``{"amount": ..., "currency": ...}`` primary balance
        account_type: Canonical account type
        balances: Raw Teller balances payload, for the available balance
    """
    currency = resolve_currency([balance.get("currency"), TELLER_DEFAULT_CURRENCY])
    raw_amount = balance.get("amount")
    amount = _normalize_credit(Decimal(str(raw_amount)) if raw_amount is not None else None, account_type)

    available = None
    if balances and balances.get("available") is not None:
        available = _normalize_credit(Decimal(str(balances["available"])), account_type)

    return Balance(amount=amount, currency=currency, available_balance=available)


def transform_institution(institution: Dict[str, Any]) -> Institution:
    return Institution(
        id=institution["id"],
        name=institution["name"],
        logo=TELLER_LOGO_URL.format(institution_id=institution["id"]),
        provider=ProviderTag.TELLER,
        countries=["US"],
    )


def transform_account(
    account: Dict[str, Any],
    balances: Optional[Dict[str, Any]] = None,
    details: Optional[Dict[str, Any]] = None,
) -> Account:
    """
    Args:
        account: Teller account payload
        balances: ``/accounts/{id}/balances`` payload, if fetched
        details: ``/accounts/{id}/details`` payload, if fetched
    """
    account_type = map_account_type(account.get("type"))
    currency = resolve_currency([account.get("currency"), TELLER_DEFAULT_CURRENCY])

    primary = select_primary_balance(balance_records(balances, currency), currency)
    if primary is not None:
        raw_balance = {"amount": primary.amount, "currency": currency}
    elif account.get("balance"):
        raw_balance = account["balance"]
    else:
        raw_balance = {"amount": None, "currency": currency}

    balance = transform_account_balance(raw_balance, account_type, balances)
    routing_numbers = (details or {}).get("routing_numbers") or {}

    return Account(
        id=account["id"],
        name=account["name"],
        currency=currency,
        type=account_type,
        institution=transform_institution(account["institution"]),
        balance=balance,
        subtype=account.get("subtype"),
        enrollment_id=account.get("enrollment_id"),
        resource_id=account.get("last_four"),
        routing_number=routing_numbers.get("ach"),
        wire_routing_number=routing_numbers.get("wire"),
        account_number=(details or {}).get("account_number"),
        available_balance=balance.available_balance,
    )
