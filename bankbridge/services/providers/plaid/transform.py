"""Plaid wire payloads to canonical schemas."""

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
    pick_name,
    resolve_transaction_id,
)
from bankbridge.utils.currency import resolve_currency
from bankbridge.utils.datetime_utils import parse_date
from bankbridge.utils.text import capital_case

_PRIMARY_CATEGORIES = {
    "BANK_FEES": FEES_CATEGORY,
    "INCOME": INCOME_CATEGORY,
    "FOOD_AND_DRINK": "meals",
    "TRAVEL": "travel",
    "TRANSPORTATION": "travel",
    "RENT_AND_UTILITIES": "utilities",
}

_PAYMENT_PRIMARY = frozenset({"LOAN_PAYMENTS", "TRANSFER_IN"})


def _decimal(value: Any) -> Optional[Decimal]:
    if value is None:
        return None
    return Decimal(str(value))


def map_account_type(plaid_type: Optional[str]) -> AccountType:
    if plaid_type == "credit":
        return AccountType.CREDIT
    if plaid_type == "loan":
        return AccountType.LOAN
    return AccountType.DEPOSITORY


def _primary_category(transaction: Dict[str, Any]) -> Optional[str]:
    category = transaction.get("personal_finance_category") or {}
    return category.get("primary")


def map_transaction_method(transaction: Dict[str, Any]) -> TransactionMethod:
    primary = _primary_category(transaction)
    if primary == "BANK_FEES":
        return TransactionMethod.FEE
    if primary in ("TRANSFER_IN", "TRANSFER_OUT"):
        return TransactionMethod.TRANSFER
    if primary == "LOAN_PAYMENTS":
        return TransactionMethod.PAYMENT

    transaction_code = transaction.get("transaction_code")
    if transaction_code == "atm":
        return TransactionMethod.CARD_ATM
    if transaction_code in ("purchase", "direct debit") or transaction.get("payment_channel") in (
        "in store",
        "online",
    ):
        return TransactionMethod.CARD_PURCHASE
    return TransactionMethod.OTHER


def map_transaction_category(
    transaction: Dict[str, Any],
    amount: Decimal,
    account_type: AccountType,
) -> Optional[str]:
    primary = _primary_category(transaction)

    if account_type == AccountType.CREDIT and amount > 0 and primary in _PAYMENT_PRIMARY:
        return CREDIT_CARD_PAYMENT_CATEGORY

    category = _PRIMARY_CATEGORIES.get(primary or "")
    if category:
        return category

    if amount > 0 and account_type == AccountType.DEPOSITORY:
        return INCOME_CATEGORY
    return None


def transform_transaction(transaction: Dict[str, Any], account_type: AccountType) -> Transaction:
    """
    Plaid reports money leaving the account as a positive amount on every
    account type, so the canonical amount is the negation.
    """
    amount = -_decimal(transaction["amount"])
    currency = resolve_currency(
        [transaction.get("iso_currency_code"), transaction.get("unofficial_currency_code")]
    )
    name = pick_name(transaction.get("merchant_name"), transaction.get("name"))
    merchant_name = transaction.get("merchant_name")

    description = capital_case(transaction.get("original_description") or transaction.get("name"))
    if description == name:
        description = None

    return Transaction(
        id=resolve_transaction_id(transaction.get("transaction_id")),
        amount=amount,
        currency=currency,
        date=parse_date(transaction["date"]),
        status=TransactionStatus.PENDING if transaction.get("pending") else TransactionStatus.POSTED,
        name=name,
        description=description or None,
        category=map_transaction_category(transaction, amount, account_type),
        method=map_transaction_method(transaction),
        counterparty_name=capital_case(merchant_name) or None,
        merchant_name=merchant_name,
    )


def balance_records(balances: Dict[str, Any], currency: str) -> List[BalanceRecord]:
    """Plaid ``current`` is the booked position, ``available`` the spendable one."""
    records = []
    if balances.get("current") is not None:
        records.append(
            BalanceRecord(balance_type="interimBooked", amount=_decimal(balances["current"]), currency=currency)
        )
    if balances.get("available") is not None:
        records.append(
            BalanceRecord(balance_type="interimAvailable", amount=_decimal(balances["available"]), currency=currency)
        )
    return records


def transform_account_balance(balances: Dict[str, Any]) -> Balance:
    """
    Plaid already reports credit balances as positive debt and an overpaid
    card as a negative balance, so no sign change is applied.
    """
    currency = resolve_currency(
        [balances.get("iso_currency_code"), balances.get("unofficial_currency_code")]
    )
    primary = select_primary_balance(balance_records(balances, currency), currency)

    return Balance(
        amount=primary.amount if primary is not None else None,
        currency=currency,
        available_balance=_decimal(balances.get("available")),
        credit_limit=_decimal(balances.get("limit")),
    )


def transform_institution(institution: Dict[str, Any]) -> Institution:
    logo = institution.get("logo")
    return Institution(
        id=institution["institution_id"],
        name=institution["name"],
        # Plaid ships logos inline as base64 PNG
        logo=f"data:image/png;base64,{logo}" if logo else None,
        provider=ProviderTag.PLAID,
        countries=[str(code) for code in institution.get("country_codes") or []],
    )


def transform_account(account: Dict[str, Any], institution: Institution) -> Account:
    balance = transform_account_balance(account.get("balances") or {})
    return Account(
        id=account["account_id"],
        name=account.get("official_name") or account["name"],
        currency=balance.currency,
        type=map_account_type(account.get("type")),
        institution=institution,
        balance=balance,
        subtype=account.get("subtype"),
        resource_id=account.get("persistent_account_id") or account.get("mask"),
        available_balance=balance.available_balance,
        credit_limit=balance.credit_limit,
    )
