"""EnableBanking wire payloads to canonical schemas."""

import hashlib
from decimal import Decimal
from typing import Any, Dict, List, Optional

from bankbridge.schemas.banking import (
    Account,
    AccountType,
    Balance,
    BalanceRecord,
    ConnectionStatus,
    Institution,
    ProviderTag,
    Transaction,
    TransactionStatus,
)
from bankbridge.services.balance_resolver import AVAILABLE_BALANCE_TYPES, select_primary_balance
from bankbridge.services.transaction_normalizer import (
    build_description,
    categorize_inflow,
    counterparty_for,
    method_for,
    pick_name,
    resolve_transaction_id,
)
from bankbridge.utils.currency import is_valid_currency, normalize_currency, resolve_currency
from bankbridge.utils.datetime_utils import parse_date

CREDIT = "CRDT"
DEBIT = "DBIT"


def hash_institution_id(name: str, country: Optional[str] = None) -> str:
    """EnableBanking has no ASPSP ids; derive a stable one from name and country."""
    return hashlib.md5(f"{name}-{country}".encode("utf-8")).hexdigest()[:12]


def map_account_type(cash_account_type: Optional[str]) -> AccountType:
    """ISO 20022 cash account type: CARD is credit, LOAN is loan, everything else depository."""
    if cash_account_type == "CARD":
        return AccountType.CREDIT
    if cash_account_type == "LOAN":
        return AccountType.LOAN
    return AccountType.DEPOSITORY


def is_available_balance_type(balance_type: Optional[str]) -> bool:
    if not balance_type:
        return False
    return "available" in balance_type.lower() or balance_type.lower() in AVAILABLE_BALANCE_TYPES


def balance_records(balances: Optional[List[Dict[str, Any]]]) -> List[BalanceRecord]:
    return [
        BalanceRecord(
            balance_type=balance.get("balance_type") or "",
            amount=Decimal(str(balance["balance_amount"]["amount"])),
            currency=balance["balance_amount"].get("currency"),
        )
        for balance in balances or []
    ]


def _normalize_credit(amount: Optional[Decimal], account_type: AccountType) -> Optional[Decimal]:
    if amount is not None and account_type == AccountType.CREDIT and amount < 0:
        return abs(amount)
    return amount


def _credit_limit(credit_limit: Optional[Dict[str, Any]]) -> Optional[Decimal]:
    if credit_limit and credit_limit.get("amount"):
        return Decimal(str(credit_limit["amount"]))
    return None


def transform_balance(
    balances: Optional[List[Dict[str, Any]]],
    account_type: AccountType,
    preferred_currency: Optional[str] = None,
    credit_limit: Optional[Dict[str, Any]] = None,
) -> Balance:
    """
    Primary balance, available balance and credit limit of an account.

    The available balance prefers an available-type record in the resolved
    currency, then any available-type record.
    """
    records = balance_records(balances)
    primary = select_primary_balance(records, preferred_currency)

    currency = resolve_currency(
        [preferred_currency, primary.currency if primary else None]
        + [record.currency for record in records]
    )

    available_records = [record for record in records if is_available_balance_type(record.balance_type)]
    available = next(
        (record for record in available_records if normalize_currency(record.currency) == currency),
        available_records[0] if available_records else None,
    )

    return Balance(
        amount=_normalize_credit(primary.amount if primary else None, account_type),
        currency=currency,
        available_balance=_normalize_credit(available.amount if available else None, account_type),
        credit_limit=_credit_limit(credit_limit),
    )


def transform_institution(aspsp: Dict[str, Any]) -> Institution:
    psu_types = aspsp.get("psu_types") or []
    return Institution(
        id=hash_institution_id(aspsp["name"], aspsp.get("country")),
        name=aspsp["name"],
        logo=aspsp.get("logo"),
        provider=ProviderTag.ENABLEBANKING,
        countries=[aspsp["country"]] if aspsp.get("country") else [],
        type=psu_types[0] if len(psu_types) == 1 else None,
        maximum_consent_validity=aspsp.get("maximum_consent_validity"),
    )


def _account_name(account: Dict[str, Any]) -> str:
    return pick_name(account.get("product"), account.get("name"), account.get("details"), default="Account")


def transform_account(account: Dict[str, Any]) -> Account:
    """
    Args:
        account: Account details merged with ``institution`` (session ASPSP),
            ``valid_until`` (session consent end) and ``balances``
    """
    account_type = map_account_type(account.get("cash_account_type"))
    details_currency = account.get("currency")
    balance = transform_balance(
        account.get("balances"),
        account_type,
        details_currency if is_valid_currency(details_currency) else None,
        account.get("credit_limit"),
    )
    institution = account.get("institution") or {}

    return Account(
        id=account["uid"],
        name=_account_name(account),
        currency=balance.currency,
        type=account_type,
        institution=transform_institution(institution),
        balance=balance,
        subtype=(account.get("cash_account_type") or "").lower() or None,
        resource_id=account.get("identification_hash"),
        iban=(account.get("account_id") or {}).get("iban"),
        bic=(account.get("account_servicer") or {}).get("bic_fi"),
        available_balance=balance.available_balance,
        credit_limit=balance.credit_limit,
        expires_at=account.get("valid_until"),
    )


def transform_session_data(session: Dict[str, Any]) -> Dict[str, Any]:
    """Session id, consent expiry and the account references to persist."""
    access = session.get("access") or {}
    return {
        "session_id": session["session_id"],
        "expires_at": access.get("valid_until"),
        "access": access,
        "accounts": [
            {
                "account_reference": account.get("identification_hash"),
                "account_id": account["uid"],
            }
            for account in session.get("accounts") or []
        ],
    }


def transform_connection_status(session: Dict[str, Any]) -> ConnectionStatus:
    if session.get("status") == "AUTHORIZED":
        return ConnectionStatus(status="connected")
    return ConnectionStatus(status="disconnected")


def _remittance(transaction: Dict[str, Any]) -> List[str]:
    return [line for line in transaction.get("remittance_information") or [] if line and line.strip()]


def transform_transaction_name(transaction: Dict[str, Any]) -> Optional[str]:
    """Remittance text, then the counterparty, then the bank's code description, then the reference."""
    remittance = transaction.get("remittance_information") or []
    if remittance and remittance[0]:
        return remittance[0]

    indicator = transaction.get("credit_debit_indicator")
    if indicator == CREDIT and (transaction.get("debtor") or {}).get("name"):
        return transaction["debtor"]["name"]
    if indicator == DEBIT and (transaction.get("creditor") or {}).get("name"):
        return transaction["creditor"]["name"]

    code_description = (transaction.get("bank_transaction_code") or {}).get("description")
    if code_description:
        return code_description
    return transaction.get("reference_number")


def transform_transaction(transaction: Dict[str, Any], account_type: AccountType) -> Transaction:
    """
    EnableBanking amounts are unsigned; the credit/debit indicator carries
    the direction (CRDT inflow, DBIT outflow).
    """
    amount_payload = transaction["transaction_amount"]
    magnitude = abs(Decimal(str(amount_payload["amount"])))
    is_inflow = transaction.get("credit_debit_indicator") == CREDIT
    amount = magnitude if is_inflow else -magnitude

    remittance = transaction.get("remittance_information")
    balance_after = (transaction.get("balance_after_transaction") or {}).get("amount")
    code_description = (transaction.get("bank_transaction_code") or {}).get("description")
    name = pick_name(transform_transaction_name(transaction))

    return Transaction(
        id=resolve_transaction_id(
            transaction.get("transaction_id"),
            transaction.get("entry_reference"),
            booking_date=transaction.get("booking_date"),
            value_date=transaction.get("value_date"),
            amount=amount_payload["amount"],
            currency=amount_payload.get("currency"),
            credit_debit_indicator=transaction.get("credit_debit_indicator"),
            reference_number=transaction.get("reference_number"),
            remittance_information=remittance,
            balance_after=balance_after,
        ),
        amount=amount,
        currency=resolve_currency([amount_payload.get("currency")]),
        date=parse_date(transaction.get("booking_date") or transaction.get("value_date")),
        status=(
            TransactionStatus.PENDING
            if transaction.get("status") == "PDNG"
            else TransactionStatus.POSTED
        ),
        name=name,
        description=build_description(_remittance(transaction), name),
        balance=Decimal(str(balance_after)) if balance_after is not None else None,
        category=categorize_inflow(amount, account_type, code_description),
        method=method_for(is_inflow, code_description),
        counterparty_name=counterparty_for(
            is_inflow,
            (transaction.get("debtor") or {}).get("name"),
            (transaction.get("creditor") or {}).get("name"),
        ),
    )
