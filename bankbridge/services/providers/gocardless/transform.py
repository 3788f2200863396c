"""GoCardless wire payloads to canonical schemas."""

from datetime import timedelta
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
from bankbridge.services.balance_resolver import find_available_balance, select_primary_balance
from bankbridge.services.providers.gocardless.api import LINKED_STATUS
from bankbridge.services.transaction_normalizer import (
    build_description,
    categorize_inflow,
    counterparty_for,
    method_for,
    pick_name,
    resolve_transaction_id,
)
from bankbridge.utils.currency import resolve_currency
from bankbridge.utils.datetime_utils import parse_date

SECONDS_PER_DAY = 24 * 60 * 60


def map_account_type(cash_account_type: Optional[str]) -> AccountType:
    """ISO 20022 cash account type: CARD is credit, LOAN is loan, everything else depository."""
    if cash_account_type == "CARD":
        return AccountType.CREDIT
    if cash_account_type == "LOAN":
        return AccountType.LOAN
    return AccountType.DEPOSITORY


def balance_records(balances: Optional[List[Dict[str, Any]]]) -> List[BalanceRecord]:
    return [
        BalanceRecord(
            balance_type=balance.get("balanceType") or "",
            amount=Decimal(str(balance["balanceAmount"]["amount"])),
            currency=balance["balanceAmount"].get("currency"),
        )
        for balance in balances or []
    ]


def _normalize_credit(amount: Optional[Decimal], account_type: AccountType) -> Optional[Decimal]:
    if amount is not None and account_type == AccountType.CREDIT and amount < 0:
        return abs(amount)
    return amount


def transform_balance(
    balances: Optional[List[Dict[str, Any]]],
    account_type: AccountType,
    preferred_currency: Optional[str] = None,
) -> Balance:
    """Primary balance plus the available balance, negative card balances as positive debt."""
    records = balance_records(balances)
    primary = select_primary_balance(records, preferred_currency)
    available = find_available_balance(records)

    currency = resolve_currency(
        [preferred_currency, primary.currency if primary else None]
        + [record.currency for record in records]
    )

    return Balance(
        amount=_normalize_credit(primary.amount if primary else None, account_type),
        currency=currency,
        available_balance=_normalize_credit(available.amount if available else None, account_type),
    )


def transform_institution(institution: Dict[str, Any]) -> Institution:
    max_days = institution.get("max_access_valid_for_days")
    return Institution(
        id=institution["id"],
        name=institution["name"],
        logo=institution.get("logo"),
        provider=ProviderTag.GOCARDLESS,
        countries=institution.get("countries") or [],
        maximum_consent_validity=int(max_days) * SECONDS_PER_DAY if max_days else None,
    )


def _expires_at(created: Optional[str], access_valid_for_days: Optional[int]) -> Optional[str]:
    if not created or not access_valid_for_days:
        return None
    created_date = parse_date(created)
    return (created_date + timedelta(days=int(access_valid_for_days))).isoformat()


def transform_account(
    account: Dict[str, Any],
    balances: Optional[List[Dict[str, Any]]],
    institution: Dict[str, Any],
    access_valid_for_days: Optional[int] = None,
) -> Account:
    """
    Args:
        account: Account metadata merged with its ``details`` payload
        balances: Raw balances list
        institution: Raw institution payload
        access_valid_for_days: Agreement validity, for the consent expiry
    """
    details = account.get("account") or {}
    account_type = map_account_type(details.get("cashAccountType"))
    balance = transform_balance(balances, account_type, details.get("currency"))

    return Account(
        id=account["id"],
        name=pick_name(details.get("name"), details.get("product"), details.get("ownerName"), default="Account"),
        currency=balance.currency,
        type=account_type,
        institution=transform_institution(institution),
        balance=balance,
        subtype=(details.get("cashAccountType") or "").lower() or None,
        resource_id=details.get("resourceId"),
        iban=details.get("iban") or account.get("iban"),
        bic=details.get("bic"),
        account_number=details.get("bban"),
        available_balance=balance.available_balance,
        expires_at=_expires_at(account.get("created"), access_valid_for_days),
    )


def _remittance_lines(transaction: Dict[str, Any]) -> List[str]:
    lines = transaction.get("remittanceInformationUnstructuredArray")
    if lines:
        return [line for line in lines if line]
    single = transaction.get("remittanceInformationUnstructured") or transaction.get(
        "remittanceInformationStructured"
    )
    return [single] if single else []


def _currency_exchange(transaction: Dict[str, Any]) -> Dict[str, Any]:
    exchange = transaction.get("currencyExchange")
    if isinstance(exchange, list):
        return exchange[0] if exchange else {}
    return exchange or {}


def transform_transaction(
    transaction: Dict[str, Any],
    account_type: AccountType,
    status: TransactionStatus = TransactionStatus.POSTED,
) -> Transaction:
    """GoCardless amounts are already signed inflow-positive."""
    amount_payload = transaction["transactionAmount"]
    amount = Decimal(str(amount_payload["amount"]))
    is_inflow = amount > 0
    remittance = _remittance_lines(transaction)
    balance_after = ((transaction.get("balanceAfterTransaction") or {}).get("balanceAmount") or {}).get(
        "amount"
    )
    transaction_code = transaction.get("proprietaryBankTransactionCode")

    counterparty = counterparty_for(
        is_inflow,
        transaction.get("debtorName"),
        transaction.get("creditorName"),
    )
    name = pick_name(
        counterparty,
        remittance[0] if remittance else None,
        transaction.get("additionalInformation"),
        transaction_code,
    )
    exchange = _currency_exchange(transaction)
    booking_date = transaction.get("bookingDate") or transaction.get("valueDate")

    return Transaction(
        id=resolve_transaction_id(
            transaction.get("transactionId") or transaction.get("internalTransactionId"),
            transaction.get("entryReference"),
            booking_date=transaction.get("bookingDate"),
            value_date=transaction.get("valueDate"),
            amount=amount_payload["amount"],
            currency=amount_payload.get("currency"),
            reference_number=transaction.get("endToEndId"),
            remittance_information=remittance or None,
            balance_after=balance_after,
        ),
        amount=amount,
        currency=resolve_currency([amount_payload.get("currency")]),
        date=parse_date(booking_date),
        status=status,
        name=name,
        description=build_description(remittance, name),
        balance=Decimal(str(balance_after)) if balance_after is not None else None,
        category=categorize_inflow(amount, account_type, transaction_code),
        method=method_for(is_inflow, transaction_code),
        counterparty_name=counterparty,
        currency_rate=Decimal(str(exchange["exchangeRate"])) if exchange.get("exchangeRate") else None,
        currency_source=exchange.get("sourceCurrency"),
    )


def transform_connection_status(requisition: Dict[str, Any]) -> ConnectionStatus:
    if requisition.get("status") == LINKED_STATUS:
        return ConnectionStatus(status="connected")
    return ConnectionStatus(status="disconnected")
