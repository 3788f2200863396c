"""Canonical banking schemas shared by every provider adapter."""

from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from bankbridge.utils.currency import NO_CURRENCY


class ProviderTag(str, Enum):
    """Supported bank data vendors."""

    PLAID = "plaid"
    TELLER = "teller"
    GOCARDLESS = "gocardless"
    ENABLEBANKING = "enablebanking"


class AccountType(str, Enum):
    """Canonical account types."""

    DEPOSITORY = "depository"
    CREDIT = "credit"
    LOAN = "loan"


class TransactionStatus(str, Enum):
    POSTED = "posted"
    PENDING = "pending"


class TransactionMethod(str, Enum):
    """How money moved, as far as the vendor tells us."""

    PAYMENT = "payment"
    CARD_PURCHASE = "card_purchase"
    CARD_ATM = "card_atm"
    TRANSFER = "transfer"
    ACH = "ach"
    DEPOSIT = "deposit"
    WIRE = "wire"
    FEE = "fee"
    OTHER = "other"


class Institution(BaseModel):
    """A bank as listed by one provider. Immutable; use ``model_copy`` to change."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    provider: ProviderTag
    logo: Optional[str] = None
    countries: List[str] = Field(default_factory=list)
    type: Optional[str] = None  # e.g. "personal" / "business"
    maximum_consent_validity: Optional[int] = None  # seconds


class BalanceRecord(BaseModel):
    """One vendor balance entry, input to the balance resolver."""

    balance_type: str
    amount: Decimal
    currency: Optional[str] = None


class Balance(BaseModel):
    """
    Current balance of an account. Not persisted by this package.

    ``amount`` is None when the vendor reported no usable balance record.
    """

    amount: Optional[Decimal] = None
    currency: str = NO_CURRENCY
    available_balance: Optional[Decimal] = None
    credit_limit: Optional[Decimal] = None


class Account(BaseModel):
    """Canonical account. For credit accounts a positive balance means money owed."""

    id: str
    name: str
    currency: str = NO_CURRENCY
    type: AccountType
    institution: Institution
    balance: Balance
    subtype: Optional[str] = None
    enrollment_id: Optional[str] = None
    resource_id: Optional[str] = None  # IBAN, last four, or vendor persistent id
    iban: Optional[str] = None
    bic: Optional[str] = None
    sort_code: Optional[str] = None
    routing_number: Optional[str] = None
    wire_routing_number: Optional[str] = None
    account_number: Optional[str] = None
    available_balance: Optional[Decimal] = None
    credit_limit: Optional[Decimal] = None
    expires_at: Optional[str] = None  # ISO timestamp when consent lapses


class Transaction(BaseModel):
    """Canonical transaction. Positive amounts are inflows, negative are outflows."""

    id: str
    amount: Decimal
    currency: str = NO_CURRENCY
    date: date
    status: TransactionStatus = TransactionStatus.POSTED
    name: str = ""
    description: Optional[str] = None
    balance: Optional[Decimal] = None  # running balance after the transaction
    category: Optional[str] = None
    method: TransactionMethod = TransactionMethod.OTHER
    counterparty_name: Optional[str] = None
    merchant_name: Optional[str] = None
    currency_rate: Optional[Decimal] = None
    currency_source: Optional[str] = None


class ConnectionStatus(BaseModel):
    status: Literal["connected", "disconnected"]


# ── Facade requests ──────────────────────────────────────────────────────────


class GetAccountsRequest(BaseModel):
    """
    Accounts of one connection.

    ``connection_id`` is the GoCardless requisition id or EnableBanking
    session id; Plaid and Teller identify the connection by access token.
    """

    access_token: Optional[str] = None
    connection_id: Optional[str] = None
    institution_id: Optional[str] = None


class GetTransactionsRequest(BaseModel):
    account_id: str
    access_token: Optional[str] = None
    account_type: Optional[AccountType] = None
    latest: bool = False


class GetAccountBalanceRequest(BaseModel):
    account_id: str
    access_token: Optional[str] = None
    account_type: Optional[AccountType] = None


class GetInstitutionsRequest(BaseModel):
    country_code: Optional[str] = None


class GetConnectionStatusRequest(BaseModel):
    access_token: Optional[str] = None
    connection_id: Optional[str] = None


class DeleteConnectionRequest(BaseModel):
    access_token: Optional[str] = None
    connection_id: Optional[str] = None


class DeleteAccountsRequest(BaseModel):
    access_token: Optional[str] = None
    connection_id: Optional[str] = None
    account_id: Optional[str] = None


class InstitutionsResult(BaseModel):
    """Merged institution list plus the providers that failed to answer."""

    institutions: List[Institution] = Field(default_factory=list)
    errors: Dict[str, str] = Field(default_factory=dict)
