"""
Base provider interface for bank data vendors.

Every vendor adapter implements the same operations and returns canonical
schemas, so callers can dispatch on a provider tag without knowing which
vendor sits behind it.
"""

from abc import ABC, abstractmethod
from typing import Iterable, List

from bankbridge.schemas.banking import (
    Account,
    Balance,
    ConnectionStatus,
    DeleteAccountsRequest,
    DeleteConnectionRequest,
    GetAccountBalanceRequest,
    GetAccountsRequest,
    GetConnectionStatusRequest,
    GetInstitutionsRequest,
    GetTransactionsRequest,
    Institution,
    ProviderTag,
    Transaction,
)

# Incremental sync window
LATEST_WINDOW_DAYS = 5
# Broadest history requested on a full sync
FULL_HISTORY_DAYS = 730
# Bounded range used when the broad request fails or comes back stale
DEFAULT_HISTORY_DAYS = 365
# A full-history result whose newest transaction is older than this is stale
STALE_AFTER_DAYS = 7


class BankingProvider(ABC):
    """Abstract base class for bank data providers."""

    tag: ProviderTag

    @abstractmethod
    async def get_accounts(self, request: GetAccountsRequest) -> List[Account]:
        """Accounts of one connection, with balances resolved."""
        pass

    @abstractmethod
    async def get_transactions(self, request: GetTransactionsRequest) -> List[Transaction]:
        """All transactions of an account in the requested window, newest first."""
        pass

    @abstractmethod
    async def get_account_balance(self, request: GetAccountBalanceRequest) -> Balance:
        pass

    @abstractmethod
    async def get_institutions(self, request: GetInstitutionsRequest) -> List[Institution]:
        pass

    @abstractmethod
    async def get_connection_status(self, request: GetConnectionStatusRequest) -> ConnectionStatus:
        pass

    @abstractmethod
    async def delete_connection(self, request: DeleteConnectionRequest) -> None:
        pass

    @abstractmethod
    async def delete_accounts(self, request: DeleteAccountsRequest) -> None:
        pass

    @abstractmethod
    async def get_health_check(self) -> bool:
        """True when the vendor API is reachable. Never raises."""
        pass

    async def close(self) -> None:
        """Release network resources held by the provider."""
        pass


def merge_transactions(*batches: Iterable[Transaction]) -> List[Transaction]:
    """Merge batches by id (first occurrence wins) and sort newest first."""
    merged = {}
    for batch in batches:
        for transaction in batch:
            merged.setdefault(transaction.id, transaction)
    return sorted(merged.values(), key=lambda transaction: transaction.date, reverse=True)
