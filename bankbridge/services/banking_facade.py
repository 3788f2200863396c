"""
Unified banking facade.

The single entry point the application uses for bank data. Every call names a
provider tag; the facade resolves the provider through the factory and returns
canonical schemas.

Usage::

    facade = BankingFacade(ProviderFactory(settings, cache=cache))
    accounts = await facade.get_accounts(
        "gocardless", GetAccountsRequest(connection_id=requisition_id)
    )
"""

import asyncio
import logging
from typing import Dict, List, Union

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
from bankbridge.services.providers.base_provider import BankingProvider
from bankbridge.services.providers.provider_factory import ProviderFactory

logger = logging.getLogger(__name__)

Tag = Union[ProviderTag, str]


class BankingFacade:
    """Dispatches banking operations to the provider selected by tag."""

    def __init__(self, factory: ProviderFactory):
        self.factory = factory

    def _provider(self, tag: Tag) -> BankingProvider:
        return self.factory.get_provider(tag)

    async def get_accounts(self, tag: Tag, request: GetAccountsRequest) -> List[Account]:
        return await self._provider(tag).get_accounts(request)

    async def get_transactions(self, tag: Tag, request: GetTransactionsRequest) -> List[Transaction]:
        return await self._provider(tag).get_transactions(request)

    async def get_account_balance(self, tag: Tag, request: GetAccountBalanceRequest) -> Balance:
        return await self._provider(tag).get_account_balance(request)

    async def get_institutions(self, tag: Tag, request: GetInstitutionsRequest) -> List[Institution]:
        return await self._provider(tag).get_institutions(request)

    async def get_connection_status(self, tag: Tag, request: GetConnectionStatusRequest) -> ConnectionStatus:
        return await self._provider(tag).get_connection_status(request)

    async def delete_connection(self, tag: Tag, request: DeleteConnectionRequest) -> None:
        """Revoke the connection at the vendor."""
        provider = self._provider(tag)
        await provider.delete_connection(request)
        logger.info("Deleted %s connection", provider.tag.value)

    async def delete_accounts(self, tag: Tag, request: DeleteAccountsRequest) -> None:
        provider = self._provider(tag)
        await provider.delete_accounts(request)
        logger.info("Deleted %s accounts", provider.tag.value)

    async def get_health_check(self) -> Dict[str, bool]:
        """Reachability of every vendor, probed concurrently."""
        providers = self.factory.all_providers()
        results = await asyncio.gather(*(provider.get_health_check() for provider in providers.values()))
        return {tag.value: healthy for tag, healthy in zip(providers, results)}

    async def close(self) -> None:
        await self.factory.close()
