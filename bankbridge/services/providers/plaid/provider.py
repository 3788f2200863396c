"""Plaid banking provider."""

import asyncio
from typing import Any, Awaitable, Callable, List, Optional

import httpx
from plaid.api import plaid_api

from bankbridge.config import Settings
from bankbridge.core.exceptions import PLAID_DISCONNECTED_CODES, ProviderError, ProviderErrorCode
from bankbridge.core.retry import RetryPolicy
from bankbridge.schemas.banking import (
    Account,
    AccountType,
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
from bankbridge.services.providers.base_provider import BankingProvider, merge_transactions
from bankbridge.services.providers.plaid import transform
from bankbridge.services.providers.plaid.api import SUPPORTED_COUNTRY_CODES, PlaidApi


def _require_token(access_token: Optional[str]) -> str:
    if not access_token:
        raise ValueError("Plaid requests require an item access token")
    return access_token


class PlaidProvider(BankingProvider):
    """Plaid aggregator (US card and ledger accounts)."""

    tag = ProviderTag.PLAID

    def __init__(
        self,
        settings: Settings,
        retry_policy: Optional[RetryPolicy] = None,
        client: Optional[plaid_api.PlaidApi] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.api = PlaidApi(
            settings.PLAID_CLIENT_ID,
            settings.PLAID_SECRET.get_secret_value(),
            environment=settings.PLAID_ENV,
            retry_policy=retry_policy or RetryPolicy.from_settings(settings),
            client=client,
            status_url=settings.PLAID_STATUS_URL,
            timeout=settings.REQUEST_TIMEOUT_SECONDS,
            transport=transport,
            sleep=sleep,
        )

    async def _institution(self, institution_id: Optional[str]) -> Institution:
        if not institution_id:
            return Institution(id="unknown", name="Unknown", provider=ProviderTag.PLAID)
        return transform.transform_institution(await self.api.get_institution(institution_id))

    async def get_accounts(self, request: GetAccountsRequest) -> List[Account]:
        access_token = _require_token(request.access_token)
        response = await self.api.get_accounts(access_token)

        institution_id = request.institution_id or (response.get("item") or {}).get("institution_id")
        institution = await self._institution(institution_id)

        return [transform.transform_account(account, institution) for account in response.get("accounts") or []]

    async def get_transactions(self, request: GetTransactionsRequest) -> List[Transaction]:
        access_token = _require_token(request.access_token)
        raw = await self.api.get_transactions(access_token, request.account_id, latest=request.latest)
        account_type = request.account_type or AccountType.DEPOSITORY

        return merge_transactions(
            transform.transform_transaction(transaction, account_type) for transaction in raw
        )

    async def get_account_balance(self, request: GetAccountBalanceRequest) -> Balance:
        access_token = _require_token(request.access_token)
        account = await self.api.get_account_balance(access_token, request.account_id)
        if account is None:
            raise ProviderError(
                ProviderErrorCode.UNKNOWN,
                f"Account {request.account_id} not found on Plaid item",
                provider=self.tag.value,
            )
        return transform.transform_account_balance(account.get("balances") or {})

    async def get_institutions(self, request: GetInstitutionsRequest) -> List[Institution]:
        country_code = (request.country_code or "US").upper()
        if country_code not in SUPPORTED_COUNTRY_CODES:
            return []
        institutions = await self.api.get_institutions(country_code)
        return [transform.transform_institution(institution) for institution in institutions]

    async def get_connection_status(self, request: GetConnectionStatusRequest) -> ConnectionStatus:
        access_token = _require_token(request.access_token)
        try:
            response = await self.api.get_item(access_token)
        except ProviderError as exc:
            if exc.code is ProviderErrorCode.DISCONNECTED:
                return ConnectionStatus(status="disconnected")
            raise

        item_error = (response.get("item") or {}).get("error") or {}
        if item_error.get("error_code") in PLAID_DISCONNECTED_CODES:
            return ConnectionStatus(status="disconnected")
        return ConnectionStatus(status="connected")

    async def delete_connection(self, request: DeleteConnectionRequest) -> None:
        await self.api.remove_item(_require_token(request.access_token))

    async def delete_accounts(self, request: DeleteAccountsRequest) -> None:
        # Plaid has no per-account removal; accounts go away with the item
        await self.api.remove_item(_require_token(request.access_token))

    async def get_health_check(self) -> bool:
        return await self.api.get_health_check()
