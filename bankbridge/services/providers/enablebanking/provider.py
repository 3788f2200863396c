"""EnableBanking banking provider."""

import asyncio
from typing import Any, Awaitable, Callable, List, Optional

import httpx

from bankbridge.config import Settings
from bankbridge.core.cache import KeyValueCache
from bankbridge.core.credentials import CredentialCache
from bankbridge.core.exceptions import ProviderError, ProviderErrorCode
from bankbridge.core.retry import RetryPolicy
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
from bankbridge.services.providers.base_provider import BankingProvider, merge_transactions
from bankbridge.services.providers.enablebanking import transform
from bankbridge.services.providers.enablebanking.api import EnableBankingApi


def _require_session(connection_id: Optional[str]) -> str:
    if not connection_id:
        raise ValueError("EnableBanking requests require a session id")
    return connection_id


class EnableBankingProvider(BankingProvider):
    """EnableBanking (EU/UK open banking)."""

    tag = ProviderTag.ENABLEBANKING

    def __init__(
        self,
        settings: Settings,
        cache: KeyValueCache,
        credentials: CredentialCache,
        retry_policy: Optional[RetryPolicy] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.api = EnableBankingApi(
            settings.ENABLEBANKING_BASE_URL,
            cache=cache,
            credentials=credentials,
            application_id=settings.ENABLEBANKING_APPLICATION_ID,
            key_content=settings.ENABLEBANKING_KEY_CONTENT.get_secret_value(),
            redirect_url=settings.ENABLEBANKING_REDIRECT_URL,
            timeout=settings.REQUEST_TIMEOUT_SECONDS,
            retry_policy=retry_policy or RetryPolicy.from_settings(settings),
            transport=transport,
            sleep=sleep,
        )

    async def get_accounts(self, request: GetAccountsRequest) -> List[Account]:
        accounts = await self.api.get_accounts(_require_session(request.connection_id))
        return [transform.transform_account(account) for account in accounts]

    async def get_transactions(self, request: GetTransactionsRequest) -> List[Transaction]:
        account_type = request.account_type
        if account_type is None:
            details = await self.api.get_account_details(request.account_id)
            account_type = transform.map_account_type(details.get("cash_account_type"))

        raw = await self.api.get_transactions(request.account_id, latest=request.latest)
        return merge_transactions(
            transform.transform_transaction(transaction, account_type) for transaction in raw
        )

    async def get_account_balance(self, request: GetAccountBalanceRequest) -> Balance:
        balances, details = await asyncio.gather(
            self.api.get_balances(request.account_id),
            self.api.get_account_details(request.account_id),
        )
        account_type = request.account_type or transform.map_account_type(details.get("cash_account_type"))
        return transform.transform_balance(
            balances,
            account_type,
            details.get("currency"),
            details.get("credit_limit"),
        )

    async def get_institutions(self, request: GetInstitutionsRequest) -> List[Institution]:
        aspsps = await self.api.get_institutions(request.country_code)
        return [transform.transform_institution(aspsp) for aspsp in aspsps]

    async def get_connection_status(self, request: GetConnectionStatusRequest) -> ConnectionStatus:
        try:
            session = await self.api.get_session(_require_session(request.connection_id))
        except ProviderError as exc:
            if exc.code is ProviderErrorCode.DISCONNECTED:
                return ConnectionStatus(status="disconnected")
            raise
        return transform.transform_connection_status(session)

    async def delete_connection(self, request: DeleteConnectionRequest) -> None:
        await self.api.delete_session(_require_session(request.connection_id))

    async def delete_accounts(self, request: DeleteAccountsRequest) -> None:
        # Account access is granted per session
        await self.api.delete_session(_require_session(request.connection_id))

    async def get_health_check(self) -> bool:
        return await self.api.get_health_check()

    async def close(self) -> None:
        await self.api.close()
