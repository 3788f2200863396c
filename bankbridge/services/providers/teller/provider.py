"""Teller banking provider."""

import asyncio
from typing import Any, Awaitable, Callable, List, Optional

import httpx

from bankbridge.config import Settings
from bankbridge.core.exceptions import ProviderError, ProviderErrorCode
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
from bankbridge.services.balance_resolver import select_primary_balance
from bankbridge.services.providers.base_provider import BankingProvider, merge_transactions
from bankbridge.services.providers.teller import transform
from bankbridge.services.providers.teller.api import TellerApi, teller_cert


def _require_token(access_token: Optional[str]) -> str:
    if not access_token:
        raise ValueError("Teller requests require an enrollment access token")
    return access_token


class TellerProvider(BankingProvider):
    """Teller direct bank API (US)."""

    tag = ProviderTag.TELLER

    def __init__(
        self,
        settings: Settings,
        retry_policy: Optional[RetryPolicy] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.api = TellerApi(
            settings.TELLER_BASE_URL,
            timeout=settings.REQUEST_TIMEOUT_SECONDS,
            retry_policy=retry_policy or RetryPolicy.from_settings(settings),
            transport=transport,
            cert=teller_cert(settings.TELLER_CERT_PATH, settings.TELLER_KEY_PATH),
            sleep=sleep,
        )

    async def _get_account(self, account: dict, access_token: str) -> Account:
        account_type = transform.map_account_type(account.get("type"))
        balances_task = self.api.get_account_balances(account["id"], access_token)

        if account_type == AccountType.DEPOSITORY:
            balances, details = await asyncio.gather(
                balances_task,
                self.api.get_account_details(account["id"], access_token),
            )
        else:
            balances, details = await balances_task, None

        return transform.transform_account(account, balances=balances, details=details)

    async def get_accounts(self, request: GetAccountsRequest) -> List[Account]:
        access_token = _require_token(request.access_token)
        accounts = await self.api.get_accounts(access_token)
        open_accounts = [account for account in accounts if account.get("status", "open") == "open"]

        return list(
            await asyncio.gather(*(self._get_account(account, access_token) for account in open_accounts))
        )

    async def get_transactions(self, request: GetTransactionsRequest) -> List[Transaction]:
        access_token = _require_token(request.access_token)
        account_type = request.account_type
        if account_type is None:
            account = await self.api.get_account(request.account_id, access_token)
            account_type = transform.map_account_type(account.get("type"))

        raw = await self.api.get_transactions(request.account_id, access_token, latest=request.latest)
        return merge_transactions(
            transform.transform_transaction(transaction, account_type) for transaction in raw
        )

    async def get_account_balance(self, request: GetAccountBalanceRequest) -> Balance:
        access_token = _require_token(request.access_token)
        account_type = request.account_type or AccountType.DEPOSITORY
        balances = await self.api.get_account_balances(request.account_id, access_token)

        currency = transform.TELLER_DEFAULT_CURRENCY
        primary = select_primary_balance(transform.balance_records(balances, currency), currency)
        amount = primary.amount if primary is not None else None
        return transform.transform_account_balance(
            {"amount": amount, "currency": currency},
            account_type,
            balances,
        )

    async def get_institutions(self, request: GetInstitutionsRequest) -> List[Institution]:
        if request.country_code and request.country_code.upper() != "US":
            return []
        institutions = await self.api.get_institutions()
        return [transform.transform_institution(institution) for institution in institutions]

    async def get_connection_status(self, request: GetConnectionStatusRequest) -> ConnectionStatus:
        access_token = _require_token(request.access_token)
        try:
            accounts = await self.api.get_accounts(access_token)
        except ProviderError as exc:
            if exc.code is ProviderErrorCode.DISCONNECTED:
                return ConnectionStatus(status="disconnected")
            raise

        if any(account.get("status", "open") == "open" for account in accounts):
            return ConnectionStatus(status="connected")
        return ConnectionStatus(status="disconnected")

    async def delete_connection(self, request: DeleteConnectionRequest) -> None:
        await self.api.delete_accounts(_require_token(request.access_token))

    async def delete_accounts(self, request: DeleteAccountsRequest) -> None:
        access_token = _require_token(request.access_token)
        if request.account_id:
            await self.api.delete_account(request.account_id, access_token)
        else:
            await self.api.delete_accounts(access_token)

    async def get_health_check(self) -> bool:
        return await self.api.get_health_check()

    async def close(self) -> None:
        await self.api.close()
