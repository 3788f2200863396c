"""GoCardless banking provider."""

import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Optional

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
    TransactionStatus,
)
from bankbridge.services.providers.base_provider import BankingProvider, merge_transactions
from bankbridge.services.providers.gocardless import transform
from bankbridge.services.providers.gocardless.api import GoCardlessApi


def _require_connection(connection_id: Optional[str]) -> str:
    if not connection_id:
        raise ValueError("GoCardless requests require a requisition id")
    return connection_id


class GoCardlessProvider(BankingProvider):
    """GoCardless Bank Account Data (EU/UK open banking)."""

    tag = ProviderTag.GOCARDLESS

    def __init__(
        self,
        settings: Settings,
        cache: KeyValueCache,
        credentials: CredentialCache,
        retry_policy: Optional[RetryPolicy] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.api = GoCardlessApi(
            settings.GOCARDLESS_BASE_URL,
            cache=cache,
            credentials=credentials,
            secret_id=settings.GOCARDLESS_SECRET_ID,
            secret_key=settings.GOCARDLESS_SECRET_KEY.get_secret_value(),
            timeout=settings.REQUEST_TIMEOUT_SECONDS,
            retry_policy=retry_policy or RetryPolicy.from_settings(settings),
            transport=transport,
            sleep=sleep,
        )

    async def _get_account(
        self,
        account_id: str,
        institution: Dict[str, Any],
        access_valid_for_days: Optional[int],
    ) -> Account:
        details, balances = await asyncio.gather(
            self.api.get_account_details(account_id),
            self.api.get_account_balances(account_id),
        )
        return transform.transform_account(details, balances, institution, access_valid_for_days)

    async def get_accounts(self, request: GetAccountsRequest) -> List[Account]:
        requisition = await self.api.get_requisition(_require_connection(request.connection_id))
        account_ids = requisition.get("accounts") or []
        if not account_ids:
            return []

        institution, agreement = await asyncio.gather(
            self.api.get_institution(requisition["institution_id"]),
            self.api.get_end_user_agreement(requisition["agreement"]),
        )
        access_days = agreement.get("access_valid_for_days")

        return list(
            await asyncio.gather(
                *(self._get_account(account_id, institution, access_days) for account_id in account_ids)
            )
        )

    async def get_transactions(self, request: GetTransactionsRequest) -> List[Transaction]:
        account_type = request.account_type
        if account_type is None:
            details = await self.api.get_account_details(request.account_id)
            account_type = transform.map_account_type((details.get("account") or {}).get("cashAccountType"))

        raw = await self.api.get_transactions(request.account_id, latest=request.latest)
        booked = [transform.transform_transaction(item, account_type) for item in raw["booked"]]
        pending = [
            transform.transform_transaction(item, account_type, TransactionStatus.PENDING)
            for item in raw["pending"]
        ]
        return merge_transactions(booked, pending)

    async def get_account_balance(self, request: GetAccountBalanceRequest) -> Balance:
        details, balances = await asyncio.gather(
            self.api.get_account_details(request.account_id),
            self.api.get_account_balances(request.account_id),
        )
        account_details = details.get("account") or {}
        account_type = request.account_type or transform.map_account_type(account_details.get("cashAccountType"))
        return transform.transform_balance(balances, account_type, account_details.get("currency"))

    async def get_institutions(self, request: GetInstitutionsRequest) -> List[Institution]:
        institutions = await self.api.get_institutions(request.country_code)
        return [transform.transform_institution(institution) for institution in institutions]

    async def get_connection_status(self, request: GetConnectionStatusRequest) -> ConnectionStatus:
        try:
            requisition = await self.api.get_requisition(_require_connection(request.connection_id))
        except ProviderError as exc:
            if exc.code is ProviderErrorCode.DISCONNECTED:
                return ConnectionStatus(status="disconnected")
            raise
        return transform.transform_connection_status(requisition)

    async def delete_connection(self, request: DeleteConnectionRequest) -> None:
        await self.api.delete_requisition(_require_connection(request.connection_id))

    async def delete_accounts(self, request: DeleteAccountsRequest) -> None:
        # Accounts are bound to the requisition; removing access means deleting it
        await self.api.delete_requisition(_require_connection(request.connection_id))

    async def get_health_check(self) -> bool:
        return await self.api.get_health_check()

    async def close(self) -> None:
        await self.api.close()
