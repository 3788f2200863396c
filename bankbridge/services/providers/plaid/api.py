"""
Plaid API client.

Wraps the synchronous plaid-python SDK. Each SDK call runs in a worker
thread, goes through the rate-limit retry, and returns the response as a
plain dict.
"""

import asyncio
import json
import logging
from datetime import date
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

import httpx
import plaid
from plaid.api import plaid_api
from plaid.model.accounts_balance_get_request import AccountsBalanceGetRequest
from plaid.model.accounts_balance_get_request_options import AccountsBalanceGetRequestOptions
from plaid.model.accounts_get_request import AccountsGetRequest
from plaid.model.country_code import CountryCode
from plaid.model.institutions_get_by_id_request import InstitutionsGetByIdRequest
from plaid.model.institutions_get_by_id_request_options import InstitutionsGetByIdRequestOptions
from plaid.model.institutions_get_request import InstitutionsGetRequest
from plaid.model.institutions_get_request_options import InstitutionsGetRequestOptions
from plaid.model.item_get_request import ItemGetRequest
from plaid.model.item_public_token_exchange_request import ItemPublicTokenExchangeRequest
from plaid.model.item_remove_request import ItemRemoveRequest
from plaid.model.link_token_create_request import LinkTokenCreateRequest
from plaid.model.link_token_create_request_user import LinkTokenCreateRequestUser
from plaid.model.products import Products
from plaid.model.transactions_get_request import TransactionsGetRequest
from plaid.model.transactions_get_request_options import TransactionsGetRequestOptions

from bankbridge.core.exceptions import ProviderError, classify_error
from bankbridge.core.retry import RetryPolicy, with_rate_limit_retry
from bankbridge.services.providers.base_provider import FULL_HISTORY_DAYS, LATEST_WINDOW_DAYS
from bankbridge.utils.datetime_utils import days_ago, utc_today
from bankbridge.utils.logging_utils import redact_token

logger = logging.getLogger(__name__)

_PLAID_HOSTS = {
    "sandbox": "https://sandbox.plaid.com",
    "development": "https://development.plaid.com",
    "production": "https://production.plaid.com",
}

TRANSACTIONS_PAGE_SIZE = 500
INSTITUTIONS_PAGE_SIZE = 500

# Plaid serves North American institutions in this deployment
SUPPORTED_COUNTRY_CODES = ("US", "CA")


def to_provider_error(exc: plaid.ApiException) -> ProviderError:
    """Translate an SDK ApiException into a ProviderError."""
    try:
        body = json.loads(exc.body) if exc.body else {}
    except (TypeError, ValueError):
        body = {}

    message = body.get("error_message") or exc.reason or "Plaid request failed"
    return classify_error("plaid", body.get("error_code"), message, status_code=exc.status)


class PlaidApi:
    """Async facade over the Plaid SDK."""

    provider = "plaid"

    def __init__(
        self,
        client_id: str,
        secret: str,
        environment: str = "sandbox",
        retry_policy: Optional[RetryPolicy] = None,
        client: Optional[plaid_api.PlaidApi] = None,
        status_url: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._client_id = client_id
        self._secret = secret
        self._host = _PLAID_HOSTS.get(environment, _PLAID_HOSTS["sandbox"])
        self._retry_policy = retry_policy or RetryPolicy()
        self._plaid_api = client
        self._status_url = status_url
        self._timeout = timeout
        self._transport = transport
        self._sleep = sleep

    def _get_plaid_api(self) -> plaid_api.PlaidApi:
        """Get or create the SDK client. Raises ValueError when credentials are missing."""
        if self._plaid_api is not None:
            return self._plaid_api

        if not self._client_id or not self._secret:
            raise ValueError("Plaid is not configured. Set PLAID_CLIENT_ID and PLAID_SECRET.")

        configuration = plaid.Configuration(
            host=self._host,
            api_key={
                "clientId": self._client_id,
                "secret": self._secret,
            },
        )
        self._plaid_api = plaid_api.PlaidApi(plaid.ApiClient(configuration))
        return self._plaid_api

    async def _call(self, method_name: str, request: Any) -> Dict[str, Any]:
        client = self._get_plaid_api()
        method = getattr(client, method_name)

        async def attempt() -> Dict[str, Any]:
            response = await asyncio.to_thread(method, request)
            return response.to_dict()

        try:
            return await with_rate_limit_retry(
                attempt,
                self._retry_policy,
                provider=self.provider,
                sleep=self._sleep,
            )
        except plaid.ApiException as exc:
            raise to_provider_error(exc) from exc

    # ── Link ─────────────────────────────────────────────────────────────────

    async def create_link_token(
        self,
        user_id: str,
        client_name: str,
        language: str = "en",
        country_codes: Tuple[str, ...] = ("US",),
    ) -> Dict[str, Any]:
        request = LinkTokenCreateRequest(
            client_name=client_name,
            user=LinkTokenCreateRequestUser(client_user_id=user_id),
            products=[Products("transactions")],
            country_codes=[CountryCode(code) for code in country_codes],
            language=language,
        )
        return await self._call("link_token_create", request)

    async def exchange_public_token(self, public_token: str) -> Dict[str, Any]:
        request = ItemPublicTokenExchangeRequest(public_token=public_token)
        response = await self._call("item_public_token_exchange", request)
        logger.info(
            "Exchanged Plaid public token for item %s, access token %s",
            response.get("item_id"),
            redact_token(response.get("access_token")),
        )
        return response

    # ── Accounts / balances ──────────────────────────────────────────────────

    async def get_accounts(self, access_token: str) -> Dict[str, Any]:
        return await self._call("accounts_get", AccountsGetRequest(access_token=access_token))

    async def get_account_balance(self, access_token: str, account_id: str) -> Optional[Dict[str, Any]]:
        request = AccountsBalanceGetRequest(
            access_token=access_token,
            options=AccountsBalanceGetRequestOptions(account_ids=[account_id]),
        )
        response = await self._call("accounts_balance_get", request)
        accounts = response.get("accounts") or []
        return next((account for account in accounts if account["account_id"] == account_id), None)

    # ── Transactions ─────────────────────────────────────────────────────────

    async def get_transactions(
        self,
        access_token: str,
        account_id: str,
        latest: bool = False,
        today: Optional[date] = None,
    ) -> List[Dict[str, Any]]:
        """Drain offset pagination until ``total_transactions`` is reached."""
        today = today or utc_today()
        start_date = days_ago(LATEST_WINDOW_DAYS if latest else FULL_HISTORY_DAYS, today)

        transactions: List[Dict[str, Any]] = []
        while True:
            request = TransactionsGetRequest(
                access_token=access_token,
                start_date=start_date,
                end_date=today,
                options=TransactionsGetRequestOptions(
                    account_ids=[account_id],
                    count=TRANSACTIONS_PAGE_SIZE,
                    offset=len(transactions),
                ),
            )
            response = await self._call("transactions_get", request)
            page = response.get("transactions") or []
            transactions.extend(page)

            if not page or len(transactions) >= response.get("total_transactions", 0):
                break

        return transactions

    # ── Items ────────────────────────────────────────────────────────────────

    async def get_item(self, access_token: str) -> Dict[str, Any]:
        return await self._call("item_get", ItemGetRequest(access_token=access_token))

    async def remove_item(self, access_token: str) -> Dict[str, Any]:
        response = await self._call("item_remove", ItemRemoveRequest(access_token=access_token))
        logger.info("Removed Plaid item for access token %s", redact_token(access_token))
        return response

    # ── Institutions ─────────────────────────────────────────────────────────

    async def get_institution(self, institution_id: str, country_code: str = "US") -> Dict[str, Any]:
        request = InstitutionsGetByIdRequest(
            institution_id=institution_id,
            country_codes=[CountryCode(country_code)],
            options=InstitutionsGetByIdRequestOptions(include_optional_metadata=True),
        )
        response = await self._call("institutions_get_by_id", request)
        return response["institution"]

    async def get_institutions(self, country_code: str = "US") -> List[Dict[str, Any]]:
        institutions: List[Dict[str, Any]] = []
        while True:
            request = InstitutionsGetRequest(
                count=INSTITUTIONS_PAGE_SIZE,
                offset=len(institutions),
                country_codes=[CountryCode(country_code)],
                options=InstitutionsGetRequestOptions(include_optional_metadata=True),
            )
            response = await self._call("institutions_get", request)
            page = response.get("institutions") or []
            institutions.extend(page)

            if not page or len(institutions) >= response.get("total", 0):
                break

        return institutions

    # ── Health ───────────────────────────────────────────────────────────────

    async def get_health_check(self) -> bool:
        """Plaid's public status page reports an indicator of none/minor when healthy."""
        if not self._status_url:
            return True

        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.get(self._status_url)
                response.raise_for_status()
                indicator = response.json().get("status", {}).get("indicator")
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("plaid health check failed: %s", exc)
            return False

        return indicator in ("none", "minor")
