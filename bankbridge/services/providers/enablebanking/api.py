"""
EnableBanking API client.

Transaction history uses two ASPSP strategies:

- ``longest``: earliest available transaction up to the most recent one,
  ignoring ``date_to``. Some ASPSPs serve cached data for it.
- ``default``: honours ``date_from``/``date_to``, always fresh.

A full sync asks for ``longest`` from two years back. When its newest
transaction is more than a week old (or nothing came back), the last 365
days are fetched with ``default`` and merged. If ``longest`` fails outright
the sync falls back to ``default`` over 365 days. Every strategy drains
``continuation_key`` pagination with otherwise identical parameters.
"""

import asyncio
import logging
from datetime import date, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from bankbridge.core.cache import CacheTTL, KeyValueCache, get_or_set
from bankbridge.core.credentials import CredentialCache
from bankbridge.core.exceptions import ProviderError
from bankbridge.core.retry import RetryPolicy
from bankbridge.services.providers.base_provider import (
    DEFAULT_HISTORY_DAYS,
    FULL_HISTORY_DAYS,
    LATEST_WINDOW_DAYS,
    STALE_AFTER_DAYS,
)
from bankbridge.services.providers.enablebanking.auth import EnableBankingJwtIssuer
from bankbridge.services.providers.http_client import REQUEST_TIMEOUT, VendorHttpClient
from bankbridge.utils.datetime_utils import days_ago, format_date, utc_today

logger = logging.getLogger(__name__)

CREDENTIAL_KEY = "enablebanking"

DEFAULT_PSU_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


def transaction_date(transaction: Dict[str, Any]) -> str:
    return transaction.get("booking_date") or transaction.get("value_date") or ""


class EnableBankingApi(VendorHttpClient):
    """Thin client over EnableBanking endpoints with response caching."""

    provider = "enablebanking"

    def __init__(
        self,
        base_url: str,
        cache: KeyValueCache,
        credentials: CredentialCache,
        application_id: str = "",
        key_content: str = "",
        redirect_url: str = "",
        psu_ip_address: Optional[str] = None,
        psu_user_agent: str = DEFAULT_PSU_USER_AGENT,
        timeout: float = REQUEST_TIMEOUT,
        retry_policy: Optional[RetryPolicy] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        super().__init__(
            base_url,
            timeout=timeout,
            retry_policy=retry_policy,
            transport=transport,
            sleep=sleep,
        )
        self._cache = cache
        self._credentials = credentials
        self._redirect_url = redirect_url
        self._psu_ip_address = psu_ip_address
        self._psu_user_agent = psu_user_agent
        if not credentials.is_registered(CREDENTIAL_KEY):
            credentials.register(CREDENTIAL_KEY, EnableBankingJwtIssuer(application_id, key_content))

    async def _auth_headers(self) -> Dict[str, str]:
        token = await self._credentials.acquire(CREDENTIAL_KEY)
        return {"Authorization": f"Bearer {token}"}

    def _psu_headers(self) -> Dict[str, str]:
        headers = {"Psu-User-Agent": self._psu_user_agent}
        if self._psu_ip_address:
            headers["Psu-Ip-Address"] = self._psu_ip_address
        return headers

    async def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return await self._make_request("GET", path, params=params, headers=self._psu_headers())

    # ── Consent / sessions ───────────────────────────────────────────────────

    async def authenticate(
        self,
        institution_name: str,
        country: str,
        valid_until: str,
        state: str,
        psu_type: str = "personal",
        psu_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Start user authorization. Returns the ASPSP redirect ``url``."""
        return await self._make_request(
            "POST",
            "/auth",
            json={
                "access": {
                    "balances": True,
                    "transactions": True,
                    "valid_until": valid_until,
                },
                "aspsp": {"name": institution_name, "country": country},
                "psu_type": psu_type,
                "psu_id": psu_id,
                "redirect_url": self._redirect_url,
                "state": state,
            },
        )

    async def exchange_code(self, code: str) -> Dict[str, Any]:
        """Create a session from the authorization code returned to the redirect URL."""
        try:
            return await self._make_request("POST", "/sessions", json={"code": code})
        except ProviderError as exc:
            logger.error(
                "EnableBanking code exchange failed (status=%s, raw_code=%s)",
                exc.status_code,
                exc.raw_code,
            )
            raise

    async def get_session(self, session_id: str) -> Dict[str, Any]:
        return await get_or_set(
            self._cache,
            f"enablebanking_session_{session_id}",
            CacheTTL.FIFTEEN_MINUTES,
            lambda: self._get(f"/sessions/{session_id}"),
        )

    async def delete_session(self, session_id: str) -> None:
        await self._make_request("DELETE", f"/sessions/{session_id}")
        await self._cache.delete(f"enablebanking_session_{session_id}")

    # ── Institutions ─────────────────────────────────────────────────────────

    async def get_institutions(self, country_code: Optional[str] = None) -> List[Dict[str, Any]]:
        country = country_code.upper() if country_code else None

        async def fetch() -> List[Dict[str, Any]]:
            response = await self._get("/aspsps", params={"country": country})
            return response.get("aspsps") or []

        return await get_or_set(
            self._cache,
            f"enablebanking_institutions_{country or 'all'}",
            CacheTTL.TWENTY_FOUR_HOURS,
            fetch,
        )

    # ── Accounts ─────────────────────────────────────────────────────────────

    async def get_account_details(self, account_id: str) -> Dict[str, Any]:
        return await get_or_set(
            self._cache,
            f"enablebanking_account_details_{account_id}",
            CacheTTL.THIRTY_MINUTES,
            lambda: self._get(f"/accounts/{account_id}/details"),
        )

    async def get_balances(self, account_id: str) -> List[Dict[str, Any]]:
        response = await self._get(f"/accounts/{account_id}/balances")
        return response.get("balances") or []

    async def _get_account(self, account_id: str, session: Dict[str, Any]) -> Dict[str, Any]:
        details, balances = await asyncio.gather(
            self.get_account_details(account_id),
            self.get_balances(account_id),
        )
        return {
            **details,
            "institution": session.get("aspsp") or {},
            "valid_until": (session.get("access") or {}).get("valid_until"),
            "balances": balances,
        }

    async def get_accounts(self, session_id: str) -> List[Dict[str, Any]]:
        """Account details of a session, each with its balances and ASPSP."""
        session = await self.get_session(session_id)
        return list(
            await asyncio.gather(*(self._get_account(account_id, session) for account_id in session.get("accounts") or []))
        )

    # ── Transactions ─────────────────────────────────────────────────────────

    async def _drain(self, account_id: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        transactions: List[Dict[str, Any]] = []
        continuation_key = None

        while True:
            page_params = dict(params)
            if continuation_key:
                page_params["continuation_key"] = continuation_key

            response = await self._get(f"/accounts/{account_id}/transactions", params=page_params)
            transactions.extend(response.get("transactions") or [])

            continuation_key = response.get("continuation_key")
            if not continuation_key:
                return transactions

    def _default_params(self, days: int, today: date) -> Dict[str, Any]:
        return {
            "strategy": "default",
            "transaction_status": "BOOK",
            "date_from": format_date(days_ago(days, today)),
            "date_to": format_date(today),
        }

    async def get_transactions(
        self,
        account_id: str,
        latest: bool = False,
        today: Optional[date] = None,
    ) -> List[Dict[str, Any]]:
        """Booked transactions, newest first. Overlapping strategies may repeat entries."""
        today = today or utc_today()

        if latest:
            transactions = await self._drain(account_id, self._default_params(LATEST_WINDOW_DAYS, today))
        else:
            try:
                transactions = await self._drain(
                    account_id,
                    {
                        "strategy": "longest",
                        "transaction_status": "BOOK",
                        "date_from": format_date(days_ago(FULL_HISTORY_DAYS, today)),
                    },
                )

                dates = [transaction_date(t) for t in transactions if transaction_date(t)]
                stale_before = format_date(today - timedelta(days=STALE_AFTER_DAYS))
                if not dates or max(dates) < stale_before:
                    logger.info("EnableBanking history for %s is stale, fetching recent range", account_id)
                    transactions += await self._drain(
                        account_id, self._default_params(DEFAULT_HISTORY_DAYS, today)
                    )
            except (ProviderError, httpx.HTTPError) as exc:
                logger.warning(
                    "EnableBanking longest strategy failed for %s, using default fallback: %s",
                    account_id,
                    exc,
                )
                transactions = await self._drain(account_id, self._default_params(DEFAULT_HISTORY_DAYS, today))

        return sorted(transactions, key=transaction_date, reverse=True)

    async def get_health_check(self) -> bool:
        return await self._probe("/application")

