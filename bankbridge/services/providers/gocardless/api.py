"""
GoCardless Bank Account Data API client.

Authentication is a secret id/key pair exchanged for an access token and a
refresh token. Both live in the credential cache; the refresh token is used
before falling back to a fresh exchange.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from bankbridge.core.cache import CacheTTL, KeyValueCache, get_or_set
from bankbridge.core.credentials import CredentialCache, CredentialGrant
from bankbridge.core.exceptions import ProviderError, ProviderErrorCode
from bankbridge.core.retry import RetryPolicy
from bankbridge.services.providers.base_provider import LATEST_WINDOW_DAYS
from bankbridge.services.providers.http_client import REQUEST_TIMEOUT, VendorHttpClient
from bankbridge.utils.datetime_utils import days_ago, format_date

logger = logging.getLogger(__name__)

CREDENTIAL_KEY = "gocardless"

ACCESS_SCOPE = ["balances", "details", "transactions"]
PREFERRED_ACCESS_DAYS = 180
FALLBACK_ACCESS_DAYS = 90

DEFAULT_HISTORICAL_DAYS = 90
MAX_HISTORICAL_DAYS = 730
# Institutions asking for separate consent beyond 90 days of history
SEPARATE_CONSENT_HISTORICAL_DAYS = 90

LINKED_STATUS = "LN"


def max_historical_days(
    transaction_total_days: Optional[Any],
    separate_continuous_history_consent: bool = False,
) -> int:
    """Days of history to request in an end user agreement."""
    try:
        days = int(transaction_total_days) if transaction_total_days else DEFAULT_HISTORICAL_DAYS
    except (TypeError, ValueError):
        days = DEFAULT_HISTORICAL_DAYS

    if separate_continuous_history_consent:
        return min(days, SEPARATE_CONSENT_HISTORICAL_DAYS)
    return min(days, MAX_HISTORICAL_DAYS)


class GoCardlessTokenIssuer:
    """Access/refresh token exchange against ``/api/v2/token``."""

    supports_refresh = True

    def __init__(self, api: "GoCardlessApi", secret_id: str, secret_key: str):
        self._api = api
        self._secret_id = secret_id
        self._secret_key = secret_key

    async def issue(self) -> CredentialGrant:
        if not self._secret_id or not self._secret_key:
            raise ValueError(
                "GoCardless is not configured. Set GOCARDLESS_SECRET_ID and GOCARDLESS_SECRET_KEY."
            )

        response = await self._api._make_request(
            "POST",
            "/api/v2/token/new/",
            json={"secret_id": self._secret_id, "secret_key": self._secret_key},
            authenticated=False,
        )
        return CredentialGrant(
            access_token=response["access"],
            expires_in=int(response["access_expires"]),
            refresh_token=response.get("refresh"),
            refresh_expires_in=response.get("refresh_expires"),
        )

    async def refresh(self, refresh_token: str) -> CredentialGrant:
        response = await self._api._make_request(
            "POST",
            "/api/v2/token/refresh/",
            json={"refresh": refresh_token},
            authenticated=False,
        )
        return CredentialGrant(
            access_token=response["access"],
            expires_in=int(response["access_expires"]),
        )


class GoCardlessApi(VendorHttpClient):
    """Thin client over GoCardless endpoints with response caching."""

    provider = "gocardless"

    def __init__(
        self,
        base_url: str,
        cache: KeyValueCache,
        credentials: CredentialCache,
        secret_id: str = "",
        secret_key: str = "",
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
        if not credentials.is_registered(CREDENTIAL_KEY):
            credentials.register(CREDENTIAL_KEY, GoCardlessTokenIssuer(self, secret_id, secret_key))

    async def _auth_headers(self) -> Dict[str, str]:
        token = await self._credentials.acquire(CREDENTIAL_KEY)
        return {"Authorization": f"Bearer {token}"}

    # ── Institutions ─────────────────────────────────────────────────────────

    async def get_institutions(self, country_code: Optional[str] = None) -> List[Dict[str, Any]]:
        country = country_code.upper() if country_code else None

        institutions = await get_or_set(
            self._cache,
            f"gocardless_institutions_{country or 'all'}",
            CacheTTL.TWENTY_FOUR_HOURS,
            lambda: self._make_request("GET", "/api/v2/institutions/", params={"country": country}),
        )

        if country:
            return [institution for institution in institutions if country in institution.get("countries", [])]
        return institutions

    async def get_institution(self, institution_id: str) -> Dict[str, Any]:
        return await get_or_set(
            self._cache,
            f"gocardless_institution_{institution_id}",
            CacheTTL.TWENTY_FOUR_HOURS,
            lambda: self._make_request("GET", f"/api/v2/institutions/{institution_id}/"),
        )

    # ── Agreements / requisitions ────────────────────────────────────────────

    async def create_end_user_agreement(
        self,
        institution_id: str,
        transaction_total_days: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Create an end user agreement for 180 days of access, falling back to
        90 days when the institution rejects the longer validity.
        """
        institution = await self.get_institution(institution_id)
        history_days = max_historical_days(
            transaction_total_days or institution.get("transaction_total_days"),
            bool(institution.get("separate_continuous_history_consent")),
        )

        async def create(access_days: int) -> Dict[str, Any]:
            return await self._make_request(
                "POST",
                "/api/v2/agreements/enduser/",
                json={
                    "institution_id": institution_id,
                    "access_scope": ACCESS_SCOPE,
                    "access_valid_for_days": access_days,
                    "max_historical_days": history_days,
                },
            )

        try:
            return await create(PREFERRED_ACCESS_DAYS)
        except ProviderError as exc:
            if (
                exc.status_code is not None
                and exc.status_code < 500
                and exc.code is not ProviderErrorCode.RATE_LIMITED
            ):
                logger.info(
                    "GoCardless rejected %s-day agreement for %s, retrying with %s days",
                    PREFERRED_ACCESS_DAYS,
                    institution_id,
                    FALLBACK_ACCESS_DAYS,
                )
                return await create(FALLBACK_ACCESS_DAYS)
            raise

    async def get_end_user_agreement(self, agreement_id: str) -> Dict[str, Any]:
        return await get_or_set(
            self._cache,
            f"gocardless_agreement_{agreement_id}",
            CacheTTL.ONE_HOUR,
            lambda: self._make_request("GET", f"/api/v2/agreements/enduser/{agreement_id}/"),
        )

    async def build_link(
        self,
        institution_id: str,
        agreement: str,
        redirect: str,
        reference: Optional[str] = None,
    ) -> Dict[str, Any]:
        return await self._make_request(
            "POST",
            "/api/v2/requisitions/",
            json={
                "redirect": redirect,
                "institution_id": institution_id,
                "agreement": agreement,
                "reference": reference,
            },
        )

    async def get_requisition(self, requisition_id: str) -> Dict[str, Any]:
        return await get_or_set(
            self._cache,
            f"gocardless_requisition_{requisition_id}",
            CacheTTL.FIFTEEN_MINUTES,
            lambda: self._make_request("GET", f"/api/v2/requisitions/{requisition_id}/"),
        )

    async def get_requisitions(self) -> Dict[str, Any]:
        return await self._make_request("GET", "/api/v2/requisitions/")

    async def get_requisition_by_reference(self, reference: str) -> Optional[Dict[str, Any]]:
        """
        Linked requisition whose reference shares the ``id`` part of ``id:suffix``.
        """
        response = await self.get_requisitions()
        prefix = reference.split(":")[0]

        for requisition in response.get("results") or []:
            requisition_prefix = (requisition.get("reference") or "").split(":")[0]
            if requisition_prefix == prefix and requisition.get("status") == LINKED_STATUS:
                return requisition
        return None

    async def delete_requisition(self, requisition_id: str) -> Dict[str, Any]:
        response = await self._make_request("DELETE", f"/api/v2/requisitions/{requisition_id}/")
        await self._cache.delete(f"gocardless_requisition_{requisition_id}")
        return response

    # ── Accounts ─────────────────────────────────────────────────────────────

    async def get_account_details(self, account_id: str) -> Dict[str, Any]:
        """Account metadata merged with ``details`` (IBAN, currency, names)."""

        async def fetch() -> Dict[str, Any]:
            account, details = await asyncio.gather(
                self._make_request("GET", f"/api/v2/accounts/{account_id}/"),
                self._make_request("GET", f"/api/v2/accounts/{account_id}/details/"),
            )
            return {**account, **details}

        return await get_or_set(
            self._cache,
            f"gocardless_account_details_{account_id}",
            CacheTTL.THIRTY_MINUTES,
            fetch,
        )

    async def get_account_balances(self, account_id: str) -> List[Dict[str, Any]]:
        async def fetch() -> List[Dict[str, Any]]:
            response = await self._make_request("GET", f"/api/v2/accounts/{account_id}/balances/")
            return response.get("balances") or []

        return await get_or_set(
            self._cache,
            f"gocardless_account_balance_{account_id}",
            CacheTTL.THIRTY_MINUTES,
            fetch,
        )

    async def get_transactions(self, account_id: str, latest: bool = False) -> Dict[str, List[Dict[str, Any]]]:
        """Booked and pending transactions. GoCardless answers in one response."""
        params = {"date_from": format_date(days_ago(LATEST_WINDOW_DAYS))} if latest else None
        response = await self._make_request(
            "GET",
            f"/api/v2/accounts/{account_id}/transactions/",
            params=params,
        )
        transactions = response.get("transactions") or {}
        return {
            "booked": transactions.get("booked") or [],
            "pending": transactions.get("pending") or [],
        }

    async def get_health_check(self) -> bool:
        return await self._probe("/api/v2/swagger.json", authenticated=False)
