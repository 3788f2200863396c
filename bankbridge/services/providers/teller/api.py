"""
Teller API client.

Teller requires mTLS: the client certificate authenticates the application,
while the enrollment access token (HTTP Basic username, empty password)
identifies the user's bank connection.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple, Union

from bankbridge.core.exceptions import ProviderError
from bankbridge.services.providers.base_provider import LATEST_WINDOW_DAYS
from bankbridge.services.providers.http_client import VendorHttpClient
from bankbridge.utils.datetime_utils import days_ago, format_date

logger = logging.getLogger(__name__)

TRANSACTIONS_PAGE_SIZE = 250


def teller_cert(cert_path: str, key_path: str = "") -> Union[str, Tuple[str, str], None]:
    """httpx ``cert`` argument for Teller's client certificate."""
    if not cert_path:
        return None
    if key_path:
        return (cert_path, key_path)
    return cert_path


class TellerApi(VendorHttpClient):
    """Thin client over Teller's REST endpoints."""

    provider = "teller"

    @staticmethod
    def _basic_auth(access_token: Optional[str]) -> Tuple[str, str]:
        return (access_token or "", "")

    async def get_accounts(self, access_token: str) -> List[Dict[str, Any]]:
        return await self._make_request("GET", "/accounts", auth=self._basic_auth(access_token))

    async def get_account(self, account_id: str, access_token: str) -> Dict[str, Any]:
        return await self._make_request(
            "GET", f"/accounts/{account_id}", auth=self._basic_auth(access_token)
        )

    async def get_account_balances(self, account_id: str, access_token: str) -> Dict[str, Any]:
        return await self._make_request(
            "GET", f"/accounts/{account_id}/balances", auth=self._basic_auth(access_token)
        )

    async def get_account_details(self, account_id: str, access_token: str) -> Optional[Dict[str, Any]]:
        """Account and routing numbers. Not every institution supports details."""
        try:
            return await self._make_request(
                "GET", f"/accounts/{account_id}/details", auth=self._basic_auth(access_token)
            )
        except ProviderError as exc:
            if exc.status_code == 404:
                logger.info("Teller details not available for account %s", account_id)
                return None
            raise

    async def get_transactions(
        self,
        account_id: str,
        access_token: str,
        latest: bool = False,
    ) -> List[Dict[str, Any]]:
        """
        Drain ``from_id`` pagination. Teller returns pages newest first; a
        page shorter than the requested count is the last one.
        """
        params: Dict[str, Any] = {"count": TRANSACTIONS_PAGE_SIZE}
        if latest:
            params["start_date"] = format_date(days_ago(LATEST_WINDOW_DAYS))

        transactions: List[Dict[str, Any]] = []
        while True:
            page = await self._make_request(
                "GET",
                f"/accounts/{account_id}/transactions",
                params=params,
                auth=self._basic_auth(access_token),
            )
            transactions.extend(page)

            if len(page) < TRANSACTIONS_PAGE_SIZE:
                break
            params = {**params, "from_id": page[-1]["id"]}

        return transactions

    async def get_institutions(self) -> List[Dict[str, Any]]:
        return await self._make_request("GET", "/institutions", authenticated=False)

    async def delete_accounts(self, access_token: str) -> None:
        """Revoke every account of the enrollment behind ``access_token``."""
        await self._make_request("DELETE", "/accounts", auth=self._basic_auth(access_token))

    async def delete_account(self, account_id: str, access_token: str) -> None:
        await self._make_request(
            "DELETE", f"/accounts/{account_id}", auth=self._basic_auth(access_token)
        )

    async def get_health_check(self) -> bool:
        return await self._probe("/health", authenticated=False)
