"""Tests for the Teller API client and provider."""

import base64

import httpx
import pytest

from bankbridge.core.exceptions import ProviderError, ProviderErrorCode
from bankbridge.schemas.banking import (
    GetAccountsRequest,
    GetConnectionStatusRequest,
    GetInstitutionsRequest,
    GetTransactionsRequest,
)
from bankbridge.services.providers.teller.api import TRANSACTIONS_PAGE_SIZE, TellerApi, teller_cert
from bankbridge.services.providers.teller.provider import TellerProvider


def teller_transactions(start, count):
    return [
        {
            "id": f"txn_{i}",
            "amount": "-1.00",
            "date": "2024-03-01",
            "description": "SHOP",
            "status": "posted",
            "type": "card_payment",
        }
        for i in range(start, start + count)
    ]


@pytest.mark.unit
class TestTellerApi:
    """Test suite for TellerApi."""

    def test_teller_cert(self):
        """Should build the httpx cert argument from configured paths."""
        assert teller_cert("") is None
        assert teller_cert("/certs/cert.pem") == "/certs/cert.pem"
        assert teller_cert("/certs/cert.pem", "/certs/key.pem") == ("/certs/cert.pem", "/certs/key.pem")

    @pytest.mark.asyncio
    async def test_transactions_paginate_with_from_id(self, retry_policy, no_sleep):
        """Should request the next page from the last id until a short page arrives."""
        requests = []

        def handler(request):
            requests.append(request)
            if "from_id" in request.url.params:
                return httpx.Response(200, json=teller_transactions(TRANSACTIONS_PAGE_SIZE, 10))
            return httpx.Response(200, json=teller_transactions(0, TRANSACTIONS_PAGE_SIZE))

        api = TellerApi(
            "https://teller.test",
            retry_policy=retry_policy,
            transport=httpx.MockTransport(handler),
            sleep=no_sleep,
        )

        transactions = await api.get_transactions("acc_1", "token_abc")
        await api.close()

        assert len(transactions) == TRANSACTIONS_PAGE_SIZE + 10
        assert len(requests) == 2
        assert requests[1].url.params["from_id"] == f"txn_{TRANSACTIONS_PAGE_SIZE - 1}"
        assert requests[0].url.params["count"] == str(TRANSACTIONS_PAGE_SIZE)

    @pytest.mark.asyncio
    async def test_basic_auth_with_access_token(self, retry_policy, no_sleep):
        """Should send the access token as the basic auth username."""
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json=[])

        api = TellerApi("https://teller.test", retry_policy=retry_policy, transport=httpx.MockTransport(handler))
        await api.get_accounts("token_abc")
        await api.close()

        expected = base64.b64encode(b"token_abc:").decode("ascii")
        assert requests[0].headers["Authorization"] == f"Basic {expected}"

    @pytest.mark.asyncio
    async def test_details_not_found_is_none(self, retry_policy):
        """Should return None when the institution has no account details."""
        api = TellerApi(
            "https://teller.test",
            retry_policy=retry_policy,
            transport=httpx.MockTransport(lambda request: httpx.Response(404, json={"error": {"code": "not_found"}})),
        )

        assert await api.get_account_details("acc_1", "token_abc") is None
        await api.close()

    @pytest.mark.asyncio
    async def test_health_check_failure(self, retry_policy):
        """Should report unhealthy instead of raising."""
        api = TellerApi(
            "https://teller.test",
            retry_policy=retry_policy,
            transport=httpx.MockTransport(lambda request: httpx.Response(503)),
        )

        assert await api.get_health_check() is False
        await api.close()


@pytest.mark.unit
class TestTellerProvider:
    """Test suite for TellerProvider."""

    @pytest.fixture
    def routes(self):
        return {
            "/accounts": [
                {
                    "id": "acc_1",
                    "name": "Checking",
                    "type": "depository",
                    "subtype": "checking",
                    "currency": "USD",
                    "last_four": "1234",
                    "enrollment_id": "enr_1",
                    "status": "open",
                    "institution": {"id": "chase", "name": "Chase"},
                },
                {
                    "id": "acc_2",
                    "name": "Closed",
                    "type": "depository",
                    "status": "closed",
                    "institution": {"id": "chase", "name": "Chase"},
                },
            ],
            "/accounts/acc_1": {"id": "acc_1", "type": "credit"},
            "/accounts/acc_1/balances": {"ledger": "1000.00", "available": "950.00"},
            "/accounts/acc_1/details": {"account_number": "987654321", "routing_numbers": {"ach": "021000021"}},
            "/accounts/acc_1/transactions": teller_transactions(0, 3),
            "/institutions": [{"id": "chase", "name": "Chase"}],
        }

    @pytest.fixture
    def provider(self, settings, routes, retry_policy, no_sleep):
        def handler(request):
            if request.url.path in routes:
                return httpx.Response(200, json=routes[request.url.path])
            return httpx.Response(404, json={"error": {"code": "not_found", "message": "Not found"}})

        settings.TELLER_BASE_URL = "https://teller.test"
        return TellerProvider(settings, retry_policy=retry_policy, transport=httpx.MockTransport(handler), sleep=no_sleep)

    @pytest.mark.asyncio
    async def test_get_accounts_skips_closed(self, provider):
        """Should return open accounts with balances and details."""
        accounts = await provider.get_accounts(GetAccountsRequest(access_token="token_abc"))

        assert [a.id for a in accounts] == ["acc_1"]
        assert accounts[0].balance.amount == 1000
        assert accounts[0].account_number == "987654321"
        await provider.close()

    @pytest.mark.asyncio
    async def test_transactions_look_up_account_type(self, provider):
        """Should fetch the account type when the request omits it."""
        transactions = await provider.get_transactions(
            GetTransactionsRequest(account_id="acc_1", access_token="token_abc")
        )

        # acc_1 is served as a credit account, so outflows are inverted
        assert all(t.amount == 1 for t in transactions)
        await provider.close()

    @pytest.mark.asyncio
    async def test_institutions_outside_us_empty(self, provider):
        """Should return nothing for countries Teller does not serve."""
        assert await provider.get_institutions(GetInstitutionsRequest(country_code="GB")) == []
        institutions = await provider.get_institutions(GetInstitutionsRequest(country_code="us"))
        assert [i.id for i in institutions] == ["chase"]
        await provider.close()

    @pytest.mark.asyncio
    async def test_connection_status_disconnected(self, settings, retry_policy):
        """Should report disconnected when the enrollment is disconnected."""
        def handler(request):
            return httpx.Response(
                403,
                json={"error": {"code": "enrollment.disconnected.user_action.mfa_required", "message": "MFA"}},
            )

        settings.TELLER_BASE_URL = "https://teller.test"
        provider = TellerProvider(settings, retry_policy=retry_policy, transport=httpx.MockTransport(handler))

        status = await provider.get_connection_status(GetConnectionStatusRequest(access_token="token_abc"))

        assert status.status == "disconnected"
        await provider.close()

    @pytest.mark.asyncio
    async def test_other_errors_propagate(self, settings, retry_policy):
        """Should raise errors that do not mean disconnected."""
        settings.TELLER_BASE_URL = "https://teller.test"
        provider = TellerProvider(
            settings,
            retry_policy=retry_policy,
            transport=httpx.MockTransport(lambda request: httpx.Response(500, json={})),
        )

        with pytest.raises(ProviderError) as exc_info:
            await provider.get_connection_status(GetConnectionStatusRequest(access_token="token_abc"))

        assert exc_info.value.code == ProviderErrorCode.UNKNOWN
        await provider.close()
