"""Tests for Plaid payload transformation."""

from datetime import date
from decimal import Decimal

import pytest

from bankbridge.schemas.banking import (
    AccountType,
    Institution,
    ProviderTag,
    TransactionMethod,
    TransactionStatus,
)
from bankbridge.services.providers.plaid import transform


def plaid_transaction(**overrides):
    transaction = {
        "transaction_id": "txn_abc",
        "account_id": "acc_abc",
        "amount": 12.5,
        "iso_currency_code": "USD",
        "unofficial_currency_code": None,
        "date": date(2024, 3, 1),
        "name": "STARBUCKS 1234",
        "merchant_name": "Starbucks",
        "pending": False,
        "payment_channel": "in store",
        "personal_finance_category": {"primary": "FOOD_AND_DRINK", "detailed": "FOOD_AND_DRINK_COFFEE"},
    }
    transaction.update(overrides)
    return transaction


@pytest.fixture
def institution():
    return Institution(id="ins_1", name="Chase", provider=ProviderTag.PLAID, countries=["US"])


@pytest.mark.unit
class TestPlaidTransaction:
    """Test suite for Plaid transactions."""

    def test_purchase_is_outflow(self):
        """Should negate Plaid's positive outflow amount."""
        result = transform.transform_transaction(plaid_transaction(), AccountType.DEPOSITORY)

        assert result.id == "txn_abc"
        assert result.amount == Decimal("-12.5")
        assert result.currency == "USD"
        assert result.date == date(2024, 3, 1)
        assert result.name == "Starbucks"
        assert result.description == "Starbucks 1234"
        assert result.category == "meals"
        assert result.method == TransactionMethod.CARD_PURCHASE
        assert result.status == TransactionStatus.POSTED

    def test_credit_card_payment(self):
        """Should categorize an inflow to a credit account as a card payment."""
        transaction = plaid_transaction(
            amount=-200,
            merchant_name=None,
            name="PAYMENT THANK YOU",
            payment_channel="other",
            personal_finance_category={"primary": "LOAN_PAYMENTS"},
        )

        result = transform.transform_transaction(transaction, AccountType.CREDIT)

        assert result.amount == Decimal("200")
        assert result.category == "credit-card-payment"
        assert result.method == TransactionMethod.PAYMENT
        assert result.description is None

    def test_deposit_income(self):
        """Should categorize uncategorized depository inflows as income."""
        transaction = plaid_transaction(amount=-1500, personal_finance_category=None, payment_channel="other")

        result = transform.transform_transaction(transaction, AccountType.DEPOSITORY)

        assert result.category == "income"

    def test_pending_and_unofficial_currency(self):
        """Should map pending and fall back to the unofficial currency code."""
        transaction = plaid_transaction(pending=True, iso_currency_code=None, unofficial_currency_code="eur")

        result = transform.transform_transaction(transaction, AccountType.DEPOSITORY)

        assert result.status == TransactionStatus.PENDING
        assert result.currency == "EUR"

    def test_missing_currency_placeholder(self):
        """Should use the placeholder when neither currency code is usable."""
        transaction = plaid_transaction(iso_currency_code=None)

        assert transform.transform_transaction(transaction, AccountType.DEPOSITORY).currency == "XXX"

    def test_missing_name_uses_shared_default(self):
        """Should fall back to the same default name as the other vendors."""
        transaction = plaid_transaction(merchant_name=None, name="  ")

        assert transform.transform_transaction(transaction, AccountType.DEPOSITORY).name == "No Information"


@pytest.mark.unit
class TestPlaidAccount:
    """Test suite for Plaid accounts and balances."""

    def test_account(self, institution):
        """Should map a depository account with its balances."""
        account = {
            "account_id": "acc_abc",
            "name": "Plaid Checking",
            "official_name": "Plaid Gold Standard Checking",
            "type": "depository",
            "subtype": "checking",
            "mask": "0000",
            "balances": {"current": 110.25, "available": 100, "limit": None, "iso_currency_code": "USD"},
        }

        result = transform.transform_account(account, institution)

        assert result.id == "acc_abc"
        assert result.name == "Plaid Gold Standard Checking"
        assert result.type == AccountType.DEPOSITORY
        assert result.resource_id == "0000"
        assert result.balance.amount == Decimal("110.25")
        assert result.available_balance == Decimal("100")
        assert result.institution is institution

    def test_credit_balance_unchanged(self, institution):
        """Should keep Plaid's already-positive credit debt."""
        account = {
            "account_id": "acc_card",
            "name": "Card",
            "type": "credit",
            "balances": {"current": 410, "available": 590, "limit": 1000, "iso_currency_code": "USD"},
        }

        result = transform.transform_account(account, institution)

        assert result.type == AccountType.CREDIT
        assert result.balance.amount == Decimal("410")
        assert result.credit_limit == Decimal("1000")

    def test_balance_without_amounts(self):
        """Should report no amount when Plaid sends neither current nor available."""
        result = transform.transform_account_balance({"iso_currency_code": "USD"})

        assert result.amount is None
        assert result.currency == "USD"

    def test_account_types(self):
        """Should map loan and credit, defaulting to depository."""
        assert transform.map_account_type("loan") == AccountType.LOAN
        assert transform.map_account_type("credit") == AccountType.CREDIT
        assert transform.map_account_type("investment") == AccountType.DEPOSITORY

    def test_institution_logo_data_uri(self):
        """Should inline Plaid's base64 logo as a data URI."""
        result = transform.transform_institution(
            {"institution_id": "ins_1", "name": "Chase", "logo": "iVBORw0KGgo=", "country_codes": ["US"]}
        )

        assert result.logo == "data:image/png;base64,iVBORw0KGgo="
        assert result.countries == ["US"]
        assert result.provider == ProviderTag.PLAID

    def test_institution_without_logo(self):
        """Should leave the logo empty when Plaid has none."""
        result = transform.transform_institution({"institution_id": "ins_2", "name": "Small Bank"})

        assert result.logo is None
