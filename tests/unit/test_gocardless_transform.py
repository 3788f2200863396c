"""Tests for GoCardless payload transformation."""

from datetime import date
from decimal import Decimal

import pytest

from bankbridge.schemas.banking import AccountType, ProviderTag, TransactionMethod, TransactionStatus
from bankbridge.services.providers.gocardless import transform
from bankbridge.services.transaction_normalizer import transaction_fingerprint

INSTITUTION = {
    "id": "REVOLUT_REVOGB21",
    "name": "Revolut",
    "logo": "https://cdn.gocardless.test/revolut.png",
    "countries": ["GB", "DE"],
    "transaction_total_days": "730",
    "max_access_valid_for_days": "180",
}


def balance(balance_type, amount, currency="EUR"):
    return {"balanceType": balance_type, "balanceAmount": {"amount": amount, "currency": currency}}


def gocardless_transaction(**overrides):
    transaction = {
        "transactionId": "tx-1",
        "bookingDate": "2024-03-01",
        "valueDate": "2024-03-01",
        "transactionAmount": {"amount": "-45.00", "currency": "EUR"},
        "creditorName": "ACME SUPERMARKET",
        "remittanceInformationUnstructured": "CARD PAYMENT ACME",
        "proprietaryBankTransactionCode": "Purchase",
    }
    transaction.update(overrides)
    return transaction


@pytest.mark.unit
class TestGoCardlessBalance:
    """Test suite for GoCardless balances."""

    def test_primary_and_available(self):
        """Should pick the booked balance and report the available one."""
        result = transform.transform_balance(
            [balance("interimAvailable", "95.00"), balance("closingBooked", "100.00")],
            AccountType.DEPOSITORY,
            "EUR",
        )

        assert result.amount == Decimal("100.00")
        assert result.available_balance == Decimal("95.00")
        assert result.currency == "EUR"

    def test_credit_negative_becomes_debt(self):
        """Should report a negative card balance as positive debt."""
        result = transform.transform_balance(
            [balance("interimBooked", "-250.00"), balance("interimAvailable", "-250.00")],
            AccountType.CREDIT,
            "EUR",
        )

        assert result.amount == Decimal("250.00")
        assert result.available_balance == Decimal("250.00")

    def test_currency_from_balance_when_account_has_placeholder(self):
        """Should take the currency from the balance when the account only has a placeholder."""
        result = transform.transform_balance([balance("interimBooked", "10.00", "SEK")], AccountType.DEPOSITORY, "XXX")

        assert result.currency == "SEK"

    def test_no_balances(self):
        """Should report no amount, not zero, with the placeholder currency when nothing is known."""
        result = transform.transform_balance([], AccountType.DEPOSITORY)

        assert result.amount is None
        assert result.available_balance is None
        assert result.currency == "XXX"


@pytest.mark.unit
class TestGoCardlessAccount:
    """Test suite for GoCardless accounts and institutions."""

    def test_institution(self):
        """Should convert consent validity from days to seconds."""
        result = transform.transform_institution(INSTITUTION)

        assert result.provider == ProviderTag.GOCARDLESS
        assert result.countries == ["GB", "DE"]
        assert result.maximum_consent_validity == 180 * 86400

    def test_account(self):
        """Should map identity fields and consent expiry."""
        account = {
            "id": "acc-1",
            "created": "2024-01-01T10:00:00Z",
            "iban": "GB33BUKB20201555555555",
            "account": {
                "resourceId": "res-1",
                "iban": "GB33BUKB20201555555555",
                "currency": "EUR",
                "name": "MAIN ACCOUNT",
                "cashAccountType": "CACC",
                "bic": "REVOGB21",
            },
        }

        result = transform.transform_account(account, [balance("interimBooked", "10.00")], INSTITUTION, 90)

        assert result.id == "acc-1"
        assert result.name == "Main Account"
        assert result.type == AccountType.DEPOSITORY
        assert result.subtype == "cacc"
        assert result.resource_id == "res-1"
        assert result.iban == "GB33BUKB20201555555555"
        assert result.bic == "REVOGB21"
        assert result.currency == "EUR"
        assert result.expires_at == "2024-03-31"

    def test_card_account_is_credit(self):
        """Should map CARD cash accounts to credit."""
        assert transform.map_account_type("CARD") == AccountType.CREDIT
        assert transform.map_account_type("LOAN") == AccountType.LOAN
        assert transform.map_account_type(None) == AccountType.DEPOSITORY

    def test_connection_status(self):
        """Should treat only linked requisitions as connected."""
        assert transform.transform_connection_status({"status": "LN"}).status == "connected"
        assert transform.transform_connection_status({"status": "EX"}).status == "disconnected"


@pytest.mark.unit
class TestGoCardlessTransaction:
    """Test suite for GoCardless transactions."""

    def test_outflow(self):
        """Should keep the signed amount and name the creditor."""
        result = transform.transform_transaction(gocardless_transaction(), AccountType.DEPOSITORY)

        assert result.id == "tx-1"
        assert result.amount == Decimal("-45.00")
        assert result.currency == "EUR"
        assert result.date == date(2024, 3, 1)
        assert result.name == "Acme Supermarket"
        assert result.description == "Card Payment Acme"
        assert result.counterparty_name == "Acme Supermarket"
        assert result.category is None
        assert result.method == TransactionMethod.OTHER

    def test_inflow_is_income(self):
        """Should name the debtor and categorize income on depository accounts."""
        transaction = gocardless_transaction(
            transactionAmount={"amount": "2500.00", "currency": "EUR"},
            debtorName="EMPLOYER GMBH",
            creditorName=None,
        )

        result = transform.transform_transaction(transaction, AccountType.DEPOSITORY)

        assert result.name == "Employer Gmbh"
        assert result.category == "income"
        assert result.method == TransactionMethod.PAYMENT

    def test_credit_payment(self):
        """Should categorize transfers into a card account as card payments."""
        transaction = gocardless_transaction(
            transactionAmount={"amount": "300.00", "currency": "EUR"},
            proprietaryBankTransactionCode="Transfer",
        )

        result = transform.transform_transaction(transaction, AccountType.CREDIT)

        assert result.category == "credit-card-payment"

    def test_pending_status(self):
        """Should carry the status it is given."""
        result = transform.transform_transaction(
            gocardless_transaction(), AccountType.DEPOSITORY, TransactionStatus.PENDING
        )

        assert result.status == TransactionStatus.PENDING

    def test_entry_reference_when_no_id(self):
        """Should use the entry reference when the transaction id is missing."""
        result = transform.transform_transaction(
            gocardless_transaction(transactionId=None, entryReference="ref-9"),
            AccountType.DEPOSITORY,
        )

        assert result.id == "ref-9"

    def test_fingerprint_when_no_identifiers(self):
        """Should fingerprint the fundamental values when no identifier exists."""
        result = transform.transform_transaction(
            gocardless_transaction(transactionId=None),
            AccountType.DEPOSITORY,
        )

        expected = transaction_fingerprint(
            booking_date="2024-03-01",
            value_date="2024-03-01",
            amount="-45.00",
            currency="EUR",
            remittance_information=["CARD PAYMENT ACME"],
        )
        assert result.id == expected

    def test_currency_exchange(self):
        """Should carry exchange rate and source currency."""
        transaction = gocardless_transaction(
            currencyExchange=[{"exchangeRate": "1.0850", "sourceCurrency": "USD"}],
        )

        result = transform.transform_transaction(transaction, AccountType.DEPOSITORY)

        assert result.currency_rate == Decimal("1.0850")
        assert result.currency_source == "USD"
