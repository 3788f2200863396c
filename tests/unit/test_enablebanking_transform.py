"""Tests for EnableBanking payload transformation."""

from datetime import date
from decimal import Decimal

import pytest

from bankbridge.schemas.banking import AccountType, ProviderTag, TransactionMethod, TransactionStatus
from bankbridge.services.providers.enablebanking import transform

ASPSP = {"name": "Nordea", "country": "FI", "logo": "https://enablebanking.test/nordea.svg"}


def balance(balance_type, amount, currency="EUR"):
    return {"balance_type": balance_type, "balance_amount": {"amount": amount, "currency": currency}}


def eb_transaction(**overrides):
    transaction = {
        "transaction_id": None,
        "entry_reference": "entry-1",
        "transaction_amount": {"amount": "42.10", "currency": "EUR"},
        "credit_debit_indicator": "DBIT",
        "status": "BOOK",
        "booking_date": "2024-03-02",
        "value_date": "2024-03-02",
        "creditor": {"name": "K-MARKET"},
        "remittance_information": ["K-MARKET HELSINKI"],
        "bank_transaction_code": {"description": "Card purchase"},
    }
    transaction.update(overrides)
    return transaction


def eb_account(**overrides):
    account = {
        "uid": "uid-1",
        "identification_hash": "hash-1",
        "account_id": {"iban": "FI2112345600000785"},
        "account_servicer": {"bic_fi": "NDEAFIHH"},
        "name": "KÄYTTÖTILI",
        "product": None,
        "currency": "EUR",
        "cash_account_type": "CACC",
        "institution": ASPSP,
        "valid_until": "2024-09-01T00:00:00+00:00",
        "balances": [balance("CLBD", "1200.00"), balance("ITAV", "1150.00")],
    }
    account.update(overrides)
    return account


@pytest.mark.unit
class TestEnableBankingTransaction:
    """Test suite for EnableBanking transactions."""

    def test_debit_is_outflow(self):
        """Should sign debits negative and use the remittance as name."""
        result = transform.transform_transaction(eb_transaction(), AccountType.DEPOSITORY)

        assert result.id == "entry-1"
        assert result.amount == Decimal("-42.10")
        assert result.currency == "EUR"
        assert result.date == date(2024, 3, 2)
        assert result.name == "K Market Helsinki"
        assert result.counterparty_name == "K Market"
        assert result.status == TransactionStatus.POSTED

    def test_credit_is_inflow(self):
        """Should sign credits positive even when the amount arrives negative."""
        transaction = eb_transaction(
            credit_debit_indicator="CRDT",
            transaction_amount={"amount": "-1000.00", "currency": "EUR"},
            debtor={"name": "EMPLOYER OY"},
            remittance_information=[],
        )

        result = transform.transform_transaction(transaction, AccountType.DEPOSITORY)

        assert result.amount == Decimal("1000.00")
        assert result.name == "Employer Oy"
        assert result.category == "income"
        assert result.method == TransactionMethod.PAYMENT

    def test_pending(self):
        """Should map PDNG to pending."""
        result = transform.transform_transaction(eb_transaction(status="PDNG"), AccountType.DEPOSITORY)

        assert result.status == TransactionStatus.PENDING

    def test_value_date_fallback(self):
        """Should use the value date when there is no booking date."""
        result = transform.transform_transaction(
            eb_transaction(booking_date=None, value_date="2024-03-05"),
            AccountType.DEPOSITORY,
        )

        assert result.date == date(2024, 3, 5)

    def test_fingerprint_ids_are_stable(self):
        """Should derive the same id for the same unidentified transaction."""
        first = transform.transform_transaction(eb_transaction(entry_reference=None), AccountType.DEPOSITORY)
        second = transform.transform_transaction(eb_transaction(entry_reference=None), AccountType.DEPOSITORY)

        assert first.id == second.id
        assert len(first.id) == 32

    def test_name_falls_back_to_code_then_reference(self):
        """Should use the bank code description, then the reference number."""
        transaction = eb_transaction(remittance_information=None, creditor=None)

        assert transform.transform_transaction_name(transaction) == "Card purchase"
        transaction["bank_transaction_code"] = None
        transaction["reference_number"] = "RF18539007547034"
        assert transform.transform_transaction_name(transaction) == "RF18539007547034"


@pytest.mark.unit
class TestEnableBankingAccount:
    """Test suite for EnableBanking accounts and balances."""

    def test_account(self):
        """Should map identity fields, consent expiry and balances."""
        result = transform.transform_account(eb_account())

        assert result.id == "uid-1"
        assert result.resource_id == "hash-1"
        assert result.iban == "FI2112345600000785"
        assert result.bic == "NDEAFIHH"
        assert result.subtype == "cacc"
        assert result.expires_at == "2024-09-01T00:00:00+00:00"
        assert result.balance.amount == Decimal("1200.00")
        assert result.available_balance == Decimal("1150.00")
        assert result.institution.provider == ProviderTag.ENABLEBANKING

    def test_name_prefers_product(self):
        """Should prefer the product name over the account name."""
        result = transform.transform_account(eb_account(product="Everyday Account"))

        assert result.name == "Everyday Account"

    def test_credit_account(self):
        """Should report negative card balances as debt and read the credit limit."""
        result = transform.transform_account(
            eb_account(
                cash_account_type="CARD",
                balances=[balance("ITBD", "-320.50")],
                credit_limit={"amount": "2000.00", "currency": "EUR"},
            )
        )

        assert result.type == AccountType.CREDIT
        assert result.balance.amount == Decimal("320.50")
        assert result.credit_limit == Decimal("2000.00")

    def test_available_prefers_account_currency(self):
        """Should choose the available record in the account currency."""
        result = transform.transform_balance(
            [balance("ITAV", "900.00", "SEK"), balance("ITAV", "80.00", "EUR")],
            AccountType.DEPOSITORY,
            "EUR",
        )

        assert result.available_balance == Decimal("80.00")

    def test_placeholder_currency_resolved_from_balances(self):
        """Should take the currency from balances when the account has none."""
        result = transform.transform_account(eb_account(currency="XXX", balances=[balance("CLBD", "5.00", "SEK")]))

        assert result.currency == "SEK"

    def test_no_balances_reports_no_amount(self):
        """Should leave the amount empty when the bank sent no balances."""
        result = transform.transform_balance([], AccountType.CREDIT, "EUR")

        assert result.amount is None
        assert result.currency == "EUR"


@pytest.mark.unit
class TestEnableBankingInstitution:
    """Test suite for EnableBanking institutions and sessions."""

    def test_institution_id_is_stable(self):
        """Should hash name and country into a stable id."""
        first = transform.transform_institution(ASPSP)
        second = transform.transform_institution(dict(ASPSP))

        assert first.id == second.id
        assert len(first.id) == 12
        assert first.id != transform.transform_institution({**ASPSP, "country": "SE"}).id

    def test_single_psu_type(self):
        """Should expose a single PSU type as the institution type."""
        assert transform.transform_institution({**ASPSP, "psu_types": ["business"]}).type == "business"
        assert transform.transform_institution({**ASPSP, "psu_types": ["business", "personal"]}).type is None

    def test_session_data(self):
        """Should extract the references to persist from a session."""
        session = {
            "session_id": "sess-1",
            "access": {"valid_until": "2024-09-01T00:00:00+00:00"},
            "accounts": [{"uid": "uid-1", "identification_hash": "hash-1"}],
        }

        result = transform.transform_session_data(session)

        assert result["session_id"] == "sess-1"
        assert result["expires_at"] == "2024-09-01T00:00:00+00:00"
        assert result["accounts"] == [{"account_reference": "hash-1", "account_id": "uid-1"}]

    def test_connection_status(self):
        """Should treat only authorized sessions as connected."""
        assert transform.transform_connection_status({"status": "AUTHORIZED"}).status == "connected"
        assert transform.transform_connection_status({"status": "EXPIRED"}).status == "disconnected"
