"""Tests for reconnection reconciliation."""

from datetime import date
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from bankbridge.schemas.banking import (
    Account,
    AccountType,
    Balance,
    GetAccountsRequest,
    Institution,
    ProviderTag,
    Transaction,
)
from bankbridge.schemas.reconciliation import (
    DiagnosisKind,
    MatchConfidence,
    MatchMethod,
    MatchSignal,
    StoredAccount,
)
from bankbridge.services.reconciliation_service import (
    AccountStore,
    ReconciliationService,
    reconcile_accounts,
    score_confidence,
    transaction_overlap,
)

INSTITUTION = Institution(id="bank", name="Bank", provider=ProviderTag.GOCARDLESS)


def fresh_account(account_id, name="Main Account", **overrides):
    fields = {
        "id": account_id,
        "name": name,
        "currency": "EUR",
        "type": AccountType.DEPOSITORY,
        "institution": INSTITUTION,
        "balance": Balance(amount=Decimal("100"), currency="EUR"),
    }
    fields.update(overrides)
    return Account(**fields)


def stored_account(stored_id, name="Main Account", **overrides):
    fields = {
        "id": stored_id,
        "provider_account_id": f"old-{stored_id}",
        "name": name,
        "type": AccountType.DEPOSITORY,
        "currency": "EUR",
    }
    fields.update(overrides)
    return StoredAccount(**fields)


def transaction(transaction_id, day, amount):
    return Transaction(id=transaction_id, amount=Decimal(amount), date=date(2024, 3, day), currency="EUR")


@pytest.mark.unit
class TestExactTiers:
    """Test suite for resource id and IBAN matching."""

    def test_resource_id_match(self):
        """Should match on the vendor resource id with high confidence."""
        result = reconcile_accounts(
            [stored_account("s1", resource_id="res-1")],
            [fresh_account("a1", name="Renamed", resource_id="res-1")],
        )

        assert len(result.matched) == 1
        match = result.matched[0]
        assert match.method == MatchMethod.RESOURCE_ID
        assert match.confidence == MatchConfidence.HIGH
        assert result.stale == [] and result.new == []

    def test_iban_match_ignores_spacing(self):
        """Should match IBANs regardless of spaces and case."""
        result = reconcile_accounts(
            [stored_account("s1", iban="de89 3704 0044 0532 0130 00")],
            [fresh_account("a1", iban="DE89370400440532013000")],
        )

        assert result.matched[0].method == MatchMethod.IBAN

    def test_resource_id_with_conflicting_iban_is_not_high(self):
        """Should refuse a resource id match whose IBANs disagree and report a conflict."""
        result = reconcile_accounts(
            [stored_account("s1", resource_id="res-1", iban="DE89370400440532013000")],
            [fresh_account("a1", resource_id="res-1", iban="GB29NWBK60161331926819")],
        )

        assert all(match.confidence != MatchConfidence.HIGH for match in result.matched)
        assert result.matched == []
        conflict = next(d for d in result.diagnoses if d.kind == DiagnosisKind.CONFLICT)
        assert conflict.candidate_account_id == "a1"
        assert "iban" in conflict.reason

    def test_iban_match_with_conflicting_type_is_not_matched(self):
        """Should refuse an IBAN match when the account types disagree."""
        result = reconcile_accounts(
            [stored_account("s1", iban="DE89370400440532013000", type=AccountType.CREDIT)],
            [fresh_account("a1", iban="DE89370400440532013000")],
        )

        assert result.matched == []
        conflict = next(d for d in result.diagnoses if d.kind == DiagnosisKind.CONFLICT)
        assert "type" in conflict.reason

    def test_remediation_proposes_new_ids(self):
        """Should propose the changed identifiers without applying them."""
        stored = stored_account("s1", iban="DE89370400440532013000", currency="XXX")
        result = reconcile_accounts(
            [stored],
            [fresh_account("a1", iban="DE89370400440532013000", resource_id="res-9", expires_at="2024-09-01")],
        )

        updates = result.remediations[0].updates
        assert updates["provider_account_id"] == "a1"
        assert updates["resource_id"] == "res-9"
        assert updates["currency"] == "EUR"
        assert updates["expires_at"] == "2024-09-01"
        assert "iban" not in updates
        assert stored.provider_account_id == "old-s1"


@pytest.mark.unit
class TestFuzzyTier:
    """Test suite for fuzzy matching."""

    def test_single_stale_single_new_is_high(self):
        """Should match one leftover pair with the same type and currency at high confidence."""
        result = reconcile_accounts(
            [stored_account("s1", name="Savings")],
            [fresh_account("a1", name="Everyday")],
        )

        assert len(result.matched) == 1
        match = result.matched[0]
        assert match.method == MatchMethod.FUZZY
        assert match.confidence == MatchConfidence.HIGH
        assert result.remediations[0].updates["provider_account_id"] == "a1"

    def test_conflicting_iban_is_never_high(self):
        """Should not match a pair whose IBANs disagree and report a conflict."""
        result = reconcile_accounts(
            [stored_account("s1", iban="DE89370400440532013000")],
            [fresh_account("a1", iban="DE02120300000000202051")],
        )

        assert result.matched == []
        assert result.stale == ["s1"]
        assert result.new == ["a1"]
        conflict = next(d for d in result.diagnoses if d.kind == DiagnosisKind.CONFLICT)
        assert conflict.account_id == "s1"
        assert conflict.candidate_account_id == "a1"
        assert "iban" in conflict.reason
        assert conflict.action == "review_match"

    def test_type_mismatch_is_conflict(self):
        """Should treat a type mismatch as a hard conflict."""
        result = reconcile_accounts(
            [stored_account("s1")],
            [fresh_account("a1", type=AccountType.CREDIT)],
        )

        assert result.matched == []
        assert any(d.kind == DiagnosisKind.CONFLICT and "type" in d.reason for d in result.diagnoses)

    def test_unresolved_currency_is_not_a_conflict(self):
        """Should not count a placeholder currency against a pairing."""
        result = reconcile_accounts(
            [stored_account("s1", currency="XXX")],
            [fresh_account("a1")],
        )

        assert result.matched[0].confidence == MatchConfidence.HIGH
        currency = next(s for s in result.matched[0].signals if s.name == "currency")
        assert currency.passed is None

    def test_transaction_overlap_gives_high(self):
        """Should pick the pairing whose transactions overlap."""
        stored = [stored_account("s1", name="Account"), stored_account("s2", name="Account")]
        fresh = [fresh_account("a1", name="Account"), fresh_account("a2", name="Account")]
        stored_transactions = {
            "s1": [transaction("x1", 1, "-10"), transaction("x2", 2, "-20")],
            "s2": [transaction("y1", 3, "-30"), transaction("y2", 4, "-40")],
        }
        transactions = {
            "a1": [transaction("new-1", 3, "-30"), transaction("new-2", 4, "-40")],
            "a2": [transaction("x1", 1, "-10"), transaction("x2", 2, "-20")],
        }

        result = reconcile_accounts(stored, fresh, stored_transactions, transactions)

        pairs = {(m.stored_account_id, m.account_id): m for m in result.matched}
        assert set(pairs) == {("s1", "a2"), ("s2", "a1")}
        assert all(m.confidence == MatchConfidence.HIGH for m in pairs.values())
        assert pairs[("s2", "a1")].transaction_overlap == 1.0

    def test_medium_confidence_without_overlap(self):
        """Should give medium confidence when most signals agree but nothing is decisive."""
        stored = [stored_account("s1", name="Joint Savings"), stored_account("s2", name="Holiday Fund")]
        fresh = [fresh_account("a1", name="Savings"), fresh_account("a2", name="Travel Pot")]

        result = reconcile_accounts(stored, fresh)

        match = next(m for m in result.matched if m.stored_account_id == "s1")
        assert match.account_id == "a1"
        assert match.confidence == MatchConfidence.MEDIUM

    def test_no_accounts_returned(self):
        """Should advise re-authorization when the vendor returned nothing."""
        result = reconcile_accounts([stored_account("s1")], [])

        assert result.stale == ["s1"]
        assert result.diagnoses[0].kind == DiagnosisKind.STALE
        assert result.diagnoses[0].action == "reauthorize"

    def test_new_account_diagnosed(self):
        """Should diagnose vendor accounts without a stored counterpart."""
        result = reconcile_accounts([], [fresh_account("a1")])

        assert result.new == ["a1"]
        assert result.diagnoses[0].kind == DiagnosisKind.NEW
        assert result.diagnoses[0].action == "import"


@pytest.mark.unit
class TestScoring:
    """Test suite for confidence scoring helpers."""

    def test_hard_failure_is_low(self):
        """Should be low whenever a hard signal fails."""
        signals = [MatchSignal(name="iban", passed=False, hard=True), MatchSignal(name="name", passed=True)]

        assert score_confidence(signals, overlap=1.0, single_pair=True) == MatchConfidence.LOW

    def test_fraction_below_threshold_is_low(self):
        """Should be low when too few evaluated signals pass."""
        signals = [
            MatchSignal(name="type", passed=True, hard=True),
            MatchSignal(name="name", passed=False),
            MatchSignal(name="transactions", passed=False),
        ]

        assert score_confidence(signals, overlap=0.1, single_pair=False) == MatchConfidence.LOW

    def test_overlap_by_date_and_amount(self):
        """Should count transactions that share date and amount under new ids."""
        stored = [transaction("a", 1, "-5"), transaction("b", 2, "-6")]
        fresh = [transaction("c", 1, "-5"), transaction("d", 9, "-7"), transaction("e", 10, "-8")]

        assert transaction_overlap(stored, fresh) == 0.5

    def test_overlap_none_without_transactions(self):
        """Should return None when either side has no transactions."""
        assert transaction_overlap([], [transaction("a", 1, "-5")]) is None


@pytest.mark.unit
class TestReconciliationService:
    """Test suite for ReconciliationService."""

    @pytest.mark.asyncio
    async def test_exact_matches_skip_transactions(self):
        """Should not fetch transactions when the exact tiers settle everything."""
        store = MagicMock(spec=AccountStore)
        store.get_accounts = AsyncMock(return_value=[stored_account("s1", resource_id="res-1")])
        store.get_recent_transactions = AsyncMock()
        facade = MagicMock()
        facade.get_accounts = AsyncMock(return_value=[fresh_account("a1", resource_id="res-1")])
        facade.get_transactions = AsyncMock()

        service = ReconciliationService(facade, store)
        result = await service.reconcile("gocardless", "conn-1", GetAccountsRequest(connection_id="req-2"))

        assert result.matched[0].method == MatchMethod.RESOURCE_ID
        store.get_recent_transactions.assert_not_awaited()
        facade.get_transactions.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_fetches_transactions_for_unmatched(self):
        """Should compare recent transactions of the unmatched accounts only."""
        store = MagicMock(spec=AccountStore)
        store.get_accounts = AsyncMock(
            return_value=[stored_account("s1", name="Account"), stored_account("s2", name="Account")]
        )
        store.get_recent_transactions = AsyncMock(
            side_effect=lambda account_id, limit: {
                "s1": [transaction("x1", 1, "-10")],
                "s2": [transaction("y1", 2, "-20")],
            }[account_id]
        )
        facade = MagicMock()
        facade.get_accounts = AsyncMock(
            return_value=[fresh_account("a1", name="Account"), fresh_account("a2", name="Account")]
        )

        async def get_transactions(tag, request):
            assert request.latest is True
            return {"a1": [transaction("n1", 2, "-20")], "a2": [transaction("n2", 1, "-10")]}[request.account_id]

        facade.get_transactions = AsyncMock(side_effect=get_transactions)

        service = ReconciliationService(facade, store, transaction_limit=25)
        result = await service.reconcile("enablebanking", "conn-1", GetAccountsRequest(connection_id="sess-2"))

        pairs = {(m.stored_account_id, m.account_id) for m in result.matched}
        assert pairs == {("s1", "a2"), ("s2", "a1")}
        store.get_recent_transactions.assert_any_await("s1", 25)
