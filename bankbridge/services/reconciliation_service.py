"""
Reconnection reconciliation.

When a user re-authorizes a connection the vendor usually hands out new
account ids. This service matches the previously stored accounts to the
refreshed vendor accounts and proposes the updates needed to re-link them.
It never applies a match.

Matching tiers, per refreshed account against stored accounts not yet matched:
    1. vendor resource id (IBAN, last four, persistent id)
    2. IBAN
    3. fuzzy score over type, currency, IBAN, name and transaction overlap

Type, currency and IBAN are hard signals: if one fails the pairing is low
confidence no matter what else agrees. An unresolved currency on either side
is never a conflict.
"""

import asyncio
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Optional, Protocol, Sequence, Set, Tuple, Union, runtime_checkable

from bankbridge.core.logging_config import get_logger
from bankbridge.schemas.banking import (
    Account,
    GetAccountsRequest,
    GetTransactionsRequest,
    ProviderTag,
    Transaction,
)
from bankbridge.schemas.reconciliation import (
    AccountMatch,
    Diagnosis,
    DiagnosisKind,
    MatchConfidence,
    MatchMethod,
    MatchSignal,
    ReconciliationResult,
    Remediation,
    StoredAccount,
)
from bankbridge.services.banking_facade import BankingFacade
from bankbridge.utils.currency import is_valid_currency, normalize_currency
from bankbridge.utils.logging_utils import redact_iban
from bankbridge.utils.text import name_tokens

logger = get_logger(__name__)

# Share of the smaller transaction set that must appear in the other
STRONG_OVERLAP = 0.5
# Share of evaluated signals that must pass for medium confidence
MEDIUM_SIGNAL_FRACTION = 0.6
# Stored transactions compared per account
RECENT_TRANSACTION_LIMIT = 50

_CONFIDENCE_RANK = {MatchConfidence.HIGH: 2, MatchConfidence.MEDIUM: 1, MatchConfidence.LOW: 0}


@runtime_checkable
class AccountStore(Protocol):
    """Read access to persisted accounts."""

    async def get_accounts(self, connection_id: str) -> List[StoredAccount]:
        ...

    async def get_recent_transactions(self, account_id: str, limit: int) -> List[Transaction]:
        ...


# ── Signals ──────────────────────────────────────────────────────────────────


def normalize_iban(iban: Optional[str]) -> Optional[str]:
    if not iban:
        return None
    compact = iban.replace(" ", "").upper()
    return compact or None


def transaction_keys(transactions: Sequence[Transaction]) -> Tuple[Set[str], Set[Tuple[str, Decimal]]]:
    """Ids and (date, amount) fingerprints of a transaction set."""
    ids = {transaction.id for transaction in transactions}
    fingerprints = {(transaction.date.isoformat(), transaction.amount) for transaction in transactions}
    return ids, fingerprints


def transaction_overlap(
    stored: Sequence[Transaction],
    fresh: Sequence[Transaction],
) -> Optional[float]:
    """
    Share of the smaller set found in the other, by id or by date and amount.

    None when either side has no transactions.
    """
    if not stored or not fresh:
        return None

    fresh_ids, fresh_fingerprints = transaction_keys(fresh)
    common = sum(
        1
        for transaction in stored
        if transaction.id in fresh_ids
        or (transaction.date.isoformat(), transaction.amount) in fresh_fingerprints
    )
    return min(common / min(len(stored), len(fresh)), 1.0)


def _type_signal(stored: StoredAccount, account: Account) -> MatchSignal:
    return MatchSignal(name="type", passed=stored.type == account.type, hard=True)


def _currency_signal(stored: StoredAccount, account: Account) -> MatchSignal:
    if not is_valid_currency(stored.currency) or not is_valid_currency(account.currency):
        return MatchSignal(name="currency", hard=True, detail="unresolved")
    return MatchSignal(
        name="currency",
        passed=normalize_currency(stored.currency) == normalize_currency(account.currency),
        hard=True,
    )


def _iban_signal(stored: StoredAccount, account: Account) -> MatchSignal:
    stored_iban, fresh_iban = normalize_iban(stored.iban), normalize_iban(account.iban)
    if not stored_iban or not fresh_iban:
        return MatchSignal(name="iban", hard=True)
    return MatchSignal(name="iban", passed=stored_iban == fresh_iban, hard=True)


def _name_signal(stored: StoredAccount, account: Account) -> MatchSignal:
    if stored.name.strip().lower() == account.name.strip().lower():
        return MatchSignal(name="name", passed=True, detail="exact")
    if name_tokens(stored.name) & name_tokens(account.name):
        return MatchSignal(name="name", passed=True, detail="partial")
    return MatchSignal(name="name", passed=False)


def identity_conflicts(stored: StoredAccount, account: Account) -> List[str]:
    """Names of the type, currency and IBAN signals that disagree."""
    signals = (_type_signal(stored, account), _currency_signal(stored, account), _iban_signal(stored, account))
    return [signal.name for signal in signals if signal.passed is False]


def _overlap_signal(overlap: Optional[float]) -> MatchSignal:
    if overlap is None:
        return MatchSignal(name="transactions")
    return MatchSignal(name="transactions", passed=overlap >= STRONG_OVERLAP, detail=f"{overlap:.2f}")


@dataclass
class Candidate:
    """Scored fuzzy pairing."""

    stored: StoredAccount
    account: Account
    signals: List[MatchSignal]
    overlap: Optional[float]
    confidence: MatchConfidence

    @property
    def passing_fraction(self) -> float:
        evaluated = [signal for signal in self.signals if signal.passed is not None]
        if not evaluated:
            return 0.0
        return sum(1 for signal in evaluated if signal.passed) / len(evaluated)

    @property
    def hard_conflicts(self) -> List[str]:
        return [signal.name for signal in self.signals if signal.hard and signal.passed is False]

    def sort_key(self) -> Tuple[int, float, float]:
        return (_CONFIDENCE_RANK[self.confidence], self.overlap or 0.0, self.passing_fraction)


def score_confidence(
    signals: Sequence[MatchSignal],
    overlap: Optional[float],
    single_pair: bool,
) -> MatchConfidence:
    """
    Confidence of a fuzzy pairing.

    Args:
        signals: Evaluated signals for the pairing
        overlap: Transaction overlap, if both sides had transactions
        single_pair: Exactly one unmatched stored and one unmatched vendor account remain
    """
    if any(signal.hard and signal.passed is False for signal in signals):
        return MatchConfidence.LOW

    if single_pair:
        return MatchConfidence.HIGH

    if overlap is not None and overlap >= STRONG_OVERLAP and not any(signal.passed is False for signal in signals):
        return MatchConfidence.HIGH

    evaluated = [signal for signal in signals if signal.passed is not None]
    if evaluated and sum(1 for signal in evaluated if signal.passed) / len(evaluated) >= MEDIUM_SIGNAL_FRACTION:
        return MatchConfidence.MEDIUM
    return MatchConfidence.LOW


def score_candidate(
    stored: StoredAccount,
    account: Account,
    stored_transactions: Sequence[Transaction] = (),
    fresh_transactions: Sequence[Transaction] = (),
    single_pair: bool = False,
) -> Candidate:
    overlap = transaction_overlap(stored_transactions, fresh_transactions)
    signals = [
        _type_signal(stored, account),
        _currency_signal(stored, account),
        _iban_signal(stored, account),
        _name_signal(stored, account),
        _overlap_signal(overlap),
    ]
    return Candidate(
        stored=stored,
        account=account,
        signals=signals,
        overlap=overlap,
        confidence=score_confidence(signals, overlap, single_pair),
    )


# ── Remediation ──────────────────────────────────────────────────────────────


def build_remediation(match: AccountMatch, stored: StoredAccount, account: Account) -> Remediation:
    """Fields of the stored account that differ from the refreshed vendor account."""
    updates = {}
    if stored.provider_account_id != account.id:
        updates["provider_account_id"] = account.id
    if account.resource_id and stored.resource_id != account.resource_id:
        updates["resource_id"] = account.resource_id
    if account.iban and normalize_iban(stored.iban) != normalize_iban(account.iban):
        updates["iban"] = account.iban
    if is_valid_currency(account.currency) and not is_valid_currency(stored.currency):
        updates["currency"] = account.currency
    if account.expires_at:
        updates["expires_at"] = account.expires_at
    if account.enrollment_id:
        updates["enrollment_id"] = account.enrollment_id

    return Remediation(
        stored_account_id=stored.id,
        account_id=account.id,
        confidence=match.confidence,
        updates=updates,
    )


# ── Reconciliation ───────────────────────────────────────────────────────────

MatchTriple = Tuple[AccountMatch, StoredAccount, Account]


def match_exact(
    stored_accounts: Sequence[StoredAccount],
    accounts: Sequence[Account],
) -> Tuple[List[MatchTriple], List[StoredAccount], List[Account]]:
    """
    Resource id and IBAN tiers.

    A pair that matches on an identifier but disagrees on type, currency or
    IBAN is left for the fuzzy tier, where it scores low and is reported as
    a conflict.

    Returns:
        Matches, stored accounts left unmatched, vendor accounts left unmatched
    """
    unmatched_stored: List[StoredAccount] = list(stored_accounts)
    unmatched_fresh: List[Account] = []
    matches: List[MatchTriple] = []

    def take(predicate) -> Optional[StoredAccount]:
        for stored in unmatched_stored:
            if predicate(stored):
                unmatched_stored.remove(stored)
                return stored
        return None

    for account in accounts:
        stored = None
        method = None
        if account.resource_id:
            stored = take(lambda s: s.resource_id == account.resource_id and not identity_conflicts(s, account))
            method = MatchMethod.RESOURCE_ID
        if stored is None and normalize_iban(account.iban):
            stored = take(
                lambda s: normalize_iban(s.iban) == normalize_iban(account.iban) and not identity_conflicts(s, account)
            )
            method = MatchMethod.IBAN

        if stored is None:
            unmatched_fresh.append(account)
            continue

        matches.append(
            (
                AccountMatch(
                    stored_account_id=stored.id,
                    account_id=account.id,
                    method=method,
                    confidence=MatchConfidence.HIGH,
                ),
                stored,
                account,
            )
        )

    return matches, unmatched_stored, unmatched_fresh


def reconcile_accounts(
    stored_accounts: Sequence[StoredAccount],
    accounts: Sequence[Account],
    stored_transactions: Optional[Dict[str, List[Transaction]]] = None,
    transactions: Optional[Dict[str, List[Transaction]]] = None,
) -> ReconciliationResult:
    """
    Match stored accounts to refreshed vendor accounts.

    Args:
        stored_accounts: Accounts persisted for the connection
        accounts: Accounts the vendor returned after re-authorization
        stored_transactions: Recent stored transactions by stored account id
        transactions: Vendor transactions by vendor account id

    Returns:
        Matched pairs, stale stored ids, new vendor ids, proposed
        remediations and a diagnosis for everything left unmatched
    """
    stored_transactions = stored_transactions or {}
    transactions = transactions or {}

    matches, unmatched_stored, unmatched_fresh = match_exact(stored_accounts, accounts)

    # Fuzzy tier
    single_pair = len(unmatched_stored) == 1 and len(unmatched_fresh) == 1
    candidates = sorted(
        (
            score_candidate(
                stored,
                account,
                stored_transactions.get(stored.id, []),
                transactions.get(account.id, []),
                single_pair=single_pair,
            )
            for stored in unmatched_stored
            for account in unmatched_fresh
        ),
        key=Candidate.sort_key,
        reverse=True,
    )

    conflicts: Dict[str, Candidate] = {}
    for candidate in candidates:
        if candidate.stored not in unmatched_stored or candidate.account not in unmatched_fresh:
            continue

        if candidate.confidence is MatchConfidence.LOW:
            conflicts.setdefault(candidate.stored.id, candidate)
            continue

        unmatched_stored.remove(candidate.stored)
        unmatched_fresh.remove(candidate.account)
        matches.append(
            (
                AccountMatch(
                    stored_account_id=candidate.stored.id,
                    account_id=candidate.account.id,
                    method=MatchMethod.FUZZY,
                    confidence=candidate.confidence,
                    signals=candidate.signals,
                    transaction_overlap=candidate.overlap,
                ),
                candidate.stored,
                candidate.account,
            )
        )

    result = ReconciliationResult(
        matched=[match for match, _, _ in matches],
        stale=[stored.id for stored in unmatched_stored],
        new=[account.id for account in unmatched_fresh],
        remediations=[build_remediation(match, stored, account) for match, stored, account in matches],
        diagnoses=_diagnose(unmatched_stored, unmatched_fresh, conflicts, has_accounts=bool(accounts)),
    )

    logger.info(
        "accounts_reconciled",
        matched=len(result.matched),
        stale=len(result.stale),
        new=len(result.new),
        fuzzy=sum(1 for match in result.matched if match.method is MatchMethod.FUZZY),
    )
    return result


def _diagnose(
    stale: Sequence[StoredAccount],
    new: Sequence[Account],
    conflicts: Dict[str, Candidate],
    has_accounts: bool,
) -> List[Diagnosis]:
    diagnoses = []
    for stored in stale:
        candidate = conflicts.get(stored.id)
        if candidate is not None and candidate.account in new:
            conflicted = candidate.hard_conflicts
            logger.warning(
                "account_match_conflict",
                stored_account_id=stored.id,
                candidate_account_id=candidate.account.id,
                conflicts=conflicted,
                stored_iban=redact_iban(stored.iban),
            )
            diagnoses.append(
                Diagnosis(
                    kind=DiagnosisKind.CONFLICT,
                    account_id=stored.id,
                    candidate_account_id=candidate.account.id,
                    reason=(
                        f"Possible match conflicts on {', '.join(conflicted)}"
                        if conflicted
                        else "Possible match has too few agreeing signals"
                    ),
                    action="review_match",
                )
            )
        elif not has_accounts:
            diagnoses.append(
                Diagnosis(
                    kind=DiagnosisKind.STALE,
                    account_id=stored.id,
                    reason="The provider returned no accounts for this connection",
                    action="reauthorize",
                )
            )
        else:
            diagnoses.append(
                Diagnosis(
                    kind=DiagnosisKind.STALE,
                    account_id=stored.id,
                    reason="The account was not shared during re-authorization or was closed",
                    action="reauthorize_or_archive",
                )
            )

    for account in new:
        diagnoses.append(
            Diagnosis(
                kind=DiagnosisKind.NEW,
                account_id=account.id,
                reason="The provider returned an account with no stored counterpart",
                action="import",
            )
        )
    return diagnoses


class ReconciliationService:
    """Fetches both sides of a reconnection and reconciles them."""

    def __init__(
        self,
        facade: BankingFacade,
        store: AccountStore,
        transaction_limit: int = RECENT_TRANSACTION_LIMIT,
    ):
        self.facade = facade
        self.store = store
        self.transaction_limit = transaction_limit

    async def _fresh_transactions(
        self,
        tag: Union[ProviderTag, str],
        account: Account,
        access_token: Optional[str],
    ) -> List[Transaction]:
        return await self.facade.get_transactions(
            tag,
            GetTransactionsRequest(
                account_id=account.id,
                access_token=access_token,
                account_type=account.type,
                latest=True,
            ),
        )

    async def reconcile(
        self,
        tag: Union[ProviderTag, str],
        connection_id: str,
        request: GetAccountsRequest,
    ) -> ReconciliationResult:
        """
        Reconcile the stored accounts of ``connection_id`` with the accounts
        the provider returns for ``request``.
        """
        stored_accounts, accounts = await asyncio.gather(
            self.store.get_accounts(connection_id),
            self.facade.get_accounts(tag, request),
        )

        # Transactions are only compared in the fuzzy tier
        _, unmatched_stored, unmatched_fresh = match_exact(stored_accounts, accounts)
        if not unmatched_stored or not unmatched_fresh:
            return reconcile_accounts(stored_accounts, accounts)

        stored_transactions, fresh_transactions = await asyncio.gather(
            asyncio.gather(
                *(self.store.get_recent_transactions(stored.id, self.transaction_limit) for stored in unmatched_stored)
            ),
            asyncio.gather(
                *(self._fresh_transactions(tag, account, request.access_token) for account in unmatched_fresh)
            ),
        )

        return reconcile_accounts(
            stored_accounts,
            accounts,
            stored_transactions=dict(zip((stored.id for stored in unmatched_stored), stored_transactions)),
            transactions=dict(zip((account.id for account in unmatched_fresh), fresh_transactions)),
        )
