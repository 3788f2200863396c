"""Schemas for matching stored accounts to a re-authorized connection."""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from bankbridge.schemas.banking import AccountType
from bankbridge.utils.currency import NO_CURRENCY


class MatchConfidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class MatchMethod(str, Enum):
    """Which tier produced a match."""

    RESOURCE_ID = "resource_id"
    IBAN = "iban"
    FUZZY = "fuzzy"


class StoredAccount(BaseModel):
    """An account as previously persisted by the application."""

    id: str  # application id
    provider_account_id: str  # vendor account id at the time it was stored
    name: str
    type: AccountType
    currency: str = NO_CURRENCY
    resource_id: Optional[str] = None
    iban: Optional[str] = None


class MatchSignal(BaseModel):
    """
    One fuzzy-match signal.

    ``passed`` is None when the signal could not be evaluated (for example
    IBAN when either side has none). Hard signals veto a match on failure.
    """

    name: str
    passed: Optional[bool] = None
    hard: bool = False
    detail: Optional[str] = None


class AccountMatch(BaseModel):
    stored_account_id: str
    account_id: str  # vendor account id from the refreshed connection
    method: MatchMethod
    confidence: MatchConfidence
    signals: List[MatchSignal] = Field(default_factory=list)
    transaction_overlap: Optional[float] = None


class Remediation(BaseModel):
    """Field updates that would re-link a stored account. Never applied here."""

    stored_account_id: str
    account_id: str
    confidence: MatchConfidence
    updates: Dict[str, Any] = Field(default_factory=dict)


class DiagnosisKind(str, Enum):
    STALE = "stale"
    NEW = "new"
    CONFLICT = "conflict"


class Diagnosis(BaseModel):
    kind: DiagnosisKind
    account_id: str  # stored id for stale/conflict, vendor id for new
    reason: str
    action: str
    candidate_account_id: Optional[str] = None


class ReconciliationResult(BaseModel):
    matched: List[AccountMatch] = Field(default_factory=list)
    stale: List[str] = Field(default_factory=list)  # stored account ids
    new: List[str] = Field(default_factory=list)  # vendor account ids
    remediations: List[Remediation] = Field(default_factory=list)
    diagnoses: List[Diagnosis] = Field(default_factory=list)
