"""Similarity scoring between manual and bank-imported transactions.

All functions here are pure: the result depends only on the arguments, so
they are safe to call from any task and trivially testable.

The pair score is a 0-100 weighted sum of three signals:
- Amount (40 points): exact, or linear falloff up to the amount threshold
- Date (30 points): same day, or linear falloff up to the day threshold
- Payee (30 points): exact (case-insensitive) or substring containment (half)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import TYPE_CHECKING

from ledger_conflicts.schemas.conflict import ConflictType
from ledger_conflicts.schemas.transaction import parse_date

if TYPE_CHECKING:
    from ledger_conflicts.schemas.transaction import Transaction

# Signal weights in points (sum to 100)
WEIGHT_AMOUNT = 40.0
WEIGHT_DATE = 30.0
WEIGHT_PAYEE = 30.0

DEFAULT_AMOUNT_THRESHOLD = 100
DEFAULT_DATE_THRESHOLD_DAYS = 3

# Payee string similarity above which payees count as "similar"
PAYEE_SIMILARITY_CUTOFF = 0.7


@dataclass(frozen=True)
class MatchScore:
    """Individual signal contribution to a pair score."""

    signal: str
    score: float
    weight: float
    detail: str

    @property
    def weighted_score(self) -> float:
        """Get the weighted score (points) for this signal."""
        return self.score * self.weight


@dataclass(frozen=True)
class PairScore:
    """Breakdown of a pair score."""

    signals: tuple[MatchScore, ...] = field(default_factory=tuple)

    @property
    def total(self) -> float:
        """Total score on the 0-100 scale."""
        return round(sum(s.weighted_score for s in self.signals), 4)

    def signal(self, name: str) -> MatchScore | None:
        for s in self.signals:
            if s.signal == name:
                return s
        return None


def levenshtein_distance(a: str, b: str) -> int:
    """Edit distance between two strings (insert, delete, substitute)."""
    if len(a) < len(b):
        a, b = b, a
    if not b:
        return len(a)

    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            cost = 0 if ca == cb else 1
            current.append(
                min(
                    current[j - 1] + 1,  # insertion
                    previous[j] + 1,  # deletion
                    previous[j - 1] + cost,  # substitution
                )
            )
        previous = current
    return previous[-1]


def string_similarity(a: str | None, b: str | None) -> float:
    """Case-insensitive Levenshtein similarity in [0, 1].

    Both empty -> 1.0, exactly one empty -> 0.0.
    """
    if not a and not b:
        return 1.0
    if not a or not b:
        return 0.0

    s1 = a.lower()
    s2 = b.lower()
    max_length = max(len(s1), len(s2))
    return 1.0 - (levenshtein_distance(s1, s2) / max_length)


def days_between(d1: str | date | None, d2: str | date | None) -> int | None:
    """Absolute day difference, or None if either date is missing/invalid."""
    p1 = parse_date(d1)
    p2 = parse_date(d2)
    if p1 is None or p2 is None:
        return None
    return abs((p1 - p2).days)


def date_similarity(
    d1: str | date | None,
    d2: str | date | None,
    threshold_days: int = DEFAULT_DATE_THRESHOLD_DAYS,
) -> float:
    """Date similarity in [0, 1].

    Same day -> 1.0; within threshold_days -> 1 - days/10; otherwise, or for
    missing/unparseable dates, 0.0.
    """
    days = days_between(d1, d2)
    if days is None:
        return 0.0
    if days == 0:
        return 1.0
    if days <= threshold_days:
        return max(0.0, 1.0 - days / 10)
    return 0.0


def _score_amount(a1: int, a2: int, threshold: int) -> MatchScore:
    diff = abs(a1 - a2)
    if diff == 0:
        return MatchScore(signal="amount", score=1.0, weight=WEIGHT_AMOUNT, detail=f"exact: {a1}")
    if diff < threshold:
        return MatchScore(
            signal="amount",
            score=1.0 - diff / threshold,
            weight=WEIGHT_AMOUNT,
            detail=f"diff {diff}: {a1} vs {a2}",
        )
    return MatchScore(
        signal="amount", score=0.0, weight=WEIGHT_AMOUNT, detail=f"mismatch: {a1} vs {a2}"
    )


def _score_date(d1: str, d2: str, threshold_days: int) -> MatchScore:
    days = days_between(d1, d2)
    if days is None:
        return MatchScore(signal="date", score=0.0, weight=WEIGHT_DATE, detail="missing")
    if days == 0:
        return MatchScore(signal="date", score=1.0, weight=WEIGHT_DATE, detail="same day")
    if days <= threshold_days:
        # Linear decay within threshold
        return MatchScore(
            signal="date",
            score=1.0 - days / threshold_days,
            weight=WEIGHT_DATE,
            detail=f"{days} days",
        )
    return MatchScore(
        signal="date", score=0.0, weight=WEIGHT_DATE, detail=f">{threshold_days} days"
    )


def _score_payee(p1: str, p2: str) -> MatchScore:
    p1 = p1.lower().strip()
    p2 = p2.lower().strip()

    if not p1 or not p2:
        return MatchScore(signal="payee", score=0.0, weight=WEIGHT_PAYEE, detail="missing")
    if p1 == p2:
        return MatchScore(signal="payee", score=1.0, weight=WEIGHT_PAYEE, detail="exact")
    # Contains check (handles "Amazon" vs "Amazon Marketplace")
    if p1 in p2 or p2 in p1:
        return MatchScore(signal="payee", score=0.5, weight=WEIGHT_PAYEE, detail="contains")
    return MatchScore(signal="payee", score=0.0, weight=WEIGHT_PAYEE, detail="no match")


def score_pair(
    tx1: Transaction,
    tx2: Transaction,
    amount_threshold: int = DEFAULT_AMOUNT_THRESHOLD,
    date_threshold_days: int = DEFAULT_DATE_THRESHOLD_DAYS,
) -> PairScore:
    """Score two transactions and return the per-signal breakdown."""
    return PairScore(
        signals=(
            _score_amount(tx1.amount, tx2.amount, amount_threshold),
            _score_date(tx1.date, tx2.date, date_threshold_days),
            _score_payee(tx1.display_payee, tx2.display_payee),
        )
    )


def pair_score(
    tx1: Transaction,
    tx2: Transaction,
    amount_threshold: int = DEFAULT_AMOUNT_THRESHOLD,
    date_threshold_days: int = DEFAULT_DATE_THRESHOLD_DAYS,
) -> float:
    """Pair score on the 0-100 scale."""
    return score_pair(tx1, tx2, amount_threshold, date_threshold_days).total


def classify_conflict(
    tx1: Transaction,
    tx2: Transaction,
    date_threshold_days: int = DEFAULT_DATE_THRESHOLD_DAYS,
) -> ConflictType:
    """Describe which fields make the pair look like a duplicate."""
    same_amount = tx1.amount == tx2.amount
    same_day = date_similarity(tx1.date, tx2.date, date_threshold_days) == 1.0
    similar_payee = (
        string_similarity(tx1.display_payee, tx2.display_payee) > PAYEE_SIMILARITY_CUTOFF
    )

    if same_amount and same_day and similar_payee:
        return ConflictType.DATE_AMOUNT_PAYEE
    if same_amount and similar_payee:
        return ConflictType.AMOUNT_PAYEE
    if same_amount and same_day:
        return ConflictType.DATE_AMOUNT
    return ConflictType.POTENTIAL
