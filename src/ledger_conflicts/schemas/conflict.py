"""Conflict pair representation.

A ConflictPair is the hypothesis that one manually entered transaction and
one bank-imported transaction describe the same real-world event.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ledger_conflicts.matching.similarity import MatchScore
    from ledger_conflicts.schemas.transaction import Transaction


class ConflictType(str, Enum):
    """Which fields made the pair look like a duplicate."""

    DATE_AMOUNT_PAYEE = "date_amount_payee"
    AMOUNT_PAYEE = "amount_payee"
    DATE_AMOUNT = "date_amount"
    POTENTIAL = "potential"


class ResolutionStatus(str, Enum):
    """Lifecycle of a conflict pair.

    RESOLVING is the optimistic state: the chosen resolution is already
    visible locally but not yet confirmed by the persistence call.
    """

    UNRESOLVED = "unresolved"
    RESOLVING = "resolving"
    RESOLVED = "resolved"


class ResolutionAction(str, Enum):
    """How a conflict is resolved."""

    KEEP_BOTH = "keep-both"
    KEEP_MANUAL = "keep-manual"
    KEEP_BANK = "keep-bank"
    LINK = "link"


@dataclass(frozen=True)
class ConflictPair:
    """A suspected duplicate between a manual and a bank-imported transaction."""

    manual: Transaction
    imported: Transaction
    points: float
    conflict_type: ConflictType = ConflictType.POTENTIAL
    status: ResolutionStatus = ResolutionStatus.UNRESOLVED
    resolution: ResolutionAction | None = None
    signals: tuple[MatchScore, ...] = field(default=(), compare=False)

    @property
    def pair_id(self) -> str:
        """Pairs are keyed by the manual transaction (one active pair each)."""
        return self.manual.id

    @property
    def score(self) -> float:
        """Similarity on the 0.0-1.0 scale."""
        return self.points / 100.0

    @property
    def is_unresolved(self) -> bool:
        return self.status == ResolutionStatus.UNRESOLVED

    @property
    def is_resolving(self) -> bool:
        return self.status == ResolutionStatus.RESOLVING

    def involves(self, transaction_id: str) -> bool:
        return transaction_id in (self.manual.id, self.imported.id)

    def tentatively_resolved(self, action: ResolutionAction) -> ConflictPair:
        return replace(self, status=ResolutionStatus.RESOLVING, resolution=action)

    def confirmed(self) -> ConflictPair:
        return replace(self, status=ResolutionStatus.RESOLVED)

    def reverted(self) -> ConflictPair:
        return replace(self, status=ResolutionStatus.UNRESOLVED, resolution=None)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "pair_id": self.pair_id,
            "manual": self.manual.to_dict(),
            "imported": self.imported.to_dict(),
            "score": self.score,
            "points": self.points,
            "conflict_type": self.conflict_type.value,
            "status": self.status.value,
            "resolution": self.resolution.value if self.resolution else None,
            "signals": [
                {
                    "signal": s.signal,
                    "score": s.score,
                    "weight": s.weight,
                    "weighted_score": s.weighted_score,
                    "detail": s.detail,
                }
                for s in self.signals
            ],
        }
