"""Similarity scoring for manual vs. bank-imported transactions."""

from ledger_conflicts.matching.similarity import (
    MatchScore,
    PairScore,
    classify_conflict,
    date_similarity,
    pair_score,
    score_pair,
    string_similarity,
)

__all__ = [
    "MatchScore",
    "PairScore",
    "classify_conflict",
    "date_similarity",
    "pair_score",
    "score_pair",
    "string_similarity",
]
