"""Scoring and ranking of unseen listings."""

from propalert.ranking.scorer import DEFAULT_WEIGHTS, ScoringWeights, rank, score

__all__ = [
    "DEFAULT_WEIGHTS",
    "ScoringWeights",
    "rank",
    "score",
]
