"""
Scoring engine for the prediction pool

This package converts a (prediction, final result) pair into points. For
per-match settlement and the leaderboard, see prode.services.
"""

from .calculator import (
    PointsBreakdown,
    Scoreline,
    evaluate,
    validate_scores,
)
from .rules import (
    BASE_SCORING_RULES,
    PHASE_MULTIPLIERS,
    ScoringCategory,
    ScoringRules,
)

__all__ = [
    "PointsBreakdown",
    "Scoreline",
    "evaluate",
    "validate_scores",
    "BASE_SCORING_RULES",
    "PHASE_MULTIPLIERS",
    "ScoringCategory",
    "ScoringRules",
]
