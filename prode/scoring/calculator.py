"""
Rule evaluator: (predicted scoreline, actual scoreline, phase) -> points.

Pure functions only. No database access, no Flask context.
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from prode.scoring.rules import BASE_SCORING_RULES, Outcome, ScoringCategory


@dataclass(frozen=True)
class Scoreline:
    home: int
    away: int

    def to_dict(self):
        return {"home": self.home, "away": self.away}


@dataclass(frozen=True)
class PointsBreakdown:
    """Result of evaluating one prediction.

    ``category`` is None when no rule fired; otherwise it is the only rule
    that contributed points.
    """

    category: Optional[ScoringCategory]
    base_points: int
    multiplier: float
    total: int
    predicted: Scoreline
    actual: Scoreline
    phase: str

    @property
    def breakdown(self):
        """Flat record with at most one populated category"""
        if self.category is None:
            return {}
        return {self.category.key: self.base_points}

    def to_dict(self):
        """Storage shape for Prediction.points_breakdown"""
        return {
            "total": self.total,
            "basePoints": self.base_points,
            "multiplier": self.multiplier,
            "breakdown": self.breakdown,
            "context": {
                "predicted": self.predicted.to_dict(),
                "actual": self.actual.to_dict(),
                "phase": self.phase,
            },
        }

    @classmethod
    def from_dict(cls, data):
        categories = [ScoringCategory.from_key(k) for k in data.get("breakdown", {})]
        if len(categories) > 1:
            raise ValueError(f"Breakdown has more than one category: {data['breakdown']}")
        context = data["context"]
        return cls(
            category=categories[0] if categories else None,
            base_points=data["basePoints"],
            multiplier=data["multiplier"],
            total=data["total"],
            predicted=Scoreline(**context["predicted"]),
            actual=Scoreline(**context["actual"]),
            phase=context["phase"],
        )


def validate_scores(home, away):
    """True when both scores are present, integral and non-negative"""
    for value in (home, away):
        if value is None or isinstance(value, bool) or not isinstance(value, int):
            return False
        if value < 0:
            return False
    return True


def apply_multiplier(base_points, multiplier):
    """Scale base points, rounding half away from zero"""
    scaled = Decimal(base_points) * Decimal(str(multiplier))
    return int(scaled.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def classify(predicted, actual):
    """Pick the single scoring category for a prediction, or None"""
    if predicted == actual:
        return ScoringCategory.EXACT_SCORE

    predicted_outcome = Outcome.of(predicted.home, predicted.away)
    actual_outcome = Outcome.of(actual.home, actual.away)
    one_side_matches = predicted.home == actual.home or predicted.away == actual.away

    # A drawn result never earns the winner-plus-goals tier
    if actual_outcome is Outcome.DRAW:
        if predicted_outcome is Outcome.DRAW:
            return ScoringCategory.CORRECT_WINNER_OR_DRAW
        if one_side_matches:
            return ScoringCategory.CORRECT_ONE_TEAM_SCORE
        return None

    if predicted_outcome is actual_outcome:
        if one_side_matches:
            return ScoringCategory.CORRECT_WINNER_PLUS_ONE_TEAM_SCORE
        return ScoringCategory.CORRECT_WINNER_OR_DRAW

    if one_side_matches:
        return ScoringCategory.CORRECT_ONE_TEAM_SCORE
    return None


def evaluate(
    predicted_home,
    predicted_away,
    actual_home,
    actual_away,
    multiplier=1.0,
    phase="",
    rules=None,
):
    """Score one prediction against the final result.

    Scores must already be validated as non-negative integers; the function
    is total over that domain.
    """
    rules = rules or BASE_SCORING_RULES
    predicted = Scoreline(predicted_home, predicted_away)
    actual = Scoreline(actual_home, actual_away)

    category = classify(predicted, actual)
    base_points = rules.points_for(category) if category is not None else 0

    return PointsBreakdown(
        category=category,
        base_points=base_points,
        multiplier=multiplier,
        total=apply_multiplier(base_points, multiplier),
        predicted=predicted,
        actual=actual,
        phase=phase,
    )
