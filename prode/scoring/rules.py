"""
Scoring rules for the prediction pool

Point values per category and the per-phase multiplier policy. Every phase
currently scales by 1.0; the multiplier is still applied on every evaluation
so a future policy change only needs to touch this table (or the phase row).

Examples with the base rules:

    predicted 1-0, actual 1-0 -> 12 (exact score)
    predicted 1-0, actual 2-0 -> 7  (winner plus home goals)
    predicted 1-0, actual 2-1 -> 5  (winner only)
    predicted 1-0, actual 0-0 -> 2  (away goals only)
    predicted 1-0, actual 2-2 -> 0
"""

import enum
from dataclasses import dataclass


@dataclass(frozen=True)
class ScoringRules:
    exact_score: int = 12
    correct_winner_or_draw: int = 5
    correct_winner_plus_one_team_score: int = 7
    correct_one_team_score: int = 2

    def points_for(self, category):
        return getattr(self, category.attr)


BASE_SCORING_RULES = ScoringRules()


class ScoringCategory(enum.Enum):
    """The single rule that produced a prediction's points"""

    EXACT_SCORE = ("exactScore", "exact_score")
    CORRECT_WINNER_OR_DRAW = ("correctWinnerOrDraw", "correct_winner_or_draw")
    CORRECT_WINNER_PLUS_ONE_TEAM_SCORE = (
        "correctWinnerPlusOneTeamScore",
        "correct_winner_plus_one_team_score",
    )
    CORRECT_ONE_TEAM_SCORE = ("correctOneTeamScore", "correct_one_team_score")

    def __init__(self, key, attr):
        # key is the name used in the persisted breakdown record
        self.key = key
        self.attr = attr

    @classmethod
    def from_key(cls, key):
        for category in cls:
            if category.key == key:
                return category
        raise KeyError(key)


class Outcome(enum.Enum):
    HOME_WIN = "HOME_WIN"
    AWAY_WIN = "AWAY_WIN"
    DRAW = "DRAW"

    @classmethod
    def of(cls, home, away):
        if home > away:
            return cls.HOME_WIN
        if away > home:
            return cls.AWAY_WIN
        return cls.DRAW


# Seed values for Phase.points_multiplier. Settlement reads the Phase row.
PHASE_MULTIPLIERS = {
    "grupos": 1.0,
    "dieciseisavos": 1.0,
    "octavos": 1.0,
    "cuartos": 1.0,
    "semifinales": 1.0,
    "tercer-lugar": 1.0,
    "final": 1.0,
}
