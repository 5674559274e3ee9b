import itertools

import pytest

from prode.scoring import (
    BASE_SCORING_RULES,
    PointsBreakdown,
    ScoringCategory,
    ScoringRules,
    evaluate,
    validate_scores,
)
from prode.scoring.calculator import apply_multiplier


@pytest.mark.parametrize(
    "predicted, actual, total, breakdown",
    [
        ((1, 0), (1, 0), 12, {"exactScore": 12}),
        ((1, 0), (2, 0), 7, {"correctWinnerPlusOneTeamScore": 7}),
        ((1, 0), (2, 1), 5, {"correctWinnerOrDraw": 5}),
        ((1, 0), (0, 0), 2, {"correctOneTeamScore": 2}),
        ((1, 1), (2, 2), 5, {"correctWinnerOrDraw": 5}),
        ((1, 0), (2, 2), 0, {}),
    ],
)
def test_scoring_table(predicted, actual, total, breakdown):
    result = evaluate(*predicted, *actual, phase="grupos")

    assert result.total == total
    assert result.base_points == total
    assert result.breakdown == breakdown
    assert result.phase == "grupos"


def test_away_win_with_matching_goal_is_seven():
    result = evaluate(0, 2, 1, 2)
    assert result.category is ScoringCategory.CORRECT_WINNER_PLUS_ONE_TEAM_SCORE
    assert result.total == 7


def test_wrong_outcome_with_matching_goal_is_two():
    result = evaluate(2, 1, 0, 1)
    assert result.category is ScoringCategory.CORRECT_ONE_TEAM_SCORE
    assert result.total == 2


SCORES = range(0, 6)
GRID = list(itertools.product(SCORES, SCORES, SCORES, SCORES))


def test_at_most_one_category_fires_over_grid():
    for ph, pa, ah, aa in GRID:
        result = evaluate(ph, pa, ah, aa)
        assert len(result.breakdown) <= 1
        assert result.total in {0, 2, 5, 7, 12}
        assert sum(result.breakdown.values()) == result.total


def test_drawn_result_never_awards_winner_plus_goals():
    for ph, pa, ah, aa in GRID:
        if ah != aa or (ph, pa) == (ah, aa):
            continue
        result = evaluate(ph, pa, ah, aa)
        if ph == pa:
            assert result.total == 5
        else:
            assert result.total in {0, 2}


def test_exact_score_only_when_equal():
    for ph, pa, ah, aa in GRID:
        result = evaluate(ph, pa, ah, aa)
        assert (result.total == 12) == ((ph, pa) == (ah, aa))


@pytest.mark.parametrize(
    "base, multiplier, expected",
    [
        (12, 1.0, 12),
        (5, 1.5, 8),
        (7, 0.5, 4),
        (2, 1.25, 3),
        (5, 2, 10),
        (0, 3.0, 0),
    ],
)
def test_multiplier_rounds_half_away_from_zero(base, multiplier, expected):
    assert apply_multiplier(base, multiplier) == expected


def test_multiplier_scales_total_not_base():
    result = evaluate(1, 1, 2, 2, multiplier=1.5, phase="final")

    assert result.base_points == 5
    assert result.multiplier == 1.5
    assert result.total == 8
    assert result.breakdown == {"correctWinnerOrDraw": 5}


def test_breakdown_storage_shape():
    data = evaluate(1, 0, 2, 0, phase="octavos").to_dict()

    assert data == {
        "total": 7,
        "basePoints": 7,
        "multiplier": 1.0,
        "breakdown": {"correctWinnerPlusOneTeamScore": 7},
        "context": {
            "predicted": {"home": 1, "away": 0},
            "actual": {"home": 2, "away": 0},
            "phase": "octavos",
        },
    }
    assert PointsBreakdown.from_dict(data) == evaluate(1, 0, 2, 0, phase="octavos")


def test_stored_breakdown_with_two_categories_is_rejected():
    data = evaluate(1, 0, 1, 0).to_dict()
    data["breakdown"]["correctOneTeamScore"] = 2

    with pytest.raises(ValueError):
        PointsBreakdown.from_dict(data)


def test_custom_rules():
    rules = ScoringRules(exact_score=10, correct_winner_or_draw=3)

    assert evaluate(1, 0, 1, 0, rules=rules).total == 10
    assert evaluate(1, 0, 3, 1, rules=rules).total == 3
    assert BASE_SCORING_RULES.exact_score == 12


@pytest.mark.parametrize(
    "home, away, valid",
    [
        (0, 0, True),
        (3, 1, True),
        (None, 1, False),
        (1, None, False),
        (-1, 0, False),
        (1.0, 2, False),
        (True, 0, False),
        ("1", 0, False),
    ],
)
def test_validate_scores(home, away, valid):
    assert validate_scores(home, away) is valid
