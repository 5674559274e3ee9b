"""
Match settlement

Scores every prediction on a finished match, persists each result on its own,
then rebuilds the leaderboard and appends an audit record. A failed write for
one prediction is recorded and the loop moves on; the settlement still
succeeds with a non-zero error count.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Union

from flask import current_app, has_app_context

from prode.errors import AggregationError, AuditWriteError, NotFoundError, ValidationError
from prode.models import AuditLog
from prode.scoring import evaluate, validate_scores
from prode.services.leaderboard import FullRecomputeAggregator
from prode.services.repository import SettlementRepository
from prode.utils.cache_utils import leaderboard_stale_reason, mark_leaderboard_stale
from prode.utils.logging_config import ContextualLogger
from prode.utils.performance import PerformanceMonitor, timer

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Settled:
    prediction_id: int
    user_id: int
    user_name: str
    points: int


@dataclass(frozen=True)
class Failed:
    prediction_id: int
    user_id: int
    reason: str


Outcome = Union[Settled, Failed]


@dataclass
class SettlementSummary:
    match_id: int
    match: dict
    predictions_processed: int = 0
    outcomes: List[Outcome] = field(default_factory=list)
    top_scorers_limit: int = 5

    @property
    def settled(self):
        return [o for o in self.outcomes if isinstance(o, Settled)]

    @property
    def failed(self):
        return [o for o in self.outcomes if isinstance(o, Failed)]

    @property
    def total_points_awarded(self):
        return sum(o.points for o in self.settled)

    @property
    def errors(self):
        return len(self.failed)

    @property
    def top_scorers(self):
        ranked = sorted(self.settled, key=lambda o: (-o.points, o.prediction_id))
        return [
            {"user_id": o.user_id, "name": o.user_name, "points": o.points}
            for o in ranked[: self.top_scorers_limit]
        ]

    def to_dict(self):
        return {
            "match_id": self.match_id,
            "match": self.match,
            "predictions_processed": self.predictions_processed,
            "total_points_awarded": self.total_points_awarded,
            "errors": self.errors,
            "top_scorers": self.top_scorers,
        }


class SettlementProcessor:
    """Settles matches against a repository and a leaderboard aggregator"""

    def __init__(self, repository=None, aggregator=None, top_scorers=None):
        self.repository = repository or SettlementRepository()
        self.aggregator = aggregator or FullRecomputeAggregator(self.repository)
        if top_scorers is None:
            top_scorers = (
                current_app.config.get("SETTLEMENT_TOP_SCORERS", 5)
                if has_app_context()
                else 5
            )
        self.top_scorers = top_scorers

    def _load_match(self, match_id):
        match = self.repository.get_match(match_id)
        if match is None:
            raise NotFoundError(f"Match {match_id} not found")
        if not validate_scores(match.home_score, match.away_score):
            raise ValidationError(
                f"Match {match_id} has no valid result",
                details=[
                    {"home_score": match.home_score, "away_score": match.away_score}
                ],
            )
        return match

    def settle_match(self, match_id):
        """
        Settle every prediction on a match and rebuild the leaderboard.

        Raises:
            ValidationError: match missing or without both final scores;
                nothing has been written
            AggregationError: the leaderboard rebuild failed; prediction
                results already written stay written

        Returns:
            SettlementSummary
        """
        log = ContextualLogger(__name__, {"match_id": match_id})
        match = self._load_match(match_id)

        # Snapshot before per-prediction commits expire the instance
        home_score, away_score = match.home_score, match.away_score
        multiplier = match.points_multiplier
        phase = match.phase_slug or ""
        summary = SettlementSummary(
            match_id=match_id,
            match={
                "home_team": match.home_team.name if match.home_team else None,
                "away_team": match.away_team.name if match.away_team else None,
                "score": match.score,
                "phase": phase,
                "multiplier": multiplier,
            },
            top_scorers_limit=self.top_scorers,
        )

        predictions = [
            (p.id, p.user_id, p.user.full_name, p.predicted_home_score, p.predicted_away_score)
            for p in self.repository.get_predictions_for_match(match_id)
        ]
        summary.predictions_processed = len(predictions)
        log.info(f"Settling {len(predictions)} predictions at {match.score}")

        with PerformanceMonitor(f"settle_match_{match_id}"):
            for prediction_id, user_id, user_name, predicted_home, predicted_away in predictions:
                summary.outcomes.append(
                    self._settle_prediction(
                        log,
                        prediction_id,
                        user_id,
                        user_name,
                        evaluate(
                            predicted_home,
                            predicted_away,
                            home_score,
                            away_score,
                            multiplier=multiplier,
                            phase=phase,
                        ),
                    )
                )

        # Runs even after write failures so settled rows are reflected
        try:
            self.aggregator.recompute()
        except AggregationError as e:
            mark_leaderboard_stale(e)
            raise

        self._append_audit(log, summary)

        if summary.errors:
            log.warning(
                f"Settlement finished: {summary.predictions_processed} processed, "
                f"{summary.errors} errors, {summary.total_points_awarded} points"
            )
        else:
            log.info(
                f"Settlement finished: {summary.predictions_processed} processed, "
                f"{summary.total_points_awarded} points"
            )

        from prode.socketio_handlers import broadcast_match_settled

        broadcast_match_settled(summary)

        return summary

    def _settle_prediction(self, log, prediction_id, user_id, user_name, breakdown):
        try:
            self.repository.save_prediction_result(prediction_id, breakdown)
        except Exception as e:
            log.error(f"Failed to settle prediction {prediction_id}: {e}", exc_info=True)
            return Failed(prediction_id=prediction_id, user_id=user_id, reason=str(e))

        log.debug(
            f"Prediction {prediction_id} ({user_name}): {breakdown.total} points "
            f"[{breakdown.predicted.home}-{breakdown.predicted.away}]"
        )
        return Settled(
            prediction_id=prediction_id,
            user_id=user_id,
            user_name=user_name,
            points=breakdown.total,
        )

    def _append_audit(self, log, summary):
        try:
            self.repository.append_audit(
                AuditLog.CALCULATE_MATCH_POINTS,
                "Match",
                summary.match_id,
                new_values={
                    "predictionsProcessed": summary.predictions_processed,
                    "totalPointsAwarded": summary.total_points_awarded,
                    "errors": summary.errors,
                },
            )
        except AuditWriteError as e:
            log.warning(f"Audit record not written: {e}")

    @timer
    def resettle_all_finished_matches(self):
        """Settle every finished match again. Returns {processed, errors}."""
        match_ids = self.repository.list_finished_match_ids()
        logger.info(f"Re-settling {len(match_ids)} finished matches")
        return self._settle_many(match_ids)

    def settle_pending_matches(self):
        """Settle finished matches with unsettled or stale predictions.

        Also rebuilds the leaderboard when the last recompute failed and no
        settlement in this run has rebuilt it since.
        """
        match_ids = self.repository.list_matches_with_unsettled_predictions()
        if match_ids:
            logger.info(f"Settling {len(match_ids)} matches with pending predictions")
            result = self._settle_many(match_ids)
        else:
            result = {"processed": 0, "errors": 0}

        stale_reason = leaderboard_stale_reason()
        if stale_reason:
            logger.warning(f"Rebuilding stale leaderboard ({stale_reason})")
            try:
                self.aggregator.recompute()
            except AggregationError as e:
                logger.error(f"Leaderboard still stale: {e}")
                result["errors"] += 1

        return result

    def _settle_many(self, match_ids):
        processed = 0
        errors = 0
        for match_id in match_ids:
            try:
                self.settle_match(match_id)
                processed += 1
            except Exception as e:
                self.repository.rollback()
                logger.error(f"Error settling match {match_id}: {e}")
                errors += 1

        logger.info(f"Bulk settlement done: {processed} processed, {errors} errors")
        return {"processed": processed, "errors": errors}


def settle_match(match_id):
    return SettlementProcessor().settle_match(match_id)


def resettle_all_finished_matches():
    return SettlementProcessor().resettle_all_finished_matches()


def settle_pending_matches():
    return SettlementProcessor().settle_pending_matches()
