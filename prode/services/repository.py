"""
SQLAlchemy-backed storage interface for the settlement engine

The processor and the aggregator never query models directly. Tests swap
individual methods to inject failures.
"""

import logging
from collections import namedtuple
from datetime import datetime, timezone

from sqlalchemy.exc import SQLAlchemyError

from prode import db
from prode.errors import AuditWriteError, PredictionPersistError
from prode.models import AuditLog, LeaderboardEntry, Match, Prediction, User
from prode.scoring import PointsBreakdown, Scoreline

logger = logging.getLogger(__name__)

# One prediction joined with its match's lifecycle and final score
PredictionResultRow = namedtuple(
    "PredictionResultRow",
    [
        "user_id",
        "points_earned",
        "predicted_home_score",
        "predicted_away_score",
        "match_status",
        "home_score",
        "away_score",
    ],
)


def settled_scoreline(stored):
    """Final score a stored breakdown was computed against, or None"""
    if stored is None:
        return None
    try:
        return PointsBreakdown.from_dict(stored).actual
    except (KeyError, TypeError, ValueError) as e:
        logger.warning(f"Unreadable points breakdown {stored!r}: {e}")
        return None


class SettlementRepository:
    """Read match and predictions, write results, upsert standings, audit"""

    def get_match(self, match_id):
        return db.session.get(Match, match_id)

    def get_predictions_for_match(self, match_id):
        return (
            Prediction.query.filter_by(match_id=match_id)
            .order_by(Prediction.id.asc())
            .all()
        )

    def save_prediction_result(self, prediction_id, breakdown):
        """Persist one prediction's settlement in its own transaction"""
        try:
            prediction = db.session.get(Prediction, prediction_id)
            if prediction is None:
                raise PredictionPersistError(prediction_id, "prediction no longer exists")
            prediction.apply_breakdown(breakdown)
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            raise PredictionPersistError(prediction_id, e) from e

    def list_users(self):
        return User.query.order_by(User.id.asc()).all()

    def load_predictions_with_results(self):
        """Every prediction with its match's status and final score"""
        rows = (
            db.session.query(
                Prediction.user_id,
                Prediction.points_earned,
                Prediction.predicted_home_score,
                Prediction.predicted_away_score,
                Match.status,
                Match.home_score,
                Match.away_score,
            )
            .join(Match, Prediction.match_id == Match.id)
            .all()
        )
        return [PredictionResultRow(*row) for row in rows]

    def get_leaderboard_rows(self):
        """Existing cache rows keyed by user id"""
        return {entry.user_id: entry for entry in LeaderboardEntry.query.all()}

    def upsert_leaderboard_rows(self, standings):
        """Write the full standings in one transaction.

        Rows for users missing from ``standings`` are deleted. On failure the
        transaction is rolled back and the SQLAlchemy error propagates.
        """
        try:
            existing = self.get_leaderboard_rows()
            now = datetime.now(timezone.utc)
            seen = set()

            for standing in standings:
                seen.add(standing.user_id)
                entry = existing.get(standing.user_id)
                if entry is None:
                    entry = LeaderboardEntry(user_id=standing.user_id)
                    db.session.add(entry)

                entry.total_points = standing.total_points
                entry.total_predictions = standing.total_predictions
                entry.correct_predictions = standing.correct_predictions
                entry.exact_scores = standing.exact_scores
                entry.accuracy_rate = standing.accuracy_rate
                entry.ranking = standing.ranking
                entry.previous_ranking = standing.previous_ranking
                entry.ranking_change = standing.ranking_change
                entry.updated_at = now

            for user_id, entry in existing.items():
                if user_id not in seen:
                    db.session.delete(entry)

            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            raise

    def append_audit(self, action, entity_type, entity_id, new_values, user_id=None, old_values=None):
        try:
            AuditLog.log_action(
                action,
                entity_type,
                entity_id,
                user_id=user_id,
                old_values=old_values,
                new_values=new_values,
            )
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            raise AuditWriteError(f"Failed to write audit record {action}: {e}") from e

    def list_finished_match_ids(self):
        """FINISHED matches that carry both final scores"""
        rows = (
            db.session.query(Match.id)
            .filter(
                Match.status == Match.FINISHED,
                Match.home_score.isnot(None),
                Match.away_score.isnot(None),
            )
            .order_by(Match.id.asc())
            .all()
        )
        return [row.id for row in rows]

    def list_matches_with_unsettled_predictions(self):
        """FINISHED matches with a prediction that is unsettled or stale.

        A prediction is stale when its stored breakdown was computed against
        a different final score than the match carries now, which happens
        when a corrected result was entered and the re-settle write failed.
        """
        rows = (
            db.session.query(
                Match.id,
                Match.home_score,
                Match.away_score,
                Prediction.points_breakdown,
            )
            .join(Prediction, Prediction.match_id == Match.id)
            .filter(
                Match.status == Match.FINISHED,
                Match.home_score.isnot(None),
                Match.away_score.isnot(None),
            )
            .order_by(Match.id.asc(), Prediction.id.asc())
            .all()
        )

        pending = []
        for match_id, home_score, away_score, stored in rows:
            if pending and pending[-1] == match_id:
                continue
            if settled_scoreline(stored) != Scoreline(home_score, away_score):
                pending.append(match_id)
        return pending

    def lock_due_matches(self, now=None):
        """Lock SCHEDULED matches whose lock time has passed.

        Returns (locked_ids, error_count). Each match commits on its own.
        """
        now = now or datetime.now(timezone.utc)
        candidates = (
            Match.query.filter(
                Match.status == Match.SCHEDULED,
                Match.is_locked.is_(False),
                Match.lock_time <= now,
            )
            .order_by(Match.id.asc())
            .all()
        )

        locked = []
        errors = 0
        for match_id in [m.id for m in candidates]:
            try:
                match = db.session.get(Match, match_id)
                match.is_locked = True
                db.session.commit()
                locked.append(match_id)
            except SQLAlchemyError as e:
                db.session.rollback()
                errors += 1
                logger.error(f"Failed to lock match {match_id}: {e}")

        return locked, errors

    def rollback(self):
        db.session.rollback()
