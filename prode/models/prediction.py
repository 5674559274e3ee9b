from datetime import datetime, timezone

from prode import db
from prode.errors import NotFoundError, PredictionLockedError


class Prediction(db.Model):
    __tablename__ = "predictions"

    id = db.Column(db.Integer, primary_key=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    match_id = db.Column(db.Integer, db.ForeignKey("matches.id"), nullable=False)

    # Predicted scoreline
    predicted_home_score = db.Column(db.Integer, nullable=False)
    predicted_away_score = db.Column(db.Integer, nullable=False)

    # Results (written by settlement once the match is finished)
    points_earned = db.Column(db.Integer, nullable=False, default=0)
    points_breakdown = db.Column(db.JSON(none_as_null=True), nullable=True)

    # Timestamps
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.UniqueConstraint("user_id", "match_id", name="unique_user_match_prediction"),
        db.Index("idx_prediction_match", "match_id"),
        db.Index("idx_prediction_user", "user_id"),
        db.CheckConstraint(
            "predicted_home_score >= 0 AND predicted_away_score >= 0",
            name="non_negative_prediction",
        ),
        db.CheckConstraint("points_earned >= 0", name="non_negative_points"),
    )

    def __repr__(self):
        return (
            f"<Prediction user_id={self.user_id} match_id={self.match_id} "
            f"{self.predicted_home_score}-{self.predicted_away_score}>"
        )

    @property
    def is_settled(self):
        return self.points_breakdown is not None

    @property
    def is_exact(self):
        """Predicted scoreline equals the final scoreline of a finished match"""
        match = self.match
        if match is None or not match.is_finished or not match.has_valid_result():
            return False
        return (
            self.predicted_home_score == match.home_score
            and self.predicted_away_score == match.away_score
        )

    def apply_breakdown(self, breakdown):
        """Store the settlement result for this prediction"""
        self.points_earned = breakdown.total
        self.points_breakdown = breakdown.to_dict()

    @staticmethod
    def submit(user_id, match_id, home_score, away_score, now=None):
        """Create or update a user's prediction while the match is unlocked.

        Returns (prediction, created).
        """
        from .match import Match

        match = db.session.get(Match, match_id)
        if match is None:
            raise NotFoundError(f"Match {match_id} not found")

        if not match.is_open_for_predictions(now):
            raise PredictionLockedError(
                f"Predictions for match {match_id} are locked",
                details=[{"lock_time": match.to_dict()["lock_time"]}],
            )

        prediction = Prediction.query.filter_by(
            user_id=user_id, match_id=match_id
        ).first()
        created = prediction is None

        if created:
            prediction = Prediction(user_id=user_id, match_id=match_id)
            db.session.add(prediction)

        prediction.predicted_home_score = home_score
        prediction.predicted_away_score = away_score
        return prediction, created

    def to_dict(self, include_match=False):
        """Convert prediction to dictionary for API responses"""
        data = {
            "id": self.id,
            "user_id": self.user_id,
            "match_id": self.match_id,
            "predicted_home_score": self.predicted_home_score,
            "predicted_away_score": self.predicted_away_score,
            "points_earned": self.points_earned,
            "points_breakdown": self.points_breakdown,
            "is_exact": self.is_exact,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_match:
            data["match"] = self.match.to_dict() if self.match else None
        return data
