from datetime import datetime, timezone
from decimal import Decimal

from prode import db


class LeaderboardEntry(db.Model):
    """Materialized per-user standings, rewritten wholesale by the aggregator"""

    __tablename__ = "leaderboard_cache"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id"), nullable=False, unique=True
    )

    total_points = db.Column(db.Integer, nullable=False, default=0)
    total_predictions = db.Column(db.Integer, nullable=False, default=0)
    correct_predictions = db.Column(db.Integer, nullable=False, default=0)
    exact_scores = db.Column(db.Integer, nullable=False, default=0)
    accuracy_rate = db.Column(db.Numeric(5, 2), nullable=False, default=Decimal("0.00"))

    ranking = db.Column(db.Integer, nullable=False)
    previous_ranking = db.Column(db.Integer, nullable=True)
    ranking_change = db.Column(db.Integer, nullable=False, default=0)

    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    user = db.relationship(
        "User",
        backref=db.backref(
            "leaderboard_entry", uselist=False, cascade="all, delete-orphan"
        ),
    )

    __table_args__ = (db.Index("idx_leaderboard_ranking", "ranking"),)

    def __repr__(self):
        return f"<LeaderboardEntry user_id={self.user_id} #{self.ranking} {self.total_points}pts>"

    @property
    def accuracy_rate_display(self):
        """Accuracy as a two-decimal string, e.g. '66.67'"""
        return f"{Decimal(self.accuracy_rate or 0):.2f}"

    @staticmethod
    def get_page(page=1, limit=50):
        """Paginated standings ordered by ranking ascending. Returns (rows, total)."""
        query = LeaderboardEntry.query.order_by(LeaderboardEntry.ranking.asc())
        total = query.count()
        rows = query.offset((page - 1) * limit).limit(limit).all()
        return rows, total

    @staticmethod
    def get_for_user(user_id):
        return LeaderboardEntry.query.filter_by(user_id=user_id).first()

    def to_dict(self, include_user=True):
        data = {
            "user_id": self.user_id,
            "total_points": self.total_points,
            "total_predictions": self.total_predictions,
            "correct_predictions": self.correct_predictions,
            "exact_scores": self.exact_scores,
            "accuracy_rate": self.accuracy_rate_display,
            "ranking": self.ranking,
            "previous_ranking": self.previous_ranking,
            "ranking_change": self.ranking_change,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_user and self.user is not None:
            data["user"] = self.user.to_public_dict()
        return data
