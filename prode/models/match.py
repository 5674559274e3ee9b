from datetime import datetime, timedelta, timezone

from prode import db
from prode.scoring.calculator import validate_scores
from prode.utils.timezone_utils import ensure_utc, format_match_time


class Match(db.Model):
    __tablename__ = "matches"

    SCHEDULED = "SCHEDULED"
    LIVE = "LIVE"
    FINISHED = "FINISHED"
    POSTPONED = "POSTPONED"
    STATUSES = (SCHEDULED, LIVE, FINISHED, POSTPONED)

    id = db.Column(db.Integer, primary_key=True)

    # Teams and tournament stage
    home_team_id = db.Column(db.Integer, db.ForeignKey("teams.id"), nullable=False)
    away_team_id = db.Column(db.Integer, db.ForeignKey("teams.id"), nullable=False)
    phase_id = db.Column(db.Integer, db.ForeignKey("phases.id"), nullable=False)
    group_letter = db.Column(db.String(1))

    # Timing
    match_date = db.Column(db.DateTime(timezone=True), nullable=False)
    lock_time = db.Column(db.DateTime(timezone=True), nullable=False)
    is_locked = db.Column(db.Boolean, default=False, nullable=False)

    # Venue
    stadium = db.Column(db.String(150))
    city = db.Column(db.String(100))

    # Lifecycle and result
    status = db.Column(db.String(20), nullable=False, default=SCHEDULED)
    home_score = db.Column(db.Integer)
    away_score = db.Column(db.Integer)

    # Timestamps
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    predictions = db.relationship(
        "Prediction", backref="match", lazy="dynamic", cascade="all, delete-orphan"
    )

    __table_args__ = (
        db.Index("idx_match_status", "status"),
        db.Index("idx_match_lock_time", "lock_time"),
        db.CheckConstraint("home_team_id != away_team_id", name="different_teams"),
        db.CheckConstraint(
            "status IN ('SCHEDULED', 'LIVE', 'FINISHED', 'POSTPONED')",
            name="valid_match_status",
        ),
    )

    def __repr__(self):
        home = self.home_team.code if self.home_team else "TBD"
        away = self.away_team.code if self.away_team else "TBD"
        return f"<Match {home} vs {away} [{self.status}]>"

    @staticmethod
    def calculate_lock_time(match_date, minutes_before=15):
        """Predictions freeze this many minutes before kickoff"""
        return ensure_utc(match_date) - timedelta(minutes=minutes_before)

    @property
    def is_finished(self):
        return self.status == Match.FINISHED

    @property
    def score(self):
        """Scoreline as 'home-away', or None before a result exists"""
        if self.home_score is None or self.away_score is None:
            return None
        return f"{self.home_score}-{self.away_score}"

    @property
    def points_multiplier(self):
        return self.phase.points_multiplier if self.phase else 1.0

    @property
    def phase_slug(self):
        return self.phase.slug if self.phase else None

    def has_valid_result(self):
        """Both final scores present as non-negative integers"""
        return validate_scores(self.home_score, self.away_score)

    def lock_time_passed(self, now=None):
        now = now or datetime.now(timezone.utc)
        return ensure_utc(now) >= ensure_utc(self.lock_time)

    def is_open_for_predictions(self, now=None):
        """Predictions may be created or edited only before lock time"""
        if self.is_locked or self.status != Match.SCHEDULED:
            return False
        return not self.lock_time_passed(now)

    def set_result(self, home_score, away_score):
        """Record the final score; the match is closed for predictions"""
        self.home_score = home_score
        self.away_score = away_score
        self.status = Match.FINISHED
        self.is_locked = True

    def to_dict(self):
        """Convert match to dictionary for API responses"""
        return {
            "id": self.id,
            "home_team": self.home_team.to_dict() if self.home_team else None,
            "away_team": self.away_team.to_dict() if self.away_team else None,
            "phase": self.phase.to_dict() if self.phase else None,
            "group_letter": self.group_letter,
            "match_date": (
                ensure_utc(self.match_date).isoformat() if self.match_date else None
            ),
            "match_date_local": format_match_time(self.match_date),
            "lock_time": (
                ensure_utc(self.lock_time).isoformat() if self.lock_time else None
            ),
            "is_locked": self.is_locked,
            "status": self.status,
            "home_score": self.home_score,
            "away_score": self.away_score,
            "stadium": self.stadium,
            "city": self.city,
        }
