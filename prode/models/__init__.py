from prode import db  # noqa: F401 - imported for model imports

from .audit_log import AuditLog
from .leaderboard_entry import LeaderboardEntry
from .match import Match
from .phase import Phase
from .prediction import Prediction
from .team import Team
from .user import User

__all__ = [
    "User",
    "Team",
    "Phase",
    "Match",
    "Prediction",
    "LeaderboardEntry",
    "AuditLog",
]
