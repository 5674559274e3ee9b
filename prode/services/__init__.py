"""
Settlement and leaderboard services

Everything here reaches the database through SettlementRepository.
"""

from .leaderboard import (
    FullRecomputeAggregator,
    LeaderboardAggregator,
    LeaderboardLock,
    recompute_leaderboard,
)
from .repository import SettlementRepository
from .settlement import (
    Failed,
    Settled,
    SettlementProcessor,
    SettlementSummary,
    resettle_all_finished_matches,
    settle_match,
    settle_pending_matches,
)

__all__ = [
    "FullRecomputeAggregator",
    "LeaderboardAggregator",
    "LeaderboardLock",
    "recompute_leaderboard",
    "SettlementRepository",
    "Failed",
    "Settled",
    "SettlementProcessor",
    "SettlementSummary",
    "resettle_all_finished_matches",
    "settle_match",
    "settle_pending_matches",
]
