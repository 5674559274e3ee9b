"""
Leaderboard aggregation

Rebuilds every user's standings from the full prediction corpus and writes
one ranked row per user. Recomputes are serialised through a leaderboard
lock: a process-local mutex, plus a Redis lock when LEADERBOARD_LOCK_URL is
configured so several workers never write the table at the same time.

Ordering among equal totals: exact scores desc, then correct predictions
desc, then user id asc. Ranks are 1..N with no gaps or duplicates.
"""

import logging
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

import redis
from flask import current_app

from prode.errors import AggregationError
from prode.models import Match
from prode.services.repository import SettlementRepository
from prode.utils.cache_utils import (
    clear_leaderboard_stale,
    invalidate_leaderboard_cache,
    mark_leaderboard_stale,
)
from prode.utils.performance import PerformanceMonitor

logger = logging.getLogger(__name__)

LOCK_NAME = "prode:leaderboard:recompute"


@dataclass(frozen=True)
class Standing:
    user_id: int
    total_points: int
    total_predictions: int
    correct_predictions: int
    exact_scores: int
    accuracy_rate: Decimal
    ranking: int
    previous_ranking: Optional[int]
    ranking_change: int


def accuracy_rate(correct, total):
    """Percentage of correct predictions, two decimals, half away from zero"""
    if total == 0:
        return Decimal("0.00")
    rate = Decimal(correct) * 100 / Decimal(total)
    return rate.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def standing_sort_key(stats):
    return (
        -stats["total_points"],
        -stats["exact_scores"],
        -stats["correct_predictions"],
        stats["user_id"],
    )


class LeaderboardLock:
    """Single-writer guard for the leaderboard table.

    ``timeout`` bounds the wait for the Redis lock; ``ttl`` is how long the
    lock lives without a refresh. Holders call ``refresh`` before writing so
    a slow rebuild never writes after the lock has expired.
    """

    def __init__(self, redis_url=None, timeout=120, ttl=600, name=LOCK_NAME):
        self.timeout = timeout
        self.ttl = ttl
        self.name = name
        self._local = threading.Lock()
        self._client = redis.Redis.from_url(redis_url) if redis_url else None
        self._held = None

    @property
    def is_distributed(self):
        return self._client is not None

    @contextmanager
    def hold(self):
        with self._local:
            if self._client is None:
                yield self
                return

            lock = self._client.lock(
                self.name, timeout=self.ttl, blocking_timeout=self.timeout
            )
            try:
                acquired = lock.acquire(blocking=True)
            except redis.exceptions.RedisError as e:
                raise AggregationError(f"Could not reach leaderboard lock: {e}") from e
            if not acquired:
                raise AggregationError(
                    f"Timed out after {self.timeout}s waiting for leaderboard lock"
                )
            self._held = lock
            try:
                yield self
            finally:
                self._held = None
                try:
                    lock.release()
                except redis.exceptions.LockError as e:
                    logger.warning(f"Leaderboard lock expired before release: {e}")

    def refresh(self):
        """Reset the held Redis lock's TTL; AggregationError if it was lost"""
        if self._held is None:
            return
        try:
            self._held.extend(self.ttl, replace_ttl=True)
        except redis.exceptions.LockError as e:
            raise AggregationError(f"Leaderboard lock lost before write: {e}") from e
        except redis.exceptions.RedisError as e:
            raise AggregationError(f"Could not refresh leaderboard lock: {e}") from e


def get_leaderboard_lock(app=None):
    """The app's leaderboard lock, created on first use"""
    app = app or current_app._get_current_object()
    lock = app.extensions.get("prode_leaderboard_lock")
    if lock is None:
        lock = LeaderboardLock(
            redis_url=app.config.get("LEADERBOARD_LOCK_URL"),
            timeout=app.config.get("LEADERBOARD_LOCK_TIMEOUT", 120),
            ttl=app.config.get("LEADERBOARD_LOCK_TTL", 600),
        )
        app.extensions["prode_leaderboard_lock"] = lock
    return lock


class LeaderboardAggregator(ABC):
    """Turns settled predictions into the leaderboard table"""

    @abstractmethod
    def recompute(self):
        """Rebuild standings; raises AggregationError on failure"""


class FullRecomputeAggregator(LeaderboardAggregator):
    """Recomputes every user from scratch on every call"""

    def __init__(self, repository=None, lock=None):
        self.repository = repository or SettlementRepository()
        self.lock = lock

    def compute_standings(self, users, rows, existing):
        """
        Build ranked standings.

        Args:
            users: every user; users without predictions still get a row
            rows: PredictionResultRow for every prediction
            existing: current leaderboard rows keyed by user id

        Returns:
            list[Standing] in ranking order
        """
        stats = {
            user.id: {
                "user_id": user.id,
                "total_points": 0,
                "total_predictions": 0,
                "correct_predictions": 0,
                "exact_scores": 0,
            }
            for user in users
        }

        for row in rows:
            user_stats = stats.get(row.user_id)
            if user_stats is None:
                continue
            points = row.points_earned or 0
            user_stats["total_points"] += points
            user_stats["total_predictions"] += 1
            if points > 0:
                user_stats["correct_predictions"] += 1
            if (
                row.match_status == Match.FINISHED
                and row.home_score is not None
                and row.away_score is not None
                and row.predicted_home_score == row.home_score
                and row.predicted_away_score == row.away_score
            ):
                user_stats["exact_scores"] += 1

        standings = []
        for ranking, user_stats in enumerate(
            sorted(stats.values(), key=standing_sort_key), start=1
        ):
            previous = existing.get(user_stats["user_id"])
            previous_ranking = previous.ranking if previous is not None else None
            standings.append(
                Standing(
                    accuracy_rate=accuracy_rate(
                        user_stats["correct_predictions"],
                        user_stats["total_predictions"],
                    ),
                    ranking=ranking,
                    previous_ranking=previous_ranking,
                    ranking_change=(
                        previous_ranking - ranking if previous_ranking is not None else 0
                    ),
                    **user_stats,
                )
            )
        return standings

    def recompute(self):
        lock = self.lock or get_leaderboard_lock()

        try:
            with lock.hold() as held:
                with PerformanceMonitor("leaderboard_recompute"):
                    standings = self._rebuild(held)
        except AggregationError as e:
            mark_leaderboard_stale(e)
            raise

        clear_leaderboard_stale()
        logger.info(f"Leaderboard recomputed for {len(standings)} users")

        invalidate_leaderboard_cache()

        from prode.socketio_handlers import broadcast_leaderboard_updated

        broadcast_leaderboard_updated(standings)

        return standings

    def _rebuild(self, held):
        try:
            users = self.repository.list_users()
            rows = self.repository.load_predictions_with_results()
            existing = self.repository.get_leaderboard_rows()
            standings = self.compute_standings(users, rows, existing)
            held.refresh()
            self.repository.upsert_leaderboard_rows(standings)
        except AggregationError:
            self.repository.rollback()
            raise
        except Exception as e:
            self.repository.rollback()
            logger.error(f"Leaderboard recompute failed: {e}", exc_info=True)
            raise AggregationError(f"Leaderboard recompute failed: {e}") from e
        return standings


def recompute_leaderboard(aggregator=None):
    """Rebuild the leaderboard with the default full-recompute aggregator"""
    aggregator = aggregator or FullRecomputeAggregator()
    return aggregator.recompute()
