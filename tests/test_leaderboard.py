import threading
import time
from decimal import Decimal
from types import SimpleNamespace

import pytest
import redis

from prode import db
from prode.errors import AggregationError
from prode.models import LeaderboardEntry, Prediction
from prode.services.leaderboard import (
    FullRecomputeAggregator,
    LeaderboardLock,
    accuracy_rate,
    recompute_leaderboard,
)
from prode.services.repository import PredictionResultRow, SettlementRepository
from prode.services.settlement import settle_match
from prode.utils.cache_utils import leaderboard_stale_reason


def _row(user_id, points, predicted=(0, 0), actual=(1, 1), status="FINISHED"):
    return PredictionResultRow(user_id, points, *predicted, status, *actual)


def _users(*ids):
    return [SimpleNamespace(id=i) for i in ids]


@pytest.fixture
def season(factory):
    """Three users across two settled matches"""
    alice = factory.user("alice")
    bob = factory.user("bob")
    carol = factory.user("carol")
    first = factory.finished_match(2, 1)
    second = factory.finished_match(0, 0)
    factory.prediction(alice, first, 2, 1)  # 12
    factory.prediction(bob, first, 1, 0)  # 5
    factory.prediction(carol, first, 0, 1)  # 2
    factory.prediction(alice, second, 2, 1)  # 0
    factory.prediction(bob, second, 0, 0)  # 12
    settle_match(first.id)
    settle_match(second.id)
    return alice, bob, carol


def _snapshot():
    return {
        e.user_id: (e.ranking, e.total_points, e.previous_ranking, e.ranking_change)
        for e in LeaderboardEntry.query.all()
    }


def test_stats_per_user(season):
    alice, bob, carol = season

    bob_row = LeaderboardEntry.get_for_user(bob.id)
    assert bob_row.total_points == 17
    assert bob_row.total_predictions == 2
    assert bob_row.correct_predictions == 2
    assert bob_row.exact_scores == 1
    assert bob_row.accuracy_rate_display == "100.00"
    assert bob_row.ranking == 1

    alice_row = LeaderboardEntry.get_for_user(alice.id)
    assert alice_row.total_points == 12
    assert alice_row.correct_predictions == 1
    assert alice_row.accuracy_rate_display == "50.00"
    assert alice_row.ranking == 2

    assert LeaderboardEntry.get_for_user(carol.id).ranking == 3


def test_recompute_is_idempotent(season):
    recompute_leaderboard()
    first = _snapshot()
    recompute_leaderboard()
    second = _snapshot()

    for user_id, (ranking, points, previous, change) in second.items():
        assert ranking == first[user_id][0]
        assert points == first[user_id][1]
        assert previous == ranking
        assert change == 0


def test_ranks_are_dense_and_unique(season, factory):
    factory.user()
    factory.user()
    recompute_leaderboard()

    rankings = sorted(e.ranking for e in LeaderboardEntry.query.all())
    assert rankings == list(range(1, len(rankings) + 1))


def test_users_without_predictions_get_a_row(season, factory):
    newcomer = factory.user("newcomer")

    recompute_leaderboard()

    entry = LeaderboardEntry.get_for_user(newcomer.id)
    assert entry.total_points == 0
    assert entry.total_predictions == 0
    assert entry.accuracy_rate_display == "0.00"
    assert entry.ranking == 4
    assert entry.previous_ranking is None
    assert entry.ranking_change == 0


def test_total_points_match_prediction_points(season):
    leaderboard_total = db.session.query(
        db.func.sum(LeaderboardEntry.total_points)
    ).scalar()
    prediction_total = db.session.query(db.func.sum(Prediction.points_earned)).scalar()

    assert leaderboard_total == prediction_total == 31


def test_ranking_change_tracks_movement(season, factory):
    alice, bob, carol = season
    late = factory.finished_match(3, 0)
    factory.prediction(carol, late, 3, 0)
    factory.prediction(alice, late, 3, 0)

    recompute_leaderboard()  # previous state, points unchanged
    settle_match(late.id)

    alice_row = LeaderboardEntry.get_for_user(alice.id)
    assert alice_row.total_points == 24
    assert alice_row.ranking == 1
    assert alice_row.previous_ranking == 2
    assert alice_row.ranking_change == 1

    bob_row = LeaderboardEntry.get_for_user(bob.id)
    assert bob_row.ranking == 2
    assert bob_row.ranking_change == -1


def test_tie_break_order(app):
    aggregator = FullRecomputeAggregator(repository=SettlementRepository())
    rows = [
        # user 1: 12 points from one exact score
        _row(1, 12, predicted=(1, 1), actual=(1, 1)),
        # user 2: 12 points from 7 + 5, no exact scores
        _row(2, 7, predicted=(1, 0), actual=(2, 0)),
        _row(2, 5, predicted=(1, 0), actual=(3, 1)),
        # user 3 and 4 identical: 5 points from one correct winner
        _row(4, 5, predicted=(1, 0), actual=(2, 1)),
        _row(3, 5, predicted=(1, 0), actual=(2, 1)),
    ]

    standings = aggregator.compute_standings(_users(4, 3, 2, 1), rows, {})

    assert [s.user_id for s in standings] == [1, 2, 3, 4]
    assert [s.ranking for s in standings] == [1, 2, 3, 4]


def test_correct_predictions_tie_break(app):
    aggregator = FullRecomputeAggregator(repository=SettlementRepository())
    rows = [
        _row(1, 5, predicted=(1, 0), actual=(2, 1)),
        _row(1, 0, predicted=(1, 0), actual=(0, 3)),
        _row(2, 3, predicted=(1, 0), actual=(0, 0)),
        _row(2, 2, predicted=(1, 0), actual=(0, 0)),
    ]

    standings = aggregator.compute_standings(_users(1, 2), rows, {})

    assert [s.user_id for s in standings] == [2, 1]


def test_exact_scores_only_count_finished_matches(app):
    aggregator = FullRecomputeAggregator(repository=SettlementRepository())
    rows = [
        _row(1, 0, predicted=(1, 1), actual=(1, 1), status="LIVE"),
        _row(1, 0, predicted=(0, 0), actual=(None, None), status="SCHEDULED"),
    ]

    (standing,) = aggregator.compute_standings(_users(1), rows, {})

    assert standing.exact_scores == 0
    assert standing.total_predictions == 2


def test_previous_ranking_comes_from_existing_row(app):
    aggregator = FullRecomputeAggregator(repository=SettlementRepository())
    existing = {1: SimpleNamespace(ranking=2), 2: SimpleNamespace(ranking=1)}
    rows = [_row(1, 12, predicted=(1, 1), actual=(1, 1))]

    standings = aggregator.compute_standings(_users(1, 2, 3), rows, existing)
    by_user = {s.user_id: s for s in standings}

    assert by_user[1].previous_ranking == 2
    assert by_user[1].ranking_change == 1
    assert by_user[2].ranking_change == -1
    assert by_user[3].previous_ranking is None
    assert by_user[3].ranking_change == 0


@pytest.mark.parametrize(
    "correct, total, expected",
    [
        (0, 0, "0.00"),
        (1, 3, "33.33"),
        (2, 3, "66.67"),
        (1, 8, "12.50"),
        (5, 5, "100.00"),
    ],
)
def test_accuracy_rate(correct, total, expected):
    assert accuracy_rate(correct, total) == Decimal(expected)


def test_rows_for_missing_users_are_removed(season):
    db.session.add(LeaderboardEntry(user_id=9999, ranking=1))
    db.session.commit()

    recompute_leaderboard()

    assert LeaderboardEntry.get_for_user(9999) is None
    assert sorted(e.ranking for e in LeaderboardEntry.query.all()) == [1, 2, 3]


def test_failed_write_raises_aggregation_error(season):
    before = _snapshot()

    class BrokenRepository(SettlementRepository):
        def upsert_leaderboard_rows(self, standings):
            raise RuntimeError("connection reset")

    with pytest.raises(AggregationError):
        FullRecomputeAggregator(repository=BrokenRepository()).recompute()

    assert _snapshot() == before


class SlowRepository:
    """Records how many recomputes overlap"""

    def __init__(self):
        self.active = 0
        self.max_active = 0
        self.calls = 0
        self._guard = threading.Lock()

    def list_users(self):
        with self._guard:
            self.active += 1
            self.calls += 1
            self.max_active = max(self.max_active, self.active)
        return _users(1, 2)

    def load_predictions_with_results(self):
        time.sleep(0.02)
        return [_row(1, 5), _row(2, 2)]

    def get_leaderboard_rows(self):
        return {}

    def upsert_leaderboard_rows(self, standings):
        time.sleep(0.02)
        with self._guard:
            self.active -= 1

    def rollback(self):
        pass


def test_concurrent_recomputes_are_serialised(app):
    repository = SlowRepository()
    aggregator = FullRecomputeAggregator(repository=repository, lock=LeaderboardLock())
    errors = []

    def worker():
        with app.app_context():
            try:
                aggregator.recompute()
            except Exception as e:  # pragma: no cover - surfaced below
                errors.append(e)

    threads = [threading.Thread(target=worker) for _ in range(5)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert repository.calls == 5
    assert repository.max_active == 1


def test_default_lock_is_shared_per_app(app):
    from prode.services.leaderboard import get_leaderboard_lock

    lock = get_leaderboard_lock()

    assert lock is get_leaderboard_lock(app)
    assert not lock.is_distributed


def test_recompute_invalidates_cached_pages(season, client):
    first = client.get("/api/leaderboard").get_json()
    assert first["entries"][0]["total_points"] == 17

    alice = season[0]
    bonus = Prediction.query.filter_by(user_id=alice.id).first()
    bonus.points_earned = 40
    db.session.commit()
    recompute_leaderboard()

    second = client.get("/api/leaderboard").get_json()
    assert second["entries"][0]["user_id"] == alice.id


class FakeRedisLock:
    def __init__(self, timeout, blocking_timeout, lost=False):
        self.timeout = timeout
        self.blocking_timeout = blocking_timeout
        self.lost = lost
        self.extended = []
        self.released = False

    def acquire(self, blocking=True):
        return True

    def extend(self, additional_time, replace_ttl=False):
        if self.lost:
            raise redis.exceptions.LockError("Cannot extend a lock that's no longer owned")
        self.extended.append((additional_time, replace_ttl))

    def release(self):
        self.released = True


class FakeRedisClient:
    def __init__(self, lost=False):
        self.lost = lost
        self.locks = []

    def lock(self, name, timeout=None, blocking_timeout=None):
        lock = FakeRedisLock(timeout, blocking_timeout, lost=self.lost)
        self.locks.append(lock)
        return lock


def _distributed_lock(client):
    lock = LeaderboardLock(timeout=5, ttl=900)
    lock._client = client
    return lock


def test_redis_lock_ttl_is_separate_from_wait_timeout(season):
    client = FakeRedisClient()

    recompute_leaderboard(FullRecomputeAggregator(lock=_distributed_lock(client)))

    (held,) = client.locks
    assert held.timeout == 900
    assert held.blocking_timeout == 5
    assert held.extended == [(900, True)]
    assert held.released is True


def test_lost_redis_lock_aborts_before_write(season):
    before = _snapshot()
    aggregator = FullRecomputeAggregator(lock=_distributed_lock(FakeRedisClient(lost=True)))

    with pytest.raises(AggregationError, match="lock lost"):
        aggregator.recompute()

    assert _snapshot() == before
    assert leaderboard_stale_reason() is not None


def test_successful_recompute_clears_stale_flag(season):
    class BrokenRepository(SettlementRepository):
        def upsert_leaderboard_rows(self, standings):
            raise RuntimeError("connection reset")

    with pytest.raises(AggregationError):
        FullRecomputeAggregator(repository=BrokenRepository()).recompute()
    assert "connection reset" in leaderboard_stale_reason()

    recompute_leaderboard()

    assert leaderboard_stale_reason() is None
