from datetime import timedelta

import pytest

from prode import db
from prode.models import LeaderboardEntry, Match, Prediction
from prode.services.scheduler_service import SchedulerService


@pytest.fixture
def service(app):
    service = SchedulerService()
    service.init_app(app)
    yield service
    service.stop()


def test_scheduler_not_started_when_disabled(service):
    status = service.get_status()

    assert status["is_running"] is False
    assert status["jobs"] == []


def test_start_registers_jobs(service):
    service.start()

    status = service.get_status()
    assert status["is_running"] is True
    assert {job["id"] for job in status["jobs"]} == {"lock_matches", "settle_pending"}
    assert all(job["next_run"] for job in status["jobs"])


def test_lock_matches_job(service, factory):
    due = factory.match(kickoff_in=timedelta(minutes=10))
    open_match = factory.match(kickoff_in=timedelta(hours=2))
    finished = factory.finished_match(1, 0)

    result = service._lock_matches()

    assert result["locked"] == 1
    assert result["match_ids"] == [due.id]
    db.session.expire_all()
    assert db.session.get(Match, due.id).is_locked is True
    assert db.session.get(Match, open_match.id).is_locked is False
    assert db.session.get(Match, finished.id).is_locked is True

    stats = service.get_status()["stats"]["lock_matches"]
    assert stats["total_runs"] == 1
    assert stats["last_error"] is None


def test_settle_pending_job(service, factory):
    user = factory.user()
    match = factory.finished_match(0, 0)
    prediction = factory.prediction(user, match, 0, 0)

    result = service._settle_pending()

    assert result == {"processed": 1, "errors": 0}
    db.session.expire_all()
    assert db.session.get(Prediction, prediction.id).points_earned == 12
    assert LeaderboardEntry.get_for_user(user.id).ranking == 1


def test_job_failure_is_recorded(service, monkeypatch):
    def explode(*args, **kwargs):
        raise RuntimeError("database unavailable")

    monkeypatch.setattr(
        "prode.services.scheduler_service.lock_due_matches", explode
    )

    assert service._lock_matches() is None
    stats = service.get_status()["stats"]["lock_matches"]
    assert stats["failed_runs"] == 1
    assert stats["last_error"] == "database unavailable"

    success, message = service.force_run("lock_matches")
    assert success is False
    assert "database unavailable" in message


def test_force_run(service, factory):
    factory.match(kickoff_in=timedelta(minutes=1))

    success, message = service.force_run("lock_matches")

    assert success is True
    assert "'locked': 1" in message


def test_force_run_unknown_job(service):
    success, message = service.force_run("sync_everything")

    assert success is False
    assert message == "Unknown job: sync_everything"
