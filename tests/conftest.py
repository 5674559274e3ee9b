import itertools
from datetime import datetime, timedelta, timezone

import pytest

from prode import create_app, db
from prode.models import Match, Phase, Prediction, Team, User

_sequence = itertools.count(1)


@pytest.fixture
def app():
    app = create_app("testing")
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def runner(app):
    return app.test_cli_runner()


class Factory:
    """Builders for committed model instances"""

    def user(self, username=None, is_admin=False, **kwargs):
        n = next(_sequence)
        username = username or f"user{n}"
        user = User(
            username=username,
            email=f"{username}@example.com",
            display_name=kwargs.pop("display_name", username.title()),
            is_admin=is_admin,
            **kwargs,
        )
        user.set_password("password123")
        db.session.add(user)
        db.session.commit()
        return user

    def team(self, name=None, code=None):
        n = next(_sequence)
        team = Team(name=name or f"Team {n}", code=code or f"T{n:02d}"[-3:])
        db.session.add(team)
        db.session.commit()
        return team

    def phase(self, slug="grupos", multiplier=1.0):
        phase = Phase.get_by_slug(slug)
        if phase is None:
            phase = Phase(name=slug.title(), slug=slug, points_multiplier=multiplier)
            db.session.add(phase)
            db.session.commit()
        return phase

    def match(
        self,
        home_score=None,
        away_score=None,
        status=Match.SCHEDULED,
        kickoff_in=timedelta(days=1),
        phase=None,
        is_locked=False,
    ):
        match_date = datetime.now(timezone.utc) + kickoff_in
        match = Match(
            home_team=self.team(),
            away_team=self.team(),
            phase=phase or self.phase(),
            match_date=match_date,
            lock_time=Match.calculate_lock_time(match_date),
            status=status,
            home_score=home_score,
            away_score=away_score,
            is_locked=is_locked,
        )
        db.session.add(match)
        db.session.commit()
        return match

    def finished_match(self, home_score, away_score, **kwargs):
        return self.match(
            home_score=home_score,
            away_score=away_score,
            status=Match.FINISHED,
            kickoff_in=timedelta(hours=-3),
            is_locked=True,
            **kwargs,
        )

    def prediction(self, user, match, home, away):
        prediction = Prediction(
            user_id=user.id,
            match_id=match.id,
            predicted_home_score=home,
            predicted_away_score=away,
        )
        db.session.add(prediction)
        db.session.commit()
        return prediction


@pytest.fixture
def factory(app):
    return Factory()


@pytest.fixture
def login(client):
    """Log a user in on the test client"""

    def _login(user):
        with client.session_transaction() as sess:
            sess["_user_id"] = str(user.id)
            sess["_fresh"] = True
        return user

    return _login
