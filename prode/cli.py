"""
Prode management commands

Registered on ``app.cli`` so they run as ``flask <group> <command>`` or
through manage.py.
"""

import logging

import click
from flask.cli import with_appcontext
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from prode import db
from prode.errors import ProdeError
from prode.models import LeaderboardEntry, Match, Phase, Prediction, User
from prode.services.leaderboard import recompute_leaderboard
from prode.services.match_service import lock_due_matches
from prode.services.scheduler_service import scheduler_service
from prode.services.settlement import SettlementProcessor

logger = logging.getLogger(__name__)


# Settlement Commands
@click.group("settle")
def settle():
    """Match settlement commands"""
    pass


@settle.command("match")
@click.argument("match_id", type=int)
@with_appcontext
def settle_match_cmd(match_id):
    """Settle every prediction on one match"""
    try:
        summary = SettlementProcessor().settle_match(match_id)
    except ProdeError as e:
        db.session.rollback()
        click.echo(f"❌ {e.message}")
        return

    data = summary.to_dict()
    match = data["match"]
    click.echo(
        f"✅ {match['home_team']} vs {match['away_team']} {match['score']}: "
        f"{summary.predictions_processed} processed, {summary.errors} errors, "
        f"{summary.total_points_awarded} points awarded"
    )
    for scorer in data["top_scorers"]:
        click.echo(f"  {scorer['name']}: {scorer['points']}")


@settle.command("all")
@with_appcontext
def settle_all():
    """Re-settle every finished match"""
    result = SettlementProcessor().resettle_all_finished_matches()
    click.echo(
        f"✅ Re-settled {result['processed']} matches ({result['errors']} errors)"
    )


@settle.command("pending")
@with_appcontext
def settle_pending():
    """Settle finished matches with unscored predictions"""
    result = SettlementProcessor().settle_pending_matches()
    if result["processed"] == 0 and result["errors"] == 0:
        click.echo("No pending matches.")
        return
    click.echo(f"✅ Settled {result['processed']} matches ({result['errors']} errors)")


# Leaderboard Commands
@click.group("leaderboard")
def leaderboard():
    """Leaderboard commands"""
    pass


@leaderboard.command("recompute")
@with_appcontext
def leaderboard_recompute():
    """Rebuild the leaderboard from all predictions"""
    try:
        standings = recompute_leaderboard()
    except ProdeError as e:
        click.echo(f"❌ {e.message}")
        return
    click.echo(f"✅ Leaderboard recomputed for {len(standings)} users")


@leaderboard.command("show")
@click.option("--limit", default=10, show_default=True, help="Rows to show")
@with_appcontext
def leaderboard_show(limit):
    """Print the top of the leaderboard"""
    rows, total = LeaderboardEntry.get_page(page=1, limit=limit)
    if not rows:
        click.echo("Leaderboard is empty.")
        return

    click.echo(f"Leaderboard ({total} users):")
    for row in rows:
        change = f"{row.ranking_change:+d}" if row.ranking_change else "="
        click.echo(
            f"  {row.ranking:>3}. {row.user.full_name:<20} {row.total_points:>4} pts "
            f"exact {row.exact_scores:>2}  acc {row.accuracy_rate_display}%  ({change})"
        )


# Match Commands
@click.group("matches")
def matches():
    """Match commands"""
    pass


@matches.command("lock")
@with_appcontext
def matches_lock():
    """Lock matches whose prediction window has closed"""
    result = lock_due_matches()
    click.echo(f"🔒 Locked {result['locked']} matches ({result['errors']} errors)")


# Phase Commands
@click.group("phases")
def phases():
    """Tournament phase commands"""
    pass


@phases.command("seed")
@with_appcontext
def phases_seed():
    """Create the default tournament phases"""
    try:
        created = Phase.seed_defaults()
        db.session.commit()
        click.echo(f"✅ Created {created} phases")
    except SQLAlchemyError as e:
        db.session.rollback()
        click.echo(f"❌ Database error seeding phases: {str(e)}")
        logger.error(f"Phase seeding failed - SQL error: {e}")


# User Commands
@click.group("user")
def user():
    """User management commands"""
    pass


@user.command("create-admin")
@click.argument("username")
@click.argument("email")
@click.argument("password")
@click.option("--display-name", help="Display name")
@with_appcontext
def create_admin(username, email, password, display_name=None):
    """Create an admin user"""
    existing = User.query.filter(
        (User.username == username) | (User.email == email)
    ).first()
    if existing:
        click.echo(
            f"❌ User with username '{username}' or email '{email}' already exists!"
        )
        return

    try:
        admin = User(
            username=username,
            email=email,
            display_name=display_name,
            is_active=True,
            is_admin=True,
            avatar_url=User.generate_avatar_url(username),
        )
        admin.set_password(password)
        db.session.add(admin)
        db.session.commit()
        click.echo(f"✅ Created admin user '{username}' ({email})")
    except IntegrityError as e:
        db.session.rollback()
        click.echo(f"❌ User '{username}' already exists!")
        logger.error(f"Admin creation failed - integrity error: {e}")


# Database Commands
@click.group("db-cmd")
def db_cmd():
    """Database commands"""
    pass


@db_cmd.command("init")
@with_appcontext
def init_db():
    """Initialize database tables"""
    try:
        db.create_all()
        click.echo("✅ Database tables created successfully!")
    except SQLAlchemyError as e:
        click.echo(f"❌ Error initializing database: {str(e)}")


# Scheduler Commands
@click.group("scheduler")
def scheduler():
    """Background job commands"""
    pass


@scheduler.command("run")
@click.argument("job_id", type=click.Choice(["lock_matches", "settle_pending"]))
@with_appcontext
def scheduler_run(job_id):
    """Run a background job now"""
    from flask import current_app

    if scheduler_service.app is None:
        scheduler_service.app = current_app._get_current_object()
    success, message = scheduler_service.force_run(job_id)
    click.echo(f"{'✅' if success else '❌'} {message}")


@click.command("status")
@with_appcontext
def status():
    """Show application status"""
    click.echo("⚽ Prode Application Status")
    click.echo("=" * 40)

    try:
        db.session.execute(text("SELECT 1"))
        click.echo("✅ Database: Connected")
    except SQLAlchemyError as e:
        click.echo(f"❌ Database: Error - {str(e)}")
        return

    user_count = User.query.filter_by(is_active=True).count()
    click.echo(f"👥 Active Users: {user_count}")

    match_count = Match.query.count()
    finished_count = Match.query.filter_by(status=Match.FINISHED).count()
    click.echo(f"⚽ Matches: {finished_count}/{match_count} finished")

    unsettled = Prediction.query.filter(Prediction.points_breakdown.is_(None)).count()
    click.echo(f"📝 Predictions awaiting settlement: {unsettled}")

    ranked = LeaderboardEntry.query.count()
    click.echo(f"🏆 Leaderboard rows: {ranked}")

    scheduler_state = "running" if scheduler_service.is_running else "stopped"
    click.echo(f"⏱️  Scheduler: {scheduler_state}")


def register_commands(app):
    """Attach every command group to the app's CLI"""
    for command in (settle, leaderboard, matches, phases, user, db_cmd, scheduler, status):
        app.cli.add_command(command)
