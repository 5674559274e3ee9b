import logging
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal

from flask import current_app, jsonify, request
from flask_login import current_user, login_required

from prode import db, limiter
from prode.forms import json_formdata, validate_or_raise
from prode.forms.scores import PredictionForm
from prode.models import LeaderboardEntry, Match, Prediction
from prode.routes.api import bp
from prode.utils.cache_utils import cached_leaderboard_view

logger = logging.getLogger(__name__)


def _round2(value):
    return float(
        Decimal(str(value or 0)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    )


def _pagination_args():
    page = request.args.get("page", 1, type=int)
    limit = request.args.get(
        "limit", current_app.config.get("LEADERBOARD_PAGE_SIZE", 50), type=int
    )
    page = max(page, 1)
    limit = min(max(limit, 1), current_app.config.get("LEADERBOARD_MAX_PAGE_SIZE", 100))
    return page, limit


@bp.route("/health")
@limiter.exempt
def health():
    """Health check endpoint"""
    return jsonify(
        {"status": "healthy", "timestamp": datetime.now(timezone.utc).isoformat()}
    )


@bp.route("/predictions", methods=["POST"])
@login_required
@limiter.limit("60 per minute")
def submit_prediction():
    """Create or update the current user's prediction for a match"""
    form = PredictionForm(
        formdata=json_formdata(request.get_json(silent=True)), meta={"csrf": False}
    )
    validate_or_raise(form)

    prediction, created = Prediction.submit(
        current_user.id,
        form.match_id.data,
        form.predicted_home_score.data,
        form.predicted_away_score.data,
    )
    db.session.commit()

    logger.info(
        f"User {current_user.id} {'created' if created else 'updated'} prediction "
        f"{prediction.id} for match {prediction.match_id}"
    )
    return jsonify(prediction.to_dict(include_match=True)), 201 if created else 200


@bp.route("/predictions/me")
@login_required
def my_predictions():
    """Current user's predictions, soonest match first"""
    predictions = (
        Prediction.query.join(Match, Prediction.match_id == Match.id)
        .filter(Prediction.user_id == current_user.id)
        .order_by(Match.match_date.asc())
        .all()
    )
    return jsonify(
        {
            "predictions": [p.to_dict(include_match=True) for p in predictions],
            "total_points": sum(p.points_earned or 0 for p in predictions),
        }
    )


@cached_leaderboard_view(timeout=300)
def _leaderboard_page(page, limit):
    rows, total = LeaderboardEntry.get_page(page=page, limit=limit)
    return {
        "entries": [row.to_dict() for row in rows],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": (total + limit - 1) // limit,
        },
    }


@bp.route("/leaderboard")
def leaderboard():
    """Global standings ordered by ranking, with the caller's own row"""
    page, limit = _pagination_args()
    payload = dict(_leaderboard_page(page, limit))

    personal = None
    if current_user.is_authenticated:
        on_page = any(e["user_id"] == current_user.id for e in payload["entries"])
        if not on_page:
            entry = LeaderboardEntry.get_for_user(current_user.id)
            personal = entry.to_dict() if entry else None
    payload["personal"] = personal

    return jsonify(payload)


@bp.route("/leaderboard/me")
@login_required
def my_leaderboard():
    """Current user's standing, rank movement and pool-wide averages"""
    entry = LeaderboardEntry.get_for_user(current_user.id)

    evolution = None
    if entry:
        evolution = {
            "ranking": entry.ranking,
            "previous_ranking": entry.previous_ranking,
            "ranking_change": entry.ranking_change,
        }

    total_users = LeaderboardEntry.query.count()
    avg_points, avg_accuracy = db.session.query(
        db.func.avg(LeaderboardEntry.total_points),
        db.func.avg(LeaderboardEntry.accuracy_rate),
    ).one()

    return jsonify(
        {
            "user": {
                "id": current_user.id,
                "name": current_user.full_name,
                "avatar_url": current_user.avatar_url,
                "member_since": (
                    current_user.created_at.isoformat()
                    if current_user.created_at
                    else None
                ),
            },
            "stats": entry.to_dict(include_user=False) if entry else None,
            "evolution": evolution,
            "comparison": {
                "total_users": total_users,
                "avg_points": _round2(avg_points),
                "avg_accuracy_rate": _round2(avg_accuracy),
            },
        }
    )
