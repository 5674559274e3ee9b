import logging
from functools import wraps

from flask import jsonify, request
from flask_login import current_user, login_required

from prode import limiter
from prode.errors import ProdeError
from prode.forms import json_formdata, validate_or_raise
from prode.forms.scores import MatchResultForm
from prode.routes.admin import bp
from prode.services.leaderboard import recompute_leaderboard
from prode.services.match_service import lock_due_matches, record_result
from prode.services.scheduler_service import scheduler_service
from prode.services.settlement import SettlementProcessor

logger = logging.getLogger(__name__)


def admin_required(f):
    """Require an authenticated admin; JSON 403 otherwise"""

    @wraps(f)
    @login_required
    def decorated_function(*args, **kwargs):
        if not current_user.is_admin:
            logger.warning(
                f"User {current_user.id} denied admin access to {request.path}"
            )
            return jsonify({"error": "Admin access required"}), 403
        return f(*args, **kwargs)

    return decorated_function


def _settlement_payload(summary):
    data = summary.to_dict()
    data["message"] = (
        f"{summary.predictions_processed} processed, {summary.errors} errors"
    )
    return data


@bp.route("/matches/<int:match_id>/result", methods=["POST"])
@admin_required
@limiter.limit("30 per minute")
def enter_result(match_id):
    """Record a final score (or a correction) and settle the match"""
    form = MatchResultForm(
        formdata=json_formdata(request.get_json(silent=True)), meta={"csrf": False}
    )
    validate_or_raise(form)

    match = record_result(
        match_id,
        form.home_score.data,
        form.away_score.data,
        user_id=current_user.id,
    )
    match_data = match.to_dict()

    try:
        summary = SettlementProcessor().settle_match(match_id)
    except ProdeError as e:
        # The result stays stored; points can be recalculated later
        logger.error(f"Result stored for match {match_id} but settlement failed: {e}")
        return (
            jsonify(
                {
                    "match": match_data,
                    "warning": "Result saved but points calculation failed",
                    "error": e.message,
                }
            ),
            207,
        )

    return jsonify({"match": match_data, "settlement": _settlement_payload(summary)})


@bp.route("/matches/<int:match_id>/calculate-points", methods=["POST"])
@admin_required
@limiter.limit("30 per minute")
def calculate_points(match_id):
    """Settle (or re-settle) one match from its stored result"""
    summary = SettlementProcessor().settle_match(match_id)
    return jsonify(_settlement_payload(summary))


@bp.route("/matches/recalculate-all", methods=["POST"])
@admin_required
@limiter.limit("5 per hour")
def recalculate_all():
    """Re-settle every finished match"""
    result = SettlementProcessor().resettle_all_finished_matches()
    return jsonify(result)


@bp.route("/matches/lock", methods=["POST"])
@admin_required
@limiter.limit("30 per minute")
def lock_matches():
    """Lock matches whose prediction window has closed"""
    result = lock_due_matches()
    return jsonify({"locked": result["locked"], "errors": result["errors"]})


@bp.route("/leaderboard/recompute", methods=["POST"])
@admin_required
@limiter.limit("10 per hour")
def leaderboard_recompute():
    standings = recompute_leaderboard()
    return jsonify({"users": len(standings)})


@bp.route("/scheduler/status")
@admin_required
def scheduler_status():
    return jsonify(scheduler_service.get_status())
