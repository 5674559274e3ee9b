"""
Match lifecycle operations around settlement: result entry and locking
"""

import logging

from prode import db
from prode.errors import NotFoundError, ValidationError
from prode.models import AuditLog, Match
from prode.services.repository import SettlementRepository

logger = logging.getLogger(__name__)


def record_result(match_id, home_score, away_score, user_id=None):
    """
    Store a match's final score and close it for predictions.

    Corrections on an already FINISHED match are allowed; POSTPONED matches
    are rejected. Settlement is the caller's next step.
    """
    match = db.session.get(Match, match_id)
    if match is None:
        raise NotFoundError(f"Match {match_id} not found")
    if match.status == Match.POSTPONED:
        raise ValidationError(f"Match {match_id} is postponed")

    old_values = {
        "homeScore": match.home_score,
        "awayScore": match.away_score,
        "status": match.status,
    }
    match.set_result(home_score, away_score)

    AuditLog.log_action(
        AuditLog.UPDATE_MATCH_RESULT,
        "Match",
        match.id,
        user_id=user_id,
        old_values=old_values,
        new_values={
            "homeScore": home_score,
            "awayScore": away_score,
            "status": Match.FINISHED,
        },
    )
    db.session.commit()

    logger.info(
        f"Result recorded for match {match_id}: {home_score}-{away_score} "
        f"(was {old_values['homeScore']}-{old_values['awayScore']}, {old_values['status']})"
    )
    return match


def lock_due_matches(now=None, repository=None):
    """Lock every SCHEDULED match past its lock time. Returns counts."""
    repository = repository or SettlementRepository()
    locked, errors = repository.lock_due_matches(now)
    if locked:
        logger.info(f"Locked {len(locked)} matches: {locked}")
    return {"locked": len(locked), "match_ids": locked, "errors": errors}
