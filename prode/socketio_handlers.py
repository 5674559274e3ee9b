"""
SocketIO event handlers for live standings

Clients on the /leaderboard namespace hear about every settlement and
every recompute. Authenticated clients also join a personal room.
"""

import logging
from datetime import datetime, timezone

from flask import request
from flask_login import current_user
from flask_socketio import emit, join_room, leave_room

from prode import socketio
from prode.models import LeaderboardEntry

logger = logging.getLogger(__name__)

NAMESPACE = "/leaderboard"

# Track connected clients
connected_clients = {}


@socketio.on("connect", namespace=NAMESPACE)
def on_connect():
    """Send the top of the table to a new client"""
    try:
        user_id = current_user.id if current_user.is_authenticated else None
        connected_clients[request.sid] = {"user_id": user_id}

        if user_id:
            join_room(f"user_{user_id}")

        rows, total = LeaderboardEntry.get_page(page=1, limit=10)
        emit(
            "leaderboard_snapshot",
            {"total": total, "entries": [row.to_dict() for row in rows]},
        )
        logger.info(f"Client connected to {NAMESPACE}: {request.sid} (user: {user_id})")
    except Exception as e:
        logger.error(f"Error in leaderboard connect: {e}")


@socketio.on("disconnect", namespace=NAMESPACE)
def on_disconnect():
    client = connected_clients.pop(request.sid, None)
    if client and client["user_id"]:
        leave_room(f"user_{client['user_id']}")
    logger.debug(f"Client disconnected from {NAMESPACE}: {request.sid}")


def broadcast_match_settled(summary):
    """Tell every client that a match's predictions were scored"""
    try:
        payload = summary.to_dict()
        payload["timestamp"] = datetime.now(timezone.utc).isoformat()
        socketio.emit("match_settled", payload, namespace=NAMESPACE)

        for outcome in summary.settled:
            socketio.emit(
                "prediction_settled",
                {
                    "prediction_id": outcome.prediction_id,
                    "match_id": summary.match_id,
                    "points_earned": outcome.points,
                },
                room=f"user_{outcome.user_id}",
                namespace=NAMESPACE,
            )

        logger.debug(f"Broadcasted settlement for match {summary.match_id}")
    except Exception as e:
        logger.error(f"Error broadcasting match settlement: {e}")


def broadcast_leaderboard_updated(standings):
    """Push the new top ten after a recompute"""
    try:
        socketio.emit(
            "leaderboard_updated",
            {
                "total_users": len(standings),
                "top": [
                    {
                        "user_id": s.user_id,
                        "ranking": s.ranking,
                        "total_points": s.total_points,
                        "ranking_change": s.ranking_change,
                    }
                    for s in standings[:10]
                ],
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
            namespace=NAMESPACE,
        )
    except Exception as e:
        logger.error(f"Error broadcasting leaderboard update: {e}")
