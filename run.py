# Eventlet monkey patching MUST be first before any other imports
import eventlet

eventlet.monkey_patch()

import os  # noqa: E402

from prode import create_app, db, socketio  # noqa: E402
from prode.models import (  # noqa: E402
    AuditLog,
    LeaderboardEntry,
    Match,
    Phase,
    Prediction,
    Team,
    User,
)

app = create_app()


@app.shell_context_processor
def make_shell_context():
    return {
        "db": db,
        "User": User,
        "Team": Team,
        "Phase": Phase,
        "Match": Match,
        "Prediction": Prediction,
        "LeaderboardEntry": LeaderboardEntry,
        "AuditLog": AuditLog,
    }


if __name__ == "__main__":
    socketio.run(
        app,
        host=os.environ.get("HOST", "0.0.0.0"),
        port=int(os.environ.get("PORT", 5000)),
        debug=app.config.get("DEBUG", False),
    )
