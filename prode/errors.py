"""
Error taxonomy for the settlement and leaderboard engine

Fatal errors (ValidationError and friends) propagate to the caller with no
side effects. PredictionPersistError and AuditWriteError are per-item and
best-effort respectively: the engine records them and keeps going.
"""


class ProdeError(Exception):
    """Base class for application errors carrying an HTTP status"""

    status_code = 500

    def __init__(self, message, details=None):
        super().__init__(message)
        self.message = message
        self.details = details or []

    def to_dict(self):
        data = {"error": self.message}
        if self.details:
            data["details"] = self.details
        return data


class ValidationError(ProdeError):
    """Input or precondition failure; nothing has been written"""

    status_code = 400


class NotFoundError(ValidationError):
    status_code = 404


class PredictionLockedError(ValidationError):
    """Prediction submitted after the match lock time"""

    status_code = 409


class PredictionPersistError(ProdeError):
    """A single prediction's settlement write failed"""

    def __init__(self, prediction_id, cause):
        super().__init__(f"Failed to persist prediction {prediction_id}: {cause}")
        self.prediction_id = prediction_id
        self.cause = cause


class AggregationError(ProdeError):
    """The full leaderboard recompute failed"""


class AuditWriteError(ProdeError):
    """Appending an audit record failed"""
