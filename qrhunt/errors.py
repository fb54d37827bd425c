"""
Error taxonomy for the hunt core.

Every failure a caller can recover from is a HuntError carrying a stable
``kind`` string and the HTTP status the web layer answers with.
"""

from typing import Any, Dict, Optional


class HuntError(Exception):
    """Base class for structured, recoverable hunt failures."""

    kind = "error"
    status = 400
    default_message = "Request failed"

    def __init__(self, message: Optional[str] = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"success": False, "error": self.kind, "message": self.message}


class NotFound(HuntError):
    kind = "not_found"
    status = 404
    default_message = "Not found"


class UnknownTeam(NotFound):
    kind = "unknown_team"
    default_message = "Team not found!"


class UnknownNode(NotFound):
    kind = "unknown_node"
    default_message = "Invalid QR code!"


class MalformedPayload(HuntError):
    kind = "malformed_payload"
    default_message = "Invalid QR code format!"


class OutOfSequence(HuntError):
    kind = "out_of_sequence"
    status = 409
    default_message = "Wrong sequence! Complete previous nodes first."


class WrongCode(HuntError):
    kind = "wrong_code"
    status = 403
    default_message = "Haha wrong place! Keep exploring!"


class Unauthorized(HuntError):
    kind = "unauthorized"
    status = 401
    default_message = "Invalid admin secret"


class AlreadyReviewed(HuntError):
    kind = "already_reviewed"
    status = 409
    default_message = "Submission has already been reviewed"


class InvalidConfiguration(HuntError):
    kind = "invalid_configuration"
    default_message = "Invalid game settings"


class InvalidInput(HuntError):
    kind = "invalid_input"
    default_message = "Invalid input"


class Conflict(HuntError):
    kind = "conflict"
    status = 409
    default_message = "Conflicting record already exists"


class PendingSubmissionExists(Conflict):
    kind = "pending_submission_exists"
    default_message = "An answer for this node is already awaiting review"


class GamePaused(HuntError):
    kind = "game_paused"
    status = 423
    default_message = "The game is paused"
