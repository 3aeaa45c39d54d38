"""Domain error taxonomy.

Every error carries the HTTP status the API surfaces it with. Routers
let these propagate; ``stakeit.main`` turns them into JSON responses.
"""

from typing import Any, Optional


class StakeItError(Exception):
    """Base class for errors surfaced at the request boundary."""

    status_code: int = 400

    def __init__(self, detail: str, fields: Optional[dict[str, Any]] = None):
        super().__init__(detail)
        self.detail = detail
        self.fields = fields or {}


class ValidationError(StakeItError):
    """Malformed input shape or range."""
    status_code = 400


class NotFound(StakeItError):
    """Referenced goal, period or proof does not exist."""
    status_code = 404


class InvalidState(StakeItError):
    """Action attempted against a goal in the wrong state."""
    status_code = 400


class GoalNotActive(InvalidState):
    pass


class NotVoting(InvalidState):
    pass


class SelfVote(StakeItError):
    """Goal owner attempting to adjudicate their own goal."""
    status_code = 403


class DuplicateVote(StakeItError):
    status_code = 400


class LimitExceeded(StakeItError):
    """Too many open goals for a (user, group) pair."""
    status_code = 400


class UpstreamFailure(StakeItError):
    """Payment gateway, proof verifier or storage failure."""
    status_code = 502


class ConcurrencyConflict(UpstreamFailure):
    """Optimistic update kept losing to concurrent writers."""
    status_code = 409


class Forbidden(StakeItError):
    """Caller may not perform this action on the goal."""
    status_code = 403
