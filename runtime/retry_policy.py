"""
RetryPolicy: Decide what happens after a validator attempt.

Resuming a live worker session is cheaper than redeploying a fresh worker, so
a failed attempt resumes when it can. Budgets come from the validator spec and
are never changed at runtime.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional

from pydantic import BaseModel

from models.gate_attempt import GateAttempt


class RetryDecision(str, Enum):
    """Possible next actions for a validator."""

    DONE = "done"  # Passed, nothing further to do
    RETRY = "retry"  # Resume the live session
    REDEPLOY_FRESH = "redeploy_fresh"  # Full relaunch
    ESCALATE = "escalate"  # Budget exhausted, needs a human


class RetryAction(BaseModel):
    """Next action for a validator, with the session to resume when retrying."""

    decision: RetryDecision
    session_id: Optional[str] = None
    reason: str = ""


class RetryPolicy:
    """
    Stateless retry decisions.

    Args:
        session_ttl_seconds: Sessions older than this are treated as stale.
            None disables the age check.
        clock: Returns the current time; injectable for tests.
    """

    def __init__(
        self,
        session_ttl_seconds: Optional[float] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.session_ttl_seconds = session_ttl_seconds
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def session_is_live(self, attempt: GateAttempt) -> bool:
        """Return True if the attempt left a session that can still be resumed."""
        if not attempt.session_id or attempt.session_stale:
            return False
        if self.session_ttl_seconds is None or attempt.session_created_at is None:
            return True
        age = (self._clock() - attempt.session_created_at).total_seconds()
        return age <= self.session_ttl_seconds

    def next_action(self, attempt: GateAttempt) -> RetryAction:
        """
        Decide the next action after a finalized attempt.

        Raises:
            ValueError: if the attempt has no verdict yet
        """
        if attempt.result is None:
            raise ValueError(
                f"Attempt {attempt.attempt_number} of {attempt.validator.name} has no verdict"
            )

        if attempt.result.all_checks_passed:
            return RetryAction(decision=RetryDecision.DONE, reason="all checks passed")

        if attempt.attempt_number >= attempt.validator.max_attempts:
            return RetryAction(
                decision=RetryDecision.ESCALATE,
                reason=f"failed {attempt.attempt_number} of {attempt.validator.max_attempts} attempts",
            )

        if self.session_is_live(attempt):
            return RetryAction(
                decision=RetryDecision.RETRY,
                session_id=attempt.session_id,
                reason="resume live session",
            )

        reason = "no session handle" if not attempt.session_id else "session is stale"
        return RetryAction(decision=RetryDecision.REDEPLOY_FRESH, reason=reason)
