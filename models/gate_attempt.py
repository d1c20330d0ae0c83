"""
GateAttempt: One dispatch of one validator within a run.

Attempts are created immediately before dispatch, finalized immediately after
the contract verdict, and kept for the full audit trail.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, Field

from models.gate_result import FailureReason, GateResult, RejectedAsMalformed
from models.profile import ValidatorSpec


def _now() -> datetime:
    return datetime.now(timezone.utc)


class AttemptStatus(str, Enum):
    """Status of a gate attempt."""

    PENDING = "pending"
    RUNNING = "running"
    PASSED = "passed"
    FAILED = "failed"
    ESCALATED = "escalated"


class AttemptMode(str, Enum):
    """How the worker for an attempt was reached."""

    FRESH = "fresh"
    RESUME = "resume"


class GateAttempt(BaseModel):
    """A single validator attempt and its verdict."""

    validator: ValidatorSpec
    attempt_number: int = Field(..., ge=1)
    mode: AttemptMode = Field(default=AttemptMode.FRESH)
    session_id: Optional[str] = Field(None, description="Worker session handle, if any")
    session_created_at: Optional[datetime] = None
    session_stale: bool = False
    result: Optional[Union[GateResult, RejectedAsMalformed]] = None
    status: AttemptStatus = Field(default=AttemptStatus.PENDING)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def passed(self) -> bool:
        return self.result is not None and self.result.all_checks_passed

    @property
    def failure_reasons(self) -> list[FailureReason]:
        if self.result is None:
            return []
        return self.result.failure_reasons

    @property
    def is_final_attempt(self) -> bool:
        return self.attempt_number >= self.validator.max_attempts

    def mark_running(self):
        """Mark attempt as dispatched."""
        self.status = AttemptStatus.RUNNING
        self.started_at = _now()

    def finalize(self, result: Union[GateResult, RejectedAsMalformed]):
        """Record the verdict and settle the status."""
        self.result = result
        if result.all_checks_passed:
            self.status = AttemptStatus.PASSED
        elif self.is_final_attempt:
            self.status = AttemptStatus.ESCALATED
        else:
            self.status = AttemptStatus.FAILED
        self.completed_at = _now()

    def unresolved_issues(self) -> list[str]:
        if self.result is None:
            return []
        return self.result.unresolved_issues()
