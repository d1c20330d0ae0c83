"""
Decision: Terminal output of one gate run.

The engine never acts on a decision; it hands it, with the full attempt audit
trail, to whatever authority merges or presents the changeset.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from models.gate_attempt import GateAttempt
from models.gate_result import FailureReason
from models.gate_run import EngineState
from models.profile import ResolvedProfile


class Outcome(str, Enum):
    """Decision outcomes."""

    PASSED = "passed"
    FAILED = "failed"
    ESCALATED = "escalated"


class Decision(BaseModel):
    """
    Structured run decision.

    `blocking_issues_summary` lists every unresolved issue of every escalated
    validator as "<validator>: <issue>".
    """

    run_id: str
    changeset_id: str
    outcome: Outcome
    attempts: list[GateAttempt] = Field(default_factory=list)
    blocking_issues_summary: list[str] = Field(default_factory=list)
    escalated_validators: list[str] = Field(default_factory=list)
    terminal_reasons: list[FailureReason] = Field(
        default_factory=list, description="Why the run ended unaccepted: retry budget exhausted, cancelled"
    )
    cancelled: bool = False
    state_history: list[EngineState] = Field(default_factory=list)
    resolved_profile: Optional[ResolvedProfile] = None

    def is_accepted(self) -> bool:
        """Return True if the changeset may proceed without human review."""
        return self.outcome == Outcome.PASSED

    def attempts_for(self, validator: str) -> list[GateAttempt]:
        return [a for a in self.attempts if a.validator.name == validator]
