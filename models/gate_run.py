"""
GateRun: Per-run state owned by exactly one engine invocation.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from models.gate_attempt import GateAttempt
from models.profile import ResolvedProfile, WorkType


class EngineState(str, Enum):
    """States of the gate state machine."""

    IDLE = "idle"
    BLOCKING_RUNNING = "blocking_running"
    BLOCKING_FAILED = "blocking_failed"
    BLOCKING_PASSED = "blocking_passed"
    PARALLEL_RUNNING = "parallel_running"
    ALL_PASSED = "all_passed"
    ESCALATED = "escalated"


class GateRunRequest(BaseModel):
    """Input to a gate run."""

    changeset_id: str = Field(..., min_length=1)
    work_types: set[WorkType] = Field(default_factory=set)
    authorized_scope: set[str] = Field(default_factory=set)

    @field_validator("work_types")
    @classmethod
    def _strip_blank_work_types(cls, value: set[str]) -> set[str]:
        return {work_type.strip() for work_type in value if work_type.strip()}


class GateRun(BaseModel):
    """
    Mutable record of one run.

    `history` maps a validator name to its attempts in dispatch order. Each
    validator task only appends to its own list.
    """

    run_id: str = Field(default_factory=lambda: f"run_{uuid.uuid4().hex[:12]}")
    request: GateRunRequest
    profile: ResolvedProfile
    state: EngineState = Field(default=EngineState.IDLE)
    state_history: list[EngineState] = Field(default_factory=lambda: [EngineState.IDLE])
    history: dict[str, list[GateAttempt]] = Field(default_factory=dict)
    cancelled: bool = False
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None

    def attempts_for(self, validator: str) -> list[GateAttempt]:
        return self.history.setdefault(validator, [])

    def latest_attempt(self, validator: str) -> Optional[GateAttempt]:
        attempts = self.history.get(validator)
        return attempts[-1] if attempts else None

    def all_attempts(self) -> list[GateAttempt]:
        """Attempts ordered blocking first, then parallel, then attempt number."""
        ordered = []
        for name in self.profile.blocking_names + sorted(self.profile.parallel_names):
            ordered.extend(self.history.get(name, []))
        return ordered
