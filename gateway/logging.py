"""
Structured logging for gate runs and gateway requests.

All logs are JSONL for replayability and audit. Every validator attempt and
every final decision produces one AuditRecord.
"""

import json
import sys
import uuid
from datetime import datetime, timezone
from typing import Any, List, Optional, TextIO

from pydantic import BaseModel, ConfigDict, Field

from models.decision import Decision
from models.gate_attempt import AttemptStatus, GateAttempt


class AuditRecord(BaseModel):
    """
    Immutable audit record for a gate run event.
    """

    model_config = ConfigDict(frozen=True)

    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()), description="Unique ID for this audit event")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    actor_id: str = Field(..., description="System ID running the gates")
    action: str = Field(..., description="gate_attempt or gate_decision")
    run_id: Optional[str] = Field(None, description="Gate run the event belongs to")
    resource_id: Optional[str] = Field(None, description="Validator name, or changeset ID for decisions")
    status: str = Field(..., description="Attempt status or decision outcome, upper-cased")
    details: dict[str, Any] = Field(default_factory=dict, description="Contextual details")

    validators_passed: List[str] = Field(default_factory=list)
    red_flags: List[str] = Field(default_factory=list)

    @classmethod
    def for_attempt(cls, actor_id: str, run_id: str, changeset_id: str, attempt: GateAttempt) -> "AuditRecord":
        name = attempt.validator.name
        return cls(
            actor_id=actor_id,
            action="gate_attempt",
            run_id=run_id,
            resource_id=name,
            status=attempt.status.value.upper(),
            details={
                "changeset_id": changeset_id,
                "attempt_number": attempt.attempt_number,
                "max_attempts": attempt.validator.max_attempts,
                "mode": attempt.mode.value,
                "session_id": attempt.session_id,
                "failure_reasons": [r.value for r in attempt.failure_reasons],
                "blocking_issues": attempt.unresolved_issues(),
            },
            validators_passed=[name] if attempt.status == AttemptStatus.PASSED else [],
            red_flags=[f.reason.value for f in getattr(attempt.result, "red_flags", [])],
        )

    @classmethod
    def for_decision(cls, actor_id: str, decision: Decision) -> "AuditRecord":
        return cls(
            actor_id=actor_id,
            action="gate_decision",
            run_id=decision.run_id,
            resource_id=decision.changeset_id,
            status=decision.outcome.value.upper(),
            details={
                "escalated_validators": decision.escalated_validators,
                "blocking_issues": decision.blocking_issues_summary,
                "terminal_reasons": [r.value for r in decision.terminal_reasons],
                "cancelled": decision.cancelled,
                "attempts": len(decision.attempts),
            },
            validators_passed=[a.validator.name for a in decision.attempts if a.status == AttemptStatus.PASSED],
        )


class StructuredLogger:
    """JSONL structured logger for gate engine and gateway operations."""

    def __init__(self, component: str, stream: Optional[TextIO] = None):
        self.component = component
        self.stream = stream

    def _emit(self, record: dict[str, Any]) -> None:
        """Write a log record as JSONL (stdout unless a stream was given)."""
        if "timestamp" not in record:
            record["timestamp"] = datetime.now(timezone.utc).isoformat()
        record["component"] = self.component
        print(json.dumps(record, default=str), file=self.stream or sys.stdout, flush=True)

    def log_request(self, request_id: str, endpoint: str, payload: dict) -> None:
        self._emit({"event": "request", "request_id": request_id, "endpoint": endpoint, "payload": payload})

    def log_response(self, request_id: str, status: str, result: Any) -> None:
        self._emit({"event": "response", "request_id": request_id, "status": status, "result": result})

    def log_event(self, request_id: str, event_type: str, data: Any) -> None:
        self._emit({"event": event_type, "request_id": request_id, "data": data})

    def log_error(self, request_id: str, error: str) -> None:
        self._emit({"event": "error", "request_id": request_id, "error": error})

    def log_audit(self, record: AuditRecord) -> None:
        """Log a formal audit record."""
        self._emit({"event": "audit", "audit_record": record.model_dump(mode="json")})
