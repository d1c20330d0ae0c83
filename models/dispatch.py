"""
Dispatch: Typed payloads crossing the worker boundary.
"""

from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, Field

from models.profile import WorkType


class SessionHandle(BaseModel):
    """Handle to a worker session that can be resumed cheaply."""

    session_id: str = Field(..., min_length=1)
    validator: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    stale: bool = Field(default=False, description="Set when the worker reports the session unusable")


class DispatchContext(BaseModel):
    """Input handed to a worker for a fresh dispatch."""

    run_id: str
    changeset_id: str
    work_types: list[WorkType] = Field(default_factory=list)
    authorized_scope: list[str] = Field(default_factory=list)
    attempt_number: int = Field(..., ge=1)
    previous_issues: list[str] = Field(default_factory=list)
    previous_failure_reasons: list[str] = Field(default_factory=list)


class SupplementalContext(BaseModel):
    """Input handed to a resumed worker session."""

    run_id: str
    attempt_number: int = Field(..., ge=1)
    blocking_issues: list[str] = Field(default_factory=list)
    failure_reasons: list[str] = Field(default_factory=list)


class WorkerResponse(BaseModel):
    """Raw worker output plus the session it ran in."""

    output: Any = Field(None, description="Raw structured result, mapping or JSON text")
    session: Optional[SessionHandle] = None
