# Models module - Canonical Pydantic models for gate orchestration
from .profile import (
    WorkType,
    PayloadKind,
    ValidatorSpec,
    ValidationProfile,
    ClassificationRule,
    ResolvedProfile,
)
from .gate_result import (
    FailureReason,
    RedFlag,
    GenericPayload,
    SuiteRunPayload,
    CodeReviewPayload,
    SecurityAuditPayload,
    GateResult,
    RejectedAsMalformed,
    Verdict,
)
from .gate_attempt import GateAttempt, AttemptStatus, AttemptMode
from .dispatch import SessionHandle, DispatchContext, SupplementalContext, WorkerResponse
from .gate_run import EngineState, GateRunRequest, GateRun
from .decision import Decision, Outcome
from .errors import (
    GateEngineError,
    ProfileConfigurationError,
    EmptyWorkTypeSetError,
    IllegalTransitionError,
    DispatchUnavailable,
    SessionExpired,
)

__all__ = [
    "WorkType",
    "PayloadKind",
    "ValidatorSpec",
    "ValidationProfile",
    "ClassificationRule",
    "ResolvedProfile",
    "FailureReason",
    "RedFlag",
    "GenericPayload",
    "SuiteRunPayload",
    "CodeReviewPayload",
    "SecurityAuditPayload",
    "GateResult",
    "RejectedAsMalformed",
    "Verdict",
    "GateAttempt",
    "AttemptStatus",
    "AttemptMode",
    "SessionHandle",
    "DispatchContext",
    "SupplementalContext",
    "WorkerResponse",
    "EngineState",
    "GateRunRequest",
    "GateRun",
    "Decision",
    "Outcome",
    "GateEngineError",
    "ProfileConfigurationError",
    "EmptyWorkTypeSetError",
    "IllegalTransitionError",
    "DispatchUnavailable",
    "SessionExpired",
]
