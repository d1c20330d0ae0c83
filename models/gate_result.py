"""
GateResult: Structured validator verdicts.

Validators return free-form JSON. The contract validator turns it into one of
the models here; control flow only ever reads `all_checks_passed`.
"""

from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field


class FailureReason(str, Enum):
    """Why an attempt did not pass."""

    CHECKS_FAILED = "checks failed"
    MALFORMED_CONTRACT = "malformed contract"
    INVALID_INPUTS = "invalid inputs"
    LOGICAL_INCONSISTENCY = "logical inconsistency"
    SCOPE_VIOLATION = "scope violation"
    MISSING_EVIDENCE = "missing evidence"
    DISPATCH_FAILURE = "dispatch failure"
    CANCELLED = "cancelled"
    RETRY_BUDGET_EXHAUSTED = "retry budget exhausted"


class RedFlag(BaseModel):
    """A deterministic contradiction that overrides a claimed pass."""

    reason: FailureReason
    detail: str = ""


# --- Validator-specific payloads ---


class GenericPayload(BaseModel):
    """Payload for validators without typed extension fields."""

    kind: Literal["generic"] = "generic"

    @property
    def failure_count(self) -> Optional[int]:
        return None


class SuiteRunPayload(BaseModel):
    """Test-runner payload."""

    kind: Literal["test_runner"] = "test_runner"
    tests_total: Optional[int] = Field(None, ge=0)
    tests_passed: Optional[int] = Field(None, ge=0)
    tests_failed: int = Field(default=0, ge=0)
    test_exit_code: Optional[int] = None
    coverage_percentage: Optional[float] = Field(None, ge=0, le=100)
    commands_executed: list[str] = Field(default_factory=list)

    @property
    def failure_count(self) -> Optional[int]:
        return self.tests_failed


class CodeReviewPayload(BaseModel):
    """Code-reviewer payload."""

    kind: Literal["code_review"] = "code_review"
    blocking_findings: int = Field(default=0, ge=0)
    non_blocking_findings: int = Field(default=0, ge=0)
    files_reviewed: list[str] = Field(default_factory=list)

    @property
    def failure_count(self) -> Optional[int]:
        return self.blocking_findings


class SecurityAuditPayload(BaseModel):
    """Security-auditor payload."""

    kind: Literal["security_audit"] = "security_audit"
    critical_vulnerabilities: int = Field(default=0, ge=0)
    high_vulnerabilities: int = Field(default=0, ge=0)
    medium_vulnerabilities: int = Field(default=0, ge=0)
    scanners_run: list[str] = Field(default_factory=list)

    @property
    def failure_count(self) -> Optional[int]:
        return self.critical_vulnerabilities + self.high_vulnerabilities


ValidatorPayload = Annotated[
    Union[GenericPayload, SuiteRunPayload, CodeReviewPayload, SecurityAuditPayload],
    Field(discriminator="kind"),
]


class GateResult(BaseModel):
    """
    Parsed and cross-checked validator result.

    `all_checks_passed` equals the validator's own claim AND-ed with
    "no red flag fired". It is the single boolean the engine consumes.
    """

    validator: str
    all_checks_passed: bool
    claimed_pass: bool
    blocking_issues: list[str] = Field(default_factory=list)
    pre_work_validation_passed: bool = True
    files_modified: list[str] = Field(default_factory=list)
    scope_files: list[str] = Field(default_factory=list, description="Files the validator was authorized to touch")
    red_flags: list[RedFlag] = Field(default_factory=list)
    payload: ValidatorPayload = Field(default_factory=GenericPayload)
    produced_output: bool = Field(default=True, description="False when the worker never answered")

    # Audit metadata only
    narrative: dict[str, Any] = Field(default_factory=dict)
    extensions: dict[str, Any] = Field(default_factory=dict)

    @property
    def failure_reasons(self) -> list[FailureReason]:
        if self.all_checks_passed:
            return []
        reasons = [flag.reason for flag in self.red_flags]
        if self.produced_output and not self.claimed_pass:
            reasons.insert(0, FailureReason.CHECKS_FAILED)
        return reasons

    def unresolved_issues(self) -> list[str]:
        """Blocking issues plus a line per red flag."""
        if self.all_checks_passed:
            return []
        issues = list(self.blocking_issues)
        for flag in self.red_flags:
            issues.append(f"{flag.reason.value}: {flag.detail}" if flag.detail else flag.reason.value)
        return issues

    @classmethod
    def forced_failure(
        cls, validator: str, reason: FailureReason, detail: str, scope_files: Optional[list[str]] = None
    ) -> "GateResult":
        """Build a failing result for an attempt that never produced output."""
        return cls(
            validator=validator,
            all_checks_passed=False,
            claimed_pass=False,
            produced_output=False,
            scope_files=scope_files or [],
            red_flags=[RedFlag(reason=reason, detail=detail)],
        )


class RejectedAsMalformed(BaseModel):
    """
    Worker output that violates the result contract.

    This is a protocol violation, not a failed check, and always fails the
    attempt that produced it.
    """

    validator: str
    errors: list[str] = Field(default_factory=list)
    missing_fields: list[str] = Field(default_factory=list)
    raw: Any = None
    all_checks_passed: Literal[False] = False

    @property
    def failure_reasons(self) -> list[FailureReason]:
        return [FailureReason.MALFORMED_CONTRACT]

    def unresolved_issues(self) -> list[str]:
        return [f"{FailureReason.MALFORMED_CONTRACT.value}: {error}" for error in self.errors]


Verdict = Union[GateResult, RejectedAsMalformed]
