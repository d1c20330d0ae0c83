"""
Red Flags: Deterministic contradiction checks on validator results.

Each check reads only structured evidence. A check that fires overrides a
claimed pass to a forced failure; free-text fields are never consulted.

All checks accept a RedFlagContext and return a RedFlag or None.
"""

from typing import Callable, Optional

from pydantic import BaseModel, Field

from models.gate_result import FailureReason, RedFlag, ValidatorPayload
from models.profile import ValidatorSpec
from .normalizer import out_of_scope


class RedFlagContext(BaseModel):
    """Structured evidence extracted from one worker result."""

    spec: ValidatorSpec
    claimed_pass: bool
    pre_work_validation_passed: bool
    files_modified: list[str] = Field(default_factory=list)
    authorized_scope: frozenset[str] = Field(default_factory=frozenset)
    payload: ValidatorPayload
    present_fields: frozenset[str] = Field(default_factory=frozenset)


# --- Checks ---


def invalid_inputs_flag(ctx: RedFlagContext) -> Optional[RedFlag]:
    """The validator reported that its own preconditions did not hold."""
    if ctx.pre_work_validation_passed:
        return None
    return RedFlag(
        reason=FailureReason.INVALID_INPUTS,
        detail="pre-work validation did not pass",
    )


def logical_inconsistency_flag(ctx: RedFlagContext) -> Optional[RedFlag]:
    """
    A pass claimed alongside a non-zero failure count.

    Skipped for payload kinds that expose no failure count.
    """
    failures = ctx.payload.failure_count
    if failures is None or not ctx.claimed_pass or failures <= 0:
        return None
    return RedFlag(
        reason=FailureReason.LOGICAL_INCONSISTENCY,
        detail=f"claimed pass with {failures} reported failure(s)",
    )


def scope_violation_flag(ctx: RedFlagContext) -> Optional[RedFlag]:
    """Files were modified outside the authorized scope."""
    violations = out_of_scope(ctx.files_modified, ctx.authorized_scope)
    if not violations:
        return None
    return RedFlag(
        reason=FailureReason.SCOPE_VIOLATION,
        detail="modified outside authorized scope: " + ", ".join(violations),
    )


def missing_evidence_flag(ctx: RedFlagContext) -> Optional[RedFlag]:
    """Evidence fields the validator must always emit are absent."""
    missing = [f for f in ctx.spec.required_evidence if f not in ctx.present_fields]
    if not missing:
        return None
    return RedFlag(
        reason=FailureReason.MISSING_EVIDENCE,
        detail="missing " + ", ".join(missing),
    )


# --- Runner ---

RED_FLAGS: dict[str, Callable[[RedFlagContext], Optional[RedFlag]]] = {
    "invalid_inputs": invalid_inputs_flag,
    "logical_inconsistency": logical_inconsistency_flag,
    "scope_violation": scope_violation_flag,
    "missing_evidence": missing_evidence_flag,
}


def run_red_flags(ctx: RedFlagContext) -> list[RedFlag]:
    """
    Run every red-flag check.

    Returns the flags that fired, in check order.
    """
    flags = []
    for check in RED_FLAGS.values():
        flag = check(ctx)
        if flag is not None:
            flags.append(flag)
    return flags
