"""
Profile: Validation profile models.

A profile names the validators a work type requires: at most one blocking
validator that must pass first, and a set of validators that run in parallel
once it has.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

# Work types are opaque labels enumerated by the registry configuration.
WorkType = str


class PayloadKind(str, Enum):
    """Validator-specific payload variants understood by the contract validator."""

    GENERIC = "generic"
    TEST_RUNNER = "test_runner"
    CODE_REVIEW = "code_review"
    SECURITY_AUDIT = "security_audit"


class ValidatorSpec(BaseModel):
    """
    A validator and its retry budget.

    Identity is `name`: two specs with the same name from different profiles
    describe the same validator.
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1, description="Validator name, e.g. 'test-runner'")
    max_attempts: int = Field(..., ge=1, description="Attempts allowed before escalation")
    payload_kind: PayloadKind = Field(default=PayloadKind.GENERIC)
    required_evidence: tuple[str, ...] = Field(
        default_factory=tuple, description="Fields the validator must always emit"
    )


class ValidationProfile(BaseModel):
    """Validators configured for a single work type."""

    model_config = ConfigDict(frozen=True)

    work_type: WorkType
    blocking: Optional[ValidatorSpec] = None
    parallel: tuple[ValidatorSpec, ...] = Field(default_factory=tuple)


class ClassificationRule(BaseModel):
    """Glob pattern mapping touched file paths to a work type."""

    model_config = ConfigDict(frozen=True)

    pattern: str = Field(..., min_length=1)
    work_type: WorkType


class ResolvedProfile(BaseModel):
    """
    Union of every profile matching a changeset's work types.

    `blocking` keeps registry-definition order; `parallel` is sorted by name so
    that equal inputs always produce equal values.
    """

    model_config = ConfigDict(frozen=True)

    work_types: tuple[WorkType, ...]
    blocking: tuple[ValidatorSpec, ...] = Field(default_factory=tuple)
    parallel: tuple[ValidatorSpec, ...] = Field(default_factory=tuple)

    @property
    def blocking_names(self) -> list[str]:
        return [spec.name for spec in self.blocking]

    @property
    def parallel_names(self) -> set[str]:
        return {spec.name for spec in self.parallel}

    def get(self, name: str) -> Optional[ValidatorSpec]:
        """Look up a validator of this run by name."""
        for spec in self.blocking + self.parallel:
            if spec.name == name:
                return spec
        return None
