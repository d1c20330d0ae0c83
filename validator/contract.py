"""
Contract Validator: Parse worker output against the result contract.

Never trusts free text. The verdict the engine consumes is the validator's
claim AND-ed with "no red flag fired"; output that does not match the contract
is rejected as malformed, which fails the attempt.
"""

import json
import logging
from typing import Any, Iterable

from pydantic import ValidationError

from models.gate_result import (
    CodeReviewPayload,
    GateResult,
    GenericPayload,
    RejectedAsMalformed,
    SecurityAuditPayload,
    SuiteRunPayload,
    Verdict,
)
from models.profile import PayloadKind, ValidatorSpec
from .normalizer import normalize_scope
from .red_flags import RedFlagContext, run_red_flags
from .schema_validator import schema_errors

logger = logging.getLogger("validator.contract")

REQUIRED_FIELDS = (
    "all_checks_passed",
    "blocking_issues",
    "pre_work_validation_passed",
    "files_modified",
)

# Retained as audit metadata only
NARRATIVE_FIELDS = ("summary", "notes", "narrative", "reasoning", "details")

WORKER_OUTPUT_SCHEMA = {
    "type": "object",
    "required": list(REQUIRED_FIELDS),
    "properties": {
        "all_checks_passed": {"type": "boolean"},
        "blocking_issues": {"type": "array", "items": {"type": "string"}},
        "pre_work_validation_passed": {"type": "boolean"},
        "files_modified": {"type": "array", "items": {"type": "string"}},
        "scope_files": {"type": "array", "items": {"type": "string"}},
    },
}

PAYLOAD_MODELS = {
    PayloadKind.GENERIC: GenericPayload,
    PayloadKind.TEST_RUNNER: SuiteRunPayload,
    PayloadKind.CODE_REVIEW: CodeReviewPayload,
    PayloadKind.SECURITY_AUDIT: SecurityAuditPayload,
}


class ContractValidator:
    """
    Validates raw worker output for one validator.

    Stateless; one instance is shared by every run.
    """

    def validate(self, raw: Any, authorized_scope: Iterable[str], spec: ValidatorSpec) -> Verdict:
        """
        Parse and cross-check a worker result.

        Args:
            raw: Mapping or JSON text returned by the worker
            authorized_scope: Files (or "dir/" prefixes) the validator may touch
            spec: The validator that produced the output

        Returns:
            GateResult, or RejectedAsMalformed on a contract violation
        """
        document = self._decode(raw)
        if isinstance(document, RejectedAsMalformed):
            document.validator = spec.name
            return document

        errors = schema_errors(document, WORKER_OUTPUT_SCHEMA)
        if errors:
            missing = [f for f in REQUIRED_FIELDS if f not in document]
            logger.info(f"Malformed output from {spec.name}: {errors}")
            return RejectedAsMalformed(validator=spec.name, errors=errors, missing_fields=missing, raw=raw)

        declared_kind = document.get("kind")
        if declared_kind is not None and declared_kind != spec.payload_kind.value:
            error = f"$.kind: expected '{spec.payload_kind.value}', got {declared_kind!r}"
            logger.info(f"Malformed output from {spec.name}: {error}")
            return RejectedAsMalformed(validator=spec.name, errors=[error], raw=raw)

        payload_model = PAYLOAD_MODELS[spec.payload_kind]
        payload_fields = {
            k: v for k, v in document.items() if k in payload_model.model_fields and k != "kind"
        }
        try:
            payload = payload_model.model_validate(payload_fields)
        except ValidationError as e:
            payload_errors = [
                f"$.{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in e.errors()
            ]
            logger.info(f"Malformed {spec.payload_kind.value} payload from {spec.name}: {payload_errors}")
            return RejectedAsMalformed(validator=spec.name, errors=payload_errors, raw=raw)

        scope = normalize_scope(authorized_scope)
        claimed_pass = document["all_checks_passed"]
        flags = run_red_flags(
            RedFlagContext(
                spec=spec,
                claimed_pass=claimed_pass,
                pre_work_validation_passed=document["pre_work_validation_passed"],
                files_modified=document["files_modified"],
                authorized_scope=scope,
                payload=payload,
                present_fields=frozenset(document.keys()),
            )
        )
        if flags and claimed_pass:
            logger.info(f"Claimed pass from {spec.name} overridden: {[f.reason.value for f in flags]}")

        known = set(REQUIRED_FIELDS) | set(NARRATIVE_FIELDS) | set(payload_model.model_fields) | {"scope_files"}
        return GateResult(
            validator=spec.name,
            all_checks_passed=claimed_pass and not flags,
            claimed_pass=claimed_pass,
            blocking_issues=document["blocking_issues"],
            pre_work_validation_passed=document["pre_work_validation_passed"],
            files_modified=document["files_modified"],
            scope_files=sorted(scope),
            red_flags=flags,
            payload=payload,
            narrative={k: document[k] for k in NARRATIVE_FIELDS if k in document},
            extensions={k: v for k, v in document.items() if k not in known},
        )

    def _decode(self, raw: Any):
        """Turn raw output into a mapping, or a RejectedAsMalformed explaining why not."""
        if isinstance(raw, (bytes, bytearray)):
            raw = raw.decode("utf-8", errors="replace")
        if isinstance(raw, str):
            try:
                raw = json.loads(raw)
            except json.JSONDecodeError as e:
                return RejectedAsMalformed(validator="", errors=[f"$: not valid JSON: {e.msg}"], raw=raw)
        if not isinstance(raw, dict):
            return RejectedAsMalformed(
                validator="", errors=[f"$: expected an object, got {type(raw).__name__}"], raw=raw
            )
        return raw
