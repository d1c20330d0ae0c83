"""
Schema Validator: JSON Schema validation for the profile registry and policies.

Validates that:
- The profile registry document has the expected structure
- Policies conform to policy schemas
"""

from typing import Any

from jsonschema import Draft202012Validator

from models.profile import PayloadKind
from .loader import POLICIES_DIR, load_policy


def schema_errors(data: Any, schema: dict) -> list[str]:
    """Return every schema violation as '<json path>: <message>', sorted by path."""
    validator = Draft202012Validator(schema)
    errors = sorted(validator.iter_errors(data), key=lambda e: (e.json_path, e.message))
    return [f"{e.json_path}: {e.message}" for e in errors]


class RegistryValidator:
    """
    Validates the profile registry document has required structure.
    """

    VALIDATOR_REF_SCHEMA = {
        "type": "object",
        "required": ["validator", "max_attempts"],
        "properties": {
            "validator": {"type": "string", "minLength": 1},
            "max_attempts": {"type": "integer", "minimum": 1},
        },
        "additionalProperties": False,
    }

    PROFILE_REGISTRY_SCHEMA = {
        "type": "object",
        "required": ["validators", "profiles"],
        "properties": {
            "version": {"type": "string"},
            "default_work_type": {"type": ["string", "null"]},
            "validators": {
                "type": "object",
                "additionalProperties": {
                    "type": "object",
                    "properties": {
                        "payload_kind": {"type": "string", "enum": [k.value for k in PayloadKind]},
                        "required_evidence": {"type": "array", "items": {"type": "string"}},
                        "description": {"type": "string"},
                    },
                    "additionalProperties": False,
                },
            },
            "profiles": {
                "type": "array",
                "minItems": 1,
                "items": {
                    "type": "object",
                    "required": ["work_type"],
                    "properties": {
                        "work_type": {"type": "string", "minLength": 1},
                        "blocking": {"oneOf": [{"type": "null"}, VALIDATOR_REF_SCHEMA]},
                        "parallel": {"type": "array", "items": VALIDATOR_REF_SCHEMA},
                    },
                    "additionalProperties": False,
                },
            },
            "classification": {
                "type": "array",
                "items": {
                    "type": "object",
                    "required": ["pattern", "work_type"],
                    "properties": {
                        "pattern": {"type": "string", "minLength": 1},
                        "work_type": {"type": "string", "minLength": 1},
                    },
                    "additionalProperties": False,
                },
            },
        },
    }

    def validate_document(self, document: Any) -> tuple[bool, list[str]]:
        """
        Validate a loaded registry document.

        Returns:
            (is_valid, error_messages)
        """
        errors = schema_errors(document, self.PROFILE_REGISTRY_SCHEMA)
        return (len(errors) == 0, errors)


class PolicyValidator:
    """
    Validates policy files have required structure.
    """

    # Base schema for all policies
    POLICY_BASE_SCHEMA = {
        "type": "object",
        "required": ["policy_id", "version"],
        "properties": {
            "policy_id": {"type": "string", "minLength": 1},
            "version": {"type": "string"},
            "description": {"type": "string"},
        },
    }

    GATE_ENGINE_SCHEMA = {
        "type": "object",
        "required": ["policy_id", "version"],
        "properties": {
            "policy_id": {"type": "string"},
            "version": {"type": "string"},
            "description": {"type": "string"},
            "dispatch_timeout_seconds": {"type": ["number", "null"], "exclusiveMinimum": 0},
            "session_ttl_seconds": {"type": ["number", "null"], "exclusiveMinimum": 0},
        },
        "additionalProperties": False,
    }

    def validate_policy(self, policy_name: str) -> tuple[bool, list[str]]:
        """Validate a specific policy file."""
        policy = load_policy(policy_name)
        if policy is None:
            return (False, [f"Policy not found or empty: {policy_name}"])

        # Infer policy_id from filename if not present
        if "policy_id" not in policy:
            policy["policy_id"] = policy_name
        if "version" not in policy:
            policy["version"] = "1.0"

        if policy_name == "gate_engine":
            schema = self.GATE_ENGINE_SCHEMA
        else:
            schema = self.POLICY_BASE_SCHEMA

        errors = [f"{policy_name}: {e}" for e in schema_errors(policy, schema)]
        return (len(errors) == 0, errors)

    def validate_all_policies(self) -> tuple[bool, list[str]]:
        """Validate all policy files."""
        all_errors = []

        for policy_file in POLICIES_DIR.glob("*.yaml"):
            is_valid, errors = self.validate_policy(policy_file.stem)
            all_errors.extend(errors)

        return (len(all_errors) == 0, all_errors)


# Convenience functions


def validate_profile_registry(document: Any) -> tuple[bool, list[str]]:
    """Validate a profile registry document."""
    return RegistryValidator().validate_document(document)


def validate_all_policies() -> tuple[bool, list[str]]:
    """Validate all policy files."""
    return PolicyValidator().validate_all_policies()
