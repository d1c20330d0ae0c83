"""
Referential Integrity Validator.

Validates that every reference in the profile registry resolves:
- Profile validator entries → validators declared in the catalog
- default_work_type → an existing profile
- Classification rules → existing profiles
- Policy files → parseable YAML
"""

import sys
from collections import Counter

import yaml

from .loader import POLICIES_DIR, load_profiles_document


def validate_validator_references(document: dict) -> tuple[bool, list[str]]:
    """
    Validate that every validator named by a profile is declared in `validators`.

    Returns:
        (is_valid, error_messages)
    """
    catalog = set((document.get("validators") or {}).keys())
    errors = []

    for profile in document.get("profiles") or []:
        work_type = profile.get("work_type", "unknown")
        refs = []
        if profile.get("blocking"):
            refs.append(profile["blocking"])
        refs.extend(profile.get("parallel") or [])

        for ref in refs:
            name = ref.get("validator")
            if name not in catalog:
                errors.append(f"Profile {work_type}: validator '{name}' is not declared in validators")

    return (len(errors) == 0, errors)


def validate_profile_shapes(document: dict) -> tuple[bool, list[str]]:
    """
    Validate per-profile structure that a schema cannot express.

    Checks:
    - Work types are unique across profiles
    - A profile never lists a validator both as blocking and parallel
    - A profile never lists the same parallel validator twice
    """
    errors = []
    profiles = document.get("profiles") or []

    counts = Counter(p.get("work_type") for p in profiles)
    for work_type, count in counts.items():
        if count > 1:
            errors.append(f"Work type {work_type} has {count} profiles")

    for profile in profiles:
        work_type = profile.get("work_type", "unknown")
        parallel = [ref.get("validator") for ref in profile.get("parallel") or []]
        blocking = (profile.get("blocking") or {}).get("validator")

        if blocking and blocking in parallel:
            errors.append(f"Profile {work_type}: '{blocking}' is both blocking and parallel")

        for name, count in Counter(parallel).items():
            if count > 1:
                errors.append(f"Profile {work_type}: parallel validator '{name}' listed {count} times")

    return (len(errors) == 0, errors)


def validate_work_type_references(document: dict) -> tuple[bool, list[str]]:
    """Validate that default_work_type and classification rules name real profiles."""
    known = {p.get("work_type") for p in document.get("profiles") or []}
    errors = []

    default = document.get("default_work_type")
    if default is not None and default not in known:
        errors.append(f"default_work_type '{default}' has no profile")

    for i, rule in enumerate(document.get("classification") or []):
        if rule.get("work_type") not in known:
            errors.append(
                f"classification[{i}] ({rule.get('pattern')}): work type '{rule.get('work_type')}' has no profile"
            )

    return (len(errors) == 0, errors)


def validate_policy_references() -> tuple[bool, list[str]]:
    """
    Validate that the engine policy exists and all policies are valid YAML.

    Returns:
        (is_valid, error_messages)
    """
    errors = []

    if not (POLICIES_DIR / "gate_engine.yaml").exists():
        errors.append("Essential policy missing: gate_engine.yaml")

    for policy_file in POLICIES_DIR.glob("*.yaml"):
        try:
            with open(policy_file) as f:
                yaml.safe_load(f)
        except yaml.YAMLError as e:
            errors.append(f"Invalid YAML in {policy_file.name}: {e}")

    return (len(errors) == 0, errors)


def validate_registry_document(document: dict) -> tuple[bool, list[str]]:
    """Run every cross-reference check on one registry document."""
    all_errors = []
    for check in (validate_validator_references, validate_profile_shapes, validate_work_type_references):
        _, errors = check(document)
        all_errors.extend(errors)
    return (len(all_errors) == 0, all_errors)


def validate_all_references() -> tuple[bool, list[str]]:
    """
    Run all referential integrity checks against the configured registry.

    Returns:
        (is_valid, all_error_messages)
    """
    all_errors = []

    registry_valid, registry_errors = validate_registry_document(load_profiles_document())
    all_errors.extend(registry_errors)

    policy_valid, policy_errors = validate_policy_references()
    all_errors.extend(policy_errors)

    return (len(all_errors) == 0, all_errors)


if __name__ == "__main__":
    print("Validating referential integrity...")
    is_valid, errors = validate_all_references()

    if is_valid:
        print("✓ All references valid")
        sys.exit(0)
    else:
        print("✗ Referential integrity errors:")
        for error in errors:
            print(f"  - {error}")
        sys.exit(1)
