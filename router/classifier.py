"""
Classifier: Deterministic changeset classification.

Maps the file paths a changeset touches to work types using the registry's
glob rules. Rule-based only; no inference about what the change is for.
"""

import fnmatch
from typing import Iterable, Optional

from models.errors import ProfileConfigurationError
from models.profile import ClassificationRule, WorkType
from validator.normalizer import normalize_path


def match_rule(path: str, rules: Iterable[ClassificationRule]) -> Optional[ClassificationRule]:
    """Return the first rule whose pattern matches the path."""
    for rule in rules:
        if fnmatch.fnmatchcase(path, rule.pattern):
            return rule
    return None


def classify_files(
    files: Iterable[str],
    rules: Iterable[ClassificationRule],
    default_work_type: Optional[WorkType],
) -> dict[str, WorkType]:
    """
    Classify each file of a changeset.

    Files no rule matches fall back to the default work type.
    """
    rules = tuple(rules)
    classified = {}
    for raw_path in files:
        path = normalize_path(raw_path)
        if not path or path == ".":
            continue
        rule = match_rule(path, rules)
        if rule is not None:
            classified[path] = rule.work_type
        elif default_work_type is not None:
            classified[path] = default_work_type
        else:
            raise ProfileConfigurationError(
                f"No classification rule matches {path} and no default work type is configured"
            )
    return classified


def classify_changeset(files: Iterable[str], registry) -> set[WorkType]:
    """
    Compute the work type set for a changeset.

    Always non-empty: a changeset with no classifiable files gets the
    registry's default work type.
    """
    classified = classify_files(files, registry.classification, registry.default_work_type)
    work_types = set(classified.values())
    if not work_types:
        if registry.default_work_type is None:
            raise ProfileConfigurationError("Empty changeset and no default work type is configured")
        work_types.add(registry.default_work_type)
    return work_types
