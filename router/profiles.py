"""
Profiles: Work-type registry and profile resolution.

The registry is an immutable value built from configuration data and injected
into the resolver. It is safe to share across concurrent runs.
"""

import logging
from pathlib import Path
from types import MappingProxyType
from typing import Iterable, Optional, Union

from models.errors import EmptyWorkTypeSetError, ProfileConfigurationError
from models.profile import (
    ClassificationRule,
    PayloadKind,
    ResolvedProfile,
    ValidationProfile,
    ValidatorSpec,
    WorkType,
)
from validator.integrity import validate_registry_document
from validator.loader import load_profiles_document
from validator.schema_validator import validate_profile_registry

logger = logging.getLogger("router.profiles")


class ProfileRegistry:
    """
    Static table mapping a work type to its validation profile.

    Profiles keep the order they were defined in; that order decides the
    sequence of blocking validators when several apply to one changeset.
    """

    def __init__(
        self,
        profiles: Iterable[ValidationProfile],
        default_work_type: Optional[WorkType] = None,
        classification: Iterable[ClassificationRule] = (),
    ):
        table: dict[WorkType, ValidationProfile] = {}
        for profile in profiles:
            if profile.work_type in table:
                raise ProfileConfigurationError(f"Duplicate profile for work type {profile.work_type}")
            table[profile.work_type] = profile

        if default_work_type is not None and default_work_type not in table:
            raise ProfileConfigurationError(f"Default work type {default_work_type} has no profile")

        self._profiles = MappingProxyType(table)
        self._order = MappingProxyType({work_type: i for i, work_type in enumerate(table)})
        self._default_work_type = default_work_type
        self._classification = tuple(classification)

        validators: dict[str, ValidatorSpec] = {}
        for profile in table.values():
            for spec in ((profile.blocking,) if profile.blocking else ()) + profile.parallel:
                validators[spec.name] = _merge(validators.get(spec.name), spec)
        self._validators = MappingProxyType(validators)

    @classmethod
    def from_document(cls, document: dict) -> "ProfileRegistry":
        """
        Build a registry from a configuration document.

        The document is schema-checked and integrity-checked first; any
        violation is a fatal configuration error.
        """
        is_valid, errors = validate_profile_registry(document)
        if is_valid:
            is_valid, errors = validate_registry_document(document)
        if not is_valid:
            raise ProfileConfigurationError("Invalid profile registry: " + "; ".join(errors))

        catalog = document.get("validators") or {}

        def make_spec(ref: dict) -> ValidatorSpec:
            entry = catalog[ref["validator"]] or {}
            return ValidatorSpec(
                name=ref["validator"],
                max_attempts=ref["max_attempts"],
                payload_kind=PayloadKind(entry.get("payload_kind", PayloadKind.GENERIC.value)),
                required_evidence=tuple(entry.get("required_evidence") or ()),
            )

        profiles = []
        for entry in document["profiles"]:
            blocking = entry.get("blocking")
            profiles.append(
                ValidationProfile(
                    work_type=entry["work_type"],
                    blocking=make_spec(blocking) if blocking else None,
                    parallel=tuple(make_spec(ref) for ref in entry.get("parallel") or []),
                )
            )

        rules = [ClassificationRule(**rule) for rule in document.get("classification") or []]
        return cls(profiles, default_work_type=document.get("default_work_type"), classification=rules)

    @classmethod
    def load(cls, path: Optional[Union[str, Path]] = None) -> "ProfileRegistry":
        """Load the registry from YAML (GATE_PROFILES_PATH or registry/profiles.yaml)."""
        return cls.from_document(load_profiles_document(path))

    @property
    def default_work_type(self) -> Optional[WorkType]:
        return self._default_work_type

    @property
    def work_types(self) -> tuple[WorkType, ...]:
        return tuple(self._profiles.keys())

    @property
    def classification(self) -> tuple[ClassificationRule, ...]:
        return self._classification

    def validator(self, name: str) -> Optional[ValidatorSpec]:
        """Look up a validator by name across every profile; None if unknown."""
        return self._validators.get(name)

    def definition_index(self, work_type: WorkType) -> int:
        return self._order[work_type]

    def has_profile(self, work_type: WorkType) -> bool:
        return work_type in self._profiles

    def profile_for(self, work_type: WorkType) -> ValidationProfile:
        """Return the profile for a work type, falling back to the default profile."""
        profile = self._profiles.get(work_type)
        if profile is not None:
            return profile

        if self._default_work_type is None:
            raise ProfileConfigurationError(
                f"Unknown work type {work_type} and no default profile is configured"
            )
        logger.warning(f"Unknown work type {work_type}, using default profile {self._default_work_type}")
        return self._profiles[self._default_work_type]

    def to_document(self) -> dict:
        """Serializable view of the registry."""
        return {
            "default_work_type": self._default_work_type,
            "profiles": [profile.model_dump(mode="json") for profile in self._profiles.values()],
            "classification": [rule.model_dump() for rule in self._classification],
        }


def _merge(existing: Optional[ValidatorSpec], incoming: ValidatorSpec) -> ValidatorSpec:
    """Merge two specs of one validator, never reducing the retry budget."""
    if existing is None:
        return incoming
    if incoming.max_attempts > existing.max_attempts:
        return existing.model_copy(update={"max_attempts": incoming.max_attempts})
    return existing


class ProfileResolver:
    """
    Computes the union profile for a changeset.

    Rules:
    - every distinct blocking validator across matched profiles is blocking,
      in registry-definition order
    - parallel validators are deduplicated by name
    - a validator blocking anywhere is never also parallel
    - duplicate names keep the largest max_attempts
    """

    def __init__(self, registry: ProfileRegistry):
        self.registry = registry

    def resolve(self, work_types: Iterable[WorkType]) -> ResolvedProfile:
        requested = set(work_types)
        if not requested:
            raise EmptyWorkTypeSetError("Cannot resolve a profile for an empty work type set")

        matched: dict[WorkType, ValidationProfile] = {}
        for work_type in requested:
            profile = self.registry.profile_for(work_type)
            matched[profile.work_type] = profile

        ordered = sorted(matched.values(), key=lambda p: self.registry.definition_index(p.work_type))

        blocking: dict[str, ValidatorSpec] = {}
        for profile in ordered:
            if profile.blocking is not None:
                name = profile.blocking.name
                blocking[name] = _merge(blocking.get(name), profile.blocking)

        parallel: dict[str, ValidatorSpec] = {}
        for profile in ordered:
            for spec in profile.parallel:
                if spec.name in blocking:
                    blocking[spec.name] = _merge(blocking[spec.name], spec)
                    continue
                parallel[spec.name] = _merge(parallel.get(spec.name), spec)

        resolved = ResolvedProfile(
            work_types=tuple(sorted(requested)),
            blocking=tuple(blocking.values()),
            parallel=tuple(sorted(parallel.values(), key=lambda s: s.name)),
        )
        logger.debug(
            f"Resolved {sorted(requested)}: blocking={resolved.blocking_names} "
            f"parallel={sorted(resolved.parallel_names)}"
        )
        return resolved
