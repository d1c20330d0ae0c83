"""
Errors: Fatal configuration and boundary exceptions.

Validator-level failures are never raised out of the engine; they are recorded
as data on attempts and decisions. Only the classes here cross a boundary.
"""


class GateEngineError(Exception):
    """Base class for gate engine errors."""

    pass


class ProfileConfigurationError(GateEngineError):
    """The profile registry is misconfigured and cannot resolve a changeset."""

    pass


class EmptyWorkTypeSetError(ProfileConfigurationError):
    """A changeset was submitted without any work type."""

    pass


class IllegalTransitionError(GateEngineError):
    """The gate state machine was asked to make a transition it does not allow."""

    pass


class DispatchUnavailable(GateEngineError):
    """The worker mechanism could not be reached for a dispatch or resume."""

    pass


class SessionExpired(GateEngineError):
    """A worker session handle is no longer resumable."""

    pass
