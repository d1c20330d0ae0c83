"""
Shared fixtures: synthetic registries and a scripted worker dispatcher.
"""

import asyncio
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

import pytest

from models.dispatch import SessionHandle, WorkerResponse
from models.errors import SessionExpired
from models.profile import PayloadKind, ValidationProfile, ValidatorSpec
from router.profiles import ProfileRegistry, ProfileResolver
from runtime.dispatch import WorkerDispatcher


def spec(name, max_attempts=1, payload_kind=PayloadKind.GENERIC, required_evidence=()):
    return ValidatorSpec(
        name=name,
        max_attempts=max_attempts,
        payload_kind=payload_kind,
        required_evidence=tuple(required_evidence),
    )


def passing(files=None, **extra):
    """Worker output claiming a clean pass."""
    output = {
        "all_checks_passed": True,
        "blocking_issues": [],
        "pre_work_validation_passed": True,
        "files_modified": files or [],
    }
    output.update(extra)
    return output


def failing(*issues, files=None, **extra):
    """Worker output reporting failed checks."""
    output = {
        "all_checks_passed": False,
        "blocking_issues": list(issues) or ["check failed"],
        "pre_work_validation_passed": True,
        "files_modified": files or [],
    }
    output.update(extra)
    return output


class ScriptedDispatcher(WorkerDispatcher):
    """
    Replays scripted worker outputs per validator.

    Each step in `script[name]` is either an output (returned), an exception
    instance (raised) or an async callable (awaited for its output).
    """

    def __init__(self, script, with_sessions=True, expired_sessions=(), delay=0.0):
        self.script = {name: list(steps) for name, steps in script.items()}
        self.with_sessions = with_sessions
        self.expired_sessions = set(expired_sessions)
        self.delay = delay
        self.calls = []
        self.contexts = []
        self.active = 0
        self.max_active = 0

    def calls_for(self, name):
        return [c for c in self.calls if c[1] == name]

    async def _next(self, name):
        steps = self.script.get(name)
        if not steps:
            raise AssertionError(f"unexpected dispatch of {name}")
        step = steps.pop(0)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if isinstance(step, BaseException):
                raise step
            if callable(step):
                return await step()
            return step
        finally:
            self.active -= 1

    async def dispatch(self, validator_name, context):
        self.calls.append(("dispatch", validator_name, context.attempt_number))
        self.contexts.append(context)
        output = await self._next(validator_name)
        session = None
        if self.with_sessions:
            session = SessionHandle(
                session_id=f"{validator_name}-{len(self.calls)}", validator=validator_name
            )
        return WorkerResponse(output=output, session=session)

    async def resume(self, session, context):
        self.calls.append(("resume", session.validator, context.attempt_number))
        self.contexts.append(context)
        if session.session_id in self.expired_sessions:
            raise SessionExpired(f"{session.session_id} expired")
        output = await self._next(session.validator)
        return WorkerResponse(output=output, session=session)


@pytest.fixture
def synthetic_registry():
    """
    X: blocking T1(3), parallel V1(1), V2(1)
    Y: parallel V1(2), V2(1)
    Z: blocking T2(2), parallel V3(1)
    W: parallel V1(1)
    """
    return ProfileRegistry(
        [
            ValidationProfile(work_type="X", blocking=spec("T1", 3), parallel=(spec("V1"), spec("V2"))),
            ValidationProfile(work_type="Y", parallel=(spec("V1", 2), spec("V2"))),
            ValidationProfile(work_type="Z", blocking=spec("T2", 2), parallel=(spec("V3"),)),
            ValidationProfile(work_type="W", parallel=(spec("V1"),)),
        ],
        default_work_type="X",
    )


@pytest.fixture
def resolver(synthetic_registry):
    return ProfileResolver(synthetic_registry)
