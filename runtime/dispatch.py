"""
Dispatch: Worker dispatch interface.

The engine does not know how a worker executes. It needs a way to start a
validator, a handle it can resume later, and the raw result to validate.
"""

from abc import ABC, abstractmethod

from models.dispatch import DispatchContext, SessionHandle, SupplementalContext, WorkerResponse


class WorkerDispatcher(ABC):
    """
    Abstract base class for worker dispatch collaborators.

    Implementations raise DispatchUnavailable when the worker mechanism cannot
    be reached, and SessionExpired when a resume targets a dead session.
    """

    @abstractmethod
    async def dispatch(self, validator_name: str, context: DispatchContext) -> WorkerResponse:
        """
        Start a fresh worker for a validator.

        Returns:
            WorkerResponse with the raw output and, if resumable, a session handle
        """
        pass

    @abstractmethod
    async def resume(self, session: SessionHandle, context: SupplementalContext) -> WorkerResponse:
        """
        Continue a previous worker session with supplemental context.

        Returns:
            WorkerResponse with the raw output of the continued session
        """
        pass

    async def aclose(self) -> None:
        """Release any resources held by the dispatcher."""
        return None
