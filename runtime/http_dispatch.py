"""
HTTP Dispatch: Worker dispatcher backed by a remote worker service.

The worker service exposes:
    POST /dispatch                    {"validator": ..., "context": {...}}
    POST /sessions/{session_id}/resume {"validator": ..., "context": {...}}

and answers both with {"output": <worker output>, "session_id": <optional>}.
"""

import logging
import os
from typing import Optional

import httpx

from models.dispatch import DispatchContext, SessionHandle, SupplementalContext, WorkerResponse
from models.errors import DispatchUnavailable, SessionExpired
from runtime.dispatch import WorkerDispatcher

logger = logging.getLogger("gate_engine.dispatch")

WORKER_URL_ENV = "GATE_WORKER_URL"


class HttpWorkerDispatcher(WorkerDispatcher):
    """Dispatches validators to a worker service over HTTP."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        headers: Optional[dict[str, str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url, timeout=timeout, headers=headers, transport=transport
        )

    @classmethod
    def from_env(cls) -> Optional["HttpWorkerDispatcher"]:
        """Build a dispatcher from GATE_WORKER_URL, or None when it is unset."""
        url = os.getenv(WORKER_URL_ENV)
        if not url:
            return None
        return cls(url)

    async def dispatch(self, validator_name: str, context: DispatchContext) -> WorkerResponse:
        response = await self._post(
            "/dispatch", {"validator": validator_name, "context": context.model_dump(mode="json")}
        )
        if response.status_code >= 400:
            raise DispatchUnavailable(
                f"worker rejected dispatch of {validator_name}: HTTP {response.status_code}"
            )
        return self._parse(response, validator_name)

    async def resume(self, session: SessionHandle, context: SupplementalContext) -> WorkerResponse:
        response = await self._post(
            f"/sessions/{session.session_id}/resume",
            {"validator": session.validator, "context": context.model_dump(mode="json")},
        )
        if response.status_code in (404, 410):
            raise SessionExpired(f"session {session.session_id} is no longer resumable")
        if response.status_code >= 400:
            raise DispatchUnavailable(
                f"worker rejected resume of {session.session_id}: HTTP {response.status_code}"
            )
        parsed = self._parse(response, session.validator)
        if parsed.session is None:
            parsed = parsed.model_copy(update={"session": session})
        return parsed

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _post(self, path: str, payload: dict) -> httpx.Response:
        try:
            response = await self._client.post(path, json=payload)
        except httpx.HTTPError as e:
            logger.warning(f"Worker request to {path} failed: {e}")
            raise DispatchUnavailable(f"worker unreachable: {e}") from e
        if response.status_code >= 500:
            raise DispatchUnavailable(f"worker error on {path}: HTTP {response.status_code}")
        return response

    def _parse(self, response: httpx.Response, validator_name: str) -> WorkerResponse:
        try:
            body = response.json()
        except ValueError as e:
            raise DispatchUnavailable(f"worker returned a non-JSON envelope: {e}") from e
        if not isinstance(body, dict):
            raise DispatchUnavailable("worker returned a non-object envelope")

        session = None
        session_id = body.get("session_id")
        if session_id:
            session = SessionHandle(
                session_id=str(session_id),
                validator=validator_name,
                stale=bool(body.get("session_stale", False)),
            )
        return WorkerResponse(output=body.get("output"), session=session)
