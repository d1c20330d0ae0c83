"""
Gateway: Single auditable entrypoint for the gate engine.

All requests flow through here with structured logging for replayability.
Uses typed Pydantic models - no untyped dicts crossing boundaries.
"""

import asyncio
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from .logging import StructuredLogger
from models.decision import Decision
from models.errors import ProfileConfigurationError
from models.gate_run import GateRunRequest
from models.profile import ResolvedProfile
from router.classifier import classify_changeset, classify_files
from router.profiles import ProfileRegistry, ProfileResolver
from runtime.engine import GateEngine
from runtime.http_dispatch import HttpWorkerDispatcher
from validator.contract import ContractValidator
from validator.loader import load_policy

app = FastAPI(
    title="Gate Engine Gateway",
    description="Blocking and parallel validation gates for changesets",
    version="0.1.0",
)

logger = StructuredLogger("gateway")


# --- Request/Response Models ---


class ResolveInput(BaseModel):
    work_types: list[str] = Field(default_factory=list)


class ClassifyInput(BaseModel):
    files: list[str] = Field(default_factory=list)


class ClassifyResponse(BaseModel):
    work_types: list[str]
    files: dict[str, str]


class ContractInput(BaseModel):
    """Raw worker output to check against a validator's contract."""

    validator: str = Field(..., min_length=1)
    output: Any = None
    authorized_scope: list[str] = Field(default_factory=list)


class RunInput(BaseModel):
    """
    Gate run submission.

    Either `work_types` or `files` must be given; files are classified into
    work types when no work types are given.
    """

    changeset_id: str = Field(..., min_length=1)
    work_types: list[str] = Field(default_factory=list)
    files: list[str] = Field(default_factory=list)
    authorized_scope: list[str] = Field(default_factory=list)
    wait: bool = Field(default=True, description="Return the decision instead of the run ID")


class RunStatus(BaseModel):
    run_id: str
    status: str  # "running" | "completed"
    decision: Optional[Decision] = None


# --- Runtime state ---

_registry: Optional[ProfileRegistry] = None
_engine: Optional[GateEngine] = None
decisions: dict[str, Decision] = {}
run_tasks: dict[str, asyncio.Task] = {}


def get_registry() -> ProfileRegistry:
    global _registry
    if _registry is None:
        try:
            _registry = ProfileRegistry.load()
        except ProfileConfigurationError as e:
            raise HTTPException(status_code=503, detail=f"Profile registry unavailable: {e}")
    return _registry


def get_engine() -> GateEngine:
    """Build the engine on first use; a worker URL is required to run gates."""
    global _engine
    if _engine is None:
        dispatcher = HttpWorkerDispatcher.from_env()
        if dispatcher is None:
            raise HTTPException(status_code=503, detail="No worker configured (set GATE_WORKER_URL)")
        _engine = GateEngine.from_config(dispatcher, registry=get_registry())
    return _engine


# --- Routes ---


@app.get("/registry")
async def get_registry_document():
    """Return the loaded profile registry."""
    return get_registry().to_document()


@app.get("/policies/{policy_id}")
async def get_policy(policy_id: str):
    """Retrieve a specific policy by ID."""
    policy = load_policy(policy_id)
    if not policy:
        raise HTTPException(status_code=404, detail=f"Policy {policy_id} not found")
    return policy


@app.post("/profiles/resolve", response_model=ResolvedProfile)
async def resolve_profile(input: ResolveInput) -> ResolvedProfile:
    """Resolve the union profile for a set of work types."""
    try:
        return ProfileResolver(get_registry()).resolve(input.work_types)
    except ProfileConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.post("/classify", response_model=ClassifyResponse)
async def classify(input: ClassifyInput) -> ClassifyResponse:
    """Classify changed files into work types."""
    registry = get_registry()
    try:
        per_file = classify_files(input.files, registry.classification, registry.default_work_type)
        work_types = classify_changeset(input.files, registry)
    except ProfileConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return ClassifyResponse(work_types=sorted(work_types), files=per_file)


@app.post("/contracts/validate")
async def validate_contract(input: ContractInput):
    """Check a worker output against the contract of a registered validator."""
    request_id = str(uuid.uuid4())
    registry = get_registry()

    spec = registry.validator(input.validator)
    if spec is None:
        raise HTTPException(status_code=404, detail=f"Validator {input.validator} not found")

    verdict = ContractValidator().validate(input.output, input.authorized_scope, spec)
    logger.log_event(
        request_id,
        "contract_validated",
        {"validator": spec.name, "all_checks_passed": verdict.all_checks_passed},
    )
    return {
        "request_id": request_id,
        "malformed": not hasattr(verdict, "claimed_pass"),
        "failure_reasons": [r.value for r in verdict.failure_reasons],
        "verdict": verdict.model_dump(mode="json"),
    }


@app.post("/runs")
async def submit_run(input: RunInput):
    """
    Run all gates for a changeset.

    With `wait` the response is the Decision; otherwise the run continues in
    the background and can be polled or cancelled by ID.
    """
    request_id = str(uuid.uuid4())
    logger.log_request(request_id, "runs", input.model_dump())

    engine = get_engine()
    work_types = set(input.work_types)
    try:
        if not work_types and input.files:
            work_types = classify_changeset(input.files, get_registry())
        request = GateRunRequest(
            changeset_id=input.changeset_id,
            work_types=work_types,
            authorized_scope=set(input.authorized_scope),
        )
        # Fail fast on configuration errors before anything is dispatched
        engine.resolver.resolve(request.work_types)
    except ProfileConfigurationError as e:
        logger.log_error(request_id, str(e))
        raise HTTPException(status_code=400, detail=str(e))

    run_id = f"run_{uuid.uuid4().hex[:12]}"
    task = asyncio.create_task(engine.run(request, run_id=run_id))
    run_tasks[run_id] = task
    task.add_done_callback(lambda t: _store_decision(run_id, t))

    if not input.wait:
        return RunStatus(run_id=run_id, status="running")

    decision = await task
    logger.log_response(request_id, decision.outcome.value, decision.model_dump(mode="json"))
    return decision


def _store_decision(run_id: str, task: asyncio.Task) -> None:
    run_tasks.pop(run_id, None)
    if task.cancelled():
        return
    if task.exception() is not None:
        logger.log_error(run_id, str(task.exception()))
        return
    decisions[run_id] = task.result()


@app.get("/runs/{run_id}", response_model=RunStatus)
async def get_run(run_id: str) -> RunStatus:
    """Look up a run's decision, or report it as still running."""
    if run_id in decisions:
        return RunStatus(run_id=run_id, status="completed", decision=decisions[run_id])
    if run_id in run_tasks:
        return RunStatus(run_id=run_id, status="running")
    raise HTTPException(status_code=404, detail=f"Run {run_id} not found")


@app.post("/runs/{run_id}/cancel")
async def cancel_run(run_id: str):
    """Request cancellation of an in-flight run."""
    if run_id in decisions:
        raise HTTPException(status_code=409, detail=f"Run {run_id} already completed")
    if _engine is None or not _engine.cancel(run_id):
        raise HTTPException(status_code=404, detail=f"Run {run_id} not in flight")
    return {"run_id": run_id, "status": "cancelling"}


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "active_runs": len(run_tasks),
        "completed_runs": len(decisions),
    }
