import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

from models.decision import Decision, Outcome
from models.dispatch import DispatchContext, SessionHandle, SupplementalContext, WorkerResponse
from models.errors import DispatchUnavailable, SessionExpired
from models.gate_attempt import AttemptMode, AttemptStatus, GateAttempt
from models.gate_result import FailureReason, GateResult, Verdict
from models.gate_run import EngineState, GateRun, GateRunRequest
from models.profile import ValidatorSpec
from router.profiles import ProfileRegistry, ProfileResolver
from runtime import fsm
from runtime.config import GateEngineConfig
from runtime.dispatch import WorkerDispatcher
from runtime.retry_policy import RetryAction, RetryDecision, RetryPolicy
from validator.contract import ContractValidator
from gateway.logging import StructuredLogger, AuditRecord
from telemetry.tracer import get_meter, get_tracer

logger_struct = StructuredLogger("gate_engine")
logger = logging.getLogger("gate_engine")


class GateEngine:
    """
    Runtime engine for gate runs.

    Stage 1 runs blocking validators one after another, each through its full
    retry loop. Stage 2 starts only once all of them passed and runs every
    parallel validator concurrently. Validator failures are recorded on the
    run and returned in the Decision; they are never raised.
    """

    def __init__(
        self,
        resolver: ProfileResolver,
        dispatcher: WorkerDispatcher,
        contract_validator: Optional[ContractValidator] = None,
        retry_policy: Optional[RetryPolicy] = None,
        config: Optional[GateEngineConfig] = None,
        actor_id: str = "gate_engine",
    ):
        self.resolver = resolver
        self.dispatcher = dispatcher
        self.config = config or GateEngineConfig()
        self.contract_validator = contract_validator or ContractValidator()
        self.retry_policy = retry_policy or RetryPolicy(session_ttl_seconds=self.config.session_ttl_seconds)
        self.actor_id = actor_id
        self._cancel_events: dict[str, asyncio.Event] = {}

        self._tracer = get_tracer("runtime.engine")
        meter = get_meter("runtime.engine")
        self._attempt_counter = meter.create_counter(
            "gate_attempts", description="Validator attempts by validator and status"
        )
        self._escalation_counter = meter.create_counter(
            "gate_escalations", description="Validators that exhausted their retry budget"
        )
        self._red_flag_counter = meter.create_counter(
            "gate_red_flags", description="Red flags that overrode a validator result"
        )

    @classmethod
    def from_config(cls, dispatcher: WorkerDispatcher, registry: Optional[ProfileRegistry] = None) -> "GateEngine":
        """Build an engine from registry/profiles.yaml and policies/gate_engine.yaml."""
        registry = registry or ProfileRegistry.load()
        return cls(ProfileResolver(registry), dispatcher, config=GateEngineConfig.from_policy())

    # --- Public API ---

    def cancel(self, run_id: str) -> bool:
        """
        Request cancellation of an in-flight run.

        Returns False if no run with that ID is in flight.
        """
        event = self._cancel_events.get(run_id)
        if event is None:
            return False
        logger.info(f"Cancellation requested for run {run_id}")
        event.set()
        return True

    def active_runs(self) -> list[str]:
        return list(self._cancel_events.keys())

    async def run(
        self,
        request: GateRunRequest,
        cancel_event: Optional[asyncio.Event] = None,
        run_id: Optional[str] = None,
    ) -> Decision:
        """
        Run every gate for a changeset and return the decision.

        Raises:
            ProfileConfigurationError: the work types cannot be resolved
        """
        profile = self.resolver.resolve(request.work_types)
        run = GateRun(request=request, profile=profile, **({"run_id": run_id} if run_id else {}))
        cancel_event = cancel_event or asyncio.Event()
        self._cancel_events[run.run_id] = cancel_event

        logger.info(
            f"Run {run.run_id} for changeset {request.changeset_id}: "
            f"blocking={profile.blocking_names} parallel={sorted(profile.parallel_names)}"
        )
        try:
            with self._tracer.start_as_current_span(
                "gate.run",
                attributes={
                    "gate.run_id": run.run_id,
                    "gate.changeset_id": request.changeset_id,
                    "gate.work_types": list(profile.work_types),
                },
            ) as span:
                await self._execute(run, cancel_event)
                span.set_attribute("gate.final_state", run.state.value)
        finally:
            self._cancel_events.pop(run.run_id, None)
            run.completed_at = datetime.now(timezone.utc)

        decision = self._decide(run)
        logger_struct.log_audit(AuditRecord.for_decision(self.actor_id, decision))
        return decision

    # --- Stages ---

    async def _execute(self, run: GateRun, cancel_event: asyncio.Event) -> None:
        if cancel_event.is_set():
            run.cancelled = True
            fsm.advance(run, EngineState.ESCALATED)
            return

        # 1. Blocking stage (sequential)
        if not run.profile.blocking:
            fsm.advance(run, EngineState.BLOCKING_PASSED)
        else:
            fsm.advance(run, EngineState.BLOCKING_RUNNING)
            for spec in run.profile.blocking:
                fsm.advance(run, EngineState.BLOCKING_RUNNING)
                final = await self._run_validator(run, spec, cancel_event, blocking=True)
                if final is None or final.status != AttemptStatus.PASSED:
                    logger.warning(
                        f"Run {run.run_id}: blocking validator {spec.name} did not pass, "
                        f"skipping remaining stages"
                    )
                    fsm.advance(run, EngineState.ESCALATED)
                    return
            fsm.advance(run, EngineState.BLOCKING_PASSED)

        if cancel_event.is_set():
            run.cancelled = True
            fsm.advance(run, EngineState.ESCALATED)
            return

        # 2. Parallel stage (fan-out / fan-in, no cross-cancellation)
        fsm.advance(run, EngineState.PARALLEL_RUNNING)
        finals = await asyncio.gather(
            *(self._run_validator(run, spec, cancel_event, blocking=False) for spec in run.profile.parallel)
        )
        if cancel_event.is_set():
            # in-flight attempts drained, but a cancelled run never passes
            run.cancelled = True
            fsm.advance(run, EngineState.ESCALATED)
        elif all(a is not None and a.status == AttemptStatus.PASSED for a in finals):
            fsm.advance(run, EngineState.ALL_PASSED)
        else:
            fsm.advance(run, EngineState.ESCALATED)

    async def _run_validator(
        self, run: GateRun, spec: ValidatorSpec, cancel_event: asyncio.Event, blocking: bool
    ) -> Optional[GateAttempt]:
        """
        Drive one validator through its attempt/retry loop.

        Returns the final attempt, or None if the run was cancelled before the
        validator was ever dispatched.
        """
        attempts = run.attempts_for(spec.name)
        previous: Optional[GateAttempt] = None
        action: Optional[RetryAction] = None

        while True:
            if cancel_event.is_set():
                run.cancelled = True
                return previous

            attempt = GateAttempt(validator=spec, attempt_number=len(attempts) + 1)
            attempts.append(attempt)
            attempt.mark_running()

            with self._tracer.start_as_current_span(
                "gate.attempt",
                attributes={
                    "gate.run_id": run.run_id,
                    "gate.validator": spec.name,
                    "gate.attempt_number": attempt.attempt_number,
                    "gate.blocking": blocking,
                },
            ) as span:
                verdict = await self._attempt_verdict(
                    run, spec, attempt, previous, action, cancel_event if blocking else None
                )
                attempt.finalize(verdict)
                span.set_attribute("gate.status", attempt.status.value)
                span.set_attribute("gate.mode", attempt.mode.value)
            self._record_attempt(run, attempt)

            if FailureReason.CANCELLED in attempt.failure_reasons:
                run.cancelled = True
                return attempt

            action = self.retry_policy.next_action(attempt)
            if action.decision == RetryDecision.DONE:
                return attempt
            if action.decision == RetryDecision.ESCALATE:
                logger.warning(f"Run {run.run_id}: {spec.name} escalated ({action.reason})")
                self._escalation_counter.add(1, {"validator": spec.name})
                return attempt

            logger.info(
                f"Run {run.run_id}: {spec.name} attempt {attempt.attempt_number} failed, "
                f"next action {action.decision.value} ({action.reason})"
            )
            if blocking:
                fsm.advance(run, EngineState.BLOCKING_FAILED)
                fsm.advance(run, EngineState.BLOCKING_RUNNING)
            previous = attempt

    # --- Attempts ---

    async def _attempt_verdict(
        self,
        run: GateRun,
        spec: ValidatorSpec,
        attempt: GateAttempt,
        previous: Optional[GateAttempt],
        action: Optional[RetryAction],
        cancel_event: Optional[asyncio.Event],
    ) -> Verdict:
        """Reach the worker and validate what it returned. Never raises for worker failures."""
        scope = sorted(run.request.authorized_scope)
        call = self._call_worker(run, spec, attempt, previous, action)
        try:
            if cancel_event is None:
                response = await call
            else:
                response = await self._race_cancel(call, cancel_event)
                if response is None:
                    return GateResult.forced_failure(
                        spec.name, FailureReason.CANCELLED, "run cancelled while attempt was in flight", scope
                    )
        except DispatchUnavailable as e:
            logger.warning(f"Run {run.run_id}: dispatch of {spec.name} unavailable: {e}")
            return GateResult.forced_failure(spec.name, FailureReason.DISPATCH_FAILURE, str(e), scope)
        except asyncio.TimeoutError:
            detail = f"no response within {self.config.dispatch_timeout_seconds}s"
            logger.warning(f"Run {run.run_id}: dispatch of {spec.name} timed out")
            return GateResult.forced_failure(spec.name, FailureReason.DISPATCH_FAILURE, detail, scope)
        except Exception as e:
            logger.exception(f"Run {run.run_id}: dispatcher raised for {spec.name}")
            return GateResult.forced_failure(
                spec.name, FailureReason.DISPATCH_FAILURE, f"{type(e).__name__}: {e}", scope
            )

        if response.session is not None:
            attempt.session_id = response.session.session_id
            attempt.session_created_at = response.session.created_at
            attempt.session_stale = response.session.stale
        return self.contract_validator.validate(response.output, run.request.authorized_scope, spec)

    async def _call_worker(
        self,
        run: GateRun,
        spec: ValidatorSpec,
        attempt: GateAttempt,
        previous: Optional[GateAttempt],
        action: Optional[RetryAction],
    ) -> WorkerResponse:
        previous_issues = previous.unresolved_issues() if previous else []
        previous_reasons = [r.value for r in previous.failure_reasons] if previous else []

        if previous is not None and action is not None and action.decision == RetryDecision.RETRY:
            handle = SessionHandle(
                session_id=action.session_id,
                validator=spec.name,
                created_at=previous.session_created_at or datetime.now(timezone.utc),
            )
            attempt.mode = AttemptMode.RESUME
            try:
                response = await self._with_timeout(
                    self.dispatcher.resume(
                        handle,
                        SupplementalContext(
                            run_id=run.run_id,
                            attempt_number=attempt.attempt_number,
                            blocking_issues=previous_issues,
                            failure_reasons=previous_reasons,
                        ),
                    )
                )
                if response.session is None:
                    response = response.model_copy(update={"session": handle})
                return response
            except SessionExpired:
                logger.info(f"Run {run.run_id}: session {handle.session_id} of {spec.name} expired, redeploying")
                attempt.mode = AttemptMode.FRESH

        context = DispatchContext(
            run_id=run.run_id,
            changeset_id=run.request.changeset_id,
            work_types=sorted(run.request.work_types),
            authorized_scope=sorted(run.request.authorized_scope),
            attempt_number=attempt.attempt_number,
            previous_issues=previous_issues,
            previous_failure_reasons=previous_reasons,
        )
        return await self._with_timeout(self.dispatcher.dispatch(spec.name, context))

    async def _with_timeout(self, coro):
        if self.config.dispatch_timeout_seconds is None:
            return await coro
        return await asyncio.wait_for(coro, timeout=self.config.dispatch_timeout_seconds)

    async def _race_cancel(self, coro, cancel_event: asyncio.Event) -> Optional[WorkerResponse]:
        """
        Await a worker call unless the run is cancelled first.

        Returns None when cancellation won; the worker call is then cancelled
        on a best-effort basis.
        """
        call = asyncio.ensure_future(coro)
        waiter = asyncio.ensure_future(cancel_event.wait())
        try:
            done, _ = await asyncio.wait({call, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            call.cancel()
            raise
        finally:
            waiter.cancel()

        if call in done:
            return call.result()

        call.cancel()
        await asyncio.gather(call, return_exceptions=True)
        return None

    def _record_attempt(self, run: GateRun, attempt: GateAttempt) -> None:
        name = attempt.validator.name
        record = AuditRecord.for_attempt(self.actor_id, run.run_id, run.request.changeset_id, attempt)

        self._attempt_counter.add(1, {"validator": name, "status": attempt.status.value})
        for flag in record.red_flags:
            self._red_flag_counter.add(1, {"validator": name, "reason": flag})

        logger.info(
            f"Run {run.run_id}: {name} attempt {attempt.attempt_number}/{attempt.validator.max_attempts} "
            f"({attempt.mode.value}) -> {attempt.status.value}"
        )
        logger_struct.log_audit(record)

    # --- Decision ---

    def _decide(self, run: GateRun) -> Decision:
        escalated = []
        summary = []
        reasons = []
        if run.cancelled:
            summary.append(f"{FailureReason.CANCELLED.value}: run {run.run_id} was cancelled")

        for spec in run.profile.blocking + run.profile.parallel:
            latest = run.latest_attempt(spec.name)
            if latest is None or latest.status == AttemptStatus.PASSED:
                continue
            escalated.append(spec.name)
            summary.extend(f"{spec.name}: {issue}" for issue in latest.unresolved_issues())
            if latest.status == AttemptStatus.ESCALATED and FailureReason.RETRY_BUDGET_EXHAUSTED not in reasons:
                reasons.append(FailureReason.RETRY_BUDGET_EXHAUSTED)
        if run.cancelled:
            reasons.append(FailureReason.CANCELLED)

        outcome = Outcome.PASSED if run.state == EngineState.ALL_PASSED else Outcome.ESCALATED
        return Decision(
            run_id=run.run_id,
            changeset_id=run.request.changeset_id,
            outcome=outcome,
            attempts=run.all_attempts(),
            blocking_issues_summary=summary,
            escalated_validators=escalated,
            terminal_reasons=reasons,
            cancelled=run.cancelled,
            state_history=list(run.state_history),
            resolved_profile=run.profile,
        )
