"""
Tests for the gate engine.

Covers the end-to-end scenarios:
1. Blocking validator passes on its last attempt, parallel stage passes
3. Blocking validator exhausts its budget, parallel stage never starts
4. Scope violation in a parallel validator consumes an attempt
5. Two distinct blocking validators run in sequence
plus dispatch failures, resume/redeploy, timeouts and cancellation.
"""

import asyncio
import io
import json
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

import pytest

from conftest import ScriptedDispatcher, failing, passing
from gateway.logging import AuditRecord, StructuredLogger
from models.decision import Outcome
from models.errors import DispatchUnavailable, EmptyWorkTypeSetError
from models.gate_attempt import AttemptMode, AttemptStatus
from models.gate_result import FailureReason
from models.gate_run import EngineState, GateRunRequest
from runtime.config import GateEngineConfig
from runtime.engine import GateEngine


def request(*work_types, scope=("src/",)):
    return GateRunRequest(changeset_id="cs-42", work_types=set(work_types), authorized_scope=set(scope))


async def wait_for_dispatch(dispatcher, count=1):
    async def poll():
        while dispatcher.active < count:
            await asyncio.sleep(0.001)

    await asyncio.wait_for(poll(), timeout=2)


async def hang():
    await asyncio.sleep(10)
    return passing()


class TestScenarios:
    @pytest.mark.asyncio
    async def test_blocking_passes_on_last_attempt(self, resolver):
        dispatcher = ScriptedDispatcher(
            {
                "T1": [failing("first"), failing("second"), passing()],
                "V1": [passing()],
                "V2": [passing()],
            },
            delay=0.01,
        )
        decision = await GateEngine(resolver, dispatcher).run(request("X"))

        assert decision.outcome == Outcome.PASSED
        assert decision.is_accepted()
        assert len(decision.attempts_for("T1")) == 3
        assert [a.attempt_number for a in decision.attempts_for("T1")] == [1, 2, 3]
        assert len(decision.attempts_for("V1")) == 1
        assert len(decision.attempts_for("V2")) == 1
        # V1 and V2 were in flight together
        assert dispatcher.max_active == 2
        assert decision.blocking_issues_summary == []
        assert decision.terminal_reasons == []
        assert decision.state_history == [
            EngineState.IDLE,
            EngineState.BLOCKING_RUNNING,
            EngineState.BLOCKING_FAILED,
            EngineState.BLOCKING_RUNNING,
            EngineState.BLOCKING_FAILED,
            EngineState.BLOCKING_RUNNING,
            EngineState.BLOCKING_PASSED,
            EngineState.PARALLEL_RUNNING,
            EngineState.ALL_PASSED,
        ]

    @pytest.mark.asyncio
    async def test_parallel_deduplicated(self, resolver):
        dispatcher = ScriptedDispatcher({"V1": [passing()], "V2": [passing()]})
        decision = await GateEngine(resolver, dispatcher).run(request("W", "Y"))

        assert decision.outcome == Outcome.PASSED
        assert len(dispatcher.calls_for("V1")) == 1
        assert decision.resolved_profile.parallel_names == {"V1", "V2"}

    @pytest.mark.asyncio
    async def test_blocking_exhausted_never_dispatches_parallel(self, resolver):
        dispatcher = ScriptedDispatcher({"T1": [failing("t1 broken")] * 3})
        decision = await GateEngine(resolver, dispatcher).run(request("X"))

        assert decision.outcome == Outcome.ESCALATED
        assert decision.attempts_for("V1") == []
        assert decision.attempts_for("V2") == []
        assert dispatcher.calls_for("V1") == []
        assert decision.escalated_validators == ["T1"]
        assert decision.blocking_issues_summary == ["T1: t1 broken"]
        assert decision.terminal_reasons == [FailureReason.RETRY_BUDGET_EXHAUSTED]
        assert decision.attempts_for("T1")[-1].status == AttemptStatus.ESCALATED
        assert EngineState.PARALLEL_RUNNING not in decision.state_history

    @pytest.mark.asyncio
    async def test_scope_violation_consumes_attempt(self, resolver):
        dispatcher = ScriptedDispatcher(
            {
                "V1": [passing(files=["src/a.py", "deploy/prod.yaml"]), passing(files=["src/a.py"])],
                "V2": [passing()],
            }
        )
        decision = await GateEngine(resolver, dispatcher).run(request("Y"))

        first, second = decision.attempts_for("V1")
        assert first.failure_reasons == [FailureReason.SCOPE_VIOLATION]
        assert first.result.claimed_pass
        assert second.passed
        assert decision.outcome == Outcome.PASSED

    @pytest.mark.asyncio
    async def test_distinct_blocking_validators_sequential(self, resolver):
        dispatcher = ScriptedDispatcher(
            {"T1": [passing()], "T2": [failing("migration down fails"), failing("still fails")]}
        )
        decision = await GateEngine(resolver, dispatcher).run(request("Z", "X"))

        assert [c[1] for c in dispatcher.calls] == ["T1", "T2", "T2"]
        assert decision.outcome == Outcome.ESCALATED
        assert decision.escalated_validators == ["T2"]
        assert decision.blocking_issues_summary == ["T2: still fails"]
        for name in ("V1", "V2", "V3"):
            assert decision.attempts_for(name) == []


class TestStages:
    @pytest.mark.asyncio
    async def test_no_blocking_validators(self, resolver):
        dispatcher = ScriptedDispatcher({"V1": [passing()], "V2": [passing()]})
        decision = await GateEngine(resolver, dispatcher).run(request("Y"))
        assert decision.state_history == [
            EngineState.IDLE,
            EngineState.BLOCKING_PASSED,
            EngineState.PARALLEL_RUNNING,
            EngineState.ALL_PASSED,
        ]

    @pytest.mark.asyncio
    async def test_parallel_failure_does_not_cancel_siblings(self, resolver):
        async def slow_pass():
            await asyncio.sleep(0.05)
            return passing()

        dispatcher = ScriptedDispatcher({"T1": [passing()], "V1": [failing("style")], "V2": [slow_pass]})
        decision = await GateEngine(resolver, dispatcher).run(request("X"))

        assert decision.outcome == Outcome.ESCALATED
        assert decision.attempts_for("V2")[0].passed
        assert decision.escalated_validators == ["V1"]
        assert decision.blocking_issues_summary == ["V1: style"]

    @pytest.mark.asyncio
    async def test_parallel_retries_independently(self, resolver):
        dispatcher = ScriptedDispatcher(
            {"V1": [failing("a"), passing()], "V2": [passing()]}
        )
        decision = await GateEngine(resolver, dispatcher).run(request("Y"))
        assert len(decision.attempts_for("V1")) == 2
        assert len(decision.attempts_for("V2")) == 1
        assert decision.outcome == Outcome.PASSED

    @pytest.mark.asyncio
    async def test_empty_work_types_is_fatal(self, resolver):
        with pytest.raises(EmptyWorkTypeSetError):
            await GateEngine(resolver, ScriptedDispatcher({})).run(request())

    @pytest.mark.asyncio
    async def test_attempt_numbers_strictly_increase(self, resolver):
        dispatcher = ScriptedDispatcher(
            {"T1": [failing("x"), passing()], "V1": [passing()], "V2": [passing()]}
        )
        decision = await GateEngine(resolver, dispatcher).run(request("X"))
        for name in ("T1", "V1", "V2"):
            numbers = [a.attempt_number for a in decision.attempts_for(name)]
            assert numbers == list(range(1, len(numbers) + 1))


class TestRetries:
    @pytest.mark.asyncio
    async def test_live_session_is_resumed_with_issues(self, resolver):
        dispatcher = ScriptedDispatcher(
            {"T1": [failing("first"), passing()], "V1": [passing()], "V2": [passing()]}
        )
        decision = await GateEngine(resolver, dispatcher).run(request("X"))

        assert [c[0] for c in dispatcher.calls_for("T1")] == ["dispatch", "resume"]
        assert [a.mode for a in decision.attempts_for("T1")] == [AttemptMode.FRESH, AttemptMode.RESUME]
        supplemental = dispatcher.contexts[1]
        assert supplemental.blocking_issues == ["first"]
        assert supplemental.failure_reasons == ["checks failed"]

    @pytest.mark.asyncio
    async def test_no_session_redeploys_fresh(self, resolver):
        dispatcher = ScriptedDispatcher(
            {"T1": [failing("first"), passing()], "V1": [passing()], "V2": [passing()]},
            with_sessions=False,
        )
        decision = await GateEngine(resolver, dispatcher).run(request("X"))

        assert [c[0] for c in dispatcher.calls_for("T1")] == ["dispatch", "dispatch"]
        retry_context = dispatcher.contexts[1]
        assert retry_context.attempt_number == 2
        assert retry_context.previous_issues == ["first"]
        assert retry_context.authorized_scope == ["src/"]
        assert decision.outcome == Outcome.PASSED

    @pytest.mark.asyncio
    async def test_expired_session_falls_back_to_fresh(self, resolver):
        dispatcher = ScriptedDispatcher(
            {"T1": [failing("first"), passing()], "V1": [passing()], "V2": [passing()]},
            expired_sessions={"T1-1"},
        )
        decision = await GateEngine(resolver, dispatcher).run(request("X"))

        assert [c[0] for c in dispatcher.calls_for("T1")] == ["dispatch", "resume", "dispatch"]
        second = decision.attempts_for("T1")[1]
        assert second.mode == AttemptMode.FRESH
        assert second.attempt_number == 2
        assert second.passed

    @pytest.mark.asyncio
    async def test_malformed_output_is_retried(self, resolver):
        dispatcher = ScriptedDispatcher(
            {"T1": ["All good, trust me", passing()], "V1": [passing()], "V2": [passing()]}
        )
        decision = await GateEngine(resolver, dispatcher).run(request("X"))
        first = decision.attempts_for("T1")[0]
        assert first.failure_reasons == [FailureReason.MALFORMED_CONTRACT]
        assert decision.outcome == Outcome.PASSED


class TestDispatchFailures:
    @pytest.mark.asyncio
    async def test_unavailable_becomes_failed_attempt(self, resolver):
        dispatcher = ScriptedDispatcher(
            {"T1": [DispatchUnavailable("worker pool down"), passing()], "V1": [passing()], "V2": [passing()]}
        )
        decision = await GateEngine(resolver, dispatcher).run(request("X"))

        first = decision.attempts_for("T1")[0]
        assert first.failure_reasons == [FailureReason.DISPATCH_FAILURE]
        assert first.unresolved_issues() == ["dispatch failure: worker pool down"]
        assert first.session_id is None
        assert decision.outcome == Outcome.PASSED

    @pytest.mark.asyncio
    async def test_unexpected_error_becomes_failed_attempt(self, resolver):
        dispatcher = ScriptedDispatcher({"T1": [RuntimeError("boom")] * 3})
        decision = await GateEngine(resolver, dispatcher).run(request("X"))

        assert decision.outcome == Outcome.ESCALATED
        assert decision.blocking_issues_summary == ["T1: dispatch failure: RuntimeError: boom"]

    @pytest.mark.asyncio
    async def test_timeout(self, resolver):
        dispatcher = ScriptedDispatcher({"T1": [hang, passing()], "V1": [passing()], "V2": [passing()]})
        engine = GateEngine(resolver, dispatcher, config=GateEngineConfig(dispatch_timeout_seconds=0.05))
        decision = await engine.run(request("X"))

        first = decision.attempts_for("T1")[0]
        assert first.failure_reasons == [FailureReason.DISPATCH_FAILURE]
        assert "0.05" in first.unresolved_issues()[0]
        assert decision.outcome == Outcome.PASSED


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_before_start(self, resolver):
        event = asyncio.Event()
        event.set()
        dispatcher = ScriptedDispatcher({})
        decision = await GateEngine(resolver, dispatcher).run(request("X"), cancel_event=event)

        assert dispatcher.calls == []
        assert decision.cancelled
        assert decision.outcome == Outcome.ESCALATED
        assert decision.state_history == [EngineState.IDLE, EngineState.ESCALATED]

    @pytest.mark.asyncio
    async def test_cancel_blocking_in_flight(self, resolver):
        dispatcher = ScriptedDispatcher({"T1": [hang]})
        engine = GateEngine(resolver, dispatcher)
        task = asyncio.create_task(engine.run(request("X"), run_id="run_cancel_me"))

        await wait_for_dispatch(dispatcher)
        assert engine.active_runs() == ["run_cancel_me"]
        assert engine.cancel("run_cancel_me")
        decision = await asyncio.wait_for(task, timeout=2)

        assert decision.run_id == "run_cancel_me"
        assert decision.cancelled
        assert decision.outcome == Outcome.ESCALATED
        assert decision.attempts_for("T1")[0].failure_reasons == [FailureReason.CANCELLED]
        assert decision.terminal_reasons == [FailureReason.CANCELLED]
        assert decision.blocking_issues_summary[0].startswith("cancelled")
        assert dispatcher.calls_for("V1") == []
        assert engine.active_runs() == []

    @pytest.mark.asyncio
    async def test_cancel_unknown_run(self, resolver):
        assert not GateEngine(resolver, ScriptedDispatcher({})).cancel("run_nope")

    @pytest.mark.asyncio
    async def test_parallel_drains_and_stops_retrying(self, resolver):
        event = asyncio.Event()

        async def fail_and_cancel():
            await wait_for_dispatch(dispatcher, 2)
            event.set()
            return failing("needs work")

        async def slow_pass():
            await asyncio.sleep(0.05)
            return passing()

        dispatcher = ScriptedDispatcher({"V1": [fail_and_cancel], "V2": [slow_pass]})
        decision = await GateEngine(resolver, dispatcher).run(request("Y"), cancel_event=event)

        # V1 has budget 2 but no new attempt starts after cancellation
        assert len(decision.attempts_for("V1")) == 1
        assert decision.attempts_for("V1")[0].status == AttemptStatus.FAILED
        # V2 was already in flight and drained normally
        assert decision.attempts_for("V2")[0].passed
        assert decision.cancelled
        assert decision.outcome == Outcome.ESCALATED
        assert decision.escalated_validators == ["V1"]

    @pytest.mark.asyncio
    async def test_cancel_during_parallel_never_passes(self, resolver):
        async def slow_pass():
            await asyncio.sleep(0.05)
            return passing()

        dispatcher = ScriptedDispatcher({"V1": [slow_pass], "V2": [slow_pass]})
        engine = GateEngine(resolver, dispatcher)
        task = asyncio.create_task(engine.run(request("Y"), run_id="r1"))

        await wait_for_dispatch(dispatcher, 2)
        assert engine.cancel("r1")
        decision = await asyncio.wait_for(task, timeout=2)

        # both in-flight attempts drained and passed
        assert decision.attempts_for("V1")[0].passed
        assert decision.attempts_for("V2")[0].passed
        assert decision.cancelled
        assert decision.outcome == Outcome.ESCALATED
        assert not decision.is_accepted()
        assert decision.terminal_reasons == [FailureReason.CANCELLED]
        assert decision.escalated_validators == []
        assert decision.blocking_issues_summary == ["cancelled: run r1 was cancelled"]
        assert decision.state_history[-2:] == [EngineState.PARALLEL_RUNNING, EngineState.ESCALATED]


class TestAudit:
    @pytest.mark.asyncio
    async def test_audit_record_per_attempt_and_decision(self, resolver, capsys):
        dispatcher = ScriptedDispatcher(
            {"T1": [failing("x"), passing()], "V1": [passing()], "V2": [passing()]}
        )
        decision = await GateEngine(resolver, dispatcher).run(request("X"))

        records = [json.loads(line) for line in capsys.readouterr().out.splitlines() if line.startswith("{")]
        audits = [r["audit_record"] for r in records if r.get("event") == "audit"]
        attempt_audits = [a for a in audits if a["action"] == "gate_attempt"]
        decision_audits = [a for a in audits if a["action"] == "gate_decision"]

        assert len(attempt_audits) == len(decision.attempts) == 4
        assert len(decision_audits) == 1
        assert decision_audits[0]["status"] == "PASSED"
        assert decision_audits[0]["run_id"] == decision.run_id

    @pytest.mark.asyncio
    async def test_cancelled_decision_audit_carries_reasons(self, resolver, capsys):
        event = asyncio.Event()
        event.set()
        await GateEngine(resolver, ScriptedDispatcher({})).run(request("X"), cancel_event=event)

        records = [json.loads(line) for line in capsys.readouterr().out.splitlines() if line.startswith("{")]
        decision_audit = [r["audit_record"] for r in records if r.get("event") == "audit"][-1]
        assert decision_audit["status"] == "ESCALATED"
        assert decision_audit["details"]["terminal_reasons"] == ["cancelled"]
        assert decision_audit["details"]["cancelled"] is True

    def test_structured_logger_writes_to_stream(self):
        stream = io.StringIO()
        StructuredLogger("gate_engine", stream=stream).log_audit(
            AuditRecord(actor_id="gate_engine", action="gate_decision", status="PASSED")
        )
        record = json.loads(stream.getvalue())
        assert record["component"] == "gate_engine"
        assert record["audit_record"]["event_id"]
