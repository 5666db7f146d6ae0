"""Batch orchestrator tests."""

import asyncio

import pytest

from conftest import HANG, FakeEngine, Reply
from waf_validator.errors import ConfigurationError, TransportError
from waf_validator.orchestrator import BatchOrchestrator, RunState
from waf_validator.probe import ProbeExecutor
from waf_validator.targets import TestTarget


def orchestrator_for(engine, timeout=5.0):
    return BatchOrchestrator(ProbeExecutor(engine, timeout=timeout))


class TestBatchRun:

    @pytest.mark.asyncio
    async def test_blocked_and_passed_scenario(self, target, scenario_patterns):
        engine = FakeEngine({"/sqli-1": 403, "/xss-1": 200})
        run = orchestrator_for(engine).start(scenario_patterns, target, concurrency=2)

        summary = await run.wait()

        assert run.state is RunState.COMPLETED
        assert (summary.total, summary.blocked, summary.passed, summary.errored) == (2, 1, 1, 0)
        assert run.results["sqli-1"].blocked is True
        assert run.results["xss-1"].blocked is False

    @pytest.mark.asyncio
    async def test_one_result_per_requested_pattern(self, target, many_patterns):
        run = orchestrator_for(FakeEngine()).start(many_patterns, target, concurrency=4)
        summary = await run.wait()

        assert set(run.results) == {p.id for p in many_patterns}
        assert summary.total == len(many_patterns)
        assert summary.total == summary.blocked + summary.passed + summary.errored

    @pytest.mark.asyncio
    async def test_transport_error_does_not_abort_batch(self, target, many_patterns):
        engine = FakeEngine({"/p3": TransportError(TransportError.CONNECTION, "connection refused"),
                             "/p4": 403})
        run = orchestrator_for(engine).start(many_patterns, target, concurrency=3)
        summary = await run.wait()

        assert run.state is RunState.COMPLETED
        assert summary.total == 10
        assert summary.errored == 1
        assert summary.blocked == 1
        assert run.results["p3"].error_kind == TransportError.CONNECTION
        assert run.results["p3"].blocked is False

    @pytest.mark.asyncio
    async def test_timeouts_are_errors_not_blocks(self, target, scenario_patterns):
        engine = FakeEngine({"/sqli-1": HANG, "/xss-1": 403})
        run = orchestrator_for(engine, timeout=0.05).start(scenario_patterns, target, concurrency=2)
        summary = await run.wait()

        assert run.results["sqli-1"].error_kind == TransportError.TIMEOUT
        assert run.results["sqli-1"].blocked is False
        assert (summary.blocked, summary.passed, summary.errored) == (1, 0, 1)

    @pytest.mark.asyncio
    async def test_unexpected_executor_failure_is_recorded(self, target, scenario_patterns):
        class BrokenExecutor(ProbeExecutor):
            async def execute(self, pattern, target, timeout=None):
                if pattern.id == "sqli-1":
                    raise RuntimeError("bug")
                return await super().execute(pattern, target, timeout)

        run = BatchOrchestrator(BrokenExecutor(FakeEngine())).start(scenario_patterns, target, 1)
        summary = await run.wait()

        assert run.state is RunState.COMPLETED
        assert run.results["sqli-1"].error_kind == "internal"
        assert summary.errored == 1

    @pytest.mark.asyncio
    async def test_duplicate_ids_run_once(self, target, scenario_patterns):
        engine = FakeEngine()
        patterns = scenario_patterns + scenario_patterns[:1]
        run = orchestrator_for(engine).start(patterns, target, concurrency=1)
        await run.wait()

        assert run.pattern_ids == ("sqli-1", "xss-1")
        assert engine.dispatched == ["/sqli-1", "/xss-1"]

    @pytest.mark.asyncio
    async def test_each_start_creates_a_new_run(self, target, scenario_patterns):
        orchestrator = orchestrator_for(FakeEngine())
        first = orchestrator.start(scenario_patterns, target, 1)
        await first.wait()
        second = orchestrator.start(scenario_patterns, target, 1)

        assert second is not first
        assert second.run_id != first.run_id
        assert first.state is RunState.COMPLETED
        await second.wait()


class TestValidation:

    @pytest.mark.asyncio
    async def test_empty_host_header_rejected_before_dispatch(self, scenario_patterns):
        engine = FakeEngine()
        with pytest.raises(ConfigurationError):
            orchestrator_for(engine).start(scenario_patterns, TestTarget("https://proxy", ""), 2)
        await asyncio.sleep(0.01)
        assert engine.calls == []

    @pytest.mark.asyncio
    async def test_empty_base_url_rejected(self, scenario_patterns):
        with pytest.raises(ConfigurationError):
            orchestrator_for(FakeEngine()).start(scenario_patterns, TestTarget("", "shop.example.com"), 2)

    @pytest.mark.asyncio
    async def test_scheme_less_base_url_rejected_before_dispatch(self, scenario_patterns):
        engine = FakeEngine()
        orchestrator = orchestrator_for(engine)
        with pytest.raises(ConfigurationError) as exc_info:
            orchestrator.start(scenario_patterns, TestTarget("proxy.internal:8443", "shop.example.com"), 2)
        await asyncio.sleep(0.01)

        assert exc_info.value.details["invalid"] == ["base_url"]
        assert engine.calls == []

    @pytest.mark.asyncio
    async def test_empty_pattern_set_rejected(self, target):
        engine = FakeEngine()
        with pytest.raises(ConfigurationError):
            orchestrator_for(engine).start([], target, 2)
        assert engine.calls == []

    @pytest.mark.asyncio
    async def test_concurrency_below_one_rejected(self, target, scenario_patterns):
        with pytest.raises(ConfigurationError):
            orchestrator_for(FakeEngine()).start(scenario_patterns, target, 0)


class TestConcurrency:

    @pytest.mark.asyncio
    async def test_in_flight_probes_bounded(self, target, many_patterns):
        engine = FakeEngine(default=Reply(200, delay=0.01))
        run = orchestrator_for(engine).start(many_patterns, target, concurrency=3)
        await run.wait()

        assert engine.max_in_flight == 3
        assert len(engine.calls) == 10

    @pytest.mark.asyncio
    async def test_concurrency_larger_than_batch(self, target, scenario_patterns):
        engine = FakeEngine(default=Reply(200, delay=0.01))
        run = orchestrator_for(engine).start(scenario_patterns, target, concurrency=50)
        await run.wait()

        assert engine.max_in_flight == 2
        assert len(run._workers) == 2

    @pytest.mark.asyncio
    async def test_queue_follows_catalog_order(self, target, many_patterns):
        engine = FakeEngine()
        run = orchestrator_for(engine).start(many_patterns, target, concurrency=1)
        await run.wait()

        assert engine.dispatched == [f"/p{i}" for i in range(10)]

    @pytest.mark.asyncio
    async def test_dispatch_order_when_saturated(self, target, many_patterns):
        engine = FakeEngine(default=Reply(200, delay=0.005))
        run = orchestrator_for(engine).start(many_patterns, target, concurrency=3)
        await run.wait()

        assert engine.dispatched == [f"/p{i}" for i in range(10)]

    @pytest.mark.asyncio
    async def test_results_published_in_completion_order(self, target, scenario_patterns):
        engine = FakeEngine({"/sqli-1": Reply(403, delay=0.05), "/xss-1": Reply(200)})
        run = orchestrator_for(engine).start(scenario_patterns, target, concurrency=2)

        received = [attack_id async for attack_id, _ in run.stream()]

        assert received == ["xss-1", "sqli-1"]


class TestStreaming:

    @pytest.mark.asyncio
    async def test_stream_yields_every_result_then_ends(self, target, many_patterns):
        run = orchestrator_for(FakeEngine()).start(many_patterns, target, concurrency=4)

        seen = {}
        async for attack_id, result in run.stream():
            seen[attack_id] = result

        assert run.state is RunState.COMPLETED
        assert seen == dict(run.results)

    @pytest.mark.asyncio
    async def test_stream_after_completion_is_replayed(self, target, scenario_patterns):
        run = orchestrator_for(FakeEngine()).start(scenario_patterns, target, concurrency=2)
        await run.wait()

        ids = [attack_id async for attack_id, _ in run.stream()]
        assert sorted(ids) == ["sqli-1", "xss-1"]
        assert [attack_id async for attack_id, _ in run.stream()] == []

    @pytest.mark.asyncio
    async def test_callback_sees_growing_summary(self, target, many_patterns):
        totals = []
        holder = {}

        def on_result(attack_id, result):
            totals.append(holder["run"].summary().total)

        run = orchestrator_for(FakeEngine()).start(many_patterns, target, 3, on_result=on_result)
        holder["run"] = run
        final = await run.wait()

        assert totals == list(range(1, 11))
        assert final == run.summary()

    @pytest.mark.asyncio
    async def test_failing_callback_does_not_break_run(self, target, scenario_patterns):
        def on_result(attack_id, result):
            raise ValueError("display crashed")

        run = orchestrator_for(FakeEngine()).start(scenario_patterns, target, 1, on_result=on_result)
        summary = await run.wait()

        assert run.state is RunState.COMPLETED
        assert summary.total == 2

    @pytest.mark.asyncio
    async def test_results_view_is_read_only(self, target, scenario_patterns):
        run = orchestrator_for(FakeEngine()).start(scenario_patterns, target, 1)
        await run.wait()
        with pytest.raises(TypeError):
            run.results["other"] = None


class TestCancellation:

    @pytest.mark.asyncio
    async def test_cancel_after_k_results_issues_no_more_probes(self, target, many_patterns):
        engine = FakeEngine()
        orchestrator = orchestrator_for(engine)
        holder = {}

        def on_result(attack_id, result):
            if len(holder["run"].results) == 2:
                orchestrator.cancel(holder["run"])

        run = orchestrator.start(many_patterns, target, concurrency=1, on_result=on_result)
        holder["run"] = run
        await run.wait()
        await run.join()
        await asyncio.sleep(0.01)

        assert run.state is RunState.CANCELLED
        assert set(run.results) == {"p0", "p1"}
        assert len(engine.calls) == 2
        assert run.summary().total == 2

    @pytest.mark.asyncio
    async def test_cancel_does_not_wait_for_in_flight_probes(self, target, many_patterns):
        engine = FakeEngine({"/p0": 403}, default=HANG)
        orchestrator = orchestrator_for(engine, timeout=60)
        first = asyncio.Event()

        run = orchestrator.start(many_patterns[:4], target, concurrency=2,
                                 on_result=lambda attack_id, result: first.set())
        await asyncio.wait_for(first.wait(), timeout=1)
        await asyncio.sleep(0.01)

        assert orchestrator.cancel(run) is True
        assert run.state is RunState.CANCELLED
        assert run.is_finished

        await asyncio.wait_for(run.join(), timeout=1)
        assert set(run.results) == {"p0"}
        assert engine.dispatched == ["/p0", "/p1", "/p2"]
        assert engine.in_flight == 0

    @pytest.mark.asyncio
    async def test_cancel_ends_stream_and_wait(self, target, many_patterns):
        orchestrator = orchestrator_for(FakeEngine(default=HANG), timeout=60)
        run = orchestrator.start(many_patterns, target, concurrency=2)

        async def consume():
            return [item async for item in run.stream()]

        consumer = asyncio.ensure_future(consume())
        await asyncio.sleep(0.01)
        orchestrator.cancel(run)

        assert await asyncio.wait_for(consumer, timeout=1) == []
        summary = await asyncio.wait_for(run.wait(), timeout=1)
        assert summary.total == 0
        await run.join()

    @pytest.mark.asyncio
    async def test_cancel_finished_run_is_noop(self, target, scenario_patterns):
        orchestrator = orchestrator_for(FakeEngine())
        run = orchestrator.start(scenario_patterns, target, 2)
        await run.wait()

        assert orchestrator.cancel(run) is False
        assert run.state is RunState.COMPLETED
        assert len(run.results) == 2
