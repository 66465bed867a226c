"""
BATCH EVALUATION & QUEUE TESTS
"""
import asyncio
from datetime import timedelta

import pytest

import evaluation_scheduler
from decision_service import decision_service, parse_uuid
from evaluation_scheduler import EvaluationQueue, batch_evaluate
from events import DecisionChangeType, EventBus, decision_changed

pytestmark = pytest.mark.asyncio(loop_scope="function")


async def wait_until_evaluated(load_decision, decision_id, attempts: int = 100):
    for _ in range(attempts):
        row = await load_decision(decision_id)
        if row.last_evaluated_at is not None:
            return row
        await asyncio.sleep(0.02)
    raise AssertionError(f"decision {decision_id} was never evaluated")


class TestBatchEvaluate:

    async def test_second_pass_is_a_no_op(self, make_decision, uow_factory, now):
        """
        SCENARIO: Batch twice with nothing changed in between
        EXPECTED: first pass evaluates all three, second pass evaluates none
        """
        for title in ("Adopt SSO", "Move CI to GitHub Actions", "Quarterly planning"):
            await make_decision(title=title)

        first = await batch_evaluate(uow_factory=uow_factory, now=now)
        second = await batch_evaluate(uow_factory=uow_factory, now=now)

        assert (first.evaluated, first.skipped, first.failed) == (3, 0, 0)
        assert first.reasons == {"explicit_flag": 3}
        assert (second.evaluated, second.skipped) == (0, 3)
        assert second.reasons == {"fresh": 3}

    async def test_stale_and_forced(self, make_decision, uow_factory, now):
        await make_decision()
        await batch_evaluate(uow_factory=uow_factory, now=now)

        stale = await batch_evaluate(uow_factory=uow_factory, now=now + timedelta(hours=25))
        forced = await batch_evaluate(force=True, uow_factory=uow_factory, now=now + timedelta(hours=25))

        assert stale.reasons == {"stale": 1}
        assert forced.reasons == {"forced": 1}
        assert forced.evaluated == 1

    async def test_dependencies_are_evaluated_first(self, make_decision, make_assumption, uow_factory, now,
                                                    load_decision):
        """
        SCENARIO: B depends on A; A loses one of its two assumptions
        EXPECTED: a single batch leaves B capped at A's new health
        """
        broken = await make_assumption("Vendor keeps pricing flat", status="BROKEN")
        valid = await make_assumption("Usage grows linearly")
        upstream = await make_decision(title="Buy analytics suite", assumption_ids=[broken["id"], valid["id"]])
        downstream = await make_decision(title="Train analysts on the suite",
                                         dependencies=[{"decision_id": upstream["id"]}])

        result = await batch_evaluate(uow_factory=uow_factory, now=now)

        assert result.evaluated == 2
        assert (await load_decision(upstream["id"])).health_signal == 70
        assert (await load_decision(downstream["id"])).health_signal == 70

    async def test_dependency_lifecycle_change_triggers_dependents(self, make_decision, make_assumption,
                                                                   uow_factory, member, now, load_decision):
        broken = await make_assumption("Vendor keeps pricing flat", status="BROKEN")
        valid = await make_assumption("Usage grows linearly")
        upstream = await make_decision(title="Buy analytics suite")
        downstream = await make_decision(title="Train analysts on the suite",
                                         dependencies=[{"decision_id": upstream["id"]}])
        await batch_evaluate(uow_factory=uow_factory, now=now)

        later = now + timedelta(hours=1)
        async with uow_factory() as uow:
            await decision_service.update(uow, upstream["id"], {"assumption_ids": [broken["id"], valid["id"]]},
                                          member, later)
        async with uow_factory() as uow:
            result = await decision_service.evaluate_now(uow, upstream["id"], member, later)
        assert result["newLifecycle"] == "UNDER_REVIEW"

        batch = await batch_evaluate(uow_factory=uow_factory, now=later + timedelta(minutes=5))

        assert batch.reasons == {"fresh": 1, "dependency_changed": 1}
        assert (await load_decision(downstream["id"])).health_signal == 70

    async def test_terminal_decisions_are_skipped(self, make_decision, uow_factory, member, lead, now):
        await make_decision(title="Keep")
        invalidated = await make_decision(title="Invalidate")
        retired = await make_decision(title="Retire")
        async with uow_factory() as uow:
            await decision_service.invalidate(uow, invalidated["id"], "Superseded", lead, now)
        async with uow_factory() as uow:
            await decision_service.retire(uow, retired["id"], "succeeded", {}, member, now)

        result = await batch_evaluate(force=True, uow_factory=uow_factory, now=now)

        # retired decisions are not walked at all
        assert result.reasons == {"forced": 1, "terminal_state": 1}
        assert result.evaluated == 1

    async def test_cancelled_before_start(self, make_decision, uow_factory, now):
        await make_decision()
        token = asyncio.Event()
        token.set()

        result = await batch_evaluate(cancel_token=token, uow_factory=uow_factory, now=now)

        assert result.cancelled is True
        assert result.evaluated == 0

    async def test_one_failure_does_not_abort_the_batch(self, make_decision, uow_factory, now, monkeypatch,
                                                        load_decision):
        good = await make_decision(title="Good")
        bad = await make_decision(title="Bad")
        real = evaluation_scheduler.evaluate_decision

        async def flaky(uow, decision, now, **kwargs):
            if str(decision.id) == bad["id"]:
                raise RuntimeError("snapshot failed")
            return await real(uow, decision, now, **kwargs)

        monkeypatch.setattr(evaluation_scheduler, "evaluate_decision", flaky)

        result = await batch_evaluate(uow_factory=uow_factory, now=now)

        assert (result.evaluated, result.failed) == (1, 1)
        assert (await load_decision(good["id"])).needs_evaluation is False
        assert (await load_decision(bad["id"])).needs_evaluation is True


class TestEvaluationQueue:

    async def test_enqueue_deduplicates(self, make_decision, uow_factory, load_decision):
        decision = await make_decision()
        decision_id = parse_uuid(decision["id"], "decision_id")
        queue = EvaluationQueue(uow_factory=uow_factory)

        assert queue.enqueue(decision_id) is True
        assert queue.enqueue(decision_id) is False
        assert queue.pending == {decision_id}

        assert await queue.drain() == 1
        assert queue.pending == set()
        row = await load_decision(decision["id"])
        assert row.needs_evaluation is False
        assert row.last_evaluated_at is not None

    async def test_fresh_decisions_are_not_recomputed(self, make_decision, uow_factory):
        decision = await make_decision()
        queue = EvaluationQueue(uow_factory=uow_factory)
        decision_id = parse_uuid(decision["id"], "decision_id")

        queue.enqueue(decision_id)
        assert await queue.drain() == 1
        queue.enqueue(decision_id)
        assert await queue.drain() == 0

    async def test_listener_reacts_to_committed_changes(self, make_decision, uow_factory, load_decision):
        """
        SCENARIO: The worker listens on a bus; a REVIEWED then an UPDATED event arrive
        EXPECTED: only the UPDATED decision is evaluated
        """
        reviewed = await make_decision(title="Reviewed only")
        updated = await make_decision(title="Edited")
        bus = EventBus()
        queue = EvaluationQueue(uow_factory=uow_factory)
        queue.start(bus=bus)
        try:
            bus.publish(decision_changed(reviewed["id"], DecisionChangeType.REVIEWED))
            bus.publish(decision_changed(updated["id"], DecisionChangeType.UPDATED))
            await wait_until_evaluated(load_decision, updated["id"])
        finally:
            await queue.stop()

        assert (await load_decision(reviewed["id"])).last_evaluated_at is None
        assert bus.subscriber_count == 0


class TestEvaluationTick:

    async def test_tick_detects_then_evaluates(self, make_decision, uow_factory, load_decision):
        a = await make_decision(title="Orders on PostgreSQL", category="architecture",
                                parameters={"component": "orders-db", "technology": "postgres"})
        b = await make_decision(title="Orders on MongoDB", category="architecture",
                                parameters={"component": "orders-db", "technology": "mongodb"})

        await evaluation_scheduler.evaluation_tick()

        async with uow_factory() as uow:
            assert len(await uow.conflicts.list_decision_conflicts(uow.session, resolved=False)) == 1
        for d in (a, b):
            row = await load_decision(d["id"])
            assert row.lifecycle == "UNDER_REVIEW"
            assert row.needs_evaluation is False

    async def test_scheduler_registers_the_tick(self):
        evaluation_scheduler.start_scheduler(interval_minutes=60)
        try:
            assert evaluation_scheduler.scheduler.get_job("evaluation_tick") is not None
        finally:
            evaluation_scheduler.stop_scheduler()
