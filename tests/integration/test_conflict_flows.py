"""
CONFLICT REGISTRY FLOW TESTS
============================

Detection through the rule-based oracle, deduplication of open pairs,
resolution side effects, and graceful degradation when the oracle fails.
"""
import asyncio
from datetime import timedelta

import pytest

from conflict_oracle import ConflictOracle
from conflict_registry import ConflictRegistry, conflict_registry
from decision_service import decision_service, parse_uuid
from evaluation_service import EvaluationReason, needs_evaluation
from exceptions import (
    ConflictAlreadyResolved,
    ConflictNotFoundError,
    DetectionOracleUnavailable,
    InsufficientPrivilege,
    ValidationError,
)

pytestmark = pytest.mark.asyncio(loop_scope="function")

POSTGRES = {"component": "orders-db", "technology": "postgres"}
MONGODB = {"component": "orders-db", "technology": "mongodb"}


@pytest.fixture
def budget_pair(make_assumption):
    async def _make():
        ceiling = await make_assumption("Migration budget is capped", category="BUDGET",
                                        parameters={"type": "maximum", "budget": 50000})
        floor = await make_assumption("Migration needs a large budget", category="BUDGET",
                                      parameters={"type": "minimum", "budget": 80000})
        return ceiling, floor
    return _make


@pytest.fixture
def competing_decisions(make_decision):
    async def _make():
        a = await make_decision(title="Orders on PostgreSQL", category="architecture", parameters=POSTGRES)
        b = await make_decision(title="Orders on MongoDB", category="architecture", parameters=MONGODB)
        return a, b
    return _make


class UnavailableOracle(ConflictOracle):
    name = "unavailable"

    def __init__(self):
        self.calls = 0

    async def detect_assumption_conflicts(self, assumptions):
        self.calls += 1
        raise DetectionOracleUnavailable("connection refused")

    async def detect_decision_conflicts(self, decisions):
        self.calls += 1
        raise DetectionOracleUnavailable("connection refused")


class BrokenOracle(ConflictOracle):
    name = "broken"

    async def detect_assumption_conflicts(self, assumptions):
        raise KeyError("confidence")

    async def detect_decision_conflicts(self, decisions):
        raise RuntimeError("unexpected payload")


class SlowOracle(ConflictOracle):
    name = "slow"

    async def detect_assumption_conflicts(self, assumptions):
        await asyncio.sleep(5)
        return []

    async def detect_decision_conflicts(self, decisions):
        await asyncio.sleep(5)
        return []


class TestAssumptionConflicts:

    async def test_detection_is_deduplicated(self, budget_pair, make_decision, uow_factory, member, now):
        """
        SCENARIO: Two contradictory budget assumptions back one decision
        EXPECTED: one conflict record; detecting again adds nothing;
                  the decision needs evaluation because of the new conflict
        """
        ceiling, floor = await budget_pair()
        decision = await make_decision(assumption_ids=[ceiling["id"], floor["id"]])
        async with uow_factory() as uow:
            await decision_service.evaluate_now(uow, decision["id"], member, now)

        later = now + timedelta(hours=1)
        async with uow_factory() as uow:
            assert await conflict_registry.detect_assumption_conflicts(uow, later) == 1
        async with uow_factory() as uow:
            assert await conflict_registry.detect_assumption_conflicts(uow, later) == 0

        async with uow_factory() as uow:
            conflicts = await uow.conflicts.list_assumption_conflicts(uow.session, resolved=False)
            view = await decision_service.get(uow, decision["id"], later)
            row = await uow.decisions.get(uow.session, parse_uuid(decision["id"], "decision_id"))
            assert await needs_evaluation(uow, row, later) == (True, EvaluationReason.NEW_CONFLICTS)

        assert len(conflicts) == 1
        assert conflicts[0].conflict_type == "CONTRADICTORY"
        assert conflicts[0].conflict_metadata["strategy"] == "structured"
        assert view["has_open_conflicts"] is True
        assert view["effective_lifecycle"] == "UNDER_REVIEW"

    async def test_validate_a_breaks_the_other_assumption(self, budget_pair, make_decision, uow_factory,
                                                          member, now, load_decision):
        ceiling, floor = await budget_pair()
        decision = await make_decision(assumption_ids=[ceiling["id"], floor["id"]])
        async with uow_factory() as uow:
            await decision_service.evaluate_now(uow, decision["id"], member, now)
            await conflict_registry.detect_assumption_conflicts(uow, now)

        async with uow_factory() as uow:
            conflict = (await uow.conflicts.list_assumption_conflicts(uow.session))[0]
            kept_id, broken_id = str(conflict.assumption_a_id), str(conflict.assumption_b_id)

        later = now + timedelta(hours=2)
        async with uow_factory() as uow:
            result = await conflict_registry.resolve_assumption_conflict(
                uow, conflict.id, "validate_a", "Finance confirmed the cap", member, later
            )

        assert result["action"] == "VALIDATE_A"
        assert result["affected_decision_ids"] == [decision["id"]]
        assert (await load_decision(decision["id"])).needs_evaluation is True

        async with uow_factory() as uow:
            kept = await uow.assumptions.get(uow.session, conflict.assumption_a_id)
            broken = await uow.assumptions.get(uow.session, conflict.assumption_b_id)
        assert (str(kept.id), kept.status) == (kept_id, "VALID")
        assert (str(broken.id), broken.status) == (broken_id, "BROKEN")

        with pytest.raises(ConflictAlreadyResolved):
            async with uow_factory() as uow:
                await conflict_registry.resolve_assumption_conflict(uow, conflict.id, "KEEP_BOTH", None, member, later)

        # one of two specific assumptions broken, conflict closed
        async with uow_factory() as uow:
            evaluated = await decision_service.evaluate_now(uow, decision["id"], member, later)
        assert evaluated["newHealth"] == 70
        assert evaluated["newLifecycle"] == "UNDER_REVIEW"

    async def test_resolution_input_errors(self, budget_pair, uow_factory, member, now):
        await budget_pair()
        async with uow_factory() as uow:
            await conflict_registry.detect_assumption_conflicts(uow, now)
            conflict = (await uow.conflicts.list_assumption_conflicts(uow.session))[0]

        with pytest.raises(ValidationError):
            async with uow_factory() as uow:
                await conflict_registry.resolve_assumption_conflict(uow, conflict.id, "PICK_ONE", None, member, now)

        async with uow_factory() as uow:
            await conflict_registry.dismiss_assumption_conflict(uow, conflict.id)

        with pytest.raises(ConflictNotFoundError):
            async with uow_factory() as uow:
                await conflict_registry.resolve_assumption_conflict(uow, conflict.id, "MERGE", None, member, now)

    async def test_resolved_pair_is_not_reopened(self, budget_pair, make_decision, uow_factory, member, now):
        """
        SCENARIO: A conflict is resolved with KEEP_BOTH and detection runs again
        EXPECTED: no new record until one of the two assumptions is edited
        """
        from assumption_service import assumption_service

        ceiling, floor = await budget_pair()
        decision = await make_decision(assumption_ids=[ceiling["id"], floor["id"]])
        async with uow_factory() as uow:
            assert await conflict_registry.detect_assumption_conflicts(uow, now) == 1
            conflict = (await uow.conflicts.list_assumption_conflicts(uow.session))[0]

        later = now + timedelta(hours=1)
        async with uow_factory() as uow:
            await conflict_registry.resolve_assumption_conflict(
                uow, conflict.id, "KEEP_BOTH", "Phased budget covers both", member, later
            )

        for hours in (2, 3):
            async with uow_factory() as uow:
                assert await conflict_registry.detect_assumption_conflicts(uow, now + timedelta(hours=hours)) == 0
        async with uow_factory() as uow:
            assert await uow.conflicts.list_assumption_conflicts(uow.session, resolved=False) == []
            view = await decision_service.get(uow, decision["id"], now + timedelta(hours=3))
        assert view["has_open_conflicts"] is False

        edited = now + timedelta(hours=4)
        async with uow_factory() as uow:
            await assumption_service.update(uow, ceiling["id"], {"description": "Migration budget is capped at 50k"},
                                            member, edited)
        async with uow_factory() as uow:
            assert await conflict_registry.detect_assumption_conflicts(uow, edited) == 1


class TestDecisionConflicts:

    async def test_open_conflict_caps_lifecycle(self, competing_decisions, uow_factory, member, now):
        """
        SCENARIO: Two healthy decisions pick different databases for one component
        EXPECTED: conflict recorded once; both evaluate to UNDER_REVIEW at full health;
                  KEEP_BOTH lets them return to STABLE
        """
        a, b = await competing_decisions()
        async with uow_factory() as uow:
            for d in (a, b):
                await decision_service.evaluate_now(uow, d["id"], member, now)

        later = now + timedelta(hours=1)
        async with uow_factory() as uow:
            assert await conflict_registry.detect_decision_conflicts(uow, later) == 1
        async with uow_factory() as uow:
            assert await conflict_registry.detect_decision_conflicts(uow, later) == 0

        async with uow_factory() as uow:
            result = await decision_service.evaluate_now(uow, a["id"], member, later)
            conflict = (await uow.conflicts.list_decision_conflicts(uow.session))[0]
        assert (result["newHealth"], result["newLifecycle"]) == (100, "UNDER_REVIEW")
        assert conflict.conflict_type == "MUTUALLY_EXCLUSIVE"

        async with uow_factory() as uow:
            resolved = await conflict_registry.resolve_decision_conflict(
                uow, conflict.id, "KEEP_BOTH", "Different bounded contexts", member, later
            )
        assert resolved["invalidated_decision_ids"] == []
        assert resolved["affected_decision_ids"] == sorted([a["id"], b["id"]])

        async with uow_factory() as uow:
            result = await decision_service.evaluate_now(uow, a["id"], member, later)
        assert result["newLifecycle"] == "STABLE"

    async def test_focused_detection(self, competing_decisions, make_decision, uow_factory, now):
        await competing_decisions()
        bystander = await make_decision(title="Hire a designer", category="hiring")

        async with uow_factory() as uow:
            assert await conflict_registry.detect_decision_conflicts(uow, now, decision_id=bystander["id"]) == 0
        async with uow_factory() as uow:
            assert await uow.conflicts.list_decision_conflicts(uow.session) == []
        async with uow_factory() as uow:
            assert await conflict_registry.detect_decision_conflicts(uow, now) == 1

    async def test_deprecate_both_requires_lead(self, competing_decisions, uow_factory, member, lead, now):
        a, b = await competing_decisions()
        async with uow_factory() as uow:
            await conflict_registry.detect_decision_conflicts(uow, now)
            conflict = (await uow.conflicts.list_decision_conflicts(uow.session))[0]

        with pytest.raises(InsufficientPrivilege):
            async with uow_factory() as uow:
                await conflict_registry.resolve_decision_conflict(uow, conflict.id, "DEPRECATE_BOTH", None, member, now)

        async with uow_factory() as uow:
            result = await conflict_registry.resolve_decision_conflict(
                uow, conflict.id, "DEPRECATE_BOTH", "Both superseded by the data platform", lead, now
            )
        assert sorted(result["invalidated_decision_ids"]) == sorted([a["id"], b["id"]])

        async with uow_factory() as uow:
            for d in (a, b):
                view = await decision_service.get(uow, d["id"], now)
                assert view["lifecycle"] == "INVALIDATED"
                assert view["has_open_conflicts"] is False
                actions = [e["action"] for e in await decision_service.audit_log(uow, d["id"])]
                assert actions == ["decision_invalidated"]

    async def test_dismissal_deletes_the_record(self, competing_decisions, uow_factory, now):
        await competing_decisions()
        async with uow_factory() as uow:
            await conflict_registry.detect_decision_conflicts(uow, now)
            conflict = (await uow.conflicts.list_decision_conflicts(uow.session))[0]

        async with uow_factory() as uow:
            await conflict_registry.dismiss_decision_conflict(uow, conflict.id)
        async with uow_factory() as uow:
            assert await uow.conflicts.list_decision_conflicts(uow.session) == []

        with pytest.raises(ConflictNotFoundError):
            async with uow_factory() as uow:
                await conflict_registry.dismiss_decision_conflict(uow, conflict.id)


class TestOracleFailure:

    async def test_unavailable_oracle_writes_nothing(self, budget_pair, competing_decisions, uow_factory, now):
        await budget_pair()
        await competing_decisions()
        registry = ConflictRegistry(oracle=UnavailableOracle())

        async with uow_factory() as uow:
            assert await registry.detect_assumption_conflicts(uow, now) == 0
            assert await registry.detect_decision_conflicts(uow, now) == 0
        async with uow_factory() as uow:
            assert await uow.conflicts.list_assumption_conflicts(uow.session) == []
            assert await uow.conflicts.list_decision_conflicts(uow.session) == []

    async def test_timeout_counts_as_unavailable(self, competing_decisions, uow_factory, now):
        await competing_decisions()
        registry = ConflictRegistry(oracle=SlowOracle(), timeout=0.05)

        async with uow_factory() as uow:
            assert await registry.detect_decision_conflicts(uow, now) == 0

    async def test_breaker_stops_calling_a_failing_oracle(self, competing_decisions, uow_factory, now):
        """
        SCENARIO: Oracle keeps failing
        EXPECTED: after 3 failures the breaker opens and the oracle is no longer called
        """
        await competing_decisions()
        oracle = UnavailableOracle()
        registry = ConflictRegistry(oracle=oracle)

        for _ in range(4):
            async with uow_factory() as uow:
                assert await registry.detect_decision_conflicts(uow, now) == 0

        assert oracle.calls == 3
        assert registry.breaker.state == "open"

    async def test_too_few_candidates_skip_the_oracle(self, make_decision, uow_factory, now):
        await make_decision()
        oracle = UnavailableOracle()
        registry = ConflictRegistry(oracle=oracle)

        async with uow_factory() as uow:
            assert await registry.detect_decision_conflicts(uow, now) == 0
            assert await registry.detect_assumption_conflicts(uow, now) == 0
        assert oracle.calls == 0

    async def test_unexpected_oracle_error_is_contained(self, budget_pair, competing_decisions, uow_factory, now):
        await budget_pair()
        await competing_decisions()
        registry = ConflictRegistry(oracle=BrokenOracle())

        async with uow_factory() as uow:
            assert await registry.detect_assumption_conflicts(uow, now) == 0
            assert await registry.detect_decision_conflicts(uow, now) == 0
        async with uow_factory() as uow:
            assert await uow.conflicts.list_assumption_conflicts(uow.session) == []
            assert await uow.conflicts.list_decision_conflicts(uow.session) == []
