"""
HEALTH & FRESHNESS CALCULATOR TESTS
===================================

Pure functions only: no database, explicit reference time.
"""
from datetime import datetime, timedelta, timezone

import pytest

from domain.constraints import ConstraintSnapshot
from domain.enums import AssumptionScope, AssumptionStatus, DecisionLifecycle, DependencyRelation
from domain.health import (
    AssumptionSnapshot,
    DecisionSnapshot,
    DependencySnapshot,
    as_utc,
    compute_health,
    compute_metrics,
    consistency,
    consistency_band,
    days_since,
    decay,
    drift,
    expiry_decay,
    freshness_band,
    is_drifting,
)

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


def snapshot(**overrides) -> DecisionSnapshot:
    data = dict(
        id="d-1",
        title="Move billing to the new ledger",
        lifecycle=DecisionLifecycle.STABLE,
        health_signal=100,
        last_reviewed_at=NOW,
    )
    data.update(overrides)
    return DecisionSnapshot(**data)


def specific(status: AssumptionStatus) -> AssumptionSnapshot:
    return AssumptionSnapshot(id=f"a-{status.value}", status=status, scope=AssumptionScope.DECISION_SPECIFIC)


class TestPresentationMetrics:

    @pytest.mark.parametrize("days, expected", [(0, 100), (1, 98), (10, 80), (49, 2), (50, 0), (400, 0)])
    def test_decay_is_linear_with_floor(self, days, expected):
        assert decay(days) == expected

    def test_future_review_counts_as_zero_days(self):
        assert days_since(NOW + timedelta(days=3), NOW) == 0

    def test_partial_days_are_floored(self):
        assert days_since(NOW - timedelta(days=2, hours=23), NOW) == 2

    @pytest.mark.parametrize("lifecycle, health, expected", [
        ("STABLE", 80, 95),
        ("STABLE", 79, 50),
        ("UNDER_REVIEW", 60, 80),
        ("AT_RISK", 40, 65),
        ("AT_RISK", 39, 50),
        ("RETIRED", 100, 50),
    ])
    def test_consistency_table(self, lifecycle, health, expected):
        assert consistency(lifecycle, health) == expected

    def test_drift_threshold_is_exclusive(self):
        assert drift(90, 80) == 10
        assert not is_drifting(10)
        assert is_drifting(11)

    def test_bands(self):
        assert freshness_band(85) == "Fresh"
        assert freshness_band(65) == "Needs review"
        assert freshness_band(64) == "Stale"
        assert consistency_band(95) == "On track"
        assert consistency_band(65) == "Minor drift"
        assert consistency_band(50) == "Needs attention"

    def test_compute_metrics(self):
        metrics = compute_metrics(100, NOW - timedelta(days=10), DecisionLifecycle.STABLE, NOW)

        assert metrics.days_since_review == 10
        assert metrics.decay == 80
        assert metrics.consistency == 95
        assert metrics.drift == 20
        assert metrics.drifting is True
        assert metrics.to_dict()["freshness_band"] == "Needs review"

    def test_naive_datetimes_are_utc(self):
        naive = datetime(2026, 3, 1, 9, 0)
        assert as_utc(naive) == datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)
        assert as_utc(None) is None


class TestExpiryDecay:

    @pytest.mark.parametrize("days_until_expiry, expected", [
        (120, 0),
        (91, 0),
        (60, 2),     # floor(30 / 15)
        (31, 3),
        (10, 9),     # floor(80 / 15) + floor(20 / 5)
        (0, 12),     # full pre-expiry decay
        (-3, 15),    # plus one point per day past expiry
    ])
    def test_expiry_decay_curve(self, days_until_expiry, expected):
        assert expiry_decay(days_until_expiry) == expected


class TestComputeHealth:

    def test_healthy_decision_keeps_full_health(self):
        result = compute_health(snapshot(), NOW)

        assert result.health_signal == 100
        assert [s.step for s in result.trace] == [
            "constraint_validation", "dependency_evaluation", "assumption_check", "health_decay",
        ]
        assert all(s.passed for s in result.trace)

    def test_dependency_ceiling_is_lowest_upstream_health(self):
        deps = (
            DependencySnapshot(id="x", title="X", lifecycle=DecisionLifecycle.STABLE, health_signal=90),
            DependencySnapshot(id="y", title="Y", lifecycle=DecisionLifecycle.AT_RISK, health_signal=55),
            DependencySnapshot(id="z", title="Z", lifecycle=DecisionLifecycle.STABLE, health_signal=10,
                               relation=DependencyRelation.BLOCKS),
        )
        result = compute_health(snapshot(dependencies=deps), NOW)

        assert result.health_signal == 55

    def test_broken_specific_assumptions_scale_the_penalty(self):
        assumptions = (
            specific(AssumptionStatus.BROKEN),
            specific(AssumptionStatus.VALID),
            AssumptionSnapshot(id="a-3", status=AssumptionStatus.SHAKY, scope=AssumptionScope.DECISION_SPECIFIC),
            AssumptionSnapshot(id="a-4", status=AssumptionStatus.VALID, scope=AssumptionScope.DECISION_SPECIFIC),
        )
        result = compute_health(snapshot(assumptions=assumptions), NOW)

        # 1 of 4 broken: floor(0.25 * 60) = 15
        assert result.health_signal == 85
        assert result.trace[2].passed is False

    def test_broken_universal_assumption_zeroes_health(self):
        assumptions = (
            AssumptionSnapshot(id="u", status=AssumptionStatus.BROKEN, scope=AssumptionScope.UNIVERSAL),
        )
        result = compute_health(snapshot(assumptions=assumptions), NOW)

        assert result.health_signal == 0
        assert result.trace[-1].step == "assumption_check"

    def test_constraint_violation_short_circuits(self):
        constraint = ConstraintSnapshot(
            id="c-1",
            name="Budget cap",
            rule={"type": "budget_threshold", "field": "parameters.budget", "operator": "<=", "value": 1000},
        )
        result = compute_health(snapshot(constraints=(constraint,), parameters={"budget": 5000}), NOW)

        assert result.health_signal == 0
        assert len(result.trace) == 1
        assert result.violations[0].constraint_name == "Budget cap"

    def test_review_age_decays_one_point_per_thirty_days(self):
        result = compute_health(snapshot(last_reviewed_at=NOW - timedelta(days=95)), NOW)

        assert result.health_signal == 97

    def test_expiry_replaces_review_age_decay(self):
        result = compute_health(
            snapshot(last_reviewed_at=NOW - timedelta(days=95), expiry_date=NOW + timedelta(days=10)),
            NOW
        )

        assert result.health_signal == 91

    def test_health_never_leaves_range(self):
        assumptions = tuple(specific(AssumptionStatus.BROKEN) for _ in range(3))
        deps = (DependencySnapshot(id="x", title="X", lifecycle=DecisionLifecycle.AT_RISK, health_signal=20),)
        result = compute_health(
            snapshot(assumptions=assumptions, dependencies=deps, expiry_date=NOW - timedelta(days=400)),
            NOW
        )

        assert result.health_signal == 0
