"""
Health & Freshness Calculator - pure domain layer
=================================================

No session, no I/O, no logging, no hidden clock: every function takes the
reference time ``now`` explicitly so simulated and replayed clocks give the
same answers.

Two families of functions live here:

* presentation metrics (decay/freshness, consistency, drift) derived from a
  decision's stored health signal and last review;
* the deterministic health recompute used by evaluation (constraints,
  dependencies, assumptions, time decay), which returns the new health
  signal plus an explanation trace.
"""
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from domain.constraints import ConstraintSnapshot, ConstraintViolationFinding, constraint_validator
from domain.enums import (
    AssumptionScope,
    AssumptionStatus,
    DecisionLifecycle,
    DependencyRelation,
)

HEALTH_MIN = 0
HEALTH_MAX = 100

DECAY_POINTS_PER_DAY = 2
DRIFT_THRESHOLD = 10

REVIEW_DECAY_DAYS_PER_POINT = 30
SPECIFIC_ASSUMPTION_MAX_PENALTY = 60

EXPIRY_WARNING_DAYS = 90
EXPIRY_CRITICAL_DAYS = 30

SECONDS_PER_DAY = 86400


# =============================================================================
# Snapshots
# =============================================================================

@dataclass(frozen=True)
class AssumptionSnapshot:
    id: Any
    status: AssumptionStatus
    scope: AssumptionScope


@dataclass(frozen=True)
class DependencySnapshot:
    id: Any
    title: str
    lifecycle: DecisionLifecycle
    health_signal: int
    relation: DependencyRelation = DependencyRelation.DEPENDS_ON


@dataclass(frozen=True)
class DecisionSnapshot:
    """Everything evaluation needs to know about one decision, detached from the ORM."""
    id: Any
    title: str
    lifecycle: DecisionLifecycle
    health_signal: int
    last_reviewed_at: datetime
    description: str = ""
    expiry_date: Optional[datetime] = None
    category: Optional[str] = None
    parameters: dict = field(default_factory=dict)
    assumptions: tuple = ()
    dependencies: tuple = ()
    constraints: tuple = ()
    open_conflict_count: int = 0

    def constraint_context(self) -> dict:
        return {
            "id": str(self.id),
            "title": self.title,
            "description": self.description or "",
            "category": self.category,
            "parameters": dict(self.parameters or {}),
        }


@dataclass(frozen=True)
class EvaluationStep:
    step: str
    passed: bool
    details: str

    def to_dict(self) -> dict:
        return {"step": self.step, "passed": self.passed, "details": self.details}


@dataclass(frozen=True)
class HealthMetrics:
    decay: int
    consistency: int
    drift: int
    drifting: bool
    days_since_review: int

    def to_dict(self) -> dict:
        return {
            "decay": self.decay,
            "consistency": self.consistency,
            "drift": self.drift,
            "drifting": self.drifting,
            "days_since_review": self.days_since_review,
            "freshness_band": freshness_band(self.decay),
            "consistency_band": consistency_band(self.consistency),
        }


@dataclass
class HealthComputation:
    health_signal: int
    trace: list = field(default_factory=list)
    violations: list = field(default_factory=list)

    def trace_dicts(self) -> list[dict]:
        return [step.to_dict() for step in self.trace]


# =============================================================================
# Time helpers
# =============================================================================

def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes (as returned by SQLite) as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def elapsed_days(since: datetime, now: datetime) -> float:
    return (as_utc(now) - as_utc(since)).total_seconds() / SECONDS_PER_DAY


def days_since(since: datetime, now: datetime) -> int:
    """Whole days elapsed; a timestamp in the future counts as zero."""
    return max(0, math.floor(elapsed_days(since, now)))


def clamp_health(value: float) -> int:
    return int(max(HEALTH_MIN, min(HEALTH_MAX, value)))


# =============================================================================
# Presentation metrics
# =============================================================================

def decay(days_since_review: int) -> int:
    """Linear freshness: 100 on the review day, minus 2 points per day, floor 0."""
    return clamp_health(HEALTH_MAX - days_since_review * DECAY_POINTS_PER_DAY)


def freshness(last_reviewed_at: datetime, now: datetime) -> int:
    return decay(days_since(last_reviewed_at, now))


def consistency(lifecycle, health_signal: int) -> int:
    """Coarse alignment between the stated lifecycle and the health signal."""
    lifecycle = DecisionLifecycle(lifecycle)
    if lifecycle == DecisionLifecycle.STABLE and health_signal >= 80:
        return 95
    if lifecycle == DecisionLifecycle.UNDER_REVIEW and health_signal >= 60:
        return 80
    if lifecycle == DecisionLifecycle.AT_RISK and health_signal >= 40:
        return 65
    return 50


def drift(health_signal: int, decay_score: int) -> int:
    return abs(health_signal - decay_score)


def is_drifting(drift_score: int) -> bool:
    return drift_score > DRIFT_THRESHOLD


def freshness_band(decay_score: int) -> str:
    if decay_score >= 85:
        return "Fresh"
    if decay_score >= 65:
        return "Needs review"
    return "Stale"


def consistency_band(consistency_score: int) -> str:
    if consistency_score >= 85:
        return "On track"
    if consistency_score >= 65:
        return "Minor drift"
    return "Needs attention"


def compute_metrics(
    health_signal: int,
    last_reviewed_at: datetime,
    lifecycle,
    now: datetime
) -> HealthMetrics:
    days = days_since(last_reviewed_at, now)
    decay_score = decay(days)
    drift_score = drift(health_signal, decay_score)
    return HealthMetrics(
        decay=decay_score,
        consistency=consistency(lifecycle, health_signal),
        drift=drift_score,
        drifting=is_drifting(drift_score),
        days_since_review=days,
    )


# =============================================================================
# Deterministic health recompute
# =============================================================================

def compute_health(snapshot: DecisionSnapshot, now: datetime) -> HealthComputation:
    """
    Recompute a decision's health signal from its inputs.

    Order: constraints -> dependencies -> assumptions -> time decay -> clamp.
    Health never invalidates a decision by itself; the worst it produces is 0.
    """
    result = HealthComputation(health_signal=HEALTH_MAX)

    violations = _check_constraints(snapshot, result.trace)
    result.violations = violations
    if violations:
        result.health_signal = HEALTH_MIN
        return result

    health = min(HEALTH_MAX, _dependency_ceiling(snapshot, result.trace))

    universal_broken, penalty = _assumption_penalty(snapshot, result.trace)
    if universal_broken:
        result.health_signal = HEALTH_MIN
        return result
    health -= penalty

    health -= _time_decay(snapshot, now, result.trace)

    result.health_signal = clamp_health(health)
    return result


def _check_constraints(snapshot: DecisionSnapshot, trace: list) -> list[ConstraintViolationFinding]:
    violations = constraint_validator.validate_all(snapshot.constraints, snapshot.constraint_context())
    if violations:
        names = ", ".join(v.constraint_name for v in violations)
        trace.append(EvaluationStep("constraint_validation", False, f"{len(violations)} constraint(s) violated: {names}"))
    else:
        trace.append(EvaluationStep("constraint_validation", True, f"All {len(snapshot.constraints)} constraints satisfied"))
    return violations


def _dependency_ceiling(snapshot: DecisionSnapshot, trace: list) -> int:
    upstream = [d for d in snapshot.dependencies if d.relation == DependencyRelation.DEPENDS_ON]
    if not upstream:
        trace.append(EvaluationStep("dependency_evaluation", True, "No dependencies to evaluate"))
        return HEALTH_MAX

    lowest = min(d.health_signal for d in upstream)
    trace.append(EvaluationStep(
        "dependency_evaluation",
        True,
        f"Evaluated {len(upstream)} dependencies; lowest health signal {lowest}"
    ))
    return lowest


def _assumption_penalty(snapshot: DecisionSnapshot, trace: list) -> tuple[bool, int]:
    universal = [a for a in snapshot.assumptions if a.scope == AssumptionScope.UNIVERSAL]
    specific = [a for a in snapshot.assumptions if a.scope == AssumptionScope.DECISION_SPECIFIC]
    broken_universal = [a for a in universal if a.status == AssumptionStatus.BROKEN]
    broken_specific = [a for a in specific if a.status == AssumptionStatus.BROKEN]

    if broken_universal:
        trace.append(EvaluationStep(
            "assumption_check",
            False,
            f"{len(broken_universal)} universal assumption(s) broken; health forced to 0"
        ))
        return True, 0

    if not specific:
        trace.append(EvaluationStep("assumption_check", True, "No decision-specific assumptions to evaluate"))
        return False, 0

    penalty = math.floor(len(broken_specific) / len(specific) * SPECIFIC_ASSUMPTION_MAX_PENALTY)
    trace.append(EvaluationStep(
        "assumption_check",
        not broken_specific,
        f"{len(broken_specific)} of {len(specific)} decision-specific assumptions broken; penalty -{penalty}"
    ))
    return False, penalty


def expiry_decay(days_until_expiry: float) -> int:
    """Decay accelerating as the expiry date approaches and passes."""
    if days_until_expiry > EXPIRY_WARNING_DAYS:
        return 0
    if days_until_expiry > EXPIRY_CRITICAL_DAYS:
        return math.floor((EXPIRY_WARNING_DAYS - days_until_expiry) / 15)
    if days_until_expiry > 0:
        return (
            math.floor((EXPIRY_WARNING_DAYS - days_until_expiry) / 15)
            + math.floor((EXPIRY_CRITICAL_DAYS - days_until_expiry) / 5)
        )
    max_before_expiry = EXPIRY_WARNING_DAYS // 15 + EXPIRY_CRITICAL_DAYS // 5
    return max_before_expiry + math.floor(abs(days_until_expiry))


def _time_decay(snapshot: DecisionSnapshot, now: datetime, trace: list) -> int:
    if snapshot.expiry_date is not None:
        days_until_expiry = -elapsed_days(snapshot.expiry_date, now)
        amount = expiry_decay(days_until_expiry)
        trace.append(EvaluationStep(
            "health_decay",
            True,
            f"{math.floor(days_until_expiry)} days until expiry; decay -{amount}"
        ))
        return amount

    days = days_since(snapshot.last_reviewed_at, now)
    amount = days // REVIEW_DECAY_DAYS_PER_POINT
    trace.append(EvaluationStep("health_decay", True, f"{days} days since last review; decay -{amount}"))
    return amount
