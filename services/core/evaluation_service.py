"""
Evaluation Service

Bridges the pure health calculator and lifecycle machine to the store:
builds a DecisionSnapshot, recomputes, persists the result and an
EvaluationRecord, and decides whether a decision needs recomputation at all.

Author: Decision Engine Team
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from config import EVALUATION_STALE_HOURS
from domain.constraints import ConstraintSnapshot
from domain.enums import (
    AssumptionScope,
    AssumptionStatus,
    DecisionLifecycle,
    DependencyRelation,
    TERMINAL_LIFECYCLES,
)
from domain.health import (
    AssumptionSnapshot,
    DecisionSnapshot,
    DependencySnapshot,
    as_utc,
    compute_health,
)
from domain.lifecycle import lifecycle_domain_service
from events import DecisionChangeType, decision_changed
from logging_config import get_logger, log_lifecycle_transition

logger = get_logger(__name__)

EXPIRY_WINDOW_DAYS = 30


class EvaluationReason:
    TERMINAL_STATE = "terminal_state"
    FORCED = "forced"
    EXPLICIT_FLAG = "explicit_flag"
    NEVER_EVALUATED = "never_evaluated"
    STALE = "stale"
    NEW_CONFLICTS = "new_conflicts"
    DEPENDENCY_CHANGED = "dependency_changed"
    EXPIRY_WINDOW = "expiry_window"
    FRESH = "fresh"


@dataclass
class EvaluationResult:
    decision_id: str
    old_health: int
    new_health: int
    old_lifecycle: str
    new_lifecycle: str
    trace: list

    @property
    def health_change(self) -> int:
        return self.new_health - self.old_health

    @property
    def lifecycle_changed(self) -> bool:
        return self.old_lifecycle != self.new_lifecycle

    def to_dict(self) -> dict:
        return {
            "healthChange": self.health_change,
            "lifecycleChanged": self.lifecycle_changed,
            "newHealth": self.new_health,
            "newLifecycle": self.new_lifecycle,
            "previousHealth": self.old_health,
            "previousLifecycle": self.old_lifecycle,
            "trace": self.trace,
        }


async def build_snapshot(uow, decision) -> DecisionSnapshot:
    session = uow.session

    assumptions = await uow.assumptions.for_decision(session, decision.id)
    dependencies = await uow.dependencies.for_decision(session, decision.id)
    constraints = await uow.constraints.list(session)
    open_conflicts = await uow.conflicts.open_conflicts_for_decision(session, decision.id)

    return DecisionSnapshot(
        id=decision.id,
        title=decision.title,
        description=decision.description or "",
        lifecycle=DecisionLifecycle(decision.lifecycle),
        health_signal=decision.health_signal,
        last_reviewed_at=as_utc(decision.last_reviewed_at),
        expiry_date=as_utc(decision.expiry_date),
        category=decision.category,
        parameters=dict(decision.parameters or {}),
        assumptions=tuple(
            AssumptionSnapshot(
                id=a.id,
                status=AssumptionStatus.normalize(a.status),
                scope=AssumptionScope.normalize(a.scope),
            )
            for a in assumptions
        ),
        dependencies=tuple(
            DependencySnapshot(
                id=target.id,
                title=target.title,
                lifecycle=DecisionLifecycle(target.lifecycle),
                health_signal=target.health_signal,
                relation=DependencyRelation(edge.relation),
            )
            for edge, target in dependencies
        ),
        constraints=tuple(
            ConstraintSnapshot(
                id=c.id,
                name=c.name,
                rule=c.rule,
                constraint_type=c.constraint_type,
                is_immutable=c.is_immutable,
            )
            for c in constraints
        ),
        open_conflict_count=len(open_conflicts),
    )


async def evaluate_decision(
    uow,
    decision,
    now: datetime,
    triggered_by: str = "manual",
    reason: Optional[str] = None
) -> EvaluationResult:
    """
    Recompute health and lifecycle for one decision inside the caller's
    UnitOfWork. Terminal lifecycles are never changed; health still is.
    """
    session = uow.session
    snapshot = await build_snapshot(uow, decision)
    computation = compute_health(snapshot, now)

    old_health = decision.health_signal
    old_lifecycle = decision.lifecycle

    if computation.violations:
        open_violations = await uow.constraints.violations_for_decision(session, decision.id, resolved=False)
        already_open = {v.constraint_id for v in open_violations}
        from models import ConstraintViolation
        for finding in computation.violations:
            if finding.constraint_id in already_open:
                continue
            await uow.constraints.add_violation(session, ConstraintViolation(
                decision_id=decision.id,
                constraint_id=finding.constraint_id,
                reason=finding.reason,
                details=finding.details,
                detected_at=now,
            ))
        logger.warning("constraint_violations_detected", decision_id=str(decision.id),
                       count=len(computation.violations))

    decision.health_signal = computation.health_signal
    transition = lifecycle_domain_service.apply_evaluation(
        decision,
        computation.health_signal,
        has_open_conflicts=snapshot.open_conflict_count > 0,
        now=now
    )
    decision.last_evaluated_at = now
    decision.needs_evaluation = False

    from models import EvaluationRecord
    await uow.evaluations.add(session, EvaluationRecord(
        decision_id=decision.id,
        triggered_by=triggered_by,
        reason=reason,
        old_health=old_health,
        new_health=computation.health_signal,
        old_lifecycle=old_lifecycle,
        new_lifecycle=decision.lifecycle,
        trace=computation.trace_dicts(),
        evaluated_at=now,
    ))
    await uow.decisions.update(session, decision)

    if transition is not None:
        log_lifecycle_transition(transition.decision_id, transition.from_state, transition.to_state,
                                 actor=triggered_by, reason=transition.reason)

    result = EvaluationResult(
        decision_id=str(decision.id),
        old_health=old_health,
        new_health=computation.health_signal,
        old_lifecycle=old_lifecycle,
        new_lifecycle=decision.lifecycle,
        trace=computation.trace_dicts(),
    )
    uow.record(decision_changed(decision.id, DecisionChangeType.EVALUATED, now,
                                health_change=result.health_change,
                                lifecycle_changed=result.lifecycle_changed))
    logger.info(
        "decision_evaluated",
        decision_id=result.decision_id,
        triggered_by=triggered_by,
        reason=reason,
        old_health=old_health,
        new_health=result.new_health,
        new_lifecycle=result.new_lifecycle
    )
    return result


async def needs_evaluation(
    uow,
    decision,
    now: datetime,
    force: bool = False,
    stale_hours: float = EVALUATION_STALE_HOURS
) -> tuple[bool, str]:
    """(needed, reason) for one decision. Cheapest checks first."""
    if DecisionLifecycle(decision.lifecycle) in TERMINAL_LIFECYCLES:
        return False, EvaluationReason.TERMINAL_STATE
    if force:
        return True, EvaluationReason.FORCED
    if decision.needs_evaluation:
        return True, EvaluationReason.EXPLICIT_FLAG

    last_evaluated = as_utc(decision.last_evaluated_at)
    if last_evaluated is None:
        return True, EvaluationReason.NEVER_EVALUATED

    since_evaluated = as_utc(now) - last_evaluated
    if since_evaluated > timedelta(hours=stale_hours):
        return True, EvaluationReason.STALE

    session = uow.session
    open_conflicts = await uow.conflicts.open_conflicts_for_decision(session, decision.id)
    if any(as_utc(c.detected_at) > last_evaluated for c in open_conflicts):
        return True, EvaluationReason.NEW_CONFLICTS

    for _, target in await uow.dependencies.for_decision(session, decision.id):
        changed_at = as_utc(target.lifecycle_changed_at)
        if changed_at is not None and changed_at > last_evaluated:
            return True, EvaluationReason.DEPENDENCY_CHANGED

    expiry = as_utc(decision.expiry_date)
    if expiry is not None:
        days_to_expiry = (expiry - as_utc(now)).total_seconds() / 86400
        if abs(days_to_expiry) <= EXPIRY_WINDOW_DAYS and since_evaluated > timedelta(hours=24):
            return True, EvaluationReason.EXPIRY_WINDOW

    return False, EvaluationReason.FRESH
