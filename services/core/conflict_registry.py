"""
Conflict Registry

Persists, queries and resolves assumption and decision conflicts. Detection
itself is delegated to the oracle; the registry owns deduplication,
resolution side effects and false-positive dismissal.

Usage:
    async with UnitOfWork(AsyncSessionLocal) as uow:
        created = await conflict_registry.detect_assumption_conflicts(uow, now=clock.now())
"""

import asyncio
from datetime import datetime
from typing import Optional

from config import (
    ASSUMPTION_CONFLICT_MIN_CONFIDENCE,
    CONFLICT_ORACLE_TIMEOUT_SECONDS,
    DECISION_CONFLICT_MIN_CONFIDENCE,
)
from conflict_oracle import (
    AssumptionCandidate,
    ConflictOracle,
    DecisionCandidate,
    get_conflict_oracle,
)
from domain.enums import (
    AssumptionConflictAction,
    AssumptionStatus,
    DecisionConflictAction,
    DecisionLifecycle,
    GovernanceAction,
    TERMINAL_LIFECYCLES,
)
from domain.governance import Actor, Operation, governance_gate
from domain.health import as_utc
from domain.lifecycle import lifecycle_domain_service
from error_handler import CircuitBreaker, CircuitBreakerOpen
from events import DecisionChangeType, decision_changed
from exceptions import (
    ConflictAlreadyResolved,
    ConflictNotFoundError,
    DetectionOracleUnavailable,
    ValidationError,
)
from infrastructure.uow import normalize_pair
from logging_config import get_logger, log_lifecycle_transition

logger = get_logger(__name__)

ASSUMPTION = "Assumption"
DECISION = "Decision"

# (status for A, status for B); None leaves the assumption untouched
_ASSUMPTION_RESOLUTION_EFFECTS = {
    AssumptionConflictAction.VALIDATE_A: (AssumptionStatus.VALID, AssumptionStatus.BROKEN),
    AssumptionConflictAction.VALIDATE_B: (AssumptionStatus.BROKEN, AssumptionStatus.VALID),
    AssumptionConflictAction.MERGE: (AssumptionStatus.VALID, AssumptionStatus.VALID),
    AssumptionConflictAction.DEPRECATE_BOTH: (AssumptionStatus.BROKEN, AssumptionStatus.BROKEN),
    AssumptionConflictAction.KEEP_BOTH: (None, None),
}


def _parse_action(enum_cls, action):
    try:
        return enum_cls(str(action or "").strip().upper())
    except ValueError:
        raise ValidationError(
            f"Unknown resolution action '{action}'",
            field="action",
            details={"allowed": [a.value for a in enum_cls]}
        )


def _changed_since(resolved_at: datetime, *assumptions) -> bool:
    resolved_at = as_utc(resolved_at)
    return any(as_utc(a.updated_at) > resolved_at for a in assumptions)


class ConflictRegistry:

    def __init__(
        self,
        oracle: Optional[ConflictOracle] = None,
        breaker: Optional[CircuitBreaker] = None,
        timeout: float = CONFLICT_ORACLE_TIMEOUT_SECONDS
    ):
        self._oracle = oracle
        self.breaker = breaker or CircuitBreaker(name="conflict_oracle", failure_threshold=3, timeout=60)
        self.timeout = timeout

    @property
    def oracle(self) -> ConflictOracle:
        return self._oracle or get_conflict_oracle()

    async def _consult(self, operation: str, call, candidates) -> Optional[list]:
        """
        Ask the oracle with a bounded timeout. Returns None when it is
        unavailable; the failure is logged, never raised.
        """
        async def bounded():
            return await asyncio.wait_for(call(candidates), timeout=self.timeout)

        try:
            return await self.breaker.call(bounded)
        except CircuitBreakerOpen as e:
            logger.warning("conflict_oracle_circuit_open", operation=operation, error=str(e))
        except asyncio.TimeoutError:
            logger.error("conflict_oracle_timeout", operation=operation, timeout_seconds=self.timeout)
        except DetectionOracleUnavailable as e:
            logger.error("conflict_oracle_unavailable", operation=operation, **e.details)
        except Exception as e:
            logger.error("conflict_oracle_failed", operation=operation, error_type=type(e).__name__,
                         error=str(e), exc_info=e)
        return None

    # -------------------------------------------------------------------------
    # Detection
    # -------------------------------------------------------------------------

    async def detect_assumption_conflicts(self, uow, now: datetime) -> int:
        """Run the oracle over all assumptions; returns the number of new conflict records."""
        session = uow.session
        assumptions = await uow.assumptions.list(session)
        if len(assumptions) < 2:
            return 0

        candidates = [
            AssumptionCandidate(
                id=str(a.id),
                description=a.description,
                status=a.status,
                scope=a.scope,
                category=a.category,
                parameters=a.parameters or {},
            )
            for a in assumptions
        ]
        findings = await self._consult("assumption_conflict_detection", self.oracle.detect_assumption_conflicts, candidates)
        if findings is None:
            return 0

        by_id = {str(a.id): a for a in assumptions}
        resolved_pairs = await uow.conflicts.resolved_assumption_pairs(session)
        created = 0
        already_resolved = 0
        touched = set()
        for finding in findings:
            if finding.confidence_score < ASSUMPTION_CONFLICT_MIN_CONFIDENCE:
                continue
            a, b = by_id.get(finding.entity_a_id), by_id.get(finding.entity_b_id)
            if a is None or b is None or a.id == b.id:
                logger.warning("conflict_finding_unknown_entity", kind=ASSUMPTION,
                               entity_a_id=finding.entity_a_id, entity_b_id=finding.entity_b_id)
                continue

            # a settled pair stays settled until one side is edited again
            resolved_at = resolved_pairs.get(normalize_pair(a.id, b.id))
            if resolved_at is not None and not _changed_since(resolved_at, a, b):
                already_resolved += 1
                continue

            inserted = await uow.conflicts.insert_assumption_conflict(
                session, a.id, b.id,
                conflict_type=finding.conflict_type,
                confidence_score=finding.confidence_score,
                explanation=finding.explanation,
                metadata=finding.metadata,
                now=now
            )
            if inserted:
                created += 1
                touched.update((a.id, b.id))

        if touched:
            decision_ids = await uow.assumptions.referencing_decision_ids(session, touched)
            for decision_id in decision_ids:
                uow.record(decision_changed(decision_id, DecisionChangeType.CONFLICT_DETECTED, now))

        logger.info("assumption_conflicts_detected", candidates=len(candidates),
                    findings=len(findings), created=created, already_resolved=already_resolved)
        return created

    async def detect_decision_conflicts(self, uow, now: datetime, decision_id=None) -> int:
        """
        Run the oracle over all non-terminal decisions. With ``decision_id``
        only findings involving that decision are kept.
        """
        session = uow.session
        decisions = [d for d in await uow.decisions.list(session) if not d.is_terminal]
        if len(decisions) < 2:
            return 0

        candidates = [
            DecisionCandidate(
                id=str(d.id),
                title=d.title,
                description=d.description or "",
                lifecycle=d.lifecycle,
                category=d.category,
                parameters=d.parameters or {},
                created_at=d.created_at,
            )
            for d in decisions
        ]
        findings = await self._consult("decision_conflict_detection", self.oracle.detect_decision_conflicts, candidates)
        if findings is None:
            return 0

        by_id = {str(d.id): d for d in decisions}
        focus = str(decision_id) if decision_id is not None else None
        created = 0
        for finding in findings:
            if finding.confidence_score < DECISION_CONFLICT_MIN_CONFIDENCE:
                continue
            if focus and focus not in (finding.entity_a_id, finding.entity_b_id):
                continue
            a, b = by_id.get(finding.entity_a_id), by_id.get(finding.entity_b_id)
            if a is None or b is None or a.id == b.id:
                logger.warning("conflict_finding_unknown_entity", kind=DECISION,
                               entity_a_id=finding.entity_a_id, entity_b_id=finding.entity_b_id)
                continue

            inserted = await uow.conflicts.insert_decision_conflict(
                session, a.id, b.id,
                conflict_type=finding.conflict_type,
                confidence_score=finding.confidence_score,
                explanation=finding.explanation,
                metadata=finding.metadata,
                now=now
            )
            if inserted:
                created += 1
                for changed in (a, b):
                    uow.record(decision_changed(changed.id, DecisionChangeType.CONFLICT_DETECTED, now))

        logger.info("decision_conflicts_detected", candidates=len(candidates),
                    findings=len(findings), created=created)
        return created

    # -------------------------------------------------------------------------
    # Resolution
    # -------------------------------------------------------------------------

    async def resolve_assumption_conflict(
        self,
        uow,
        conflict_id,
        action,
        notes: Optional[str],
        actor: Actor,
        now: datetime
    ) -> dict:
        """
        Apply the resolution action to both assumptions, close the conflict and
        flag every decision referencing either assumption for re-evaluation.
        """
        action = _parse_action(AssumptionConflictAction, action)
        session = uow.session

        conflict = await uow.conflicts.get_assumption_conflict(session, conflict_id)
        if conflict is None:
            raise ConflictNotFoundError(conflict_id, ASSUMPTION)
        if conflict.resolved:
            raise ConflictAlreadyResolved(conflict_id, ASSUMPTION)

        status_a, status_b = _ASSUMPTION_RESOLUTION_EFFECTS[action]
        for assumption_id, new_status in ((conflict.assumption_a_id, status_a), (conflict.assumption_b_id, status_b)):
            if new_status is None:
                continue
            assumption = await uow.assumptions.get_for_update(session, assumption_id)
            if assumption is not None and assumption.status != new_status.value:
                assumption.status = new_status.value
                assumption.validated_at = now
                assumption.updated_at = now

        conflict.resolved_at = now
        conflict.resolved_by = actor.id
        conflict.resolution_action = action.value
        conflict.resolution_notes = notes
        await session.flush()

        affected = await uow.assumptions.referencing_decision_ids(
            session, [conflict.assumption_a_id, conflict.assumption_b_id]
        )
        await uow.decisions.mark_needs_evaluation(session, affected)
        for decision_id in affected:
            uow.record(decision_changed(decision_id, DecisionChangeType.CONFLICT_RESOLVED, now,
                                        conflict_id=str(conflict.id)))

        logger.info("assumption_conflict_resolved", conflict_id=str(conflict.id), action=action.value,
                    actor=actor.id, decisions_flagged=len(affected))
        return {
            "conflict_id": str(conflict.id),
            "action": action.value,
            "affected_decision_ids": sorted(str(d) for d in affected),
        }

    async def resolve_decision_conflict(
        self,
        uow,
        conflict_id,
        action,
        notes: Optional[str],
        actor: Actor,
        now: datetime
    ) -> dict:
        """
        Close a decision conflict. DEPRECATE_BOTH is an administrative
        invalidation of both decisions and needs an elevated actor.
        """
        action = _parse_action(DecisionConflictAction, action)
        session = uow.session

        conflict = await uow.conflicts.get_decision_conflict(session, conflict_id)
        if conflict is None:
            raise ConflictNotFoundError(conflict_id, DECISION)
        if conflict.resolved:
            raise ConflictAlreadyResolved(conflict_id, DECISION)

        if action == DecisionConflictAction.DEPRECATE_BOTH:
            governance_gate.require_elevated(actor, Operation.INVALIDATE)

        conflict.resolved_at = now
        conflict.resolved_by = actor.id
        conflict.resolution_action = action.value
        conflict.resolution_notes = notes

        decision_ids = [conflict.decision_a_id, conflict.decision_b_id]
        invalidated = []
        if action == DecisionConflictAction.DEPRECATE_BOTH:
            for decision_id in decision_ids:
                decision = await uow.decisions.get_for_update(session, decision_id)
                if decision is None or DecisionLifecycle(decision.lifecycle) in TERMINAL_LIFECYCLES:
                    continue
                reason = f"Deprecated while resolving decision conflict {conflict.id}"
                event = lifecycle_domain_service.transition(
                    decision, DecisionLifecycle.INVALIDATED, reason=reason, now=now
                )
                await uow.audit.log(session, decision.id, GovernanceAction.DECISION_INVALIDATED.value,
                                    actor.id, now, reason=reason, conflict_id=str(conflict.id))
                log_lifecycle_transition(event.decision_id, event.from_state, event.to_state, actor.id, reason)
                invalidated.append(str(decision.id))

        await session.flush()
        await uow.decisions.mark_needs_evaluation(session, decision_ids)
        for decision_id in decision_ids:
            uow.record(decision_changed(decision_id, DecisionChangeType.CONFLICT_RESOLVED, now,
                                        conflict_id=str(conflict.id)))

        logger.info("decision_conflict_resolved", conflict_id=str(conflict.id), action=action.value,
                    actor=actor.id, invalidated=invalidated)
        return {
            "conflict_id": str(conflict.id),
            "action": action.value,
            "affected_decision_ids": sorted(str(d) for d in decision_ids),
            "invalidated_decision_ids": invalidated,
        }

    # -------------------------------------------------------------------------
    # False positives
    # -------------------------------------------------------------------------

    async def dismiss_decision_conflict(self, uow, conflict_id) -> None:
        """Hard delete; the decisions are left untouched."""
        conflict = await uow.conflicts.get_decision_conflict(uow.session, conflict_id)
        if conflict is None:
            raise ConflictNotFoundError(conflict_id, DECISION)
        await uow.conflicts.delete_decision_conflict(uow.session, conflict)
        logger.info("decision_conflict_dismissed", conflict_id=str(conflict_id))

    async def dismiss_assumption_conflict(self, uow, conflict_id) -> None:
        conflict = await uow.conflicts.get_assumption_conflict(uow.session, conflict_id)
        if conflict is None:
            raise ConflictNotFoundError(conflict_id, ASSUMPTION)
        await uow.conflicts.delete_assumption_conflict(uow.session, conflict)
        logger.info("assumption_conflict_dismissed", conflict_id=str(conflict_id))


conflict_registry = ConflictRegistry()
