"""
Unit of Work Pattern + Repositories - Infrastructure Layer
==========================================================

One UnitOfWork == one transaction. Services collect DecisionChanged events
on the UnitOfWork; they are published only after a successful commit.
"""
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from sqlalchemy import delete, func, or_, select, text, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from domain.enums import AssumptionScope, DependencyRelation, RetirementOutcome
from events import DecisionChanged, EventBus, event_bus
from logging_config import get_logger

logger = get_logger(__name__)


class UnitOfWork:
    """
    Thin Unit of Work around an AsyncSession.

    Usage:
        async with UnitOfWork(AsyncSessionLocal) as uow:
            decision = await uow.decisions.get_for_update(uow.session, decision_id)
            ...
            uow.record(decision_changed(decision.id, DecisionChangeType.UPDATED))
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        bus: Optional[EventBus] = None
    ):
        self._session_factory = session_factory
        self._session: AsyncSession | None = None
        self._bus = bus or event_bus
        self._events: list[DecisionChanged] = []

        self.decisions = DecisionRepository()
        self.assumptions = AssumptionRepository()
        self.dependencies = DependencyRepository()
        self.constraints = ConstraintRepository()
        self.conflicts = ConflictRepository()
        self.reviews = ReviewRepository()
        self.edit_requests = EditRequestRepository()
        self.evaluations = EvaluationRecordRepository()
        self.versions = DecisionVersionRepository()
        self.audit = AuditLogger()

    async def __aenter__(self) -> "UnitOfWork":
        self._session = self._session_factory()
        self._events = []
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        committed = False
        try:
            if exc_type is None:
                if self._session:
                    await self._session.commit()
                    committed = True
            else:
                if self._session:
                    await self._session.rollback()
        finally:
            if self._session:
                await self._session.close()
                self._session = None

        events, self._events = self._events, []
        if committed:
            self._bus.publish_all(events)

    @property
    def session(self) -> AsyncSession:
        if self._session is None:
            raise RuntimeError(
                "Session not available. Use 'async with UnitOfWork() as uow:' pattern."
            )
        return self._session

    def record(self, event: DecisionChanged) -> None:
        """Queue an event for publication after commit"""
        self._events.append(event)

    @property
    def pending_events(self) -> list[DecisionChanged]:
        return list(self._events)


def _dialect_insert(session: AsyncSession):
    """Dialect-specific INSERT supporting ON CONFLICT DO NOTHING"""
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise RuntimeError(f"Unsupported dialect for conflict ingestion: {dialect}")
    return insert


def normalize_pair(a, b) -> tuple:
    """Order a pair so (a, b) and (b, a) hit the same unique index entry"""
    return (a, b) if str(a) < str(b) else (b, a)


# =============================================================================
# Decisions
# =============================================================================

class DecisionRepository:

    async def get(self, session, decision_id):
        from models import Decision

        stmt = select(Decision).where(Decision.id == decision_id)
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_for_update(self, session, decision_id):
        """Pessimistic lock (SELECT ... FOR UPDATE); a no-op on SQLite."""
        from models import Decision

        stmt = (
            select(Decision)
            .where(Decision.id == decision_id)
            .with_for_update()
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    async def bulk_get(self, session, decision_ids) -> list:
        from models import Decision

        if not decision_ids:
            return []
        stmt = select(Decision).where(Decision.id.in_(list(decision_ids)))
        result = await session.execute(stmt)
        return list(result.scalars().all())

    async def list(self, session, lifecycle: Optional[str] = None, include_retired: bool = True) -> list:
        from models import Decision

        stmt = select(Decision).order_by(Decision.created_at.desc())
        if lifecycle:
            stmt = stmt.where(Decision.lifecycle == lifecycle)
        if not include_retired:
            stmt = stmt.where(Decision.lifecycle != "RETIRED")
        result = await session.execute(stmt)
        return list(result.scalars().all())

    async def ids_not_retired(self, session) -> list:
        from models import Decision

        stmt = select(Decision.id).where(Decision.lifecycle != "RETIRED")
        result = await session.execute(stmt)
        return [row[0] for row in result.all()]

    async def save(self, session, decision) -> None:
        session.add(decision)
        await session.flush()

    async def update(self, session, decision) -> None:
        await session.flush()

    async def mark_needs_evaluation(self, session, decision_ids) -> int:
        from models import Decision

        ids = list(decision_ids)
        if not ids:
            return 0
        result = await session.execute(
            update(Decision)
            .where(Decision.id.in_(ids))
            .where(Decision.lifecycle != "RETIRED")
            .values(needs_evaluation=True)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def delete(self, session, decision) -> None:
        """Remove the decision and every row that references it"""
        from models import (
            ConstraintViolation, Decision, DecisionAssumption, DecisionConflict,
            DecisionReview, DecisionVersion, Dependency, EditRequest, EvaluationRecord,
            GovernanceAuditLog, RetirementRecord,
        )

        decision_id = decision.id
        for model in (DecisionAssumption, ConstraintViolation, DecisionReview,
                      RetirementRecord, EditRequest, EvaluationRecord, DecisionVersion):
            await session.execute(delete(model).where(model.decision_id == decision_id))
        await session.execute(
            delete(Dependency).where(or_(
                Dependency.source_decision_id == decision_id,
                Dependency.target_decision_id == decision_id,
            ))
        )
        await session.execute(
            delete(DecisionConflict).where(or_(
                DecisionConflict.decision_a_id == decision_id,
                DecisionConflict.decision_b_id == decision_id,
            ))
        )
        await session.execute(
            update(GovernanceAuditLog)
            .where(GovernanceAuditLog.decision_id == decision_id)
            .values(decision_id=None)
        )
        await session.execute(delete(Decision).where(Decision.id == decision_id))
        session.expunge(decision)

    async def get_retirement(self, session, decision_id):
        from models import RetirementRecord

        stmt = select(RetirementRecord).where(RetirementRecord.decision_id == decision_id)
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    async def add_retirement(self, session, record) -> None:
        session.add(record)
        await session.flush()

    async def list_failed_retirements(self, session) -> list:
        """(Decision, RetirementRecord) pairs for retired decisions whose outcome was failed"""
        from models import Decision, RetirementRecord

        stmt = (
            select(Decision, RetirementRecord)
            .join(RetirementRecord, RetirementRecord.decision_id == Decision.id)
            .where(RetirementRecord.outcome == RetirementOutcome.FAILED.value)
        )
        result = await session.execute(stmt)
        return list(result.all())


# =============================================================================
# Assumptions
# =============================================================================

class AssumptionRepository:

    async def get(self, session, assumption_id):
        from models import Assumption

        stmt = select(Assumption).where(Assumption.id == assumption_id)
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_for_update(self, session, assumption_id):
        from models import Assumption

        stmt = select(Assumption).where(Assumption.id == assumption_id).with_for_update()
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    async def bulk_get(self, session, assumption_ids) -> list:
        from models import Assumption

        if not assumption_ids:
            return []
        stmt = select(Assumption).where(Assumption.id.in_(list(assumption_ids)))
        result = await session.execute(stmt)
        return list(result.scalars().all())

    async def list(self, session, scope: Optional[str] = None, status: Optional[str] = None) -> list:
        from models import Assumption

        stmt = select(Assumption).order_by(Assumption.created_at.desc())
        if scope:
            stmt = stmt.where(Assumption.scope == scope)
        if status:
            stmt = stmt.where(Assumption.status == status)
        result = await session.execute(stmt)
        return list(result.scalars().all())

    async def for_decision(self, session, decision_id) -> list:
        """Universal assumptions plus those linked to this decision"""
        from models import Assumption, DecisionAssumption

        linked = select(DecisionAssumption.assumption_id).where(DecisionAssumption.decision_id == decision_id)
        stmt = (
            select(Assumption)
            .where(or_(
                Assumption.scope == AssumptionScope.UNIVERSAL.value,
                Assumption.id.in_(linked),
            ))
            .order_by(Assumption.created_at)
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())

    async def linked_ids(self, session, decision_id) -> list:
        from models import DecisionAssumption

        stmt = select(DecisionAssumption.assumption_id).where(DecisionAssumption.decision_id == decision_id)
        result = await session.execute(stmt)
        return [row[0] for row in result.all()]

    async def link(self, session, decision_id, assumption_id) -> None:
        from models import DecisionAssumption

        existing = await session.execute(
            select(DecisionAssumption.id)
            .where(DecisionAssumption.decision_id == decision_id)
            .where(DecisionAssumption.assumption_id == assumption_id)
        )
        if existing.first() is None:
            session.add(DecisionAssumption(decision_id=decision_id, assumption_id=assumption_id))
            await session.flush()

    async def unlink_all(self, session, decision_id) -> None:
        from models import DecisionAssumption

        await session.execute(delete(DecisionAssumption).where(DecisionAssumption.decision_id == decision_id))

    async def unlink_assumption(self, session, assumption_id) -> None:
        from models import DecisionAssumption

        await session.execute(delete(DecisionAssumption).where(DecisionAssumption.assumption_id == assumption_id))

    async def owner_ids(self, session, assumption_ids) -> dict:
        """assumption id -> ids of the decisions it is linked to"""
        from models import DecisionAssumption

        ids = list(assumption_ids)
        if not ids:
            return {}
        result = await session.execute(
            select(DecisionAssumption.assumption_id, DecisionAssumption.decision_id)
            .where(DecisionAssumption.assumption_id.in_(ids))
        )
        owners: dict = {}
        for assumption_id, decision_id in result.all():
            owners.setdefault(assumption_id, set()).add(decision_id)
        return owners

    async def referencing_decision_ids(self, session, assumption_ids) -> set:
        """
        Decisions that reference any of the given assumptions.

        A universal assumption is referenced by every non-retired decision.
        """
        from models import Assumption, Decision, DecisionAssumption

        ids = list(assumption_ids)
        if not ids:
            return set()

        universal = await session.execute(
            select(func.count(Assumption.id))
            .where(Assumption.id.in_(ids))
            .where(Assumption.scope == AssumptionScope.UNIVERSAL.value)
        )
        if universal.scalar_one() > 0:
            result = await session.execute(select(Decision.id).where(Decision.lifecycle != "RETIRED"))
            return {row[0] for row in result.all()}

        result = await session.execute(
            select(DecisionAssumption.decision_id).where(DecisionAssumption.assumption_id.in_(ids))
        )
        return {row[0] for row in result.all()}

    async def save(self, session, assumption) -> None:
        session.add(assumption)
        await session.flush()

    async def update(self, session, assumption) -> None:
        await session.flush()

    async def delete(self, session, assumption) -> None:
        from models import Assumption, AssumptionConflict, DecisionAssumption

        assumption_id = assumption.id
        await session.execute(delete(DecisionAssumption).where(DecisionAssumption.assumption_id == assumption_id))
        await session.execute(
            delete(AssumptionConflict).where(or_(
                AssumptionConflict.assumption_a_id == assumption_id,
                AssumptionConflict.assumption_b_id == assumption_id,
            ))
        )
        await session.execute(delete(Assumption).where(Assumption.id == assumption_id))
        session.expunge(assumption)


# =============================================================================
# Dependencies & constraints
# =============================================================================

class DependencyRepository:

    async def for_decision(self, session, decision_id) -> list:
        """(Dependency, target Decision) pairs for edges leaving this decision"""
        from models import Decision, Dependency

        stmt = (
            select(Dependency, Decision)
            .join(Decision, Decision.id == Dependency.target_decision_id)
            .where(Dependency.source_decision_id == decision_id)
            .order_by(Dependency.created_at)
        )
        result = await session.execute(stmt)
        return list(result.all())

    async def dependents_of(self, session, decision_id) -> list:
        """Ids of decisions with an edge pointing at this one"""
        from models import Dependency

        stmt = select(Dependency.source_decision_id).where(Dependency.target_decision_id == decision_id)
        result = await session.execute(stmt)
        return [row[0] for row in result.all()]

    async def depends_on_edges(self, session) -> list:
        """All (source, target) DEPENDS_ON edges"""
        from models import Dependency

        stmt = select(Dependency.source_decision_id, Dependency.target_decision_id).where(
            Dependency.relation == DependencyRelation.DEPENDS_ON.value
        )
        result = await session.execute(stmt)
        return [(row[0], row[1]) for row in result.all()]

    async def add(self, session, source_id, target_id, relation: str):
        from models import Dependency

        existing = await session.execute(
            select(Dependency)
            .where(Dependency.source_decision_id == source_id)
            .where(Dependency.target_decision_id == target_id)
            .where(Dependency.relation == relation)
        )
        edge = existing.scalar_one_or_none()
        if edge is None:
            edge = Dependency(source_decision_id=source_id, target_decision_id=target_id, relation=relation)
            session.add(edge)
            await session.flush()
        return edge

    async def remove_outgoing(self, session, source_id) -> None:
        from models import Dependency

        await session.execute(delete(Dependency).where(Dependency.source_decision_id == source_id))


class ConstraintRepository:

    async def list(self, session) -> list:
        from models import Constraint

        result = await session.execute(select(Constraint).order_by(Constraint.created_at))
        return list(result.scalars().all())

    async def save(self, session, constraint) -> None:
        session.add(constraint)
        await session.flush()

    async def get_violation(self, session, violation_id):
        from models import ConstraintViolation

        stmt = select(ConstraintViolation).where(ConstraintViolation.id == violation_id)
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    async def violations_for_decision(self, session, decision_id, resolved: Optional[bool] = None) -> list:
        from models import ConstraintViolation

        stmt = (
            select(ConstraintViolation)
            .where(ConstraintViolation.decision_id == decision_id)
            .order_by(ConstraintViolation.detected_at.desc())
        )
        if resolved is not None:
            stmt = stmt.where(ConstraintViolation.resolved == resolved)
        result = await session.execute(stmt)
        return list(result.scalars().all())

    async def add_violation(self, session, violation) -> None:
        session.add(violation)
        await session.flush()


# =============================================================================
# Conflicts
# =============================================================================

@dataclass
class OpenConflictIndex:
    """Which decisions are touched by at least one unresolved conflict"""
    decision_ids: set = field(default_factory=set)
    touches_all: bool = False

    def touches(self, decision_id) -> bool:
        return self.touches_all or decision_id in self.decision_ids


class ConflictRepository:

    # --- assumption conflicts -------------------------------------------------

    async def get_assumption_conflict(self, session, conflict_id):
        from models import AssumptionConflict

        stmt = select(AssumptionConflict).where(AssumptionConflict.id == conflict_id).with_for_update()
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_assumption_conflicts(self, session, resolved: Optional[bool] = None) -> list:
        from models import AssumptionConflict

        stmt = select(AssumptionConflict).order_by(AssumptionConflict.detected_at.desc())
        if resolved is True:
            stmt = stmt.where(AssumptionConflict.resolved_at.is_not(None))
        elif resolved is False:
            stmt = stmt.where(AssumptionConflict.resolved_at.is_(None))
        result = await session.execute(stmt)
        return list(result.scalars().all())

    async def insert_assumption_conflict(
        self,
        session,
        assumption_a_id,
        assumption_b_id,
        conflict_type: str,
        confidence_score: float,
        explanation: str,
        metadata: dict,
        now: datetime
    ) -> bool:
        """
        Upsert-on-conflict ingestion: returns False when an open record for
        the pair already exists (including one inserted concurrently).
        """
        from models import AssumptionConflict

        a_id, b_id = normalize_pair(assumption_a_id, assumption_b_id)
        insert = _dialect_insert(session)
        stmt = insert(AssumptionConflict).values(
            id=uuid.uuid4(),
            assumption_a_id=a_id,
            assumption_b_id=b_id,
            conflict_type=conflict_type,
            confidence_score=confidence_score,
            explanation=explanation,
            conflict_metadata=metadata,
            detected_at=now,
        ).on_conflict_do_nothing(
            index_elements=["assumption_a_id", "assumption_b_id"],
            index_where=text("resolved_at IS NULL"),
        )
        result = await session.execute(stmt)
        return result.rowcount == 1

    async def resolved_assumption_pairs(self, session) -> dict:
        """Normalized (a_id, b_id) -> latest resolved_at, for pairs with a resolved record"""
        from models import AssumptionConflict

        stmt = (
            select(
                AssumptionConflict.assumption_a_id,
                AssumptionConflict.assumption_b_id,
                func.max(AssumptionConflict.resolved_at),
            )
            .where(AssumptionConflict.resolved_at.is_not(None))
            .group_by(AssumptionConflict.assumption_a_id, AssumptionConflict.assumption_b_id)
        )
        result = await session.execute(stmt)
        return {(row[0], row[1]): row[2] for row in result.all()}

    async def delete_assumption_conflict(self, session, conflict) -> None:
        from models import AssumptionConflict

        await session.execute(delete(AssumptionConflict).where(AssumptionConflict.id == conflict.id))
        session.expunge(conflict)

    # --- decision conflicts ---------------------------------------------------

    async def get_decision_conflict(self, session, conflict_id):
        from models import DecisionConflict

        stmt = select(DecisionConflict).where(DecisionConflict.id == conflict_id).with_for_update()
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_decision_conflicts(self, session, decision_id=None, resolved: Optional[bool] = None) -> list:
        from models import DecisionConflict

        stmt = select(DecisionConflict).order_by(DecisionConflict.detected_at.desc())
        if decision_id is not None:
            stmt = stmt.where(or_(
                DecisionConflict.decision_a_id == decision_id,
                DecisionConflict.decision_b_id == decision_id,
            ))
        if resolved is True:
            stmt = stmt.where(DecisionConflict.resolved_at.is_not(None))
        elif resolved is False:
            stmt = stmt.where(DecisionConflict.resolved_at.is_(None))
        result = await session.execute(stmt)
        return list(result.scalars().all())

    async def insert_decision_conflict(
        self,
        session,
        decision_a_id,
        decision_b_id,
        conflict_type: str,
        confidence_score: float,
        explanation: str,
        metadata: dict,
        now: datetime
    ) -> bool:
        from models import DecisionConflict

        a_id, b_id = normalize_pair(decision_a_id, decision_b_id)
        insert = _dialect_insert(session)
        stmt = insert(DecisionConflict).values(
            id=uuid.uuid4(),
            decision_a_id=a_id,
            decision_b_id=b_id,
            conflict_type=conflict_type,
            confidence_score=confidence_score,
            explanation=explanation,
            conflict_metadata=metadata,
            detected_at=now,
        ).on_conflict_do_nothing(
            index_elements=["decision_a_id", "decision_b_id"],
            index_where=text("resolved_at IS NULL"),
        )
        result = await session.execute(stmt)
        return result.rowcount == 1

    async def delete_decision_conflict(self, session, conflict) -> None:
        from models import DecisionConflict

        await session.execute(delete(DecisionConflict).where(DecisionConflict.id == conflict.id))
        session.expunge(conflict)

    # --- per-decision views ---------------------------------------------------

    async def open_conflicts_for_decision(self, session, decision_id) -> list:
        """
        Unresolved conflicts touching the decision, directly or through any
        of its assumptions (universal ones included).
        """
        from models import Assumption, AssumptionConflict, DecisionAssumption, DecisionConflict

        decision_conflicts = await self.list_decision_conflicts(session, decision_id=decision_id, resolved=False)

        linked = select(DecisionAssumption.assumption_id).where(DecisionAssumption.decision_id == decision_id)
        universal = select(Assumption.id).where(Assumption.scope == AssumptionScope.UNIVERSAL.value)
        stmt = (
            select(AssumptionConflict)
            .where(AssumptionConflict.resolved_at.is_(None))
            .where(or_(
                AssumptionConflict.assumption_a_id.in_(linked),
                AssumptionConflict.assumption_b_id.in_(linked),
                AssumptionConflict.assumption_a_id.in_(universal),
                AssumptionConflict.assumption_b_id.in_(universal),
            ))
        )
        result = await session.execute(stmt)
        return list(decision_conflicts) + list(result.scalars().all())

    async def open_conflict_index(self, session) -> OpenConflictIndex:
        from models import Assumption, AssumptionConflict, DecisionAssumption, DecisionConflict

        index = OpenConflictIndex()

        rows = await session.execute(
            select(DecisionConflict.decision_a_id, DecisionConflict.decision_b_id)
            .where(DecisionConflict.resolved_at.is_(None))
        )
        for a_id, b_id in rows.all():
            index.decision_ids.update((a_id, b_id))

        rows = await session.execute(
            select(AssumptionConflict.assumption_a_id, AssumptionConflict.assumption_b_id)
            .where(AssumptionConflict.resolved_at.is_(None))
        )
        assumption_ids = set()
        for a_id, b_id in rows.all():
            assumption_ids.update((a_id, b_id))
        if not assumption_ids:
            return index

        universal = await session.execute(
            select(func.count(Assumption.id))
            .where(Assumption.id.in_(assumption_ids))
            .where(Assumption.scope == AssumptionScope.UNIVERSAL.value)
        )
        if universal.scalar_one() > 0:
            index.touches_all = True
            return index

        rows = await session.execute(
            select(DecisionAssumption.decision_id).where(DecisionAssumption.assumption_id.in_(assumption_ids))
        )
        index.decision_ids.update(row[0] for row in rows.all())
        return index


# =============================================================================
# Reviews, edit requests, evaluation history
# =============================================================================

class ReviewRepository:

    async def add(self, session, review) -> None:
        session.add(review)
        await session.flush()

    async def for_decision(self, session, decision_id) -> list:
        from models import DecisionReview

        stmt = (
            select(DecisionReview)
            .where(DecisionReview.decision_id == decision_id)
            .order_by(DecisionReview.created_at.desc())
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())


class EditRequestRepository:

    async def get_for_update(self, session, audit_id):
        from models import EditRequest

        stmt = select(EditRequest).where(EditRequest.id == audit_id).with_for_update()
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    async def add(self, session, edit_request) -> None:
        session.add(edit_request)
        await session.flush()

    async def pending(self, session) -> list:
        from models import EditRequest

        stmt = (
            select(EditRequest)
            .where(EditRequest.resolved.is_(False))
            .order_by(EditRequest.requested_at)
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())


class EvaluationRecordRepository:

    async def add(self, session, record) -> None:
        session.add(record)
        await session.flush()

    async def for_decision(self, session, decision_id, limit: int = 50) -> list:
        from models import EvaluationRecord

        stmt = (
            select(EvaluationRecord)
            .where(EvaluationRecord.decision_id == decision_id)
            .order_by(EvaluationRecord.evaluated_at.desc())
            .limit(limit)
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())


class DecisionVersionRepository:

    async def next_number(self, session, decision_id) -> int:
        from models import DecisionVersion

        result = await session.execute(
            select(func.coalesce(func.max(DecisionVersion.version_number), 0))
            .where(DecisionVersion.decision_id == decision_id)
        )
        return result.scalar_one() + 1

    async def add(self, session, version) -> None:
        session.add(version)
        await session.flush()

    async def for_decision(self, session, decision_id) -> list:
        from models import DecisionVersion

        stmt = (
            select(DecisionVersion)
            .where(DecisionVersion.decision_id == decision_id)
            .order_by(DecisionVersion.version_number.desc())
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())


class AuditLogger:
    """Governance audit trail, written in the caller's transaction"""

    async def log(
        self,
        session,
        decision_id,
        action: str,
        actor_id: str,
        now: datetime,
        **details
    ):
        from models import GovernanceAuditLog

        entry = GovernanceAuditLog(
            decision_id=decision_id,
            action=action,
            actor_id=actor_id,
            details=details,
            created_at=now
        )
        session.add(entry)
        await session.flush()

        logger.info(
            "governance_action",
            action=action,
            decision_id=str(decision_id) if decision_id else None,
            actor=actor_id
        )
        return entry

    async def for_decision(self, session, decision_id) -> list:
        from models import GovernanceAuditLog

        stmt = (
            select(GovernanceAuditLog)
            .where(GovernanceAuditLog.decision_id == decision_id)
            .order_by(GovernanceAuditLog.created_at.desc())
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())


def create_uow_provider() -> "UoWProvider":
    """
    Factory for a UnitOfWork provider.

    Usage in FastAPI:
        get_uow = create_uow_provider()

        async def endpoint(...):
            async with get_uow() as uow:
                ...
    """
    from database import AsyncSessionLocal

    class UoWProvider:
        def __init__(self, factory):
            self._factory = factory

        def __call__(self) -> UnitOfWork:
            return UnitOfWork(self._factory)

    return UoWProvider(AsyncSessionLocal)
