from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    text,
)
from sqlalchemy.ext.hybrid import hybrid_property
from datetime import datetime, timezone
import uuid

from database import Base
from domain.enums import (
    AssumptionScope,
    AssumptionStatus,
    DecisionLifecycle,
    DependencyRelation,
    GovernanceTier,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# DECISIONS
# =============================================================================

class Decision(Base):
    __tablename__ = "decisions"
    __table_args__ = (
        CheckConstraint("health_signal >= 0 AND health_signal <= 100", name="ck_decision_health_range"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)

    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=False, default="")
    category = Column(String(64), nullable=True, index=True)
    parameters = Column(JSON, nullable=False, default=dict)

    _lifecycle = Column('lifecycle', String(32), nullable=False, default=DecisionLifecycle.STABLE.value, index=True)
    health_signal = Column(Integer, nullable=False, default=100)

    # 🔒 Stored lifecycle is written only by LifecycleDomainService
    @hybrid_property
    def lifecycle(self):
        """Read-only stored lifecycle"""
        return self._lifecycle

    @lifecycle.setter
    def lifecycle(self, value):
        raise RuntimeError(
            f"DIRECT LIFECYCLE ASSIGNMENT BLOCKED: attempted decision.lifecycle = '{value}'. "
            f"Use lifecycle_domain_service.transition(...)"
        )

    # Governance
    governance_tier = Column(String(32), nullable=False, default=GovernanceTier.STANDARD.value)
    locked_at = Column(DateTime(timezone=True), nullable=True)
    locked_by = Column(String(128), nullable=True)
    lock_reason = Column(Text, nullable=True)

    expiry_date = Column(DateTime(timezone=True), nullable=True)

    created_by = Column(String(128), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    # Review tracking
    last_reviewed_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    next_review_date = Column(DateTime(timezone=True), nullable=True)
    consecutive_deferrals = Column(Integer, nullable=False, default=0)

    # Evaluation tracking
    needs_evaluation = Column(Boolean, nullable=False, default=True)
    last_evaluated_at = Column(DateTime(timezone=True), nullable=True)
    lifecycle_changed_at = Column(DateTime(timezone=True), nullable=True)

    @property
    def is_terminal(self) -> bool:
        return self._lifecycle in (DecisionLifecycle.RETIRED.value, DecisionLifecycle.INVALIDATED.value)


# =============================================================================
# ASSUMPTIONS
# =============================================================================

class Assumption(Base):
    """
    A belief decisions rest on.

    UNIVERSAL assumptions apply to every decision by reference;
    DECISION_SPECIFIC ones are attached through DecisionAssumption.
    """
    __tablename__ = "assumptions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    description = Column(Text, nullable=False)
    status = Column(String(16), nullable=False, default=AssumptionStatus.VALID.value, index=True)
    scope = Column(String(32), nullable=False, default=AssumptionScope.DECISION_SPECIFIC.value, index=True)
    category = Column(String(64), nullable=True)
    parameters = Column(JSON, nullable=False, default=dict)
    # {"timeframe": "Q3", "amount": 50000, "direction": "increase", "impactArea": "cost"}

    validated_at = Column(DateTime(timezone=True), nullable=True)
    created_by = Column(String(128), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)


class DecisionAssumption(Base):
    __tablename__ = "decision_assumptions"
    __table_args__ = (
        UniqueConstraint("decision_id", "assumption_id", name="uq_decision_assumption"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    decision_id = Column(Uuid, ForeignKey("decisions.id", ondelete="CASCADE"), nullable=False, index=True)
    assumption_id = Column(Uuid, ForeignKey("assumptions.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


# =============================================================================
# DEPENDENCIES & CONSTRAINTS
# =============================================================================

class Dependency(Base):
    """Directed edge source -> target"""
    __tablename__ = "dependencies"
    __table_args__ = (
        UniqueConstraint("source_decision_id", "target_decision_id", "relation", name="uq_dependency_edge"),
        CheckConstraint("source_decision_id != target_decision_id", name="ck_dependency_not_self"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    source_decision_id = Column(Uuid, ForeignKey("decisions.id", ondelete="CASCADE"), nullable=False, index=True)
    target_decision_id = Column(Uuid, ForeignKey("decisions.id", ondelete="CASCADE"), nullable=False, index=True)
    relation = Column(String(16), nullable=False, default=DependencyRelation.DEPENDS_ON.value)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class Constraint(Base):
    """Organization-wide rule; applies to every decision without a join table"""
    __tablename__ = "constraints"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    constraint_type = Column(String(32), nullable=False, default="OTHER")
    rule = Column(JSON, nullable=True)
    is_immutable = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class ConstraintViolation(Base):
    __tablename__ = "constraint_violations"
    __table_args__ = (
        Index("idx_constraint_violations_open", "decision_id", "resolved"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    decision_id = Column(Uuid, ForeignKey("decisions.id", ondelete="CASCADE"), nullable=False, index=True)
    constraint_id = Column(Uuid, ForeignKey("constraints.id", ondelete="CASCADE"), nullable=False)
    reason = Column(Text, nullable=False)
    details = Column(JSON, nullable=False, default=dict)
    detected_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    resolved = Column(Boolean, nullable=False, default=False)
    resolved_at = Column(DateTime(timezone=True), nullable=True)


# =============================================================================
# CONFLICTS
# =============================================================================
# Pairs are stored normalized (str(a) < str(b)); the partial unique index
# allows at most one open record per pair.

class AssumptionConflict(Base):
    __tablename__ = "assumption_conflicts"
    __table_args__ = (
        Index(
            "uq_open_assumption_conflict_pair",
            "assumption_a_id", "assumption_b_id",
            unique=True,
            postgresql_where=text("resolved_at IS NULL"),
            sqlite_where=text("resolved_at IS NULL"),
        ),
        CheckConstraint("confidence_score >= 0 AND confidence_score <= 1", name="ck_assumption_conflict_confidence"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    assumption_a_id = Column(Uuid, ForeignKey("assumptions.id", ondelete="CASCADE"), nullable=False, index=True)
    assumption_b_id = Column(Uuid, ForeignKey("assumptions.id", ondelete="CASCADE"), nullable=False, index=True)
    conflict_type = Column(String(32), nullable=False)
    confidence_score = Column(Float, nullable=False)
    explanation = Column(Text, nullable=True)
    conflict_metadata = Column("metadata", JSON, nullable=False, default=dict)

    detected_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    resolved_at = Column(DateTime(timezone=True), nullable=True)
    resolved_by = Column(String(128), nullable=True)
    resolution_action = Column(String(32), nullable=True)
    resolution_notes = Column(Text, nullable=True)

    @property
    def resolved(self) -> bool:
        return self.resolved_at is not None


class DecisionConflict(Base):
    __tablename__ = "decision_conflicts"
    __table_args__ = (
        Index(
            "uq_open_decision_conflict_pair",
            "decision_a_id", "decision_b_id",
            unique=True,
            postgresql_where=text("resolved_at IS NULL"),
            sqlite_where=text("resolved_at IS NULL"),
        ),
        CheckConstraint("confidence_score >= 0 AND confidence_score <= 1", name="ck_decision_conflict_confidence"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    decision_a_id = Column(Uuid, ForeignKey("decisions.id", ondelete="CASCADE"), nullable=False, index=True)
    decision_b_id = Column(Uuid, ForeignKey("decisions.id", ondelete="CASCADE"), nullable=False, index=True)
    conflict_type = Column(String(32), nullable=False)
    confidence_score = Column(Float, nullable=False)
    explanation = Column(Text, nullable=True)
    conflict_metadata = Column("metadata", JSON, nullable=False, default=dict)

    detected_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    resolved_at = Column(DateTime(timezone=True), nullable=True)
    resolved_by = Column(String(128), nullable=True)
    resolution_action = Column(String(32), nullable=True)
    resolution_notes = Column(Text, nullable=True)

    @property
    def resolved(self) -> bool:
        return self.resolved_at is not None


# =============================================================================
# REVIEW / RETIREMENT / GOVERNANCE (append-only)
# =============================================================================

class DecisionReview(Base):
    __tablename__ = "decision_reviews"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    decision_id = Column(Uuid, ForeignKey("decisions.id", ondelete="CASCADE"), nullable=False, index=True)
    reviewer = Column(String(128), nullable=False)
    comment = Column(Text, nullable=True)
    review_type = Column(String(16), nullable=False)
    review_outcome = Column(String(16), nullable=False)
    deferral_reason = Column(Text, nullable=True)
    next_review_date = Column(DateTime(timezone=True), nullable=True)
    health_signal_at_review = Column(Integer, nullable=True)
    lifecycle_at_review = Column(String(32), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)


class RetirementRecord(Base):
    __tablename__ = "retirement_records"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    decision_id = Column(Uuid, ForeignKey("decisions.id", ondelete="CASCADE"), nullable=False, unique=True)
    outcome = Column(String(32), nullable=False, index=True)
    conclusions = Column(JSON, nullable=False, default=dict)
    # {
    #   "whatHappened": "...", "whyOutcome": "...",
    #   "lessonsLearned": [...], "keyIssues": [...],
    #   "recommendations": [...], "failureReasons": [...]
    # }
    retired_by = Column(String(128), nullable=False)
    retired_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class EditRequest(Base):
    """Tier-gated change awaiting an elevated actor. ``id`` is the audit id."""
    __tablename__ = "edit_requests"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    decision_id = Column(Uuid, ForeignKey("decisions.id", ondelete="CASCADE"), nullable=False, index=True)
    requested_by = Column(String(128), nullable=False)
    justification = Column(Text, nullable=True)
    governance_tier = Column(String(32), nullable=False)
    changes = Column(JSON, nullable=False, default=dict)
    requested_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    resolved = Column(Boolean, nullable=False, default=False, index=True)
    approved = Column(Boolean, nullable=True)
    resolved_by = Column(String(128), nullable=True)
    resolved_at = Column(DateTime(timezone=True), nullable=True)
    resolution_notes = Column(Text, nullable=True)


class DecisionVersion(Base):
    """
    One row per applied change to a decision's editable fields.
    ``before``/``after`` hold only the fields listed in ``changed_fields``.
    """
    __tablename__ = "decision_versions"
    __table_args__ = (
        UniqueConstraint("decision_id", "version_number", name="uq_decision_version_number"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    decision_id = Column(Uuid, ForeignKey("decisions.id", ondelete="CASCADE"), nullable=False, index=True)
    version_number = Column(Integer, nullable=False)
    change_type = Column(String(32), nullable=False)  # created | field_updated
    changed_fields = Column(JSON, nullable=False, default=list)
    before = Column(JSON, nullable=False, default=dict)
    after = Column(JSON, nullable=False, default=dict)
    changed_by = Column(String(128), nullable=False)
    # set when the change was applied by approving an edit request
    edit_request_id = Column(Uuid, nullable=True)
    changed_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)


class GovernanceAuditLog(Base):
    __tablename__ = "governance_audit_log"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    decision_id = Column(Uuid, ForeignKey("decisions.id", ondelete="SET NULL"), nullable=True, index=True)
    action = Column(String(32), nullable=False)
    actor_id = Column(String(128), nullable=False)
    details = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)


class EvaluationRecord(Base):
    """One row per health recompute, with the step-by-step trace"""
    __tablename__ = "evaluation_records"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    decision_id = Column(Uuid, ForeignKey("decisions.id", ondelete="CASCADE"), nullable=False, index=True)
    triggered_by = Column(String(32), nullable=False)  # manual | scheduler | queue
    reason = Column(String(32), nullable=True)
    old_health = Column(Integer, nullable=False)
    new_health = Column(Integer, nullable=False)
    old_lifecycle = Column(String(32), nullable=False)
    new_lifecycle = Column(String(32), nullable=False)
    trace = Column(JSON, nullable=False, default=list)
    evaluated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
