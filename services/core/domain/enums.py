"""
Decision Engine vocabulary

Canonical enums shared by the domain layer, the ORM models and the API.
Aliases are normalized here, at the ingestion boundary, so nothing
downstream branches on alternate spellings.
"""
from enum import Enum


class DecisionLifecycle(str, Enum):
    STABLE = "STABLE"
    UNDER_REVIEW = "UNDER_REVIEW"
    AT_RISK = "AT_RISK"
    INVALIDATED = "INVALIDATED"
    RETIRED = "RETIRED"


TERMINAL_LIFECYCLES = frozenset({DecisionLifecycle.INVALIDATED, DecisionLifecycle.RETIRED})


class GovernanceTier(str, Enum):
    STANDARD = "standard"
    HIGH_IMPACT = "high_impact"
    CRITICAL = "critical"


GATED_TIERS = frozenset({GovernanceTier.HIGH_IMPACT, GovernanceTier.CRITICAL})


class AssumptionStatus(str, Enum):
    VALID = "VALID"
    SHAKY = "SHAKY"
    BROKEN = "BROKEN"

    @classmethod
    def normalize(cls, value) -> "AssumptionStatus":
        """Accept legacy spellings (HOLDING == VALID), any case."""
        if isinstance(value, cls):
            return value
        raw = str(value or "").strip().upper()
        if raw == "HOLDING":
            return cls.VALID
        try:
            return cls(raw)
        except ValueError:
            from exceptions import ValidationError
            raise ValidationError(
                f"Unknown assumption status '{value}'",
                field="status",
                details={"allowed": [s.value for s in cls] + ["HOLDING"]}
            )


class AssumptionScope(str, Enum):
    UNIVERSAL = "UNIVERSAL"
    DECISION_SPECIFIC = "DECISION_SPECIFIC"

    @classmethod
    def normalize(cls, value) -> "AssumptionScope":
        if isinstance(value, cls):
            return value
        raw = str(value or "").strip().upper().replace("-", "_")
        try:
            return cls(raw)
        except ValueError:
            from exceptions import ValidationError
            raise ValidationError(
                f"Unknown assumption scope '{value}'",
                field="scope",
                details={"allowed": [s.value for s in cls]}
            )


class DependencyRelation(str, Enum):
    DEPENDS_ON = "DEPENDS_ON"
    BLOCKS = "BLOCKS"


class AssumptionConflictType(str, Enum):
    CONTRADICTORY = "CONTRADICTORY"
    MUTUALLY_EXCLUSIVE = "MUTUALLY_EXCLUSIVE"
    INCOMPATIBLE = "INCOMPATIBLE"


class DecisionConflictType(str, Enum):
    CONTRADICTORY = "CONTRADICTORY"
    RESOURCE_COMPETITION = "RESOURCE_COMPETITION"
    OBJECTIVE_UNDERMINING = "OBJECTIVE_UNDERMINING"
    PREMISE_INVALIDATION = "PREMISE_INVALIDATION"
    MUTUALLY_EXCLUSIVE = "MUTUALLY_EXCLUSIVE"


class AssumptionConflictAction(str, Enum):
    VALIDATE_A = "VALIDATE_A"
    VALIDATE_B = "VALIDATE_B"
    MERGE = "MERGE"
    DEPRECATE_BOTH = "DEPRECATE_BOTH"
    KEEP_BOTH = "KEEP_BOTH"


class DecisionConflictAction(str, Enum):
    PRIORITIZE_A = "PRIORITIZE_A"
    PRIORITIZE_B = "PRIORITIZE_B"
    MODIFY_BOTH = "MODIFY_BOTH"
    DEPRECATE_BOTH = "DEPRECATE_BOTH"
    KEEP_BOTH = "KEEP_BOTH"


class ReviewOutcome(str, Enum):
    REAFFIRMED = "reaffirmed"
    REVISED = "revised"
    ESCALATED = "escalated"
    DEFERRED = "deferred"


class ReviewType(str, Enum):
    ROUTINE = "routine"
    TRIGGERED = "triggered"
    CONFLICT = "conflict"
    EXPIRY = "expiry"


class RetirementOutcome(str, Enum):
    FAILED = "failed"
    SUCCEEDED = "succeeded"
    PARTIALLY_SUCCEEDED = "partially_succeeded"
    SUPERSEDED = "superseded"
    NO_LONGER_RELEVANT = "no_longer_relevant"


class GovernanceAction(str, Enum):
    EDIT_REQUESTED = "edit_requested"
    EDIT_APPROVED = "edit_approved"
    EDIT_REJECTED = "edit_rejected"
    DECISION_LOCKED = "decision_locked"
    DECISION_UNLOCKED = "decision_unlocked"
    DECISION_INVALIDATED = "decision_invalidated"


class VersionChangeType(str, Enum):
    CREATED = "created"
    FIELD_UPDATED = "field_updated"


class ActorRole(str, Enum):
    MEMBER = "member"
    LEAD = "lead"
    ADMIN = "admin"


ELEVATED_ROLES = frozenset({ActorRole.LEAD, ActorRole.ADMIN})
