from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import Optional, List, Dict, Any
from datetime import datetime


class RequestModel(BaseModel):
    """Request bodies accept camelCase (as sent by the UI) or snake_case keys"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    def to_service(self) -> Dict[str, Any]:
        return self.model_dump(exclude_unset=True, mode="json")


# =============================================================================
# Decisions
# =============================================================================

class DependencyIn(RequestModel):
    decision_id: str
    relation: str = "DEPENDS_ON"


class DecisionCreate(RequestModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: str = ""
    category: Optional[str] = None
    parameters: Dict[str, Any] = Field(default_factory=dict)
    governance_tier: str = "standard"
    expiry_date: Optional[datetime] = None
    health_signal: int = Field(100, ge=0, le=100)
    assumption_ids: List[str] = Field(default_factory=list)
    dependencies: List[DependencyIn] = Field(default_factory=list)


class DecisionUpdate(RequestModel):
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    category: Optional[str] = None
    parameters: Optional[Dict[str, Any]] = None
    governance_tier: Optional[str] = None
    expiry_date: Optional[datetime] = None
    assumption_ids: Optional[List[str]] = None
    dependencies: Optional[List[DependencyIn]] = None
    justification: Optional[str] = None

    def to_service(self) -> Dict[str, Any]:
        return self.model_dump(exclude_unset=True, exclude={"justification"}, mode="json")


class LockRequest(RequestModel):
    lock: bool
    reason: str


class ReviewRequest(RequestModel):
    comment: Optional[str] = None
    review_type: str = "routine"
    review_outcome: str
    deferral_reason: Optional[str] = None
    next_review_date: Optional[datetime] = None


class RetireRequest(RequestModel):
    outcome: str
    # keys stay as sent: whatHappened, whyOutcome, lessonsLearned, keyIssues, recommendations, failureReasons
    conclusions: Dict[str, Any] = Field(default_factory=dict)


class InvalidateRequest(RequestModel):
    reason: str


class BatchEvaluateRequest(RequestModel):
    force: bool = False


# =============================================================================
# Assumptions
# =============================================================================

class AssumptionCreate(RequestModel):
    description: str = Field(..., min_length=1)
    status: str = "VALID"
    scope: str = "DECISION_SPECIFIC"
    category: Optional[str] = None
    parameters: Dict[str, Any] = Field(default_factory=dict)
    decision_id: Optional[str] = None


class AssumptionUpdate(RequestModel):
    description: Optional[str] = None
    status: Optional[str] = None
    scope: Optional[str] = None
    category: Optional[str] = None
    parameters: Optional[Dict[str, Any]] = None


# =============================================================================
# Conflicts, governance, constraints, clock
# =============================================================================

class ConflictResolveRequest(RequestModel):
    action: str
    notes: Optional[str] = None


class EditRequestResolve(RequestModel):
    approved: bool
    notes: Optional[str] = None


class DependencyCreate(RequestModel):
    source_decision_id: str
    target_decision_id: str
    relation: str = "DEPENDS_ON"
    justification: Optional[str] = None


class ConstraintCreate(RequestModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    constraint_type: str = "OTHER"
    rule: Optional[Dict[str, Any]] = None
    is_immutable: bool = True


class TimeSimulationRequest(RequestModel):
    offset_days: float = 0
