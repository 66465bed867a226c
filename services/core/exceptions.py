"""
Domain Exceptions for the Decision Engine

All business-rule failures derive from BaseDecisionException and carry a
machine-readable code (the class name), a message and a details dict.
"""


class BaseDecisionException(Exception):
    """Base class for every decision-engine business error"""

    def __init__(self, message: str, details: dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self):
        """Serialize for an API response"""
        return {
            "error": {
                "code": self.__class__.__name__,
                "message": self.message,
                "details": self.details
            }
        }


# =============================================================================
# Validation / lookup
# =============================================================================

class ValidationError(BaseDecisionException):
    """Missing or invalid input, rejected before any write"""

    def __init__(self, message: str, field: str = None, details: dict = None):
        details = dict(details or {})
        if field:
            details["field"] = field
        super().__init__(message=message, details=details)


class DecisionNotFound(BaseDecisionException):
    def __init__(self, decision_id: str):
        super().__init__(
            message="Decision does not exist",
            details={"decision_id": str(decision_id)}
        )


class AssumptionNotFound(BaseDecisionException):
    def __init__(self, assumption_id: str):
        super().__init__(
            message="Assumption does not exist",
            details={"assumption_id": str(assumption_id)}
        )


class ConflictNotFoundError(BaseDecisionException):
    """Resolving or dismissing a conflict that no longer exists"""

    def __init__(self, conflict_id: str, kind: str):
        super().__init__(
            message=f"{kind} conflict does not exist",
            details={"conflict_id": str(conflict_id), "kind": kind}
        )


class ConflictAlreadyResolved(BaseDecisionException):
    def __init__(self, conflict_id: str, kind: str):
        super().__init__(
            message=f"{kind} conflict has already been resolved",
            details={"conflict_id": str(conflict_id), "kind": kind}
        )


class ConstraintViolationNotFound(BaseDecisionException):
    def __init__(self, violation_id: str):
        super().__init__(
            message="Constraint violation does not exist",
            details={"violation_id": str(violation_id)}
        )


class EditRequestNotFound(BaseDecisionException):
    def __init__(self, audit_id: str):
        super().__init__(
            message="Edit request does not exist",
            details={"audit_id": str(audit_id)}
        )


# =============================================================================
# Lifecycle / governance
# =============================================================================

class InvalidLifecycleTransition(BaseDecisionException):
    """Operation not allowed from the decision's current lifecycle"""

    def __init__(self, decision_id: str, current_state: str, requested: str):
        super().__init__(
            message=f"Cannot {requested} a decision in lifecycle {current_state}",
            details={
                "decision_id": str(decision_id),
                "current_state": current_state,
                "requested": requested
            }
        )


class LockedError(BaseDecisionException):
    """Mutation attempted on a locked decision by a non-elevated actor"""

    def __init__(self, decision_id: str, locked_at: str, lock_reason: str = None):
        super().__init__(
            message="Decision is locked; only a lead can modify it",
            details={
                "decision_id": str(decision_id),
                "locked_at": locked_at,
                "lock_reason": lock_reason
            }
        )


class InsufficientPrivilege(BaseDecisionException):
    """Operation reserved for elevated actors"""

    def __init__(self, operation: str, actor_id: str):
        super().__init__(
            message=f"Operation '{operation}' requires an elevated actor",
            details={"operation": operation, "actor_id": actor_id}
        )


class GovernanceApprovalRequired(BaseDecisionException):
    """
    Tier-gated edit by a non-elevated actor.

    Not a failure: the service catches it and turns the change into a pending
    EditRequest.
    """

    def __init__(self, decision_id: str, governance_tier: str):
        super().__init__(
            message="Change requires approval by a lead",
            details={
                "decision_id": str(decision_id),
                "governance_tier": governance_tier
            }
        )


class EditRequestAlreadyResolved(BaseDecisionException):
    def __init__(self, audit_id: str, approved: bool):
        super().__init__(
            message="Edit request has already been resolved",
            details={"audit_id": str(audit_id), "approved": approved}
        )


# =============================================================================
# Conflict detection oracle
# =============================================================================

class DetectionOracleUnavailable(BaseDecisionException):
    """The external conflict-detection oracle failed or timed out"""

    def __init__(self, reason: str):
        super().__init__(
            message="Conflict detection oracle unavailable",
            details={"reason": reason}
        )


# =============================================================================
# HTTP Status Mapping
# =============================================================================

EXCEPTION_TO_STATUS = {
    ValidationError: 400,
    InsufficientPrivilege: 403,
    DecisionNotFound: 404,
    AssumptionNotFound: 404,
    ConflictNotFoundError: 404,
    ConstraintViolationNotFound: 404,
    EditRequestNotFound: 404,
    InvalidLifecycleTransition: 409,
    EditRequestAlreadyResolved: 409,
    ConflictAlreadyResolved: 409,
    LockedError: 423,
    GovernanceApprovalRequired: 202,
    DetectionOracleUnavailable: 503,
}
