"""
Governance Gate - pure domain layer

Checked before any mutating operation reaches the store:
lock state first, then governance tier.
"""
from dataclasses import dataclass
from enum import Enum

from domain.enums import ELEVATED_ROLES, GATED_TIERS, ActorRole, GovernanceTier
from exceptions import GovernanceApprovalRequired, InsufficientPrivilege, LockedError


class Operation(str, Enum):
    EDIT = "edit"
    DELETE = "delete"
    RETIRE = "retire"
    REVIEW = "review"
    EVALUATE = "evaluate"
    LOCK = "lock"
    UNLOCK = "unlock"
    INVALIDATE = "invalidate"
    RESOLVE_EDIT_REQUEST = "resolve_edit_request"
    VIEW_PENDING_APPROVALS = "view_pending_approvals"
    MANAGE_CONSTRAINTS = "manage_constraints"


PRIVILEGED_OPERATIONS = frozenset({
    Operation.LOCK,
    Operation.UNLOCK,
    Operation.INVALIDATE,
    Operation.RESOLVE_EDIT_REQUEST,
    Operation.VIEW_PENDING_APPROVALS,
    Operation.MANAGE_CONSTRAINTS,
})


@dataclass(frozen=True)
class Actor:
    id: str
    role: ActorRole = ActorRole.MEMBER

    @property
    def is_elevated(self) -> bool:
        return self.role in ELEVATED_ROLES


class GovernanceGate:

    def require_elevated(self, actor: Actor, operation: Operation) -> None:
        if not actor.is_elevated:
            raise InsufficientPrivilege(Operation(operation).value, actor.id)

    def check(self, decision, actor: Actor, operation: Operation) -> None:
        """
        Raises:
            InsufficientPrivilege: privileged operation by a non-elevated actor
            LockedError: decision locked and actor not elevated
            GovernanceApprovalRequired: EDIT on a gated tier by a non-elevated actor
        """
        operation = Operation(operation)

        if operation in PRIVILEGED_OPERATIONS:
            self.require_elevated(actor, operation)
            return

        if actor.is_elevated:
            return

        if decision.locked_at is not None:
            raise LockedError(
                decision_id=str(decision.id),
                locked_at=decision.locked_at.isoformat(),
                lock_reason=decision.lock_reason
            )

        tier = GovernanceTier(decision.governance_tier)
        if operation == Operation.EDIT and tier in GATED_TIERS:
            raise GovernanceApprovalRequired(str(decision.id), tier.value)


governance_gate = GovernanceGate()
