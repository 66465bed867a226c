"""
Lifecycle State Machine - pure domain layer
===========================================
No session, commit, async, logging or side effects.

The stored lifecycle is only ever written through LifecycleDomainService;
the ORM attribute rejects direct assignment. The *effective* lifecycle is
derived on every read from the stored value, the health signal and open
conflicts.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from domain.enums import TERMINAL_LIFECYCLES, DecisionLifecycle, RetirementOutcome

AT_RISK_BELOW = 65
STABLE_FROM = 85


def effective_lifecycle(stored, health_signal: int, has_open_conflicts: bool) -> DecisionLifecycle:
    """
    Derive the lifecycle a decision presents.

    Terminal states are authoritative. Unresolved conflicts cap the ceiling
    at UNDER_REVIEW whatever the health.
    """
    stored = DecisionLifecycle(stored)
    if stored in TERMINAL_LIFECYCLES:
        return stored

    if health_signal < AT_RISK_BELOW:
        return DecisionLifecycle.AT_RISK
    if has_open_conflicts or health_signal < STABLE_FROM:
        return DecisionLifecycle.UNDER_REVIEW
    return DecisionLifecycle.STABLE


def validate_retirement(outcome, conclusions: Optional[dict]) -> RetirementOutcome:
    """
    Check a retirement request before anything is written.

    Raises:
        ValidationError: unknown outcome, or a failed outcome without
            whyOutcome and at least one failure reason
    """
    from exceptions import ValidationError

    try:
        outcome = RetirementOutcome(outcome)
    except ValueError:
        raise ValidationError(
            f"Unknown retirement outcome '{outcome}'",
            field="outcome",
            details={"allowed": [o.value for o in RetirementOutcome]}
        )

    conclusions = conclusions or {}
    if outcome == RetirementOutcome.FAILED:
        why = (conclusions.get("whyOutcome") or "").strip()
        if not why:
            raise ValidationError(
                "A failed outcome must explain why it failed",
                field="conclusions.whyOutcome"
            )
        reasons = [r for r in (conclusions.get("failureReasons") or []) if str(r).strip()]
        if not reasons:
            raise ValidationError(
                "A failed outcome requires at least one failure reason",
                field="conclusions.failureReasons"
            )
    return outcome


@dataclass
class LifecycleTransitioned:
    """Domain event - stored lifecycle changed"""
    decision_id: str
    from_state: str
    to_state: str
    reason: str
    timestamp: str


class LifecycleDomainService:
    """
    The only code allowed to write a decision's stored lifecycle.

    Responsibilities:
    - keep terminal states sticky
    - require a retirement record for RETIRED
    - keep evaluation away from terminal states
    - emit LifecycleTransitioned events
    """

    def transition(
        self,
        decision,
        new_state: DecisionLifecycle,
        reason: str,
        now: datetime,
        retirement_record=None
    ) -> Optional[LifecycleTransitioned]:
        """
        Move a decision to ``new_state``.

        Returns None for a no-op.

        Raises:
            ValueError: leaving a terminal state, or RETIRED without a record
        """
        new_state = DecisionLifecycle(new_state)
        old_state = DecisionLifecycle(decision._lifecycle)

        if old_state == new_state:
            return None

        if old_state in TERMINAL_LIFECYCLES:
            raise ValueError(
                f"Cannot transition from terminal state '{old_state.value}'"
            )

        if new_state == DecisionLifecycle.RETIRED and retirement_record is None:
            raise ValueError("RETIRED requires a retirement record")

        decision._lifecycle = new_state.value
        decision.lifecycle_changed_at = now

        return LifecycleTransitioned(
            decision_id=str(decision.id),
            from_state=old_state.value,
            to_state=new_state.value,
            reason=reason,
            timestamp=now.isoformat()
        )

    def apply_evaluation(
        self,
        decision,
        health_signal: int,
        has_open_conflicts: bool,
        now: datetime
    ) -> Optional[LifecycleTransitioned]:
        """Store the effective lifecycle after a recompute. Terminal decisions are left alone."""
        if DecisionLifecycle(decision._lifecycle) in TERMINAL_LIFECYCLES:
            return None
        target = effective_lifecycle(decision._lifecycle, health_signal, has_open_conflicts)
        return self.transition(decision, target, reason="evaluation", now=now)


lifecycle_domain_service = LifecycleDomainService()
