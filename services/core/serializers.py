"""
Response shaping for ORM rows.

Plain dicts with snake_case keys; timestamps as ISO strings.
"""
from datetime import datetime
from typing import Optional

from domain.enums import TERMINAL_LIFECYCLES, DecisionLifecycle
from domain.health import as_utc, compute_metrics
from domain.lifecycle import effective_lifecycle


def iso(value: Optional[datetime]) -> Optional[str]:
    value = as_utc(value)
    return value.isoformat() if value else None


def decision_to_dict(decision, now: datetime, has_open_conflicts: bool, assumption_ids=None) -> dict:
    effective = effective_lifecycle(decision.lifecycle, decision.health_signal, has_open_conflicts)
    metrics = compute_metrics(decision.health_signal, as_utc(decision.last_reviewed_at), effective, now)
    data = {
        "id": str(decision.id),
        "title": decision.title,
        "description": decision.description,
        "category": decision.category,
        "parameters": decision.parameters or {},
        "lifecycle": decision.lifecycle,
        "effective_lifecycle": effective.value,
        "health_signal": decision.health_signal,
        "governance_tier": decision.governance_tier,
        "locked_at": iso(decision.locked_at),
        "locked_by": decision.locked_by,
        "lock_reason": decision.lock_reason,
        "expiry_date": iso(decision.expiry_date),
        "created_by": decision.created_by,
        "created_at": iso(decision.created_at),
        "updated_at": iso(decision.updated_at),
        "last_reviewed_at": iso(decision.last_reviewed_at),
        "next_review_date": iso(decision.next_review_date),
        "consecutive_deferrals": decision.consecutive_deferrals,
        "needs_evaluation": decision.needs_evaluation,
        "last_evaluated_at": iso(decision.last_evaluated_at),
        "has_open_conflicts": has_open_conflicts,
        "metrics": metrics.to_dict(),
    }
    if assumption_ids is not None:
        data["assumption_ids"] = [str(a) for a in assumption_ids]
    return data


def dependency_to_dict(edge, target) -> dict:
    target_state = DecisionLifecycle(target.lifecycle)
    deprecated = target_state in TERMINAL_LIFECYCLES
    warning = None
    if deprecated:
        warning = (
            f"Depends on '{target.title}', which is {target_state.value.lower()}; "
            f"revisit this decision's premise"
        )
    return {
        "id": str(edge.id),
        "decision_id": str(target.id),
        "title": target.title,
        "relation": edge.relation,
        "lifecycle": target.lifecycle,
        "health_signal": target.health_signal,
        "is_deprecated": deprecated,
        "deprecation_warning": warning,
    }


def assumption_to_dict(assumption) -> dict:
    return {
        "id": str(assumption.id),
        "description": assumption.description,
        "status": assumption.status,
        "scope": assumption.scope,
        "category": assumption.category,
        "parameters": assumption.parameters or {},
        "validated_at": iso(assumption.validated_at),
        "created_by": assumption.created_by,
        "created_at": iso(assumption.created_at),
        "updated_at": iso(assumption.updated_at),
    }


def _conflict_common(conflict) -> dict:
    return {
        "id": str(conflict.id),
        "conflict_type": conflict.conflict_type,
        "confidence_score": conflict.confidence_score,
        "explanation": conflict.explanation,
        "metadata": conflict.conflict_metadata or {},
        "detected_at": iso(conflict.detected_at),
        "resolved": conflict.resolved,
        "resolved_at": iso(conflict.resolved_at),
        "resolved_by": conflict.resolved_by,
        "resolution_action": conflict.resolution_action,
        "resolution_notes": conflict.resolution_notes,
    }


def assumption_conflict_to_dict(conflict) -> dict:
    data = _conflict_common(conflict)
    data["assumption_a_id"] = str(conflict.assumption_a_id)
    data["assumption_b_id"] = str(conflict.assumption_b_id)
    return data


def decision_conflict_to_dict(conflict) -> dict:
    data = _conflict_common(conflict)
    data["decision_a_id"] = str(conflict.decision_a_id)
    data["decision_b_id"] = str(conflict.decision_b_id)
    return data


def constraint_to_dict(constraint) -> dict:
    return {
        "id": str(constraint.id),
        "name": constraint.name,
        "description": constraint.description,
        "constraint_type": constraint.constraint_type,
        "rule": constraint.rule,
        "is_immutable": constraint.is_immutable,
    }


def violation_to_dict(violation) -> dict:
    return {
        "id": str(violation.id),
        "decision_id": str(violation.decision_id),
        "constraint_id": str(violation.constraint_id),
        "reason": violation.reason,
        "details": violation.details or {},
        "detected_at": iso(violation.detected_at),
        "resolved": violation.resolved,
        "resolved_at": iso(violation.resolved_at),
    }


def review_to_dict(review) -> dict:
    return {
        "id": str(review.id),
        "decision_id": str(review.decision_id),
        "reviewer": review.reviewer,
        "comment": review.comment,
        "review_type": review.review_type,
        "review_outcome": review.review_outcome,
        "deferral_reason": review.deferral_reason,
        "next_review_date": iso(review.next_review_date),
        "health_signal_at_review": review.health_signal_at_review,
        "lifecycle_at_review": review.lifecycle_at_review,
        "created_at": iso(review.created_at),
    }


def retirement_to_dict(record) -> dict:
    return {
        "decision_id": str(record.decision_id),
        "outcome": record.outcome,
        "conclusions": record.conclusions or {},
        "retired_by": record.retired_by,
        "retired_at": iso(record.retired_at),
    }


def edit_request_to_dict(edit_request) -> dict:
    return {
        "audit_id": str(edit_request.id),
        "decision_id": str(edit_request.decision_id),
        "requested_by": edit_request.requested_by,
        "justification": edit_request.justification,
        "governance_tier": edit_request.governance_tier,
        "changes": edit_request.changes or {},
        "requested_at": iso(edit_request.requested_at),
        "resolved": edit_request.resolved,
        "approved": edit_request.approved,
        "resolved_by": edit_request.resolved_by,
        "resolved_at": iso(edit_request.resolved_at),
        "resolution_notes": edit_request.resolution_notes,
    }


def evaluation_record_to_dict(record) -> dict:
    return {
        "id": str(record.id),
        "triggered_by": record.triggered_by,
        "reason": record.reason,
        "old_health": record.old_health,
        "new_health": record.new_health,
        "old_lifecycle": record.old_lifecycle,
        "new_lifecycle": record.new_lifecycle,
        "trace": record.trace or [],
        "evaluated_at": iso(record.evaluated_at),
    }


def audit_entry_to_dict(entry) -> dict:
    return {
        "id": str(entry.id),
        "decision_id": str(entry.decision_id) if entry.decision_id else None,
        "action": entry.action,
        "actor_id": entry.actor_id,
        "details": entry.details or {},
        "created_at": iso(entry.created_at),
    }


def version_to_dict(version) -> dict:
    return {
        "id": str(version.id),
        "decision_id": str(version.decision_id),
        "version_number": version.version_number,
        "change_type": version.change_type,
        "changed_fields": version.changed_fields or [],
        "before": version.before or {},
        "after": version.after or {},
        "changed_by": version.changed_by,
        "edit_request_id": str(version.edit_request_id) if version.edit_request_id else None,
        "changed_at": iso(version.changed_at),
    }
