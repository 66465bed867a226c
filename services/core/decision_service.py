"""
Decision Service - Application Layer
====================================

Orchestrates the decision operations. Every mutation:
1. loads the decision with a row lock,
2. passes the Governance Gate,
3. changes state through the domain layer,
4. records a DecisionChanged event on the UnitOfWork.

Transactions belong to the caller's UnitOfWork; any raised error rolls the
whole operation back.

Author: Decision Engine Team
"""
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from domain.deprecation import FailedDecisionSnapshot, find_similar_failures
from domain.enums import (
    AssumptionScope,
    DecisionLifecycle,
    DependencyRelation,
    GovernanceAction,
    GovernanceTier,
    ReviewOutcome,
    ReviewType,
    VersionChangeType,
)
from domain.constraints import RULE_TYPES, constraint_validator
from domain.governance import Actor, Operation, governance_gate
from domain.health import as_utc
from domain.lifecycle import lifecycle_domain_service, validate_retirement
from evaluation_service import build_snapshot, evaluate_decision
from events import DecisionChangeType, decision_changed
from exceptions import (
    AssumptionNotFound,
    ConstraintViolationNotFound,
    DecisionNotFound,
    EditRequestAlreadyResolved,
    EditRequestNotFound,
    GovernanceApprovalRequired,
    InvalidLifecycleTransition,
    ValidationError,
)
from logging_config import get_logger, log_lifecycle_transition
from serializers import (
    audit_entry_to_dict,
    constraint_to_dict,
    decision_to_dict,
    dependency_to_dict,
    edit_request_to_dict,
    evaluation_record_to_dict,
    iso,
    retirement_to_dict,
    review_to_dict,
    version_to_dict,
    violation_to_dict,
)

logger = get_logger(__name__)

EDITABLE_FIELDS = frozenset({
    "title",
    "description",
    "category",
    "parameters",
    "governance_tier",
    "expiry_date",
    "assumption_ids",
    "dependencies",
})


def parse_datetime(value, field: str) -> Optional[datetime]:
    """ISO string or datetime -> aware UTC datetime"""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        raise ValidationError(f"Invalid date '{value}'", field=field)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def parse_uuid(value, field: str) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        raise ValidationError(f"Invalid id '{value}'", field=field)


def _parse_enum(enum_cls, value, field: str):
    try:
        return enum_cls(value)
    except ValueError:
        raise ValidationError(
            f"Invalid {field} '{value}'",
            field=field,
            details={"allowed": [e.value for e in enum_cls]}
        )


def _require_text(value, field: str) -> str:
    text = str(value or "").strip()
    if not text:
        raise ValidationError(f"{field} is required", field=field)
    return text


def normalize_changes(changes: Dict[str, Any]) -> Dict[str, Any]:
    """
    Validate an edit before the gate sees it, and return a JSON-safe copy
    (the same dict is stored on an EditRequest and applied on approval).
    """
    unknown = set(changes) - EDITABLE_FIELDS
    if unknown:
        raise ValidationError(
            "Unknown or read-only fields in edit",
            details={"fields": sorted(unknown), "editable": sorted(EDITABLE_FIELDS)}
        )
    if not changes:
        raise ValidationError("Edit contains no changes")

    normalized: Dict[str, Any] = {}
    for key, value in changes.items():
        if key == "title":
            normalized[key] = _require_text(value, "title")
        elif key == "governance_tier":
            normalized[key] = _parse_enum(GovernanceTier, value, "governance_tier").value
        elif key == "expiry_date":
            parsed = parse_datetime(value, "expiry_date")
            normalized[key] = parsed.isoformat() if parsed else None
        elif key == "parameters":
            if value is not None and not isinstance(value, dict):
                raise ValidationError("parameters must be an object", field="parameters")
            normalized[key] = dict(value or {})
        elif key == "assumption_ids":
            normalized[key] = [str(parse_uuid(a, "assumption_ids")) for a in (value or [])]
        elif key == "dependencies":
            normalized[key] = normalize_dependencies(value)
        else:
            normalized[key] = value
    return normalized


def normalize_dependencies(value) -> list:
    """[{"decision_id", "relation"}] with parsed ids and a known relation"""
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValidationError("dependencies must be a list", field="dependencies")
    edges = []
    for item in value:
        if not isinstance(item, dict):
            raise ValidationError("each dependency must be an object", field="dependencies")
        target_id = parse_uuid(item.get("decision_id"), "dependencies.decision_id")
        relation = _parse_enum(DependencyRelation, item.get("relation") or DependencyRelation.DEPENDS_ON.value,
                               "dependencies.relation")
        edges.append({"decision_id": str(target_id), "relation": relation.value})
    return edges


def reaches(edges, start, goal) -> bool:
    """True when ``goal`` can be reached from ``start`` along (source, target) edges"""
    graph: Dict[Any, list] = {}
    for source, target in edges:
        graph.setdefault(source, []).append(target)
    seen = set()
    stack = [start]
    while stack:
        node = stack.pop()
        if node == goal:
            return True
        if node in seen:
            continue
        seen.add(node)
        stack.extend(graph.get(node, []))
    return False


class DecisionService:
    """Decision CRUD, review, retirement, evaluation and governance workflows"""

    # -------------------------------------------------------------------------
    # Loading / views
    # -------------------------------------------------------------------------

    async def _load(self, uow, decision_id, for_update: bool = True):
        decision_id = parse_uuid(decision_id, "decision_id")
        repo = uow.decisions
        decision = await (repo.get_for_update if for_update else repo.get)(uow.session, decision_id)
        if decision is None:
            raise DecisionNotFound(str(decision_id))
        return decision

    async def _view(self, uow, decision, now: datetime) -> dict:
        session = uow.session
        open_conflicts = await uow.conflicts.open_conflicts_for_decision(session, decision.id)
        assumption_ids = await uow.assumptions.linked_ids(session, decision.id)
        return decision_to_dict(decision, now, bool(open_conflicts), assumption_ids)

    async def get(self, uow, decision_id, now: datetime) -> dict:
        decision = await self._load(uow, decision_id, for_update=False)
        data = await self._view(uow, decision, now)
        if decision.lifecycle == DecisionLifecycle.RETIRED.value:
            record = await uow.decisions.get_retirement(uow.session, decision.id)
            data["retirement"] = retirement_to_dict(record) if record else None
        return data

    async def list_decisions(self, uow, now: datetime, lifecycle: Optional[str] = None, include_retired: bool = True) -> list:
        if lifecycle:
            lifecycle = _parse_enum(DecisionLifecycle, lifecycle, "lifecycle").value
        session = uow.session
        decisions = await uow.decisions.list(session, lifecycle=lifecycle, include_retired=include_retired)
        index = await uow.conflicts.open_conflict_index(session)
        return [decision_to_dict(d, now, index.touches(d.id)) for d in decisions]

    # -------------------------------------------------------------------------
    # Create / edit / delete
    # -------------------------------------------------------------------------

    async def create(self, uow, data: Dict[str, Any], actor: Actor, now: datetime) -> dict:
        """
        Create a decision, link its assumptions and dependencies.

        Returns the decision view plus ``warnings`` for similar failed decisions.
        """
        from models import Decision

        session = uow.session
        title = _require_text(data.get("title"), "title")
        tier = _parse_enum(GovernanceTier, data.get("governance_tier") or GovernanceTier.STANDARD.value,
                           "governance_tier")
        parameters = data.get("parameters") or {}
        if not isinstance(parameters, dict):
            raise ValidationError("parameters must be an object", field="parameters")
        health = data.get("health_signal", 100)
        if isinstance(health, bool) or not isinstance(health, int) or not 0 <= health <= 100:
            raise ValidationError("health_signal must be an integer between 0 and 100", field="health_signal")

        decision = Decision(
            id=uuid.uuid4(),
            title=title,
            description=data.get("description") or "",
            category=data.get("category"),
            parameters=parameters,
            health_signal=health,
            governance_tier=tier.value,
            expiry_date=parse_datetime(data.get("expiry_date"), "expiry_date"),
            created_by=actor.id,
            created_at=now,
            updated_at=now,
            last_reviewed_at=now,
            needs_evaluation=True,
        )
        await uow.decisions.save(session, decision)

        await self._link_assumptions(uow, decision, data.get("assumption_ids") or [])
        await self._set_dependencies(uow, decision, normalize_dependencies(data.get("dependencies")))

        await self._record_version(
            uow, decision, VersionChangeType.CREATED, {},
            await self._field_values(uow, decision, EDITABLE_FIELDS), actor, now
        )

        failed = [
            FailedDecisionSnapshot(
                id=failed_decision.id,
                title=failed_decision.title,
                category=failed_decision.category,
                parameters=failed_decision.parameters or {},
                conclusions=record.conclusions or {},
            )
            for failed_decision, record in await uow.decisions.list_failed_retirements(session)
        ]
        warnings = find_similar_failures(decision.category, decision.parameters, failed)

        uow.record(decision_changed(decision.id, DecisionChangeType.CREATED, now))
        logger.info("decision_created", decision_id=str(decision.id), actor=actor.id,
                    governance_tier=tier.value, similar_failures=len(warnings))

        view = await self._view(uow, decision, now)
        view["warnings"] = [w.to_dict() for w in warnings]
        return view

    async def _link_assumptions(self, uow, decision, assumption_ids) -> None:
        """
        Link decision-specific assumptions. Universal ones apply to every
        decision without a link, and a decision-specific one has a single owner.
        """
        session = uow.session
        ids = [parse_uuid(a, "assumption_ids") for a in assumption_ids]
        assumptions = {a.id: a for a in await uow.assumptions.bulk_get(session, ids)}
        owners = await uow.assumptions.owner_ids(session, ids)
        for assumption_id in ids:
            assumption = assumptions.get(assumption_id)
            if assumption is None:
                raise AssumptionNotFound(str(assumption_id))
            if assumption.scope == AssumptionScope.UNIVERSAL.value:
                raise ValidationError(
                    "Universal assumptions apply to every decision and cannot be linked",
                    field="assumption_ids",
                    details={"assumption_id": str(assumption_id)}
                )
            others = owners.get(assumption_id, set()) - {decision.id}
            if others:
                raise ValidationError(
                    "Assumption already belongs to another decision",
                    field="assumption_ids",
                    details={"assumption_id": str(assumption_id), "owner_decision_id": str(min(others, key=str))}
                )
            await uow.assumptions.link(session, decision.id, assumption_id)

    async def _set_dependencies(self, uow, decision, edges: list) -> None:
        """Replace the outgoing edges; DEPENDS_ON edges must stay acyclic."""
        session = uow.session
        targets = []
        for edge in edges:
            target_id = parse_uuid(edge["decision_id"], "dependencies.decision_id")
            if target_id == decision.id:
                raise ValidationError("A decision cannot depend on itself", field="dependencies")
            if await uow.decisions.get(session, target_id) is None:
                raise DecisionNotFound(str(target_id))
            targets.append((target_id, edge["relation"]))

        await uow.dependencies.remove_outgoing(session, decision.id)
        for target_id, relation in targets:
            await uow.dependencies.add(session, decision.id, target_id, relation)

        graph = await uow.dependencies.depends_on_edges(session)
        for target_id, relation in targets:
            if relation == DependencyRelation.DEPENDS_ON.value and reaches(graph, target_id, decision.id):
                raise ValidationError(
                    "Dependencies would form a cycle",
                    field="dependencies",
                    details={"decision_id": str(decision.id), "target_decision_id": str(target_id)}
                )

    async def _field_values(self, uow, decision, fields) -> dict:
        """JSON-safe values of editable fields, as stored on a version row"""
        session = uow.session
        values: Dict[str, Any] = {}
        for key in sorted(fields):
            if key == "assumption_ids":
                values[key] = sorted(str(a) for a in await uow.assumptions.linked_ids(session, decision.id))
            elif key == "dependencies":
                edges = await uow.dependencies.for_decision(session, decision.id)
                values[key] = sorted(
                    ({"decision_id": str(edge.target_decision_id), "relation": edge.relation} for edge, _ in edges),
                    key=lambda e: (e["decision_id"], e["relation"])
                )
            elif key == "expiry_date":
                values[key] = iso(decision.expiry_date)
            elif key == "parameters":
                values[key] = dict(decision.parameters or {})
            else:
                values[key] = getattr(decision, key)
        return values

    async def _record_version(
        self,
        uow,
        decision,
        change_type: VersionChangeType,
        before: dict,
        after: dict,
        actor: Actor,
        now: datetime,
        edit_request_id=None
    ):
        from models import DecisionVersion

        changed = [key for key in after if before.get(key) != after[key]]
        if not changed:
            return None
        version = DecisionVersion(
            decision_id=decision.id,
            version_number=await uow.versions.next_number(uow.session, decision.id),
            change_type=change_type.value,
            changed_fields=changed,
            before={key: before[key] for key in changed if key in before},
            after={key: after[key] for key in changed},
            changed_by=actor.id,
            edit_request_id=edit_request_id,
            changed_at=now,
        )
        await uow.versions.add(uow.session, version)
        return version

    async def _apply_changes(
        self,
        uow,
        decision,
        changes: Dict[str, Any],
        actor: Actor,
        now: datetime,
        edit_request_id=None
    ) -> None:
        before = await self._field_values(uow, decision, changes)
        for key, value in changes.items():
            if key == "assumption_ids":
                await uow.assumptions.unlink_all(uow.session, decision.id)
                await self._link_assumptions(uow, decision, value)
            elif key == "dependencies":
                await self._set_dependencies(uow, decision, value)
            elif key == "expiry_date":
                decision.expiry_date = parse_datetime(value, "expiry_date")
            else:
                setattr(decision, key, value)
        decision.updated_at = now
        decision.needs_evaluation = True
        await uow.decisions.update(uow.session, decision)

        after = await self._field_values(uow, decision, changes)
        await self._record_version(uow, decision, VersionChangeType.FIELD_UPDATED, before, after,
                                   actor, now, edit_request_id=edit_request_id)

    async def update(
        self,
        uow,
        decision_id,
        changes: Dict[str, Any],
        actor: Actor,
        now: datetime,
        justification: Optional[str] = None
    ) -> dict:
        """
        Apply an edit, or park it as an EditRequest when the tier is gated.

        Returns ``{"status": "updated", "decision": ...}`` or
        ``{"status": "pending_approval", "audit_id": ...}``.
        """
        changes = normalize_changes(changes)
        decision = await self._load(uow, decision_id)
        if decision.is_terminal:
            raise InvalidLifecycleTransition(str(decision.id), decision.lifecycle, "edit")

        try:
            governance_gate.check(decision, actor, Operation.EDIT)
        except GovernanceApprovalRequired as e:
            return await self._request_edit(uow, decision, changes, actor, now, justification, e)

        await self._apply_changes(uow, decision, changes, actor, now)
        uow.record(decision_changed(decision.id, DecisionChangeType.UPDATED, now, fields=sorted(changes)))
        logger.info("decision_updated", decision_id=str(decision.id), actor=actor.id, fields=sorted(changes))
        return {"status": "updated", "decision": await self._view(uow, decision, now)}

    async def _request_edit(self, uow, decision, changes, actor, now, justification, approval) -> dict:
        from models import EditRequest

        session = uow.session
        edit_request = EditRequest(
            id=uuid.uuid4(),
            decision_id=decision.id,
            requested_by=actor.id,
            justification=justification,
            governance_tier=approval.details["governance_tier"],
            changes=changes,
            requested_at=now,
        )
        await uow.edit_requests.add(session, edit_request)
        await uow.audit.log(session, decision.id, GovernanceAction.EDIT_REQUESTED.value, actor.id, now,
                            audit_id=str(edit_request.id), fields=sorted(changes))
        uow.record(decision_changed(decision.id, DecisionChangeType.EDIT_REQUESTED, now,
                                    audit_id=str(edit_request.id)))
        return {
            "status": "pending_approval",
            "audit_id": str(edit_request.id),
            "message": approval.message,
        }

    async def delete(self, uow, decision_id, actor: Actor, now: datetime) -> None:
        decision = await self._load(uow, decision_id)
        governance_gate.check(decision, actor, Operation.DELETE)

        session = uow.session
        dependents = await uow.dependencies.dependents_of(session, decision.id)
        deleted_id = decision.id
        await uow.decisions.delete(session, decision)
        await uow.decisions.mark_needs_evaluation(session, dependents)

        uow.record(decision_changed(deleted_id, DecisionChangeType.DELETED, now))
        logger.info("decision_deleted", decision_id=str(deleted_id), actor=actor.id,
                    dependents_flagged=len(dependents))

    # -------------------------------------------------------------------------
    # Governance
    # -------------------------------------------------------------------------

    async def set_lock(self, uow, decision_id, lock: bool, reason: str, actor: Actor, now: datetime) -> dict:
        """Lock toggling is privileged and always carries a reason."""
        decision = await self._load(uow, decision_id)
        operation = Operation.LOCK if lock else Operation.UNLOCK
        governance_gate.check(decision, actor, operation)
        reason = _require_text(reason, "reason")

        if lock:
            decision.locked_at = now
            decision.locked_by = actor.id
            decision.lock_reason = reason
            action, change = GovernanceAction.DECISION_LOCKED, DecisionChangeType.LOCKED
        else:
            decision.locked_at = None
            decision.locked_by = None
            decision.lock_reason = None
            action, change = GovernanceAction.DECISION_UNLOCKED, DecisionChangeType.UNLOCKED
        decision.updated_at = now
        await uow.decisions.update(uow.session, decision)

        await uow.audit.log(uow.session, decision.id, action.value, actor.id, now, reason=reason)
        uow.record(decision_changed(decision.id, change, now))
        return await self._view(uow, decision, now)

    async def invalidate(self, uow, decision_id, reason: str, actor: Actor, now: datetime) -> dict:
        """Administrative invalidation; terminal and sticky."""
        decision = await self._load(uow, decision_id)
        governance_gate.check(decision, actor, Operation.INVALIDATE)
        reason = _require_text(reason, "reason")

        if decision.is_terminal:
            raise InvalidLifecycleTransition(str(decision.id), decision.lifecycle, "invalidate")

        event = lifecycle_domain_service.transition(decision, DecisionLifecycle.INVALIDATED, reason=reason, now=now)
        decision.updated_at = now
        await uow.decisions.update(uow.session, decision)

        await uow.audit.log(uow.session, decision.id, GovernanceAction.DECISION_INVALIDATED.value,
                            actor.id, now, reason=reason)
        log_lifecycle_transition(event.decision_id, event.from_state, event.to_state, actor.id, reason)

        dependents = await uow.dependencies.dependents_of(uow.session, decision.id)
        await uow.decisions.mark_needs_evaluation(uow.session, dependents)
        uow.record(decision_changed(decision.id, DecisionChangeType.INVALIDATED, now, reason=reason))
        return await self._view(uow, decision, now)

    async def pending_approvals(self, uow, actor: Actor) -> list:
        governance_gate.require_elevated(actor, Operation.VIEW_PENDING_APPROVALS)
        session = uow.session
        pending = await uow.edit_requests.pending(session)
        decisions = {d.id: d for d in await uow.decisions.bulk_get(session, {p.decision_id for p in pending})}
        items = []
        for edit_request in pending:
            item = edit_request_to_dict(edit_request)
            decision = decisions.get(edit_request.decision_id)
            item["decision_title"] = decision.title if decision else None
            items.append(item)
        return items

    async def resolve_edit_request(
        self,
        uow,
        audit_id,
        approved: bool,
        actor: Actor,
        now: datetime,
        notes: Optional[str] = None
    ) -> dict:
        """Approve (apply the stored change) or reject (discard it)."""
        governance_gate.require_elevated(actor, Operation.RESOLVE_EDIT_REQUEST)
        session = uow.session

        audit_id = parse_uuid(audit_id, "audit_id")
        edit_request = await uow.edit_requests.get_for_update(session, audit_id)
        if edit_request is None:
            raise EditRequestNotFound(str(audit_id))
        if edit_request.resolved:
            raise EditRequestAlreadyResolved(str(audit_id), edit_request.approved)

        decision = await self._load(uow, edit_request.decision_id)
        if approved:
            if decision.is_terminal:
                raise InvalidLifecycleTransition(str(decision.id), decision.lifecycle, "edit")
            await self._apply_changes(uow, decision, edit_request.changes or {}, actor, now,
                                      edit_request_id=edit_request.id)

        edit_request.resolved = True
        edit_request.approved = bool(approved)
        edit_request.resolved_by = actor.id
        edit_request.resolved_at = now
        edit_request.resolution_notes = notes
        await session.flush()

        action = GovernanceAction.EDIT_APPROVED if approved else GovernanceAction.EDIT_REJECTED
        await uow.audit.log(session, decision.id, action.value, actor.id, now, audit_id=str(audit_id), notes=notes)
        uow.record(decision_changed(decision.id, DecisionChangeType.EDIT_RESOLVED, now,
                                    audit_id=str(audit_id), approved=bool(approved)))
        return {
            "status": "approved" if approved else "rejected",
            "edit_request": edit_request_to_dict(edit_request),
            "decision": await self._view(uow, decision, now),
        }

    # -------------------------------------------------------------------------
    # Review / retirement / evaluation
    # -------------------------------------------------------------------------

    async def review(
        self,
        uow,
        decision_id,
        actor: Actor,
        now: datetime,
        review_type,
        review_outcome,
        comment: Optional[str] = None,
        deferral_reason: Optional[str] = None,
        next_review_date=None
    ) -> dict:
        """
        Append a review and refresh ``last_reviewed_at``. Health is not
        recomputed here; the reviewed state stays observable until the next
        evaluation.
        """
        from models import DecisionReview

        decision = await self._load(uow, decision_id)
        governance_gate.check(decision, actor, Operation.REVIEW)
        if decision.is_terminal:
            raise InvalidLifecycleTransition(str(decision.id), decision.lifecycle, "review")

        review_type = _parse_enum(ReviewType, review_type, "review_type")
        review_outcome = _parse_enum(ReviewOutcome, review_outcome, "review_outcome")
        if review_outcome == ReviewOutcome.DEFERRED:
            deferral_reason = _require_text(deferral_reason, "deferral_reason")
        next_review = parse_datetime(next_review_date, "next_review_date")

        review = DecisionReview(
            decision_id=decision.id,
            reviewer=actor.id,
            comment=comment,
            review_type=review_type.value,
            review_outcome=review_outcome.value,
            deferral_reason=deferral_reason,
            next_review_date=next_review,
            health_signal_at_review=decision.health_signal,
            lifecycle_at_review=decision.lifecycle,
            created_at=now,
        )
        await uow.reviews.add(uow.session, review)

        decision.last_reviewed_at = now
        decision.next_review_date = next_review
        if review_outcome == ReviewOutcome.DEFERRED:
            decision.consecutive_deferrals = (decision.consecutive_deferrals or 0) + 1
        else:
            decision.consecutive_deferrals = 0
        decision.updated_at = now
        await uow.decisions.update(uow.session, decision)

        uow.record(decision_changed(decision.id, DecisionChangeType.REVIEWED, now, outcome=review_outcome.value))
        logger.info("decision_reviewed", decision_id=str(decision.id), reviewer=actor.id,
                    outcome=review_outcome.value, consecutive_deferrals=decision.consecutive_deferrals)
        return {"review": review_to_dict(review), "decision": await self._view(uow, decision, now)}

    async def retire(self, uow, decision_id, outcome, conclusions: Optional[dict], actor: Actor, now: datetime) -> dict:
        """Irreversible: RETIRED plus a RetirementRecord, or nothing at all."""
        from models import RetirementRecord

        decision = await self._load(uow, decision_id)
        governance_gate.check(decision, actor, Operation.RETIRE)
        outcome = validate_retirement(outcome, conclusions)

        if decision.is_terminal:
            raise InvalidLifecycleTransition(str(decision.id), decision.lifecycle, "retire")

        record = RetirementRecord(
            decision_id=decision.id,
            outcome=outcome.value,
            conclusions=dict(conclusions or {}),
            retired_by=actor.id,
            retired_at=now,
        )
        await uow.decisions.add_retirement(uow.session, record)

        reason = f"Retired with outcome {outcome.value}"
        try:
            event = lifecycle_domain_service.transition(
                decision, DecisionLifecycle.RETIRED, reason=reason, now=now, retirement_record=record
            )
        except ValueError:
            raise InvalidLifecycleTransition(str(decision.id), decision.lifecycle, "retire")
        decision.needs_evaluation = False
        decision.updated_at = now
        await uow.decisions.update(uow.session, decision)

        log_lifecycle_transition(event.decision_id, event.from_state, event.to_state, actor.id, reason)
        dependents = await uow.dependencies.dependents_of(uow.session, decision.id)
        await uow.decisions.mark_needs_evaluation(uow.session, dependents)
        uow.record(decision_changed(decision.id, DecisionChangeType.RETIRED, now, outcome=outcome.value))

        view = await self._view(uow, decision, now)
        view["retirement"] = retirement_to_dict(record)
        return view

    async def evaluate_now(self, uow, decision_id, actor: Actor, now: datetime) -> dict:
        """Recompute immediately, bypassing the scheduler's needs-evaluation check."""
        decision = await self._load(uow, decision_id)
        governance_gate.check(decision, actor, Operation.EVALUATE)
        if decision.is_terminal:
            raise InvalidLifecycleTransition(str(decision.id), decision.lifecycle, "evaluate")

        result = await evaluate_decision(uow, decision, now, triggered_by="manual", reason="forced")
        return result.to_dict()

    # -------------------------------------------------------------------------
    # History and references
    # -------------------------------------------------------------------------

    async def reviews(self, uow, decision_id) -> list:
        decision = await self._load(uow, decision_id, for_update=False)
        return [review_to_dict(r) for r in await uow.reviews.for_decision(uow.session, decision.id)]

    async def evaluations(self, uow, decision_id, limit: int = 50) -> list:
        decision = await self._load(uow, decision_id, for_update=False)
        records = await uow.evaluations.for_decision(uow.session, decision.id, limit=limit)
        return [evaluation_record_to_dict(r) for r in records]

    async def audit_log(self, uow, decision_id) -> list:
        decision = await self._load(uow, decision_id, for_update=False)
        return [audit_entry_to_dict(e) for e in await uow.audit.for_decision(uow.session, decision.id)]

    async def dependencies(self, uow, decision_id) -> list:
        decision = await self._load(uow, decision_id, for_update=False)
        edges = await uow.dependencies.for_decision(uow.session, decision.id)
        return [dependency_to_dict(edge, target) for edge, target in edges]

    async def add_dependency(
        self,
        uow,
        source_id,
        target_id,
        relation,
        actor: Actor,
        now: datetime,
        justification: Optional[str] = None
    ) -> dict:
        """
        Add one edge to an existing decision. Goes through ``update`` so the
        governance gate, cycle check and version history apply.
        """
        source = await self._load(uow, source_id, for_update=False)
        current = await self._field_values(uow, source, ["dependencies"])
        edges = current["dependencies"] + [{"decision_id": target_id, "relation": relation}]
        return await self.update(uow, source.id, {"dependencies": edges}, actor, now, justification=justification)

    async def versions(self, uow, decision_id) -> list:
        decision = await self._load(uow, decision_id, for_update=False)
        return [version_to_dict(v) for v in await uow.versions.for_decision(uow.session, decision.id)]

    async def constraints(self, uow, decision_id) -> list:
        """Every organization constraint, with whether this decision currently satisfies it"""
        decision = await self._load(uow, decision_id, for_update=False)
        snapshot = await build_snapshot(uow, decision)
        context = snapshot.constraint_context()

        items = []
        for constraint_row, constraint in zip(await uow.constraints.list(uow.session), snapshot.constraints):
            finding = constraint_validator.validate(constraint, context)
            item = constraint_to_dict(constraint_row)
            item["satisfied"] = finding is None
            item["violation_reason"] = finding.reason if finding else None
            items.append(item)
        return items

    async def violations(self, uow, decision_id, resolved: Optional[bool] = None) -> list:
        decision = await self._load(uow, decision_id, for_update=False)
        rows = await uow.constraints.violations_for_decision(uow.session, decision.id, resolved=resolved)
        return [violation_to_dict(v) for v in rows]

    async def resolve_violation(self, uow, violation_id, actor: Actor, now: datetime) -> dict:
        violation_id = parse_uuid(violation_id, "violation_id")
        violation = await uow.constraints.get_violation(uow.session, violation_id)
        if violation is None:
            raise ConstraintViolationNotFound(str(violation_id))

        decision = await self._load(uow, violation.decision_id)
        governance_gate.check(decision, actor, Operation.REVIEW)

        if not violation.resolved:
            violation.resolved = True
            violation.resolved_at = now
            decision.needs_evaluation = True
            await uow.decisions.update(uow.session, decision)
            uow.record(decision_changed(decision.id, DecisionChangeType.UPDATED, now,
                                        violation_id=str(violation.id)))
            logger.info("constraint_violation_resolved", violation_id=str(violation.id),
                        decision_id=str(decision.id), actor=actor.id)
        return violation_to_dict(violation)

    # -------------------------------------------------------------------------
    # Organization constraints
    # -------------------------------------------------------------------------

    async def list_constraints(self, uow) -> list:
        return [constraint_to_dict(c) for c in await uow.constraints.list(uow.session)]

    async def create_constraint(self, uow, data: Dict[str, Any], actor: Actor, now: datetime) -> dict:
        """Constraints apply to every decision, so all of them are flagged for re-evaluation."""
        from models import Constraint

        governance_gate.require_elevated(actor, Operation.MANAGE_CONSTRAINTS)
        name = _require_text(data.get("name"), "name")
        rule = data.get("rule")
        if rule is not None:
            if not isinstance(rule, dict) or rule.get("type") not in RULE_TYPES:
                raise ValidationError(
                    "rule.type must be one of the supported rule types",
                    field="rule",
                    details={"allowed": sorted(RULE_TYPES)}
                )

        constraint = Constraint(
            id=uuid.uuid4(),
            name=name,
            description=data.get("description"),
            constraint_type=data.get("constraint_type") or "OTHER",
            rule=rule,
            is_immutable=data.get("is_immutable", True),
            created_at=now,
        )
        await uow.constraints.save(uow.session, constraint)

        decision_ids = await uow.decisions.ids_not_retired(uow.session)
        await uow.decisions.mark_needs_evaluation(uow.session, decision_ids)
        logger.info("constraint_created", constraint_id=str(constraint.id), name=name,
                    actor=actor.id, decisions_flagged=len(decision_ids))
        return constraint_to_dict(constraint)


decision_service = DecisionService()
