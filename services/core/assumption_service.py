"""
Assumption Service

Status and scope are normalized at this boundary (HOLDING -> VALID); nothing
downstream sees the legacy spelling. A status change flags every decision
that references the assumption for re-evaluation.
"""
import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from decision_service import parse_uuid
from domain.enums import AssumptionScope, AssumptionStatus
from domain.governance import Actor
from events import DecisionChangeType, decision_changed
from exceptions import AssumptionNotFound, DecisionNotFound, ValidationError
from logging_config import get_logger
from serializers import assumption_to_dict

logger = get_logger(__name__)

EDITABLE_FIELDS = frozenset({"description", "status", "scope", "category", "parameters"})


class AssumptionService:

    async def _load(self, uow, assumption_id, for_update: bool = True):
        assumption_id = parse_uuid(assumption_id, "assumption_id")
        repo = uow.assumptions
        assumption = await (repo.get_for_update if for_update else repo.get)(uow.session, assumption_id)
        if assumption is None:
            raise AssumptionNotFound(str(assumption_id))
        return assumption

    async def get(self, uow, assumption_id) -> dict:
        return assumption_to_dict(await self._load(uow, assumption_id, for_update=False))

    async def list_assumptions(self, uow, scope: Optional[str] = None, status: Optional[str] = None) -> list:
        scope = AssumptionScope.normalize(scope).value if scope else None
        status = AssumptionStatus.normalize(status).value if status else None
        return [assumption_to_dict(a) for a in await uow.assumptions.list(uow.session, scope=scope, status=status)]

    async def create(self, uow, data: Dict[str, Any], actor: Actor, now: datetime) -> dict:
        from models import Assumption

        description = str(data.get("description") or "").strip()
        if not description:
            raise ValidationError("description is required", field="description")
        parameters = data.get("parameters") or {}
        if not isinstance(parameters, dict):
            raise ValidationError("parameters must be an object", field="parameters")

        assumption = Assumption(
            id=uuid.uuid4(),
            description=description,
            status=AssumptionStatus.normalize(data.get("status") or AssumptionStatus.VALID.value).value,
            scope=AssumptionScope.normalize(data.get("scope") or AssumptionScope.DECISION_SPECIFIC.value).value,
            category=data.get("category"),
            parameters=parameters,
            validated_at=now,
            created_by=actor.id,
            created_at=now,
            updated_at=now,
        )
        await uow.assumptions.save(uow.session, assumption)

        # optional link to the owning decision
        decision_id = data.get("decision_id")
        if decision_id:
            if assumption.scope == AssumptionScope.UNIVERSAL.value:
                raise ValidationError(
                    "Universal assumptions apply to every decision and cannot be linked",
                    field="decision_id"
                )
            decision_id = parse_uuid(decision_id, "decision_id")
            if await uow.decisions.get(uow.session, decision_id) is None:
                raise DecisionNotFound(str(decision_id))
            await uow.assumptions.link(uow.session, decision_id, assumption.id)

        affected = await uow.assumptions.referencing_decision_ids(uow.session, [assumption.id])
        await self._flag(uow, affected, assumption, now)

        logger.info("assumption_created", assumption_id=str(assumption.id), scope=assumption.scope,
                    status=assumption.status, actor=actor.id)
        return assumption_to_dict(assumption)

    async def update(self, uow, assumption_id, changes: Dict[str, Any], actor: Actor, now: datetime) -> dict:
        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            raise ValidationError(
                "Unknown or read-only fields in edit",
                details={"fields": sorted(unknown), "editable": sorted(EDITABLE_FIELDS)}
            )

        assumption = await self._load(uow, assumption_id)
        session = uow.session
        before = await uow.assumptions.referencing_decision_ids(session, [assumption.id])
        old_status = assumption.status

        for key, value in changes.items():
            if key == "status":
                value = AssumptionStatus.normalize(value).value
            elif key == "scope":
                value = AssumptionScope.normalize(value).value
            elif key == "description":
                value = str(value or "").strip()
                if not value:
                    raise ValidationError("description is required", field="description")
            elif key == "parameters":
                if value is not None and not isinstance(value, dict):
                    raise ValidationError("parameters must be an object", field="parameters")
                value = dict(value or {})
            setattr(assumption, key, value)

        if assumption.scope == AssumptionScope.UNIVERSAL.value:
            await uow.assumptions.unlink_assumption(session, assumption.id)
        if assumption.status != old_status:
            assumption.validated_at = now
        assumption.updated_at = now
        await uow.assumptions.update(session, assumption)

        after = await uow.assumptions.referencing_decision_ids(session, [assumption.id])
        await self._flag(uow, before | after, assumption, now)

        logger.info("assumption_updated", assumption_id=str(assumption.id), fields=sorted(changes),
                    old_status=old_status, new_status=assumption.status, actor=actor.id)
        return assumption_to_dict(assumption)

    async def delete(self, uow, assumption_id, actor: Actor, now: datetime) -> None:
        assumption = await self._load(uow, assumption_id)
        affected = await uow.assumptions.referencing_decision_ids(uow.session, [assumption.id])
        deleted_id = assumption.id
        await uow.assumptions.delete(uow.session, assumption)
        await uow.decisions.mark_needs_evaluation(uow.session, affected)
        for decision_id in affected:
            uow.record(decision_changed(decision_id, DecisionChangeType.UPDATED, now,
                                        assumption_id=str(deleted_id)))
        logger.info("assumption_deleted", assumption_id=str(deleted_id), actor=actor.id,
                    decisions_flagged=len(affected))

    async def _flag(self, uow, decision_ids, assumption, now: datetime) -> None:
        await uow.decisions.mark_needs_evaluation(uow.session, decision_ids)
        for decision_id in decision_ids:
            uow.record(decision_changed(decision_id, DecisionChangeType.UPDATED, now,
                                        assumption_id=str(assumption.id)))


assumption_service = AssumptionService()
