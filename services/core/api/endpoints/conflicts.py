"""
Conflicts API Endpoints Module
Assumption and decision conflicts: query, detect, resolve, dismiss
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query

from api.deps import get_actor, get_now, get_uow_provider
from conflict_registry import conflict_registry
from decision_service import parse_uuid
from domain.governance import Actor
from exceptions import DecisionNotFound
from schemas import ConflictResolveRequest
from serializers import assumption_conflict_to_dict, decision_conflict_to_dict

assumption_router = APIRouter(prefix="/assumption-conflicts", tags=["conflicts"])
decision_router = APIRouter(prefix="/decision-conflicts", tags=["conflicts"])


# =============================================================================
# Assumption conflicts
# =============================================================================

@assumption_router.get("")
async def list_assumption_conflicts(
    resolved: Optional[bool] = Query(None, description="Omit for all conflicts"),
    uows=Depends(get_uow_provider)
):
    async with uows() as uow:
        conflicts = await uow.conflicts.list_assumption_conflicts(uow.session, resolved=resolved)
        return {"conflicts": [assumption_conflict_to_dict(c) for c in conflicts]}


@assumption_router.post("/detect")
async def detect_assumption_conflicts(uows=Depends(get_uow_provider), now=Depends(get_now)):
    """Never fails on oracle trouble: an unavailable oracle yields zero new conflicts"""
    async with uows() as uow:
        created = await conflict_registry.detect_assumption_conflicts(uow, now)
    return {"status": "ok", "new_conflicts": created}


@assumption_router.post("/{conflict_id}/resolve")
async def resolve_assumption_conflict(
    conflict_id: str,
    req: ConflictResolveRequest,
    uows=Depends(get_uow_provider),
    actor: Actor = Depends(get_actor),
    now=Depends(get_now)
):
    async with uows() as uow:
        result = await conflict_registry.resolve_assumption_conflict(
            uow, parse_uuid(conflict_id, "conflict_id"), req.action, req.notes, actor, now
        )
    return {"status": "resolved", **result}


@assumption_router.delete("/{conflict_id}")
async def dismiss_assumption_conflict(conflict_id: str, uows=Depends(get_uow_provider)):
    async with uows() as uow:
        await conflict_registry.dismiss_assumption_conflict(uow, parse_uuid(conflict_id, "conflict_id"))
    return {"status": "dismissed", "conflict_id": conflict_id}


# =============================================================================
# Decision conflicts
# =============================================================================

@decision_router.get("")
async def list_decision_conflicts(
    resolved: Optional[bool] = Query(None),
    uows=Depends(get_uow_provider)
):
    async with uows() as uow:
        conflicts = await uow.conflicts.list_decision_conflicts(uow.session, resolved=resolved)
        return {"conflicts": [decision_conflict_to_dict(c) for c in conflicts]}


@decision_router.post("/detect")
async def detect_decision_conflicts(
    decision_id: Optional[str] = Query(None, description="Limit detection to pairs involving this decision"),
    uows=Depends(get_uow_provider),
    now=Depends(get_now)
):
    async with uows() as uow:
        target = None
        if decision_id:
            target = parse_uuid(decision_id, "decision_id")
            if await uow.decisions.get(uow.session, target) is None:
                raise DecisionNotFound(decision_id)
        created = await conflict_registry.detect_decision_conflicts(uow, now, decision_id=target)
    return {"status": "ok", "new_conflicts": created}


@decision_router.get("/{decision_id}")
async def conflicts_for_decision(
    decision_id: str,
    resolved: Optional[bool] = Query(None),
    uows=Depends(get_uow_provider)
):
    async with uows() as uow:
        decision_uuid = parse_uuid(decision_id, "decision_id")
        if await uow.decisions.get(uow.session, decision_uuid) is None:
            raise DecisionNotFound(decision_id)
        conflicts = await uow.conflicts.list_decision_conflicts(uow.session, decision_id=decision_uuid,
                                                                resolved=resolved)
        return {"conflicts": [decision_conflict_to_dict(c) for c in conflicts]}


@decision_router.post("/{conflict_id}/resolve")
async def resolve_decision_conflict(
    conflict_id: str,
    req: ConflictResolveRequest,
    uows=Depends(get_uow_provider),
    actor: Actor = Depends(get_actor),
    now=Depends(get_now)
):
    async with uows() as uow:
        result = await conflict_registry.resolve_decision_conflict(
            uow, parse_uuid(conflict_id, "conflict_id"), req.action, req.notes, actor, now
        )
    return {"status": "resolved", **result}


@decision_router.delete("/{conflict_id}")
async def dismiss_decision_conflict(conflict_id: str, uows=Depends(get_uow_provider)):
    """False positive: hard delete, decisions untouched"""
    async with uows() as uow:
        await conflict_registry.dismiss_decision_conflict(uow, parse_uuid(conflict_id, "conflict_id"))
    return {"status": "dismissed", "conflict_id": conflict_id}
