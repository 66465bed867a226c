"""
Decisions API Endpoints Module
CRUD, review, retirement, evaluation and lock toggling
"""
import asyncio
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from api.deps import get_actor, get_now, get_uow_provider
from decision_service import decision_service
from domain.governance import Actor
from evaluation_scheduler import batch_evaluate
from schemas import (
    BatchEvaluateRequest,
    DecisionCreate,
    DecisionUpdate,
    InvalidateRequest,
    LockRequest,
    RetireRequest,
    ReviewRequest,
)

router = APIRouter(prefix="/decisions", tags=["decisions"])

# cancel tokens of batches currently running in this process
_running_batches: set = set()


@router.get("")
async def list_decisions(
    lifecycle: Optional[str] = Query(None, description="Filter by stored lifecycle"),
    include_retired: bool = Query(True),
    uows=Depends(get_uow_provider),
    now=Depends(get_now)
):
    async with uows() as uow:
        decisions = await decision_service.list_decisions(uow, now, lifecycle=lifecycle,
                                                          include_retired=include_retired)
    return {"status": "ok", "decisions": decisions, "total": len(decisions)}


@router.post("", status_code=201)
async def create_decision(
    req: DecisionCreate,
    uows=Depends(get_uow_provider),
    actor: Actor = Depends(get_actor),
    now=Depends(get_now)
):
    """Creates a decision; ``warnings`` lists similar decisions that failed"""
    async with uows() as uow:
        decision = await decision_service.create(uow, req.to_service(), actor, now)
    return {"status": "created", "decision": decision, "warnings": decision.pop("warnings")}


@router.post("/batch-evaluate")
async def batch_evaluate_decisions(
    req: BatchEvaluateRequest = BatchEvaluateRequest(),
    uows=Depends(get_uow_provider),
    now=Depends(get_now)
):
    """
    Smart evaluation: only decisions that need it are recomputed.
    Clients should refetch decisions only when ``evaluated > 0``.
    """
    cancel_token = asyncio.Event()
    _running_batches.add(cancel_token)
    try:
        result = await batch_evaluate(force=req.force, cancel_token=cancel_token, uow_factory=uows, now=now)
    finally:
        _running_batches.discard(cancel_token)
    return result.to_dict()


@router.post("/batch-evaluate/cancel")
async def cancel_batch_evaluations():
    for token in list(_running_batches):
        token.set()
    return {"cancelled": len(_running_batches)}


@router.get("/{decision_id}")
async def get_decision(decision_id: str, uows=Depends(get_uow_provider), now=Depends(get_now)):
    async with uows() as uow:
        return await decision_service.get(uow, decision_id, now)


@router.patch("/{decision_id}")
async def update_decision(
    decision_id: str,
    req: DecisionUpdate,
    uows=Depends(get_uow_provider),
    actor: Actor = Depends(get_actor),
    now=Depends(get_now)
):
    """Gated tiers answer 202 with the audit id of the pending edit request"""
    async with uows() as uow:
        result = await decision_service.update(uow, decision_id, req.to_service(), actor, now,
                                               justification=req.justification)
    if result["status"] == "pending_approval":
        return JSONResponse(status_code=202, content=result)
    return result


@router.delete("/{decision_id}")
async def delete_decision(
    decision_id: str,
    uows=Depends(get_uow_provider),
    actor: Actor = Depends(get_actor),
    now=Depends(get_now)
):
    async with uows() as uow:
        await decision_service.delete(uow, decision_id, actor, now)
    return {"status": "deleted", "decision_id": decision_id}


@router.post("/{decision_id}/retire")
async def retire_decision(
    decision_id: str,
    req: RetireRequest,
    uows=Depends(get_uow_provider),
    actor: Actor = Depends(get_actor),
    now=Depends(get_now)
):
    async with uows() as uow:
        decision = await decision_service.retire(uow, decision_id, req.outcome, req.conclusions, actor, now)
    return {"status": "retired", "decision": decision}


@router.post("/{decision_id}/review")
async def review_decision(
    decision_id: str,
    req: ReviewRequest,
    uows=Depends(get_uow_provider),
    actor: Actor = Depends(get_actor),
    now=Depends(get_now)
):
    async with uows() as uow:
        return await decision_service.review(
            uow,
            decision_id,
            actor,
            now,
            review_type=req.review_type,
            review_outcome=req.review_outcome,
            comment=req.comment,
            deferral_reason=req.deferral_reason,
            next_review_date=req.next_review_date
        )


@router.post("/{decision_id}/evaluate")
async def evaluate_decision_now(
    decision_id: str,
    uows=Depends(get_uow_provider),
    actor: Actor = Depends(get_actor),
    now=Depends(get_now)
):
    async with uows() as uow:
        evaluation = await decision_service.evaluate_now(uow, decision_id, actor, now)
    return {"evaluation": evaluation}


@router.post("/{decision_id}/lock")
async def toggle_lock(
    decision_id: str,
    req: LockRequest,
    uows=Depends(get_uow_provider),
    actor: Actor = Depends(get_actor),
    now=Depends(get_now)
):
    async with uows() as uow:
        decision = await decision_service.set_lock(uow, decision_id, req.lock, req.reason, actor, now)
    return {"status": "locked" if req.lock else "unlocked", "decision": decision}


@router.post("/{decision_id}/invalidate")
async def invalidate_decision(
    decision_id: str,
    req: InvalidateRequest,
    uows=Depends(get_uow_provider),
    actor: Actor = Depends(get_actor),
    now=Depends(get_now)
):
    async with uows() as uow:
        decision = await decision_service.invalidate(uow, decision_id, req.reason, actor, now)
    return {"status": "invalidated", "decision": decision}


@router.get("/{decision_id}/reviews")
async def list_reviews(decision_id: str, uows=Depends(get_uow_provider)):
    async with uows() as uow:
        return {"reviews": await decision_service.reviews(uow, decision_id)}


@router.get("/{decision_id}/evaluations")
async def list_evaluations(
    decision_id: str,
    limit: int = Query(50, ge=1, le=500),
    uows=Depends(get_uow_provider)
):
    async with uows() as uow:
        return {"evaluations": await decision_service.evaluations(uow, decision_id, limit=limit)}


@router.get("/{decision_id}/audit")
async def list_audit_entries(decision_id: str, uows=Depends(get_uow_provider)):
    async with uows() as uow:
        return {"entries": await decision_service.audit_log(uow, decision_id)}


@router.get("/{decision_id}/versions")
async def list_versions(decision_id: str, uows=Depends(get_uow_provider)):
    """Field-level edit history, newest first"""
    async with uows() as uow:
        versions = await decision_service.versions(uow, decision_id)
    return {"versions": versions, "total": len(versions)}
