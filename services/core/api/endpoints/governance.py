"""
Governance API Endpoints Module
Pending approvals and edit request resolution (elevated actors only)
"""
from fastapi import APIRouter, Depends

from api.deps import get_actor, get_now, get_uow_provider
from decision_service import decision_service
from domain.governance import Actor
from schemas import EditRequestResolve

router = APIRouter(tags=["governance"])


@router.get("/pending-approvals")
async def pending_approvals(uows=Depends(get_uow_provider), actor: Actor = Depends(get_actor)):
    async with uows() as uow:
        items = await decision_service.pending_approvals(uow, actor)
    return {"pending": items, "total": len(items)}


@router.post("/edit-requests/{audit_id}/resolve")
async def resolve_edit_request(
    audit_id: str,
    req: EditRequestResolve,
    uows=Depends(get_uow_provider),
    actor: Actor = Depends(get_actor),
    now=Depends(get_now)
):
    async with uows() as uow:
        return await decision_service.resolve_edit_request(uow, audit_id, req.approved, actor, now,
                                                           notes=req.notes)
