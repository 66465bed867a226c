"""
Assumptions API Endpoints Module
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query

from api.deps import get_actor, get_now, get_uow_provider
from assumption_service import assumption_service
from domain.governance import Actor
from schemas import AssumptionCreate, AssumptionUpdate

router = APIRouter(prefix="/assumptions", tags=["assumptions"])


@router.get("")
async def list_assumptions(
    scope: Optional[str] = Query(None, description="UNIVERSAL or DECISION_SPECIFIC"),
    status: Optional[str] = Query(None, description="VALID (or HOLDING), SHAKY, BROKEN"),
    uows=Depends(get_uow_provider)
):
    async with uows() as uow:
        assumptions = await assumption_service.list_assumptions(uow, scope=scope, status=status)
    return {"status": "ok", "assumptions": assumptions, "total": len(assumptions)}


@router.post("", status_code=201)
async def create_assumption(
    req: AssumptionCreate,
    uows=Depends(get_uow_provider),
    actor: Actor = Depends(get_actor),
    now=Depends(get_now)
):
    async with uows() as uow:
        assumption = await assumption_service.create(uow, req.to_service(), actor, now)
    return {"status": "created", "assumption": assumption}


@router.get("/{assumption_id}")
async def get_assumption(assumption_id: str, uows=Depends(get_uow_provider)):
    async with uows() as uow:
        return await assumption_service.get(uow, assumption_id)


@router.patch("/{assumption_id}")
async def update_assumption(
    assumption_id: str,
    req: AssumptionUpdate,
    uows=Depends(get_uow_provider),
    actor: Actor = Depends(get_actor),
    now=Depends(get_now)
):
    async with uows() as uow:
        assumption = await assumption_service.update(uow, assumption_id, req.to_service(), actor, now)
    return {"status": "updated", "assumption": assumption}


@router.delete("/{assumption_id}")
async def delete_assumption(
    assumption_id: str,
    uows=Depends(get_uow_provider),
    actor: Actor = Depends(get_actor),
    now=Depends(get_now)
):
    async with uows() as uow:
        await assumption_service.delete(uow, assumption_id, actor, now)
    return {"status": "deleted", "assumption_id": assumption_id}
