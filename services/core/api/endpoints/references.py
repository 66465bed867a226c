"""
Dependencies, constraints and constraint violations
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from api.deps import get_actor, get_now, get_uow_provider
from decision_service import decision_service
from domain.governance import Actor
from schemas import ConstraintCreate, DependencyCreate

router = APIRouter(tags=["references"])


@router.get("/dependencies/{decision_id}")
async def dependencies_for_decision(decision_id: str, uows=Depends(get_uow_provider)):
    async with uows() as uow:
        return {"dependencies": await decision_service.dependencies(uow, decision_id)}


@router.post("/dependencies", status_code=201)
async def add_dependency(
    req: DependencyCreate,
    uows=Depends(get_uow_provider),
    actor: Actor = Depends(get_actor),
    now=Depends(get_now)
):
    """Adds an edge to an existing decision; gated tiers answer 202 like any other edit"""
    async with uows() as uow:
        result = await decision_service.add_dependency(
            uow, req.source_decision_id, req.target_decision_id, req.relation, actor, now,
            justification=req.justification
        )
    if result["status"] == "pending_approval":
        return JSONResponse(status_code=202, content=result)
    return result


@router.get("/constraints")
async def list_constraints(uows=Depends(get_uow_provider)):
    async with uows() as uow:
        return {"constraints": await decision_service.list_constraints(uow)}


@router.post("/constraints", status_code=201)
async def create_constraint(
    req: ConstraintCreate,
    uows=Depends(get_uow_provider),
    actor: Actor = Depends(get_actor),
    now=Depends(get_now)
):
    async with uows() as uow:
        constraint = await decision_service.create_constraint(uow, req.to_service(), actor, now)
    return {"status": "created", "constraint": constraint}


@router.get("/constraints/{decision_id}")
async def constraints_for_decision(decision_id: str, uows=Depends(get_uow_provider)):
    async with uows() as uow:
        return {"constraints": await decision_service.constraints(uow, decision_id)}


@router.get("/constraint-violations/{decision_id}")
async def violations_for_decision(
    decision_id: str,
    resolved: Optional[bool] = Query(None),
    uows=Depends(get_uow_provider)
):
    async with uows() as uow:
        return {"violations": await decision_service.violations(uow, decision_id, resolved=resolved)}


@router.post("/constraint-violations/{violation_id}/resolve")
async def resolve_violation(
    violation_id: str,
    uows=Depends(get_uow_provider),
    actor: Actor = Depends(get_actor),
    now=Depends(get_now)
):
    async with uows() as uow:
        violation = await decision_service.resolve_violation(uow, violation_id, actor, now)
    return {"status": "resolved", "violation": violation}
