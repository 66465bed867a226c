"""
FastAPI dependencies: unit-of-work provider, acting user, reference clock.
"""
from datetime import datetime
from typing import Optional

from fastapi import Header

from clock import clock
from domain.enums import ActorRole
from domain.governance import Actor
from exceptions import ValidationError
from infrastructure.uow import create_uow_provider

uow_provider = create_uow_provider()


def get_uow_provider():
    """
    Usage:
        @router.post("/endpoint")
        async def endpoint(uows=Depends(get_uow_provider)):
            async with uows() as uow:
                ...
    """
    return uow_provider


def get_actor(
    x_actor_id: Optional[str] = Header(None),
    x_actor_role: Optional[str] = Header(None)
) -> Actor:
    """Identity comes from an upstream auth proxy; no header means an anonymous member."""
    role = (x_actor_role or ActorRole.MEMBER.value).strip().lower()
    try:
        role = ActorRole(role)
    except ValueError:
        raise ValidationError(
            f"Unknown actor role '{x_actor_role}'",
            field="X-Actor-Role",
            details={"allowed": [r.value for r in ActorRole]}
        )
    return Actor(id=(x_actor_id or "anonymous").strip() or "anonymous", role=role)


def get_now() -> datetime:
    return clock.now()
