"""
User endpoints: self-service profile plus staff administration.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from authcore.api.v1.deps import get_current_user, get_services, require_roles
from authcore.core.security import Role
from authcore.models.user import User
from authcore.schemas.user import ProfileUpdate, UserRead, UserStats, UserUpdate
from authcore.services.container import AuthServices
from authcore.services.identity import CallerIdentity

router = APIRouter(prefix="/users", tags=["users"])


# ── Own profile ─────────────────────────────────────────────────────
@router.get("/profile", response_model=UserRead)
async def get_my_profile(
    caller: CallerIdentity = Depends(get_current_user),
    services: AuthServices = Depends(get_services),
) -> User:
    return await services.accounts.get_profile(caller.id)


@router.put("/profile", response_model=UserRead)
async def update_my_profile(
    body: ProfileUpdate,
    caller: CallerIdentity = Depends(get_current_user),
    services: AuthServices = Depends(get_services),
) -> User:
    """Update name and email; omitted fields are kept."""
    return await services.accounts.update_profile(caller.id, body.model_dump(exclude_unset=True))


# ── Administration ──────────────────────────────────────────────────
@router.get("/stats", response_model=UserStats)
async def users_stats(
    _admin: CallerIdentity = Depends(require_roles(Role.ADMIN)),
    services: AuthServices = Depends(get_services),
) -> dict:
    return await services.accounts.stats()


@router.get("/{user_id}", response_model=UserRead)
async def get_user(
    user_id: str,
    caller: CallerIdentity = Depends(get_current_user),
    services: AuthServices = Depends(get_services),
) -> User:
    """Staff see anyone; customers only themselves."""
    return await services.accounts.get_user(user_id, actor_id=caller.id, actor_role=caller.role)


@router.put("/{user_id}", response_model=UserRead)
async def update_user(
    user_id: str,
    body: UserUpdate,
    staff: CallerIdentity = Depends(require_roles(Role.MANAGER, Role.ADMIN)),
    services: AuthServices = Depends(get_services),
) -> User:
    """Edit a user; role changes need ADMIN, ``is_active`` toggles the account."""
    return await services.accounts.update_user(
        user_id,
        body.model_dump(exclude_unset=True),
        actor_id=staff.id,
        actor_role=staff.role,
    )


@router.post("/{user_id}/deactivate", response_model=UserRead)
async def deactivate_user(
    user_id: str,
    admin: CallerIdentity = Depends(require_roles(Role.ADMIN)),
    services: AuthServices = Depends(get_services),
) -> User:
    """Deactivate an account and revoke all of its refresh tokens."""
    return await services.accounts.deactivate(user_id, actor_id=admin.id)
