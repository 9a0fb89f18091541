"""
FastAPI dependencies for service access, request metadata and auth guards.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from authcore.core.exceptions import NotAuthenticated, PermissionDenied
from authcore.core.security import Role
from authcore.services.container import AuthServices
from authcore.services.identity import CallerIdentity

# auto_error=False so a missing header goes through our own error shape
bearer_scheme = HTTPBearer(auto_error=False)


# ── Services & request metadata ─────────────────────────────────────
def get_services(request: Request) -> AuthServices:
    return request.app.state.services


def client_ip(request: Request) -> str | None:
    """The peer address, the same key the rate limiter uses. Proxy headers are not trusted."""
    return request.client.host if request.client else None


def user_agent(request: Request) -> str | None:
    return request.headers.get("user-agent")


# ── Auth dependencies ───────────────────────────────────────────────
async def get_current_identity(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    services: AuthServices = Depends(get_services),
) -> CallerIdentity:
    """Verify the bearer token and resolve the caller (user or anonymous)."""
    if credentials is None or not credentials.credentials:
        raise NotAuthenticated()
    return await services.identity.authenticate(credentials.credentials)


async def get_current_user(
    identity: CallerIdentity = Depends(get_current_identity),
) -> CallerIdentity:
    """Reject anonymous sessions."""
    if identity.is_anonymous:
        raise PermissionDenied("A registered account is required")
    return identity


def require_roles(*roles: Role) -> Callable[..., Awaitable[CallerIdentity]]:
    """Only allow callers holding one of ``roles``."""

    async def _guard(identity: CallerIdentity = Depends(get_current_user)) -> CallerIdentity:
        if identity.role not in roles:
            raise PermissionDenied(
                f"Requires one of: {', '.join(role.value for role in roles)}"
            )
        return identity

    return _guard
