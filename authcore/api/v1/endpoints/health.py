"""
Liveness/readiness probe backed by a database ping.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from authcore.api.v1.deps import get_services
from authcore.services.container import AuthServices

router = APIRouter(tags=["health"])


@router.get("/health")
async def health(services: AuthServices = Depends(get_services)) -> JSONResponse:
    if await services.store.ping():
        return JSONResponse({"status": "ok", "database": "up"})
    return JSONResponse({"status": "error", "database": "down"}, status_code=503)
