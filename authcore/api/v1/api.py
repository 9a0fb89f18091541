"""
V1 API router aggregator. Wires all endpoint modules together.
"""

from fastapi import APIRouter

from authcore.api.v1.endpoints import auth, health, users

api_router = APIRouter()

# OTP login, refresh, anonymous sessions, logout
api_router.include_router(auth.router)

# Account administration
api_router.include_router(users.router)

# Database-backed health probe
api_router.include_router(health.router)
