"""
V1 API router aggregator: wires all endpoint modules together.
"""

from fastapi import APIRouter

from loadflow.api.v1.endpoints import auth, events, health, loads, users

api_router = APIRouter()

# Auth (login, refresh, logout, me, verify)
api_router.include_router(auth.router)

# User management
api_router.include_router(users.router)

# Event stream must precede /loads/{load_id}
api_router.include_router(events.router)

# Loads, comments, export
api_router.include_router(loads.router)

# Health
api_router.include_router(health.router)
