"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from movematch.app.api.v1.endpoints import client_requests, matches

router = APIRouter()

# Match generation, listing and decisions
router.include_router(matches.router)

# Per-request views and completion
router.include_router(client_requests.router)
