"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from backend.app.api.v1.endpoints import tracking

router = APIRouter()

# Shipment tracking endpoints
router.include_router(tracking.trip_router)
router.include_router(tracking.load_router)
router.include_router(tracking.ops_router)
