"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from backend.app.api.v1.endpoints import parcels, transport, delivery, admin_ops

router = APIRouter()

# Sorting station: collection, sorting, sorting abnormals
router.include_router(parcels.router)

# Line haul between nodes
router.include_router(transport.router)

# Last mile and signatures
router.include_router(delivery.router)

# Dead letter queue
router.include_router(admin_ops.router)
