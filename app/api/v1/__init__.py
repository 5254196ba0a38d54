"""API v1 routes aggregation"""

from fastapi import APIRouter

from .referrals.router import router as referrals_router
from .analytics.router import router as analytics_router

# Create v1 router
api_router = APIRouter()

# Include all routers
api_router.include_router(referrals_router, prefix="/referrals", tags=["Referrals"])
api_router.include_router(analytics_router, prefix="/dashboard", tags=["Dashboard"])

# Export router
router = api_router
