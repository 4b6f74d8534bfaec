"""
Version 1 API routers.
"""

from fastapi import APIRouter

from delivery_tracker.api.v1.location import router as location_router
from delivery_tracker.api.v1.orders import router as orders_router
from delivery_tracker.api.v1.partners import router as partners_router
from delivery_tracker.api.v1.payments import router as payments_router
from delivery_tracker.api.v1.realtime import router as realtime_router
from delivery_tracker.api.v1.users import router as users_router

api_router = APIRouter()
api_router.include_router(users_router)
api_router.include_router(orders_router)
api_router.include_router(partners_router)
api_router.include_router(location_router)
api_router.include_router(payments_router)

__all__ = ["api_router", "realtime_router"]
