from fastapi import APIRouter

from .endpoints import (
    appointments,
    health,
    loyalty,
    observability,
    recurring_series,
    sales,
    settings,
)

router = APIRouter()
router.include_router(health.router, tags=["Health"])
router.include_router(settings.router)
router.include_router(sales.router)
router.include_router(loyalty.router)
router.include_router(recurring_series.router)
router.include_router(appointments.router)
router.include_router(observability.router)
