from fastapi import APIRouter

from .endpoints import (
    health,
    observability,
    offers,
    points,
    redemptions,
    scans,
    sweeps,
)

router = APIRouter()
router.include_router(health.router, prefix="/health", tags=["Health"])
router.include_router(points.router)
router.include_router(scans.router)
router.include_router(redemptions.router)
router.include_router(offers.router)
router.include_router(sweeps.router)
router.include_router(observability.router)
