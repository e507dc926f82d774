from fastapi import APIRouter

from .endpoints import admin, auth, health, karma, observability

router = APIRouter()
router.include_router(health.router, tags=["Health"])
router.include_router(karma.router)
router.include_router(admin.router)
router.include_router(auth.router)
router.include_router(observability.router)
