from fastapi import APIRouter

from .v1 import router as v1_router
from .v1.endpoints import stream

api_router = APIRouter()
api_router.include_router(v1_router, prefix="/api/v1")
api_router.include_router(stream.router)
