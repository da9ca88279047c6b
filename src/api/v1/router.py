from fastapi import APIRouter

from config import settings
from .rain_router import router as rain_router

router = APIRouter(prefix="/api/v1", tags=["v1"])
router.include_router(rain_router)


@router.get("/health")
async def health():
    return {"status": "ok", "version": settings.app_version}


@router.get("/info")
async def info():
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "debug": settings.debug,
        "cors_origins": settings.cors_origins,
        "datagov_base_url": settings.datagov_base_url,
        "api_key_configured": bool(settings.data_gov_api_key),
        "distance_pool_enabled": settings.distance_pool_enabled,
        "distance_worker_backend": settings.distance_worker_backend,
    }
