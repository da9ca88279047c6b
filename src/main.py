from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
import logging, time

from config import settings
from api.v1.router import router as v1_router
from services.datagov import DataGovClient
from services.distance_pool import DistanceEngine, DistanceWorkerPool
from services.nowcast import NowcastService
from services.weather import WeatherService, snapshot_cache, wind_vector_record
from services.weather_cache import VolatileStore

logger = logging.getLogger("rainornot.hub")
if not logger.handlers:
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

def create_app() -> FastAPI:
    app = FastAPI(title=settings.app_name, version=settings.app_version)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    store = VolatileStore()
    pool = DistanceWorkerPool() if settings.distance_pool_enabled else None
    engine = DistanceEngine(pool)
    weather_service = WeatherService(
        client=DataGovClient(),
        cache=snapshot_cache(store),
        wind_record=wind_vector_record(store) if settings.wind_vector_record_enabled else None,
        engine=engine,
    )
    app.state.store = store
    app.state.weather_service = weather_service
    app.state.nowcast_service = NowcastService(weather_service)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        dur_ms = (time.perf_counter() - start) * 1000.0
        logger.info("%s %s -> %s (%.1f ms)", request.method, request.url.path, response.status_code, dur_ms)
        return response

    @app.get("/", tags=["meta"])
    async def root():
        return {"name": settings.app_name, "version": settings.app_version}

    @app.get("/health", tags=["meta"])
    async def health():
        return JSONResponse({"status": "ok", "version": settings.app_version})

    app.include_router(v1_router)

    @app.on_event("startup")
    async def _startup():
        if pool is not None:
            await engine.initialize()
        else:
            logger.info("Distance pool disabled (set DISTANCE_POOL_ENABLED=true to enable).")

    @app.on_event("shutdown")
    async def _shutdown():
        await engine.shutdown()
        await weather_service.close()

    return app

app = create_app()
