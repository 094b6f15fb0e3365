from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi_limiter import FastAPILimiter
from starlette.exceptions import HTTPException as StarletteHTTPException
from structlog import get_logger

from listings.config import settings
from listings.database import SessionLocal, engine, init_db
from listings.routers import admin, agents, auth, properties, uploads
from listings.services.admin import refresh_health_cache
from listings.services.cache import close_redis_client, get_redis_client
from listings.services.views import recalculate_quality_scores

logger = get_logger()

app = FastAPI(title="Listings Service")
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Viewer-Session"],
)

scheduler = AsyncIOScheduler()


def _error_body(detail) -> dict:
    if isinstance(detail, dict):
        body = {"success": False, **detail}
        body.setdefault("error", "Request failed")
        return body
    return {"success": False, "error": str(detail)}


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content=_error_body(exc.detail), headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"field": ".".join(str(p) for p in e.get("loc", ())[1:]), "message": e.get("msg")}
        for e in exc.errors()
    ]
    return JSONResponse(status_code=422, content={"success": False, "error": "Validation failed", "details": errors})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error("Unhandled error", path=request.url.path, method=request.method, error=f"{type(exc).__name__}: {exc}")
    return JSONResponse(status_code=500, content={"success": False, "error": "Internal server error"})


async def update_health_cache():
    try:
        await refresh_health_cache()
    except Exception as e:
        logger.warning("Health cache refresh failed", error=str(e))


async def update_quality_scores():
    async with SessionLocal() as session:
        await recalculate_quality_scores(session)


@app.on_event("startup")
async def startup_event():
    if settings.AUTO_CREATE_TABLES:
        await init_db()
    redis = get_redis_client()
    if redis is not None:
        await FastAPILimiter.init(redis)
    else:
        logger.warning("REDIS_URL not set, caching and rate limits disabled")
    if settings.SCHEDULER_ENABLED:
        # Run once immediately on startup
        await update_health_cache()
        scheduler.add_job(update_health_cache, "interval", seconds=settings.HEALTH_CACHE_SECONDS)
        scheduler.add_job(update_quality_scores, "interval", minutes=settings.QUALITY_RECALC_MINUTES)
        scheduler.start()


@app.on_event("shutdown")
async def shutdown_event():
    if scheduler.running:
        scheduler.shutdown()
    await close_redis_client()
    await engine.dispose()


app.include_router(auth.router)
app.include_router(properties.router)
app.include_router(uploads.router)
app.include_router(admin.router)
app.include_router(agents.router)


@app.get("/health")
async def root_health():
    return "ok"
