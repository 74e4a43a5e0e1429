import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from publivote.cache import CacheManager
from publivote.config import settings
from publivote.database import async_session, engine
from publivote.dependencies import build_services
from publivote.exceptions import PublivoteError
from publivote.middleware import RequestDiagnosticsMiddleware
from publivote.routers import catalog, metrics, publications, users
from publivote.storage import LocalObjectStore

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    cache = CacheManager(settings.REDIS_URL)
    await cache.connect()  # falls back to no-op caching when Redis is down
    object_store = LocalObjectStore(settings.STORAGE_PATH, settings.SECRET_KEY)
    app.state.services = build_services(async_session, object_store, cache, settings)
    logger.info("publivote started (env=%s)", settings.APP_ENV)
    yield
    await cache.disconnect()
    await engine.dispose()


app = FastAPI(
    title="Publivote API",
    description="Publications with tags, images and one-vote-per-user voting",
    version="1.0.0",
    lifespan=lifespan,
)


@app.exception_handler(PublivoteError)
async def publivote_error_handler(request: Request, exc: PublivoteError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


# Middleware
app.add_middleware(RequestDiagnosticsMiddleware, slow_request_ms=settings.SLOW_REQUEST_MS)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routers
app.include_router(publications.router)
app.include_router(catalog.router)
app.include_router(users.router)
app.include_router(metrics.router)


@app.get("/health")
async def health():
    return {"status": "healthy", "version": "1.0.0"}
