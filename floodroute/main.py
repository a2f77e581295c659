from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
import logging
import time

from floodroute import __version__
from floodroute.manager import get_manager
from floodroute.middleware.error_handler import error_handler_middleware, setup_error_handlers
from floodroute.routers import cache_router, risk_router, routes_router, search_router, tiles_router

logger = logging.getLogger("floodroute.main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    manager = get_manager()
    await manager.initialize()
    yield
    await manager.close()


app = FastAPI(
    title="FloodRoute API",
    description="Offline-capable flood risk scoring and risk-aware evacuation routing",
    version=__version__,
    lifespan=lifespan,
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log every request with its status and duration."""
    start_time = time.time()
    path = request.url.path
    method = request.method

    # Tile requests are too frequent to log individually
    skip_logging = method == "GET" and path.startswith("/api/tiles")

    if not skip_logging:
        logger.info(f"🔔 {method} {path}")

    response = await call_next(request)

    process_time = time.time() - start_time
    status_code = response.status_code
    if status_code < 400:
        status_str = f"✅ {status_code}"
    elif status_code < 500:
        status_str = f"⚠️ {status_code}"
    else:
        status_str = f"❌ {status_code}"

    if not skip_logging:
        logger.info(f"🏁 {method} {path} - {status_str} - {process_time:.3f}s")
    return response


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.middleware("http")(error_handler_middleware)

setup_error_handlers(app)

app.include_router(tiles_router.router, prefix="/api", tags=["Tiles"])
app.include_router(risk_router.router, prefix="/api/risk", tags=["Risk"])
app.include_router(routes_router.router, prefix="/api/routes", tags=["Routes"])
app.include_router(search_router.router, prefix="/api/search", tags=["Search"])
app.include_router(cache_router.router, prefix="/api/cache", tags=["Cache"])


@app.get("/")
async def root():
    return {"message": "FloodRoute API"}


@app.get("/health")
async def health_check():
    return {"status": "ok"}
