"""
Main FastAPI application for the Idea Browser backend.
Handles CORS, request logging middleware, lifespan events, and router registration.
"""
import logging
import os
import time
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config import settings
from app.database import AsyncSessionLocal, close_db, init_db, session_scope
from app.routers import collaboration, health, imports, realtime
from app.services.import_manager import ImportJobManager
from app.services.llm_client import LLMClient
from app.services.room_registry import RoomRegistry
from app.services.synthesis import AISynthesisService

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Startup / shutdown helpers
# ---------------------------------------------------------------------------

async def _check_database() -> bool:
    """Initialise DB tables and verify the connection.  Returns True on success."""
    try:
        await init_db()
        logger.info("✓ Database connection OK")
        return True
    except Exception as exc:
        logger.error("✗ Database connection failed: %s", exc)
        raise


async def _check_llm(llm: LLMClient) -> bool:
    """Log whether the configured LLM backend answers.  Never raises."""
    reachable = await llm.check_health()
    if reachable:
        logger.info("✓ LLM backend reachable (%s)", llm.backend)
    else:
        logger.warning(
            "⚠ LLM backend (%s) is not reachable; AI chat will return errors until it is up",
            llm.backend,
        )
    return reachable


def build_services(app: FastAPI) -> None:
    """Create the process-wide owners of ephemeral state on ``app.state``."""
    registry = RoomRegistry()
    llm = LLMClient()
    app.state.room_registry = registry
    app.state.llm_client = llm
    app.state.synthesis = AISynthesisService(llm, registry)
    app.state.import_manager = ImportJobManager(AsyncSessionLocal)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown event handler."""
    logger.info("=" * 60)
    logger.info("  Starting Idea Browser backend …")
    logger.info("=" * 60)

    # 1. Database (required; raises on failure)
    await _check_database()

    # 2. In-process services
    build_services(app)
    async with session_scope() as db:
        await app.state.import_manager.reconcile_interrupted(db)

    # 3. LLM (optional; logs warnings but continues)
    await _check_llm(app.state.llm_client)

    # 4. Upload directory
    os.makedirs(settings.UPLOAD_DIR, exist_ok=True)
    logger.info("✓ Upload directory: %s", os.path.abspath(settings.UPLOAD_DIR))

    logger.info("=" * 60)
    logger.info("  Idea Browser backend ready on http://%s:%d", settings.HOST, settings.PORT)
    logger.info("  Swagger UI : http://%s:%d/docs", settings.HOST, settings.PORT)
    logger.info("  Health     : http://%s:%d/api/health", settings.HOST, settings.PORT)
    logger.info("=" * 60)

    yield  # ← server is running

    logger.info("Shutting down Idea Browser backend …")
    await app.state.import_manager.shutdown()
    await app.state.room_registry.close()
    await close_db()
    logger.info("✓ Shutdown complete.")


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Idea Browser API",
    description=(
        "**Idea Browser**: collaboration backend for business-idea listings.\n\n"
        "Real-time chat rooms per idea, AI analysis of the conversation, and "
        "background bulk import of ideas from spreadsheets.\n\n"
        "Key endpoints:\n"
        "- `WS   /ws`: join / leave idea rooms, receive room events\n"
        "- `GET  /api/ideas/{id}/collaboration/messages`: chat history\n"
        "- `POST /api/ideas/{id}/collaboration/messages`: post a message\n"
        "- `POST /api/ideas/{id}/collaboration/ai-chat`: analyze / synthesize / critique\n"
        "- `POST /api/ideas/bulk-import`: start a spreadsheet import\n"
        "- `GET  /api/import-jobs/{jobId}`: poll import progress\n"
    ),
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)


# ---------------------------------------------------------------------------
# CORS
# ---------------------------------------------------------------------------

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_allowed_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Request / response logging middleware
# ---------------------------------------------------------------------------

@app.middleware("http")
async def log_requests(request: Request, call_next):
    """
    Log every request with method, path, status code, and elapsed time.
    Attaches an ``X-Process-Time`` header (milliseconds) to every response.
    """
    t0 = time.monotonic()
    response = await call_next(request)
    elapsed_ms = round((time.monotonic() - t0) * 1000, 2)

    # Skip noisy polling from the frontend
    path = request.url.path
    if path not in ("/api/health", "/api/health/", "/") and not path.endswith("/active-users"):
        logger.info(
            "%s %s → %d  (%.2f ms)",
            request.method,
            path,
            response.status_code,
            elapsed_ms,
        )

    response.headers["X-Process-Time"] = f"{elapsed_ms}ms"
    return response


# ---------------------------------------------------------------------------
# Global exception handler
# ---------------------------------------------------------------------------

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Return a structured JSON error for any unhandled exception."""
    logger.error(
        "Unhandled exception on %s %s: %s",
        request.method,
        request.url.path,
        exc,
        exc_info=True,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "detail": "Internal server error",
            "error": str(exc),
            "path": str(request.url.path),
            "timestamp": datetime.utcnow().isoformat(),
        },
    )


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------

app.include_router(health.router,        prefix="/api/health",                          tags=["Health"])
app.include_router(collaboration.router, prefix="/api/ideas/{idea_id}/collaboration",   tags=["Collaboration"])
app.include_router(imports.router,       prefix="/api",                                 tags=["Import"])
app.include_router(realtime.router,                                                     tags=["Realtime"])


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------

@app.get("/", tags=["Root"], include_in_schema=False)
async def root():
    """API root: returns basic service info."""
    return {
        "name": "Idea Browser API",
        "version": "0.1.0",
        "description": "Idea collaboration and bulk import backend",
        "docs": "/docs",
        "health": "/api/health",
        "endpoints": {
            "websocket": "/ws",
            "collaboration": "/api/ideas/{ideaId}/collaboration",
            "bulk_import": "/api/ideas/bulk-import",
            "import_jobs": "/api/import-jobs",
        },
    }


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=True,
        log_level="info",
    )
