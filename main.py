"""
BLOOMFIT Backend API
Personal wellness tracking - live exercise tracking service

FastAPI application entry point with WebSocket support for posture scoring
and repetition counting.
"""

import logging
import sys
import time
import traceback
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

# ============================================
# Configure Root Logger First
# ============================================
logging.basicConfig(
    level=logging.DEBUG,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    handlers=[logging.StreamHandler(sys.stdout)]
)

# Service routers
from motion_service.router import router as motion_router
from motion_service.models import get_session_manager

# Core utilities
from core.config import settings
from shared.utils import setup_logger, error_response

# Setup logging
logger = setup_logger("bloomfit.main", level=logging.DEBUG)
request_logger = setup_logger("bloomfit.requests", level=logging.DEBUG)


# ============================================
# Request Logging Middleware
# ============================================

class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log all incoming requests and responses with timing."""

    async def dispatch(self, request: Request, call_next):
        start_time = time.time()

        client_ip = request.client.host if request.client else "unknown"
        query_string = f"?{request.url.query}" if request.url.query else ""

        request_logger.info(f"➡️  {request.method} {request.url.path}{query_string}")
        request_logger.debug(f"    Client: {client_ip}")

        try:
            response = await call_next(request)

            process_time = (time.time() - start_time) * 1000

            if response.status_code < 300:
                status_emoji = "✅"
            elif response.status_code < 400:
                status_emoji = "↪️"
            elif response.status_code < 500:
                status_emoji = "⚠️"
            else:
                status_emoji = "❌"

            request_logger.info(
                f"{status_emoji} {request.method} {request.url.path} → {response.status_code} ({process_time:.1f}ms)"
            )

            return response
        except Exception as e:
            process_time = (time.time() - start_time) * 1000
            request_logger.error(f"💥 {request.method} {request.url.path} → ERROR: {type(e).__name__}: {str(e)} ({process_time:.1f}ms)")
            request_logger.error(traceback.format_exc())
            raise


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown."""
    # ===== STARTUP =====
    logger.info(f"🚀 {settings.APP_NAME} API starting up...")
    logger.info(f"🦴 Landmark source: {settings.LANDMARK_SOURCE}")
    logger.info(f"✅ {settings.APP_NAME} API ready!")

    yield  # Application runs here

    # ===== SHUTDOWN =====
    logger.info(f"👋 {settings.APP_NAME} API shutting down...")

    stopped = get_session_manager().stop_all()
    if stopped:
        logger.info(f"Stopped {stopped} tracking session(s)")

    logger.info("✅ Shutdown complete")


app = FastAPI(
    title=f"{settings.APP_NAME} API",
    description="Personal wellness tracking - live posture scoring and repetition counting",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Add request logging middleware
app.add_middleware(RequestLoggingMiddleware)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    """Return a JSON 500 for anything the routes did not handle."""
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content=error_response("Internal server error", error_code="internal_error"))


# Health check endpoint
@app.get("/health")
async def health_check():
    """Health check endpoint for monitoring."""
    manager = get_session_manager()
    return {
        "status": "healthy",
        "service": "bloomfit-api",
        "landmark_source": settings.LANDMARK_SOURCE,
        "active_sessions": manager.active_count
    }


# Include service routers
app.include_router(motion_router, prefix="/api/motion", tags=["Motion Service"])


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
