"""
TELECONSULT+ Backend API
Doctor / patient video visits with live posture analysis

FastAPI application entry point: video tokens and presence tracking over
HTTP, analysis session signaling over WebSocket.
"""

import logging
import sys
import time
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
from video_service.router import router as video_router, get_session_tracker
from telemedicine_service.router import router as telemedicine_router, get_telemedicine_relay

# Core utilities
from core.config import settings
from core.notifications import whatsapp_service
from core.video_provider import get_video_provider
from shared.utils import setup_logger, error_response, get_now_iso

# Setup logging
logger = setup_logger("teleconsult.main", level=logging.DEBUG)
request_logger = setup_logger("teleconsult.requests", level=logging.DEBUG)


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


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown."""
    # ===== STARTUP =====
    logger.info("🚀 TELECONSULT+ API starting up...")

    tracker = get_session_tracker()
    relay = get_telemedicine_relay()

    if not get_video_provider().is_configured:
        logger.warning("⚠️ LiveKit credentials missing - token and room endpoints will fail")

    await relay.connections.start_heartbeat()
    tracker.start()
    relay.start()

    logger.info("✅ TELECONSULT+ API ready!")

    yield  # Application runs here

    # ===== SHUTDOWN =====
    logger.info("👋 TELECONSULT+ API shutting down...")

    await tracker.stop()
    await relay.stop()
    await relay.connections.stop_heartbeat()

    logger.info("✅ Shutdown complete")


app = FastAPI(
    title="TELECONSULT+ API",
    description="Telehealth video visits - tokens, presence tracking and realtime analysis sessions",
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

app.add_middleware(RequestLoggingMiddleware)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error(f"💥 {request.method} {request.url.path} → {type(exc).__name__}: {exc}")
    body = error_response(
        "Internal Server Error",
        error_code="INTERNAL_ERROR",
        details={"message": str(exc)} if settings.DEBUG else None
    )
    return JSONResponse(status_code=500, content=body)


@app.get("/health")
async def health_check():
    """Health check endpoint for monitoring."""
    return {
        "status": "healthy",
        "service": "teleconsult-api",
        "timestamp": get_now_iso(),
        "websocket_connections": get_telemedicine_relay().connections.connection_count
    }


@app.get("/stats")
async def get_stats():
    """Get service statistics."""
    relay = get_telemedicine_relay()
    return {
        "websocket": relay.connections.get_stats(),
        "analysis_sessions": relay.get_stats(),
        "presence": get_session_tracker().get_stats(),
        "whatsapp": whatsapp_service.get_stats()
    }


# Include service routers
app.include_router(video_router, prefix="/api/video", tags=["Video Service"])
app.include_router(telemedicine_router, prefix="/telemedicine", tags=["Telemedicine Service"])


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
