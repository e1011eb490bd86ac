# backend/main.py
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
import asyncio
import httpx
import logging

from app.core.config import settings
from app.core.middleware import APIMonitorMiddleware
from app.core.session_store import sweep_periodically
from app.apis.v1 import api_router
from app.core.exception import (
    GatewayError,
    gateway_exception_handler,
    global_exception_handler,
    http_exception_handler,
    validation_exception_handler
)
from app.lib.brokers.factory import build_gateways

# Setup Logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for FastAPI.
    Owns the shared upstream HTTP client and the gateway instances.
    """
    # --- Startup ---
    logger.info(f"🚀 Starting {settings.APP_NAME} in {settings.ENVIRONMENT} mode...")

    http_client = httpx.AsyncClient(timeout=settings.UPSTREAM_TIMEOUT_SECONDS)
    app.state.gateways = build_gateways(settings, http_client)
    logger.info(f"Gateways ready: {', '.join(app.state.gateways)}")
    sweeper = asyncio.create_task(
        sweep_periodically(
            [gateway.sessions for gateway in app.state.gateways.values()],
            settings.SESSION_SWEEP_INTERVAL_SECONDS,
        )
    )

    for route in app.routes:
        if hasattr(route, "methods"):
            logger.debug(f"   {route.methods} {route.path}")

    yield

    # --- Shutdown ---
    logger.info("🛑 Shutting down application...")
    sweeper.cancel()
    try:
        await sweeper
    except asyncio.CancelledError:
        pass

    for gateway in app.state.gateways.values():
        for identity in gateway.sessions.keys():
            try:
                await gateway.logout(identity)
            except Exception as e:
                logger.warning(f"Shutdown logout failed for '{identity}': {e}")
    await http_client.aclose()

app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    lifespan=lifespan,
    docs_url="/docs" if settings.ENVIRONMENT != "production" else None,
    redoc_url=None
)

# --- Exception Handlers ---
app.add_exception_handler(GatewayError, gateway_exception_handler)
app.add_exception_handler(Exception, global_exception_handler)
app.add_exception_handler(StarletteHTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)

# --- Middleware ---
app.add_middleware(APIMonitorMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
)

# --- Router Registration ---
app.include_router(api_router, prefix="/api/v1")

# --- Core Endpoints ---
@app.get("/health", tags=["System"])
async def health_check():
    gateways = getattr(app.state, "gateways", {})
    return {
        "status": "healthy",
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "gateways": {name: len(gateway.sessions) for name, gateway in gateways.items()},
    }

@app.get("/", tags=["System"])
async def root():
    return {
        "message": "Forex Trading Gateway is running",
        "docs": "/docs" if settings.ENVIRONMENT != "production" else "Hidden"
    }

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host=settings.SERVER_HOST, port=settings.SERVER_PORT, reload=True)
