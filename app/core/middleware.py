# backend/app/core/middleware.py

import time
import logging
from starlette.middleware.base import BaseHTTPMiddleware
from fastapi import Request

logger = logging.getLogger(__name__)


class APIMonitorMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start_time = time.time()
        status_code = 500

        try:
            response = await call_next(request)
            status_code = response.status_code
            response.headers["X-Process-Time"] = str(time.time() - start_time)
            return response
        finally:
            duration_ms = (time.time() - start_time) * 1000

            # Docs and health probes are noise
            if not request.url.path.startswith(("/docs", "/redoc", "/openapi.json", "/health")):
                log = logger.warning if status_code >= 400 else logger.info
                log(
                    "%s %s -> %s (%.2f ms)",
                    request.method,
                    request.url.path,
                    status_code,
                    duration_ms,
                )
