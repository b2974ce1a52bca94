"""Optional API key guard for the control API.

With API_KEY set, every /api/ path outside OPEN_PATHS must present the key
as an ``X-API-Key`` header or an ``api_key`` query parameter. The health
probe stays open so orchestrators can poll it without credentials.
"""

from __future__ import annotations

import logging
import secrets

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from .config import settings

logger = logging.getLogger(__name__)

OPEN_PATHS = frozenset({"/api/health", "/api/openapi.json"})


def _presented_key(request: Request) -> str | None:
    return request.headers.get("X-API-Key") or request.query_params.get("api_key")


def is_protected(path: str) -> bool:
    return path.startswith("/api/") and path not in OPEN_PATHS


class ApiKeyMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        expected = settings.api_key
        if not expected or not is_protected(request.url.path):
            return await call_next(request)

        presented = _presented_key(request)
        if presented and secrets.compare_digest(presented, expected):
            return await call_next(request)

        client = request.client.host if request.client else "?"
        logger.warning("Rejected %s %s from %s: bad API key", request.method, request.url.path, client)
        return JSONResponse(status_code=401, content={"detail": "Invalid or missing API key"})
