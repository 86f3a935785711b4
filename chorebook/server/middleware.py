import json
import logging
import time
import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-Id"


def access_record(request: Request, status: int, started: float) -> dict:
    """One access-log entry; user fields are set by the auth dependency."""
    return {
        "request_id": request.state.request_id,
        "method": request.method,
        "path": request.url.path,
        "status": status,
        "duration_ms": round((time.perf_counter() - started) * 1000, 2),
        "user_sub": getattr(request.state, "user_sub", None),
        "user_role": getattr(request.state, "user_role", None),
    }


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request.state.request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        started = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception:
            logger.exception(json.dumps(access_record(request, 500, started)))
            raise

        response.headers[REQUEST_ID_HEADER] = request.state.request_id
        logger.info(json.dumps(access_record(request, response.status_code, started)))
        return response
