"""
Request logging for the tracking API.

Every request gets a correlation id (taken from X-Correlation-ID when the
device gateway sends one) and one log line tagged with the trip or load it
touched.
"""

import re
import time
import uuid
import logging
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from backend.app.core.config import settings

logger = logging.getLogger("shipment_tracking")

_RESOURCE_PATH = re.compile(r"/tracking/(trips|loads)/(\d+)")


def configure_logging(level: str = None) -> None:
    """Attach a stream handler to the service logger once."""
    logger.setLevel((level or settings.log_level).upper())
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
        logger.addHandler(handler)


def _resource_tag(path: str) -> str:
    match = _RESOURCE_PATH.search(path)
    if match is None:
        return "-"
    kind, resource_id = match.groups()
    return f"{kind[:-1]}={resource_id}"


class ObservabilityMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        correlation_id = request.headers.get("X-Correlation-ID") or uuid.uuid4().hex
        started = time.perf_counter()

        response = await call_next(request)

        elapsed_ms = round((time.perf_counter() - started) * 1000, 2)
        response.headers["X-Correlation-ID"] = correlation_id
        response.headers["X-Process-Time"] = str(elapsed_ms)

        if response.status_code >= 500:
            log = logger.error
        elif response.status_code >= 400:
            log = logger.warning
        else:
            log = logger.info
        log(
            "%s %s -> %s in %sms [%s] cid=%s",
            request.method,
            request.url.path,
            response.status_code,
            elapsed_ms,
            _resource_tag(request.url.path),
            correlation_id,
            extra={"correlation_id": correlation_id, "status_code": response.status_code},
        )

        return response
