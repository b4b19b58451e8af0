import logging
import time
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware

from secondchances.core.logging import request_id_ctx_var, latency_bucket_ms

# Probe endpoints are polled constantly; keep them out of INFO logs.
QUIET_PATHS = frozenset({"/healthz", "/readyz"})


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Bind a request id for the duration of each request and log completion.

    An incoming ``x-request-id`` is reused so ids correlate across the
    frontend and provider retries; otherwise a fresh uuid4 is generated.
    """

    def __init__(self, app, header_name: str = "x-request-id"):
        super().__init__(app)
        self.header_name = header_name

    async def dispatch(self, request, call_next):
        rid = request.headers.get(self.header_name) or str(uuid4())
        request.state.request_id = rid
        token = request_id_ctx_var.set(rid)

        start = time.perf_counter()
        try:
            response = await call_next(request)
        finally:
            request_id_ctx_var.reset(token)
        duration_ms = (time.perf_counter() - start) * 1000

        response.headers[self.header_name] = rid

        level = logging.DEBUG if request.url.path in QUIET_PATHS else logging.INFO
        logging.getLogger("secondchances").log(
            level,
            "request.complete",
            extra={
                "request_id": rid,
                "path": request.url.path,
                "method": request.method,
                "status": response.status_code,
                "latency_bucket": latency_bucket_ms(duration_ms),
            },
        )
        return response
