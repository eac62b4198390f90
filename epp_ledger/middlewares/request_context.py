from __future__ import annotations

import logging
import time
from contextvars import ContextVar
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

request_id_ctx_var: ContextVar[str | None] = ContextVar("request_id", default=None)
principal_ctx_var: ContextVar[str | None] = ContextVar("principal_id", default=None)
site_ctx_var: ContextVar[str | None] = ContextVar("site_id", default=None)
logger = logging.getLogger("epp_ledger.request")


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Carry a correlation id and the caller's site through logs for one request."""

    def __init__(self, app, header_name: str = "X-Request-ID", site_header: str = "X-Site-Id") -> None:  # type: ignore[override]
        super().__init__(app)
        self.header_name = header_name
        self.site_header = site_header

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get(self.header_name) or str(uuid4())
        site_id = (request.headers.get(self.site_header) or "").strip() or None
        tokens = (
            request_id_ctx_var.set(request_id),
            principal_ctx_var.set(None),
            site_ctx_var.set(site_id),
        )
        request.state.request_id = request_id
        start = time.perf_counter()
        try:
            response = await call_next(request)
            principal = getattr(request.state, "principal", None) or principal_ctx_var.get()
        finally:
            request_id_ctx_var.reset(tokens[0])
            principal_ctx_var.reset(tokens[1])
            site_ctx_var.reset(tokens[2])
        duration_ms = (time.perf_counter() - start) * 1000
        response.headers[self.header_name] = request_id
        fields = {
            "method": request.method,
            "path": request.url.path,
            "status": response.status_code,
            "duration_ms": round(duration_ms, 2),
            "request_id": request_id,
        }
        if site_id:
            fields["site_id"] = site_id
        if principal:
            fields["principal"] = principal
        logger.info("request.completed", extra={"extra_data": fields})
        return response
