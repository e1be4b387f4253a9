from __future__ import annotations

import time
import uuid
from typing import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from redroom.core.middleware.audit import (
    company_id_from_path,
    get_logger,
    reset_request_context,
    set_company,
    set_request_id,
)

logger = get_logger(__name__)


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Binds request id and tenant for the request's log lines and audit events."""

    def __init__(self, app, header_name: str = "X-Request-ID") -> None:
        super().__init__(app)
        self.header_name = header_name

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        reset_request_context()
        request_id = request.headers.get(self.header_name) or str(uuid.uuid4())
        set_request_id(request_id)
        company_id = company_id_from_path(request.url.path)
        if company_id is not None:
            set_company(company_id)

        started = time.perf_counter()
        response = await call_next(request)
        response.headers[self.header_name] = request_id
        logger.info(
            "request.completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=round((time.perf_counter() - started) * 1000, 1),
        )
        return response
