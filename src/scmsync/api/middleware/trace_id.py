"""Trace id propagation between the API caller, log lines and error envelopes."""

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from scmsync.logging_config import bind_request_context, clear_request_context
from scmsync.services.id_generator import TRACE_PREFIX, generate_id

TRACE_HEADER = "X-Trace-Id"


class TraceIdMiddleware(BaseHTTPMiddleware):
    """Reuse the caller's ``X-Trace-Id`` or mint a ``trc_`` id; echo it back.

    The id is bound to the logging context, so scan lines emitted while the
    request is being served carry it too.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        trace_id = request.headers.get(TRACE_HEADER) or generate_id(TRACE_PREFIX)
        request.state.trace_id = trace_id
        bind_request_context(trace_id)
        try:
            response = await call_next(request)
        finally:
            clear_request_context()
        response.headers[TRACE_HEADER] = trace_id
        return response
