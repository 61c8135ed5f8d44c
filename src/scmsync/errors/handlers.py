"""Render scmsync errors and rejected request bodies as the ErrorResponse envelope."""

import logging
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from scmsync.errors.exceptions import PlatformApiError, ScmSyncError, ValidationError
from scmsync.models.common import ErrorDetail, ErrorResponse

logger = logging.getLogger(__name__)


def _envelope(request: Request, exc: ScmSyncError) -> JSONResponse:
    trace_id = getattr(request.state, "trace_id", None) or "unknown"
    body = ErrorResponse(
        error=ErrorDetail(
            code=exc.code,
            message=exc.message,
            details=exc.details,
            trace_id=trace_id,
            timestamp=datetime.now(timezone.utc),
        ),
    )
    return JSONResponse(status_code=exc.status_code, content=body.model_dump(mode="json", exclude_none=True))


def register_exception_handlers(app: FastAPI) -> None:
    """Register the scmsync and request-validation handlers on ``app``."""

    @app.exception_handler(ScmSyncError)
    async def scmsync_error_handler(request: Request, exc: ScmSyncError):
        if isinstance(exc, PlatformApiError):
            logger.warning(
                "%s %s: %s (platform=%s, status=%s)",
                request.method, request.url.path, exc.message, exc.platform, exc.http_status,
            )
        elif exc.status_code >= 500:
            logger.error("%s %s: %s", request.method, request.url.path, exc.message)
        return _envelope(request, exc)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        # Input values are dropped: a rejected body may still carry a token
        errors = [
            {"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")}
            for err in exc.errors()
        ]
        return _envelope(request, ValidationError("Invalid request body", jsonable_encoder(errors)))
