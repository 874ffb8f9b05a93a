"""Error taxonomy and the FastAPI handlers that render it."""

import logging
from typing import Any

from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException
from starlette.requests import Request

logger = logging.getLogger(__name__)


class AppError(Exception):
    code = "app_error"
    status_code = 500

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        status_code: int | None = None,
        context: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.context = context or {}


class ValidationError(AppError):
    code = "validation_error"
    status_code = 400


class AuthenticationError(AppError):
    code = "unauthorized"
    status_code = 401


class EntitlementRequiredError(AppError):
    code = "entitlement_required"
    status_code = 402


class PermissionDeniedError(AppError):
    code = "forbidden"
    status_code = 403


class NotFoundError(AppError):
    code = "not_found"
    status_code = 404


class ConflictError(AppError):
    # Surfaced as 400 so clients treat it like any other rejected initiation.
    code = "conflict"
    status_code = 400


class ActiveSubscriptionError(ConflictError):
    code = "active_subscription"


class PendingPaymentError(ConflictError):
    code = "payment_pending"


class PaymentRejectedError(AppError):
    code = "payment_rejected"
    status_code = 400


class UpstreamError(AppError):
    code = "upstream_error"
    status_code = 500


def _error_payload(code: str, message: str, context: dict[str, Any]) -> dict:
    return {
        "error": {"code": code, "message": message, **context},
        "detail": message,
    }


async def app_error_handler(request: Request, exc: AppError):
    level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
    logger.log(
        level,
        "app.error",
        extra={"error_code": exc.code, "error_message": exc.message, "status": exc.status_code, "path": request.url.path},
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=jsonable_encoder(_error_payload(exc.code, exc.message, exc.context)),
    )


async def http_error_handler(request: Request, exc: HTTPException):
    code = "not_found" if exc.status_code == 404 else "http_error"
    message = exc.detail if exc.detail else "HTTP error"
    logger.warning("http.error", extra={"error_code": code, "status": exc.status_code, "path": request.url.path})
    return JSONResponse(status_code=exc.status_code, content=_error_payload(code, message, {}), headers=exc.headers)


async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    message = "Invalid request"
    if errors:
        first = errors[0]
        field = ".".join(str(p) for p in first.get("loc", ()) if p not in ("body", "query"))
        message = f"{field}: {first.get('msg')}" if field else str(first.get("msg"))
    return JSONResponse(status_code=400, content=_error_payload("validation_error", message, {}))


async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error("unhandled.exception", exc_info=exc, extra={"path": request.url.path})
    return JSONResponse(status_code=500, content=_error_payload("internal_error", "Unexpected error", {}))
