from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException

from sureodds.core.config import settings
from sureodds.core.errors import (
    AppError,
    app_error_handler,
    http_error_handler,
    request_validation_handler,
    unhandled_exception_handler,
)
from sureodds.core.logging import configure_logging

# Import routers
from sureodds.api.auth import router as auth_router
from sureodds.api.billing import router as billing_router
from sureodds.api.mpesa import router as mpesa_router
from sureodds.api.premium import router as premium_router
from sureodds.api.vouchers import router as vouchers_router

def create_app() -> FastAPI:
    configure_logging(settings.log_level, settings.app_env)

    app = FastAPI(title=settings.app_name)

    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(HTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    @app.get("/health")
    def health():
        return {"status" : "ok", "env" : settings.app_env}

    # Include authentication routes
    app.include_router(auth_router)
    # Include plan / subscription routes
    app.include_router(billing_router)
    # Include M-Pesa STK push, callback and status routes
    app.include_router(mpesa_router)
    # Include voucher routes
    app.include_router(vouchers_router)
    # Include VIP-gated routes
    app.include_router(premium_router)

    return app

app = create_app()

if __name__ == "__main__":
    import uvicorn

    from sureodds.db.session import init_db

    init_db()
    uvicorn.run(app, host=settings.app_host, port=settings.app_port, log_level=settings.log_level)
