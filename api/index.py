from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from mangum import Mangum
import os
import sys
import time
from typing import Optional
from uuid import uuid4

import structlog

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.config import Settings
from core.container import Services, build_services
from core.errors import InternalError, MarketplaceError
from core.logging import configure_logging
from ledger.api import router as ledger_router
from orders.api import router as orders_router

logger = structlog.get_logger(__name__)


def create_app(settings: Optional[Settings] = None, services: Optional[Services] = None) -> FastAPI:
    settings = settings or Settings()
    configure_logging(settings.log_level, json_logs=settings.log_json)

    app = FastAPI(
        title="Subscriber Marketplace API",
        description="Channel subscriber orders, OCR-verified subscriptions, referral commissions and withdrawals",
        version="1.0.0",
    )
    app.state.services = services or build_services(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request.headers.get("x-request-id") or uuid4().hex,
            method=request.method,
            path=request.url.path,
        )
        started = time.perf_counter()
        response = await call_next(request)
        logger.info(
            "request_completed",
            status_code=response.status_code,
            duration_ms=round((time.perf_counter() - started) * 1000, 1),
        )
        return response

    @app.exception_handler(MarketplaceError)
    async def marketplace_error(request: Request, exc: MarketplaceError):
        log = logger.error if exc.status_code >= 500 else logger.warning
        log("request_failed", code=exc.code, error=exc.message, status_code=exc.status_code)
        return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_dict()))

    @app.exception_handler(Exception)
    async def unexpected_error(request: Request, exc: Exception):
        logger.exception("unhandled_error", error_type=type(exc).__name__)
        message = str(exc) if settings.is_development else "Internal server error"
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=InternalError(message).to_dict(),
        )

    @app.get("/health", tags=["System"])
    def health_check():
        return {"status": "healthy", "service": "subscriber-marketplace"}

    app.include_router(orders_router)
    app.include_router(ledger_router)
    return app


app = create_app()

handler = Mangum(app)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
