import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .admin import router as admin_router
from .core.config import Settings, get_settings
from .core.errors import RateLimitedError, SlotbookError
from .core.responses import error_response
from .routes import router as slots_router
from .services import Services
from .sheets import RowStore, build_row_store

logger = logging.getLogger(__name__)


async def slotbook_error_handler(request: Request, exc: SlotbookError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}", exc_info=exc.__cause__)
    headers = None
    if isinstance(exc, RateLimitedError) and exc.retry_after:
        headers = {"Retry-After": str(exc.retry_after)}
    return JSONResponse(
        status_code=exc.status_code,
        content=error_response(exc.message, exc.payload()),
        headers=headers,
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.info(f"Rejected malformed request to {request.url.path}: {exc.errors()}")
    return JSONResponse(status_code=400, content=error_response("Invalid request body"))


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(status_code=500, content=error_response("Server error"))


def create_app(settings: Optional[Settings] = None, store: Optional[RowStore] = None) -> FastAPI:
    """
    Build the API.

    With an explicit `store` the services are wired immediately (tests drive
    the app without running its lifespan); otherwise the configured row store
    is built on startup and closed on shutdown.
    """
    settings = settings or get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "services", None) is None:
            app.state.services = Services.build(settings, build_row_store(settings))
            logger.info(f"Slotbook started with {app.state.services.store.name} row store")
        try:
            yield
        finally:
            await app.state.services.store.aclose()

    app = FastAPI(title="Slotbook", lifespan=lifespan)
    app.state.services = Services.build(settings, store) if store is not None else None

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins_list or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(SlotbookError, slotbook_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    app.include_router(slots_router)
    app.include_router(admin_router)
    return app


app = create_app()
