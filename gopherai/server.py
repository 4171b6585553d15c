"""FastAPI application factory and process entrypoint."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Callable, Optional

import httpx
import uvicorn
from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from gopherai.cache.contracts import CacheQueue
from gopherai.chat.routes import router as chat_router
from gopherai.common.error_envelope import build_error_envelope
from gopherai.common.health import router as health_router
from gopherai.config.runtime_config import Settings, get_settings
from gopherai.files.routes import router as files_router
from gopherai.identity.routes import router as user_router
from gopherai.services import Services, build_services

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)-28s | %(message)s"


async def _http_exception_handler(request: Request, exc: HTTPException):
    detail = exc.detail
    if isinstance(detail, dict) and "error" in detail:
        return JSONResponse(content=detail, status_code=exc.status_code)
    envelope = build_error_envelope(
        code="http.exception",
        message=str(detail) if detail else "HTTP exception",
        status_code=exc.status_code,
    )
    return JSONResponse(content=envelope.model_dump(), status_code=exc.status_code)


async def _validation_exception_handler(request: Request, exc: RequestValidationError):
    envelope = build_error_envelope(
        code="validation.error",
        message="Validation failed",
        status_code=400,
        details={"errors": [{"loc": list(e.get("loc", ())), "msg": e.get("msg", "")} for e in exc.errors()]},
    )
    return JSONResponse(content=envelope.model_dump(), status_code=400)


async def _generic_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    envelope = build_error_envelope(code="internal.error", message="Internal server error", status_code=500)
    return JSONResponse(content=envelope.model_dump(), status_code=500)


def register_error_handlers(target_app: FastAPI) -> None:
    target_app.add_exception_handler(HTTPException, _http_exception_handler)
    target_app.add_exception_handler(RequestValidationError, _validation_exception_handler)
    target_app.add_exception_handler(Exception, _generic_exception_handler)


def create_app(
    settings: Optional[Settings] = None,
    configure: Optional[Callable[[Services], None]] = None,
    cache: Optional[CacheQueue] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """Build the app; services are created in the lifespan.

    ``configure`` runs after the services are built and before the queue
    consumer and bootstrap start, e.g. to register extra model types.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        services = await build_services(settings, cache=cache, transport=transport)
        if configure is not None:
            configure(services)
        await services.start()
        app.state.services = services
        logger.info("%s ready (cache=%s, storage=%s)", settings.app_name, services.cache.cache_type.value, settings.storage_backend)
        try:
            yield
        finally:
            await services.shutdown()

    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_error_handlers(app)
    app.include_router(health_router)
    app.include_router(user_router)
    app.include_router(chat_router)
    app.include_router(files_router)
    return app


def main() -> None:
    settings = get_settings()
    logging.basicConfig(level=settings.log_level, format=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
