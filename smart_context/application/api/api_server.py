from contextlib import asynccontextmanager
from typing import Optional
import uuid

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
import structlog
import uvicorn

from smart_context.application.api.route.context import router as context_router
from smart_context.application.api.schema.requests import HealthResponse
from smart_context.application.engine import ContextEngine
from smart_context.domain.errors import ContextEngineError, SessionNotFound, StoreTimeout, ValidationError
from smart_context.infrastructure.config import EngineConfig, load_config
from smart_context.infrastructure.observability.logging import (
    bind_request_context,
    clear_request_context,
    metrics,
    setup_logging,
)

logger = structlog.get_logger(__name__)


def status_for(error: ContextEngineError) -> int:
    if isinstance(error, ValidationError):
        return 422
    if isinstance(error, SessionNotFound):
        return 404
    if isinstance(error, StoreTimeout):
        return 503
    return 500


def create_app(config: Optional[EngineConfig] = None, engine: Optional[ContextEngine] = None) -> FastAPI:
    """Build the HTTP app; the engine is started and closed with the app lifespan"""

    config = config or (engine.config if engine else load_config())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.engine = engine or ContextEngine(config)
        await app.state.engine.start()
        try:
            yield
        finally:
            await app.state.engine.close()

    app = FastAPI(title="Smart Context Engine", version="2.0.0", lifespan=lifespan)
    app.include_router(context_router)

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):
        bind_request_context(request_id=request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12])
        try:
            return await call_next(request)
        finally:
            clear_request_context()

    @app.exception_handler(ContextEngineError)
    async def engine_error_handler(request: Request, exc: ContextEngineError):
        status = status_for(exc)
        if status >= 500:
            logger.error("Request failed", path=request.url.path, error=exc.message, error_type=type(exc).__name__)
        else:
            logger.info("Request rejected", path=request.url.path, error=exc.message, status=status)
        return JSONResponse(status_code=status, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        first = errors[0] if errors else {}
        field = ".".join(str(p) for p in first.get("loc", ()) if p != "body") or None
        error = ValidationError(first.get("msg", "Invalid request"), field=field)
        return JSONResponse(status_code=422, content=error.to_dict())

    @app.get("/health", response_model=HealthResponse)
    async def health_check(request: Request):
        """Health check endpoint"""
        health = await request.app.state.engine.health()
        return HealthResponse(**health, metrics=metrics.get_metrics_summary())

    return app


def main() -> None:
    config = load_config()
    setup_logging(config.logging.level, config.logging.format, config.logging.service_name)
    uvicorn.run(create_app(config), host="0.0.0.0", port=8000)


if __name__ == "__main__":
    main()
