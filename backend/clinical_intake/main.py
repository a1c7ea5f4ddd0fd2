"""FastAPI application entry point."""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import Settings, get_settings
from .core import IntakeServices, build_services
from .database import create_engine, create_session_factory, init_db
from .errors import FinalizationError, PersistenceError, ProviderError, ValidationError
from .logging_config import configure_logging
from .api.routes import chat, sessions

logger = logging.getLogger(__name__)

GENERIC_PROVIDER_FAILURE = "The assistant is unavailable right now. Please try again."
GENERIC_STORAGE_FAILURE = "Your message could not be saved. Please try again."


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(ValidationError)
    async def validation_error(request: Request, exc: ValidationError):
        return JSONResponse(status_code=400, content={"detail": exc.message})

    @app.exception_handler(ProviderError)
    async def provider_error(request: Request, exc: ProviderError):
        logger.error("Model provider failure", extra={"path": request.url.path, "reason": exc.message})
        return JSONResponse(status_code=502, content={"detail": GENERIC_PROVIDER_FAILURE})

    @app.exception_handler(FinalizationError)
    async def finalization_error(request: Request, exc: FinalizationError):
        logger.error("Summary generation failure", extra={"path": request.url.path, "reason": exc.message})
        return JSONResponse(status_code=502, content={"detail": GENERIC_PROVIDER_FAILURE})

    @app.exception_handler(PersistenceError)
    async def persistence_error(request: Request, exc: PersistenceError):
        logger.error("Storage failure", extra={"path": request.url.path, "reason": exc.message})
        return JSONResponse(status_code=503, content={"detail": GENERIC_STORAGE_FAILURE})


def create_app(settings: Optional[Settings] = None, services: Optional[IntakeServices] = None) -> FastAPI:
    """Build the app. Pass ``services`` to skip database and provider setup (tests)."""
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        engine = None
        if services is None:
            engine = create_engine(settings)
            await init_db(engine)
            app.state.services = build_services(settings, create_session_factory(engine))
        yield
        running = app.state.services
        await running.processor.drain()
        drain = getattr(running.executor, "drain", None)
        if drain is not None:
            await drain()
        if engine is not None:
            await engine.dispose()

    app = FastAPI(
        title="Clinical Intake API",
        description="Psychiatric intake chat with crisis screening, cross-session memory and clinical summaries",
        version="1.0.0",
        lifespan=lifespan,
    )
    if services is not None:
        app.state.services = services
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Session-ID"],
    )
    register_error_handlers(app)

    app.include_router(chat.router)
    app.include_router(sessions.router)

    @app.get("/health")
    def health():
        return {"status": "ok"}

    return app


app = create_app()
