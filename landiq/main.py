import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# Routers
from .routers.valuation import router as valuation_router
from .routers.agent import router as agent_router

# Core modules
from .core.config import settings
from .core.errors import LandIQError, ValidationError
from .core.logging import configure_logging, CorrelationIdMiddleware
from .core.metrics import PromMiddleware, metrics_endpoint
from .core.utils import utc_now_iso
from .data.db import init_db
from .data.session_store import session_store
from .schemas import HealthResponse, field_errors

logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    # Single place where tables are created
    await init_db()
    yield

def create_app() -> FastAPI:
    """
    App factory so tests and ASGI servers can instantiate cleanly.
    """
    configure_logging(settings.LOG_LEVEL)  # Set up JSON logs + request-id filter

    if not settings.OPENAI_API_KEY:
        raise RuntimeError("Missing OpenAI API key. Please set the OPENAI_API_KEY environment variable.")

    app = FastAPI(
        title="LandIQ Farmland Valuation API",
        version="1.0.0",
        description="Farmland valuation backed by an LLM with live market research, plus valuation history and a chat agent.",
        lifespan=lifespan,
    )

    # One transcript store per app instance; injected into the agent per request
    app.state.sessions = session_store()

    allow_origins = [o.strip() for o in settings.ALLOW_ORIGINS.split(",")] if settings.ALLOW_ORIGINS else ["*"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-Id"],
    )

    # Observability middlewares
    app.add_middleware(CorrelationIdMiddleware)  # Adds/propagates X-Request-Id
    if settings.PROMETHEUS_ENABLED:
        app.add_middleware(PromMiddleware)       # Records req/latency metrics

    # Error mapping
    @app.exception_handler(RequestValidationError)
    async def _request_validation(request: Request, exc: RequestValidationError):
        err = ValidationError(field_errors(exc))
        return JSONResponse(status_code=err.status_code, content=err.to_payload())

    @app.exception_handler(LandIQError)
    async def _domain_error(request: Request, exc: LandIQError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_payload())

    @app.exception_handler(Exception)
    async def _unexpected_error(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content={"message": str(exc) or "Internal server error"})

    # Meta routes
    @app.get("/api/health", response_model=HealthResponse, tags=["meta"])
    def health():
        return {"status": "ok", "timestamp": utc_now_iso()}

    if settings.PROMETHEUS_ENABLED:
        # Standard Prometheus scrape endpoint
        app.add_route("/api/metrics", metrics_endpoint, methods=["GET"])

    # Business routes
    app.include_router(valuation_router, prefix="/api", tags=["valuation"])
    app.include_router(agent_router, prefix="/api", tags=["agent"])

    return app

app = create_app()
