"""
Knowledge chatbot API
Main FastAPI application: ingest a source, chat for a bounded number of turns
"""
import time
import uuid
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import structlog
from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST
from starlette.responses import Response

from kbchat.routers import chat, ingest
from kbchat.routers.common import error_response
from kbchat.services.condenser import KnowledgeCondenser
from kbchat.services.config import Settings
from kbchat.services.errors import KBChatError
from kbchat.services.fetcher import ContentFetcher
from kbchat.services.ingest import IngestService
from kbchat.services.llm import LLMService
from kbchat.services.responder import ConversationalResponder
from kbchat.services.semantic import SemanticExtractor
from kbchat.services.session import Scheduler, SessionController, SessionStore
from kbchat.utils.logging import setup_logging

# Configure structured logging
logger = structlog.get_logger()

# Metrics
request_counter = Counter(
    'kbchat_requests_total',
    'Total number of requests',
    ['method', 'endpoint', 'status']
)
request_duration = Histogram(
    'kbchat_request_duration_seconds',
    'Request duration',
    ['method', 'endpoint']
)
active_connections = Gauge(
    'kbchat_active_connections',
    'Number of active connections'
)


def _setup_tracing(app: FastAPI, settings: Settings):
    from opentelemetry import trace
    from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
    from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
    from opentelemetry.sdk.resources import Resource
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import BatchSpanProcessor

    provider = TracerProvider(resource=Resource.create({"service.name": settings.OTEL_SERVICE_NAME}))
    provider.add_span_processor(
        BatchSpanProcessor(OTLPSpanExporter(endpoint=settings.OTEL_ENDPOINT, insecure=True))
    )
    trace.set_tracer_provider(provider)
    FastAPIInstrumentor.instrument_app(app)


def create_app(
    settings: Optional[Settings] = None,
    llm_service: Optional[LLMService] = None,
    fetcher: Optional[ContentFetcher] = None,
    scheduler: Optional[Scheduler] = None
) -> FastAPI:
    """Build the application; services can be injected for tests"""
    settings = settings or Settings()
    setup_logging(settings)

    llm_service = llm_service or LLMService(settings)
    fetcher = fetcher or ContentFetcher(settings)
    ingest_service = IngestService(
        settings,
        fetcher=fetcher,
        semantic=SemanticExtractor(llm_service, settings),
        condenser=KnowledgeCondenser(llm_service, settings)
    )
    responder = ConversationalResponder(llm_service, settings)

    def new_session() -> SessionController:
        return SessionController(ingest_service, responder, settings, scheduler=scheduler)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Manage application lifecycle"""
        logger.info(
            "Starting knowledge chatbot API",
            version=settings.API_VERSION,
            environment=settings.ENVIRONMENT,
            llm_configured=llm_service.configured,
            scraping_backend=settings.zyte_enabled(),
            relays=len(settings.RELAY_URL_TEMPLATES)
        )
        if not llm_service.configured:
            logger.warning("OPENAI_API_KEY is not set; model-backed steps will fail")

        if settings.OTEL_ENABLED:
            _setup_tracing(app, settings)

        yield

        logger.info("Shutting down knowledge chatbot API")
        await fetcher.close()
        await llm_service.close()
        logger.info("Shutdown complete")

    app = FastAPI(
        title="Knowledge Chatbot API",
        description="Build a chatbot from a website, document or pasted text",
        version=settings.API_VERSION,
        lifespan=lifespan,
        docs_url="/docs" if settings.ENVIRONMENT == "development" else None,
        redoc_url="/redoc" if settings.ENVIRONMENT == "development" else None,
    )

    app.state.settings = settings
    app.state.llm_service = llm_service
    app.state.session_store = SessionStore(new_session, ttl_seconds=settings.SESSION_TTL)

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
    )

    @app.middleware("http")
    async def track_requests(request: Request, call_next):
        """Track request metrics and add request ID"""
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
        active_connections.inc()
        start_time = time.time()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        # Label by route template so session ids do not explode cardinality
        def endpoint() -> str:
            route = request.scope.get("route")
            return getattr(route, "path", request.url.path)

        try:
            response = await call_next(request)

            duration = time.time() - start_time
            request_counter.labels(
                method=request.method,
                endpoint=endpoint(),
                status=response.status_code
            ).inc()
            request_duration.labels(
                method=request.method,
                endpoint=endpoint()
            ).observe(duration)

            response.headers["X-Request-ID"] = request_id

            logger.info(
                "Request completed",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration=duration
            )
            return response

        except Exception as e:
            logger.error(
                "Request failed",
                method=request.method,
                path=request.url.path,
                error=str(e)
            )
            request_counter.labels(
                method=request.method,
                endpoint=endpoint(),
                status=500
            ).inc()
            raise

        finally:
            active_connections.dec()
            structlog.contextvars.unbind_contextvars("request_id")

    # Include routers
    app.include_router(ingest.router, prefix="/api/v1")
    app.include_router(chat.router, prefix="/api/v1")

    @app.get("/health")
    async def health_check():
        """Basic health check"""
        return {"status": "healthy", "version": settings.API_VERSION}

    @app.get("/health/ready")
    async def readiness_check():
        """Readiness probe - the model key is required for chat"""
        checks = {
            "api": "healthy",
            "llm": "healthy" if llm_service.configured else "unconfigured",
            "scraping_backend": "enabled" if settings.zyte_enabled() else "disabled",
        }
        if checks["llm"] != "healthy":
            return JSONResponse(
                status_code=503,
                content={"status": "not ready", "checks": checks}
            )
        return {"status": "ready", "checks": checks}

    @app.get("/health/live")
    async def liveness_check():
        """Liveness probe - checks if the application is running"""
        return {"status": "alive"}

    @app.get("/metrics")
    async def metrics():
        """Prometheus metrics endpoint"""
        if not settings.ENABLE_METRICS:
            raise HTTPException(status_code=404, detail="Metrics are disabled")
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    @app.get("/")
    async def root():
        """Root endpoint with API information"""
        return {
            "name": "Knowledge Chatbot API",
            "version": settings.API_VERSION,
            "environment": settings.ENVIRONMENT,
            "docs": "/docs" if settings.ENVIRONMENT == "development" else None,
            "health": "/health",
            "metrics": "/metrics"
        }

    # Error handlers
    @app.exception_handler(KBChatError)
    async def kbchat_error_handler(request: Request, exc: KBChatError):
        """Map the error taxonomy to one-line JSON errors"""
        logger.warning(
            "Request rejected",
            error_type=type(exc).__name__,
            reason=exc.reason,
            path=request.url.path
        )
        return error_response(exc)

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        """Handle HTTP exceptions"""
        logger.warning(
            "HTTP exception",
            status_code=exc.status_code,
            detail=exc.detail,
            path=request.url.path
        )
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail, "status_code": exc.status_code}
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Handle general exceptions"""
        logger.error(
            "Unhandled exception",
            error=str(exc),
            path=request.url.path,
            exc_info=True
        )
        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "status_code": 500,
                "request_id": request.headers.get("X-Request-ID")
            }
        )

    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "kbchat.main:app",
        host="0.0.0.0",
        port=8000,
        reload=app.state.settings.ENVIRONMENT == "development",
        log_config=None,  # Use structlog instead
        access_log=False,  # Handled by middleware
        workers=1  # Sessions live in process memory
    )
