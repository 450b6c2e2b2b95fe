"""FastAPI application entry point.

Startup sequence: load settings -> build backend -> build cache, coalescer,
rate limiter -> wire gateway -> start periodic sweep.
"""

import asyncio
import uuid
from contextlib import asynccontextmanager, suppress

import structlog
from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.responses import JSONResponse

from aegisops.api.routes import router
from aegisops.api.schemas import ErrorDetail, ErrorResponse
from aegisops.backends.factory import create_backend
from aegisops.core.analyze_cache import AnalyzeCache, InFlightCoalescer
from aegisops.core.config import load_settings
from aegisops.core.errors import (
    BackendMisconfigured,
    BackendUnavailable,
    GatewayError,
    MalformedModelOutput,
    PayloadTooLarge,
    RateLimited,
    UnsupportedMediaType,
    UpstreamFatal,
    UpstreamTimeout,
    UpstreamTransient,
    ValidationFailure,
)
from aegisops.core.gateway import AnalysisGateway
from aegisops.core.rate_limiter import OPERATION_CLASSES, RateLimiter

load_dotenv()

logger = structlog.get_logger(__name__)

# Most specific first.
_STATUS_BY_ERROR = [
    (PayloadTooLarge, 413),
    (UnsupportedMediaType, 415),
    (ValidationFailure, 400),
    (RateLimited, 429),
    (UpstreamTimeout, 504),
    (UpstreamTransient, 503),
    (BackendUnavailable, 503),
    (BackendMisconfigured, 500),
    (UpstreamFatal, 502),
    (MalformedModelOutput, 502),
]

_RATE_LIMITED_PATHS = {f"/api/{operation}": operation for operation in OPERATION_CLASSES}


def status_for(error: GatewayError) -> int:
    for error_type, status in _STATUS_BY_ERROR:
        if isinstance(error, error_type):
            return status
    return 500


def _next_request_id() -> str:
    return f"req-{uuid.uuid4().hex[:12]}"


def _client_key(request: Request) -> str:
    host = request.client.host if request.client else "unknown"
    return host.replace(":", "_").replace(".", "_")


def _error_response(request: Request, status: int, kind: str, message: str) -> JSONResponse:
    request_id = getattr(request.state, "request_id", None) or _next_request_id()
    body = ErrorResponse(error=ErrorDetail(kind=kind, message=message, request_id=request_id))
    return JSONResponse(
        status_code=status,
        content=body.model_dump(by_alias=True),
        headers={"x-request-id": request_id, "cache-control": "no-store"},
    )


async def _sweep_loop(app: FastAPI, interval_sec: float) -> None:
    """Proactively drop expired cache entries and stale rate buckets."""
    while True:
        await asyncio.sleep(interval_sec)
        gateway = getattr(app.state, "gateway", None)
        expired = gateway.cache.sweep() if gateway else 0
        stale = app.state.rate_limiter.collect_garbage()
        if expired or stale:
            logger.debug("sweep.done", cache_expired=expired, rate_buckets_dropped=stale)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    logger.info("startup.begin")

    settings = load_settings()
    app.state.settings = settings
    app.state.rate_limiter = RateLimiter(gc_interval_sec=settings.rate_window_sec)
    app.state.gateway = None

    try:
        backend = create_backend(settings)
        app.state.gateway = AnalysisGateway(
            backend,
            settings,
            cache=AnalyzeCache(settings.cache_ttl_sec, settings.cache_max_entries),
            coalescer=InFlightCoalescer(),
        )
        logger.info("startup.gateway_ready", backend=backend.identity,
                    cache_ttl_sec=settings.cache_ttl_sec, cache_max_entries=settings.cache_max_entries)
    except GatewayError as e:
        logger.error("startup.backend_failed", provider=settings.provider, error=e.message,
                     hint="Set LLM_PROVIDER and the matching credentials in .env")

    sweeper = asyncio.create_task(_sweep_loop(app, settings.sweep_interval_sec))
    logger.info("startup.complete", provider=settings.provider)
    yield
    sweeper.cancel()
    with suppress(asyncio.CancelledError):
        await sweeper
    logger.info("shutdown.complete")


app = FastAPI(
    title="AegisOps API",
    description="Incident analysis gateway",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(GatewayError)
async def gateway_error_handler(request: Request, exc: GatewayError):
    status = status_for(exc)
    log = logger.warning if status < 500 else logger.error
    log("request.failed", kind=exc.kind, status=status, path=request.url.path, error=exc.message[:200])
    return _error_response(request, status, exc.kind, exc.message)


@app.middleware("http")
async def rate_limit_middleware(request: Request, call_next):
    """Fixed-window throttling per client and operation class."""
    operation = _RATE_LIMITED_PATHS.get(request.url.path)
    if operation is None or request.method != "POST":
        return await call_next(request)

    settings = request.app.state.settings
    limiter: RateLimiter = request.app.state.rate_limiter
    if not limiter.check(operation, _client_key(request), settings.rate_limits[operation],
                         settings.rate_window_sec * 1000):
        return _error_response(request, 429, RateLimited.kind,
                               f"Too many {operation} requests. Please slow down.")
    return await call_next(request)


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    request.state.request_id = request.headers.get("x-request-id") or _next_request_id()
    response = await call_next(request)
    response.headers["x-request-id"] = request.state.request_id
    response.headers["cache-control"] = "no-store"
    return response


app.include_router(router)
