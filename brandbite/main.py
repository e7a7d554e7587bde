import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import Callable, Iterable

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from opentelemetry import trace
from starlette.middleware.base import BaseHTTPMiddleware

from brandbite.api.auth import TenantSessionMiddleware
from brandbite.api.problem_details import (
    PROBLEM_TYPE_DOMAIN,
    PROBLEM_TYPE_RATE_LIMIT,
    PROBLEM_TYPE_SERVER,
    PROBLEM_TYPE_VALIDATION,
    problem_details,
)
from brandbite.api.routes_admin import router as admin_router
from brandbite.api.routes_billing import router as billing_router
from brandbite.api.routes_companies import router as companies_router
from brandbite.api.routes_creative import router as creative_router
from brandbite.api.routes_customer import router as customer_router
from brandbite.api.routes_health import router as health_router
from brandbite.api.routes_metrics import router as metrics_router
from brandbite.api.routes_notifications import router as notifications_router
from brandbite.api.routes_tickets import router as tickets_router
from brandbite.domain.errors import DomainError
from brandbite.infra.db import dispose_engine, get_engine, get_session_factory
from brandbite.infra.logging import clear_log_context, configure_logging, update_log_context
from brandbite.infra.metrics import configure_metrics, metrics
from brandbite.infra.security import RateLimiter, resolve_client_key
from brandbite.infra.tracing import configure_tracing, instrument_fastapi, instrument_sqlalchemy
from brandbite.services import build_app_services, resolve_services
from brandbite.settings import settings

logger = logging.getLogger(__name__)

RATE_LIMIT_EXEMPT_PATHS = frozenset({"/v1/billing/webhook", "/healthz", "/readyz"})


def _resolve_log_identity(request: Request) -> dict[str, str]:
    context: dict[str, str] = {}
    identity = getattr(request.state, "identity", None)
    if identity is None:
        return context
    role = getattr(identity, "role", None)
    role_value = getattr(role, "value", role)
    if role_value:
        context["role"] = str(role_value)
    context["user_id"] = str(identity.user_id)
    if identity.company_id:
        context["company_id"] = str(identity.company_id)
    return context


def _bucket_for_path(path: str) -> str:
    normalized = path or ""
    if normalized.startswith("/v1/admin"):
        return "admin"
    if normalized.startswith("/v1/customer"):
        return "customer"
    if normalized.startswith("/v1/creative"):
        return "creative"
    if normalized.startswith("/v1/billing"):
        return "billing"
    if normalized.startswith("/v1/tickets"):
        return "tickets"
    if normalized.startswith("/v1/notifications"):
        return "notifications"
    if normalized.startswith("/v1/invites"):
        return "invites"
    return "other"


class RequestIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable):
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


class LoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable):
        logger = logging.getLogger("brandbite.request")
        start = time.time()
        request_id = getattr(request.state, "request_id", None) or request.headers.get("X-Request-ID")
        if not request_id:
            request_id = str(uuid.uuid4())
        request.state.request_id = request_id
        update_log_context(request_id=request_id, method=request.method, path=request.url.path)
        span = trace.get_current_span()
        if span and span.is_recording():
            span.set_attribute("request_id", request_id)

        response = None
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            update_log_context(status_code=status_code, **_resolve_log_identity(request))
            latency_ms = int((time.time() - start) * 1000)
            update_log_context(latency_ms=latency_ms)
            logger.info("request", extra={"latency_ms": latency_ms})
            if response is not None:
                response.headers.setdefault("X-Request-ID", request_id)
            clear_log_context()


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable):
        response = await call_next(request)
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("X-Frame-Options", "DENY")
        response.headers.setdefault("Referrer-Policy", "no-referrer")
        return response


class MetricsMiddleware(BaseHTTPMiddleware):
    def __init__(self, app: FastAPI, metrics_client) -> None:
        super().__init__(app)
        self.metrics = metrics_client

    async def dispatch(self, request: Request, call_next: Callable):
        route_label = "unmatched"
        start = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
        except Exception:
            route = request.scope.get("route")
            route_label = getattr(route, "path", route_label)
            self.metrics.record_http_5xx(request.method, route_label)
            raise
        finally:
            route = request.scope.get("route")
            route_label = getattr(route, "path", route_label)
            duration = time.perf_counter() - start
            self.metrics.record_http_latency(request.method, route_label, status_code, duration)
            self.metrics.record_http_request(request.method, route_label, status_code)
            if status_code == 429:
                self.metrics.record_http_429(_bucket_for_path(request.url.path))
        if status_code >= 500:
            self.metrics.record_http_5xx(request.method, route_label)
        return response


class RateLimitMiddleware(BaseHTTPMiddleware):
    def __init__(self, app: FastAPI, limiter: RateLimiter, app_settings) -> None:
        super().__init__(app)
        self.limiter = limiter
        self.app_settings = app_settings

    async def dispatch(self, request: Request, call_next: Callable):
        if request.method == "OPTIONS":
            return await call_next(request)
        path = request.url.path
        normalized = path.rstrip("/") or "/"
        if path in RATE_LIMIT_EXEMPT_PATHS or normalized in RATE_LIMIT_EXEMPT_PATHS:
            return await call_next(request)

        limiter = getattr(request.app.state, "rate_limiter", None) or self.limiter
        client = resolve_client_key(
            request,
            trust_proxy_headers=self.app_settings.trust_proxy_headers,
            trusted_proxy_ips=self.app_settings.trusted_proxy_ips,
            trusted_proxy_cidrs=self.app_settings.trusted_proxy_cidrs,
        )
        if not await limiter.allow(client):
            bucket = _bucket_for_path(path)
            request_id = getattr(request.state, "request_id", None)
            metrics.record_rate_limit_block(bucket)
            logger.warning(
                "rate_limit_blocked",
                extra={
                    "extra": {
                        "request_id": str(request_id) if request_id else None,
                        "bucket": bucket,
                        "limit_per_minute": self.app_settings.rate_limit_per_minute,
                    }
                },
            )
            return problem_details(
                request=request,
                status=429,
                title="Too Many Requests",
                detail="Rate limit exceeded",
                type_=PROBLEM_TYPE_RATE_LIMIT,
            )
        return await call_next(request)


def _resolve_cors_origins(app_settings) -> Iterable[str]:
    if app_settings.cors_origins:
        return app_settings.cors_origins
    if app_settings.strict_cors:
        return []
    if app_settings.app_env == "dev":
        return ["http://localhost:3000"]
    return []


def create_app(app_settings, *, tracer_provider=None) -> FastAPI:
    if tracer_provider is None:
        configure_tracing(service_name="brandbite-api")
    configure_logging()
    metrics_client = configure_metrics(app_settings.metrics_enabled)

    services = build_app_services(app_settings, metrics=metrics_client)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        state_services = resolve_services(app) or services
        app.state.services = state_services

        app.state.rate_limiter = getattr(app.state, "rate_limiter", None) or state_services.rate_limiter
        app.state.metrics = getattr(app.state, "metrics", None) or state_services.metrics
        app.state.app_settings = getattr(app.state, "app_settings", app_settings)
        app.state.db_session_factory = getattr(app.state, "db_session_factory", None) or get_session_factory()
        app.state.email_adapter = getattr(app.state, "email_adapter", None) or state_services.email_adapter
        app.state.stripe_client = getattr(app.state, "stripe_client", None) or state_services.stripe_client
        if not app_settings.testing:
            instrument_sqlalchemy(get_engine())
        logger.info("app_started", extra={"extra": {"app_env": app_settings.app_env}})
        yield
        await app.state.rate_limiter.close()
        await dispose_engine()

    app = FastAPI(title="Brandbite API", version="1.0.0", lifespan=lifespan)

    # Last-added middleware runs first; TenantSessionMiddleware sits inside
    # LoggingMiddleware so request logs carry the resolved identity.
    app.add_middleware(TenantSessionMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(MetricsMiddleware, metrics_client=metrics_client)
    app.add_middleware(RateLimitMiddleware, limiter=services.rate_limiter, app_settings=app_settings)
    app.add_middleware(RequestIdMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(_resolve_cors_origins(app_settings)),
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # OTel instrumentation must be added last so it wraps all middleware.
    instrument_fastapi(app, tracer_provider=tracer_provider)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = []
        for error in exc.errors():
            loc = error.get("loc", [])
            field = ".".join(str(part) for part in loc if part not in {"body", "query", "path"}) or "body"
            errors.append({"field": field, "message": error.get("msg", "Invalid value")})
        return problem_details(
            request=request,
            status=422,
            title="Validation Error",
            detail="Request validation failed",
            errors=errors,
            type_=PROBLEM_TYPE_VALIDATION,
        )

    @app.exception_handler(DomainError)
    async def domain_exception_handler(request: Request, exc: DomainError):
        return problem_details(
            request=request,
            status=exc.status_code,
            title=exc.title,
            detail=exc.detail,
            errors=exc.errors or [],
            type_=exc.type or PROBLEM_TYPE_DOMAIN,
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        return problem_details(
            request=request,
            status=exc.status_code,
            title=exc.detail if isinstance(exc.detail, str) else "HTTP Error",
            detail=exc.detail if isinstance(exc.detail, str) else "Request failed",
            type_=PROBLEM_TYPE_DOMAIN if exc.status_code < 500 else PROBLEM_TYPE_SERVER,
            headers=exc.headers,
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        identity_context = _resolve_log_identity(request)
        request_id = getattr(request.state, "request_id", None)
        error_type = type(exc).__name__
        update_log_context(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
            status_code=500,
            error_type=error_type,
            **identity_context,
        )
        logger.exception(
            "unhandled_exception",
            extra={
                "request_id": request_id,
                "path": request.url.path,
                "error_type": error_type,
                **identity_context,
            },
        )
        return problem_details(
            request=request,
            status=500,
            title="Internal Server Error",
            detail="Unexpected error",
            type_=PROBLEM_TYPE_SERVER,
        )

    app.include_router(health_router)
    app.include_router(customer_router)
    app.include_router(tickets_router)
    app.include_router(companies_router)
    app.include_router(creative_router)
    app.include_router(admin_router)
    app.include_router(billing_router)
    app.include_router(notifications_router)
    if app_settings.metrics_enabled:
        app.include_router(metrics_router)
    return app


app = create_app(settings)
