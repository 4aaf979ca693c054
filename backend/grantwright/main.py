from __future__ import annotations

from contextlib import asynccontextmanager
import logging
import time

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import httpx

from grantwright.api.routers.funding_schemes import build_funding_schemes_router
from grantwright.api.routers.generation import build_generation_router
from grantwright.api.routers.partners import build_partners_router
from grantwright.api.routers.proposals import build_proposals_router
from grantwright.api.routers.system import build_system_router
from grantwright.api.services.runtime import ServiceContainer
from grantwright.config import Settings, settings as default_settings
from grantwright.export import ExportError
from grantwright.gemini_runtime import GeminiProposalOrchestrator, GeminiQuotaError, GeminiRuntimeError
from grantwright.generation import SectionResolutionError
from grantwright.kv_store import KeyValueStore, KeyValueStoreError
from grantwright.observability import (
    configure_logging,
    normalize_request_id,
    reset_request_id,
    sanitize_for_logging,
    set_request_id,
)
from grantwright.storage import BlobStorage, StorageError

logger = logging.getLogger("grantwright.api")


def _error_response(request: Request, status_code: int, event: str, exc: Exception, detail: str) -> JSONResponse:
    logger.warning(
        event,
        extra={
            "event": event,
            "method": request.method,
            "path": request.url.path,
            "status_code": status_code,
            "error": str(exc),
        },
    )
    return JSONResponse(status_code=status_code, content={"detail": detail})


def create_app(
    settings: Settings | None = None,
    *,
    store: KeyValueStore | None = None,
    blob_storage: BlobStorage | None = None,
    orchestrator: GeminiProposalOrchestrator | None = None,
    http_client: httpx.Client | None = None,
) -> FastAPI:
    settings = settings or default_settings
    cors_origins = settings.cors_origins_list
    if settings.cors_allow_credentials and any(origin == "*" for origin in cors_origins):
        raise RuntimeError("Invalid CORS_ORIGINS: wildcard '*' is not allowed when credentials are enabled.")

    services = ServiceContainer(
        settings,
        store=store,
        blob_storage=blob_storage,
        orchestrator=orchestrator,
        http_client=http_client,
    )

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        configure_logging(settings.log_level)
        logger.info(
            "application_startup",
            extra={
                "event": "application_startup",
                "environment": settings.app_env,
                "store_backend": settings.store_backend,
                "storage_backend": settings.storage_backend,
            },
        )
        yield
        services.close()
        logger.info("application_shutdown", extra={"event": "application_shutdown"})

    app = FastAPI(title=settings.app_name, version="0.1.0", lifespan=lifespan)
    app.state.services = services
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "apikey", settings.request_id_header],
        expose_headers=["Content-Disposition", "X-Export-Warnings", settings.request_id_header],
    )

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):
        request_id = normalize_request_id(request.headers.get(settings.request_id_header))
        request.state.request_id = request_id
        token = set_request_id(request_id)
        fields = {"request_id": request_id, "method": request.method, "path": request.url.path}
        logger.info(
            "request_started",
            extra={
                "event": "request_started",
                **fields,
                "query": sanitize_for_logging(dict(request.query_params)),
                "client_ip": request.client.host if request.client else None,
            },
        )

        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            duration_ms = round((time.perf_counter() - started) * 1000, 2)
            logger.exception("request_failed", extra={"event": "request_failed", **fields, "duration_ms": duration_ms})
            raise
        finally:
            reset_request_id(token)

        response.headers[settings.request_id_header] = request_id
        duration_ms = round((time.perf_counter() - started) * 1000, 2)
        logger.info(
            "request_completed",
            extra={"event": "request_completed", **fields, "status_code": response.status_code, "duration_ms": duration_ms},
        )
        return response

    @app.exception_handler(GeminiQuotaError)
    async def gemini_quota_handler(request: Request, exc: GeminiQuotaError) -> JSONResponse:
        return _error_response(request, 429, "gemini_quota_exceeded", exc, str(exc))

    @app.exception_handler(GeminiRuntimeError)
    async def gemini_runtime_handler(request: Request, exc: GeminiRuntimeError) -> JSONResponse:
        return _error_response(request, 502, "gemini_request_failed", exc, str(exc))

    @app.exception_handler(KeyValueStoreError)
    async def store_error_handler(request: Request, exc: KeyValueStoreError) -> JSONResponse:
        return _error_response(request, 502, "store_request_failed", exc, str(exc))

    @app.exception_handler(StorageError)
    async def storage_error_handler(request: Request, exc: StorageError) -> JSONResponse:
        return _error_response(request, 502, "storage_request_failed", exc, str(exc))

    @app.exception_handler(SectionResolutionError)
    async def section_error_handler(request: Request, exc: SectionResolutionError) -> JSONResponse:
        return _error_response(request, 422, "section_resolution_failed", exc, str(exc))

    @app.exception_handler(ExportError)
    async def export_error_handler(request: Request, exc: ExportError) -> JSONResponse:
        return _error_response(request, 500, "export_failed", exc, str(exc))

    app.include_router(build_system_router(services=services))
    app.include_router(build_proposals_router(services=services))
    app.include_router(build_generation_router(services=services))
    app.include_router(build_partners_router(services=services))
    app.include_router(build_funding_schemes_router(services=services))
    return app


app = create_app()
