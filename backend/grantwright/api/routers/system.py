from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from grantwright.api.services.runtime import ServiceContainer
from grantwright.kv_store import KeyValueStoreError

READY_PROBE_KEY = "__ready_probe__"


def build_system_router(*, services: ServiceContainer) -> APIRouter:
    router = APIRouter()
    settings = services.settings

    @router.get("/")
    def root() -> dict[str, str]:
        return {"service": "grantwright-backend", "status": "running", "message": "AI Proposal Generator API"}

    @router.get("/health")
    def health() -> dict[str, object]:
        return {
            "status": "ok",
            "environment": settings.app_env,
            "env": {
                "SUPABASE_URL": bool(settings.supabase_url),
                "SUPABASE_SERVICE_ROLE_KEY": bool(settings.supabase_service_role_key),
                "GEMINI_API_KEY": bool(settings.gemini_api_key),
            },
        }

    @router.get("/ready", response_model=None)
    def ready() -> JSONResponse:
        payload: dict[str, object] = {"status": "ready", "environment": settings.app_env, "checks": {}}
        try:
            services.store.get(READY_PROBE_KEY)
            payload["checks"] = {"store": {"ok": True, "backend": settings.store_backend}}
        except KeyValueStoreError as exc:
            payload["status"] = "not_ready"
            payload["checks"] = {"store": {"ok": False, "backend": settings.store_backend, "error": str(exc)}}
            return JSONResponse(status_code=503, content=payload)
        return JSONResponse(status_code=200, content=payload)

    return router
