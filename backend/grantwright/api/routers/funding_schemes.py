from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, HTTPException
from pydantic import ValidationError

from grantwright.api.services.runtime import ServiceContainer, require_record, validation_detail


def build_funding_schemes_router(*, services: ServiceContainer) -> APIRouter:
    router = APIRouter()

    @router.get("/funding-schemes")
    def list_funding_schemes() -> dict[str, object]:
        return {"schemes": services.funding_schemes.list_active()}

    @router.get("/funding-schemes/{scheme_id}")
    def get_funding_scheme(scheme_id: str) -> dict[str, Any]:
        return require_record(services.funding_schemes.get(scheme_id), "Funding scheme not found")

    @router.post("/funding-schemes")
    def create_funding_scheme(payload: dict[str, Any] = Body(...)) -> dict[str, Any]:
        try:
            return services.funding_schemes.create(payload)
        except ValidationError as exc:
            raise HTTPException(status_code=422, detail=validation_detail(exc)) from exc

    @router.put("/funding-schemes/{scheme_id}")
    def update_funding_scheme(scheme_id: str, payload: dict[str, Any] = Body(...)) -> dict[str, Any]:
        try:
            updated = services.funding_schemes.update(scheme_id, payload)
        except ValidationError as exc:
            raise HTTPException(status_code=422, detail=validation_detail(exc)) from exc
        return require_record(updated, "Funding scheme not found")

    return router
