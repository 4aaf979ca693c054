from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Body, File, HTTPException, UploadFile
from pydantic import ValidationError

from grantwright.api.services.runtime import ServiceContainer, read_upload, require_record, validation_detail
from grantwright.export.policy import current_timestamp_ms
from grantwright.records import new_record_id

logger = logging.getLogger("grantwright.api")

PDF_MEDIA_TYPE = "application/pdf"


def build_partners_router(*, services: ServiceContainer) -> APIRouter:
    router = APIRouter()

    def store_partner_asset(path: str, content: bytes, content_type: str) -> str:
        bucket = services.settings.partner_assets_bucket
        services.blob_storage.ensure_bucket(bucket)
        services.blob_storage.upload(bucket=bucket, path=path, content=content, content_type=content_type)
        return services.blob_storage.public_url(bucket=bucket, path=path)

    @router.get("/partners")
    def list_partners() -> dict[str, object]:
        return {"partners": services.partners.list()}

    @router.get("/partners/{partner_id}")
    def get_partner(partner_id: str) -> dict[str, Any]:
        return require_record(services.partners.get(partner_id), "Partner not found")

    @router.post("/partners")
    def create_partner(payload: dict[str, Any] = Body(...)) -> dict[str, Any]:
        try:
            return services.partners.create(payload)
        except ValidationError as exc:
            raise HTTPException(status_code=422, detail=validation_detail(exc)) from exc

    @router.put("/partners/{partner_id}")
    def update_partner(partner_id: str, payload: dict[str, Any] = Body(...)) -> dict[str, Any]:
        try:
            updated = services.partners.update(partner_id, payload)
        except ValidationError as exc:
            raise HTTPException(status_code=422, detail=validation_detail(exc)) from exc
        return require_record(updated, "Partner not found")

    @router.delete("/partners/{partner_id}")
    def delete_partner(partner_id: str) -> dict[str, bool]:
        services.partners.delete(partner_id)
        return {"success": True}

    @router.post("/partners/{partner_id}/upload-logo")
    async def upload_partner_logo(partner_id: str, file: UploadFile = File(...)) -> dict[str, str]:
        _, content = await read_upload(file, max_bytes=services.settings.max_upload_file_bytes)
        url = store_partner_asset(
            f"{partner_id}/logo-{current_timestamp_ms()}",
            content,
            file.content_type or "application/octet-stream",
        )
        services.partners.update(partner_id, {"logoUrl": url})
        return {"url": url}

    @router.post("/partners/{partner_id}/upload-pdf")
    async def upload_partner_pdf(partner_id: str, file: UploadFile = File(...)) -> dict[str, str]:
        _, content = await read_upload(file, max_bytes=services.settings.max_upload_file_bytes)
        url = store_partner_asset(
            f"{partner_id}/pdf-{current_timestamp_ms()}",
            content,
            file.content_type or PDF_MEDIA_TYPE,
        )
        services.partners.update(partner_id, {"pdfUrl": url})
        return {"url": url}

    @router.post("/import-partner-pdf")
    async def import_partner_pdf(file: UploadFile = File(...)) -> dict[str, object]:
        _, content = await read_upload(file, max_bytes=services.settings.max_upload_file_bytes)
        extracted = services.orchestrator.extract_partner_profile(content)
        partner_id = new_record_id("partner")
        pdf_url = store_partner_asset(f"{partner_id}/profile-{current_timestamp_ms()}.pdf", content, PDF_MEDIA_TYPE)
        try:
            partner = services.partners.create({**extracted, "id": partner_id, "pdfUrl": pdf_url})
        except ValidationError as exc:
            raise HTTPException(status_code=422, detail=validation_detail(exc)) from exc
        logger.info(
            "partner_imported",
            extra={"event": "partner_imported", "partner_id": partner_id, "size_bytes": len(content)},
        )
        return {"partnerId": partner_id, "partner": partner}

    @router.get("/associated-partners")
    def list_associated_partners() -> dict[str, object]:
        return {"partners": services.associated_partners.list()}

    @router.get("/associated-partners/{partner_id}")
    def get_associated_partner(partner_id: str) -> dict[str, Any]:
        return require_record(services.associated_partners.get(partner_id), "Associated partner not found")

    @router.post("/associated-partners")
    def create_associated_partner(payload: dict[str, Any] = Body(...)) -> dict[str, Any]:
        try:
            return services.associated_partners.create(payload)
        except ValidationError as exc:
            raise HTTPException(status_code=422, detail=validation_detail(exc)) from exc

    @router.put("/associated-partners/{partner_id}")
    def update_associated_partner(partner_id: str, payload: dict[str, Any] = Body(...)) -> dict[str, Any]:
        try:
            updated = services.associated_partners.update(partner_id, payload)
        except ValidationError as exc:
            raise HTTPException(status_code=422, detail=validation_detail(exc)) from exc
        return require_record(updated, "Associated partner not found")

    @router.delete("/associated-partners/{partner_id}")
    def delete_associated_partner(partner_id: str) -> dict[str, bool]:
        services.associated_partners.delete(partner_id)
        return {"success": True}

    @router.post("/associated-partners/{partner_id}/upload-template")
    async def upload_associated_partner_template(partner_id: str, file: UploadFile = File(...)) -> dict[str, str]:
        require_record(services.associated_partners.get(partner_id), "Associated partner not found")
        file_name, content = await read_upload(file, max_bytes=services.settings.max_upload_file_bytes)
        path = f"associated/{partner_id}/template-{current_timestamp_ms()}_{file_name}"
        url = store_partner_asset(path, content, file.content_type or "application/octet-stream")
        services.associated_partners.update(partner_id, {"templateUrl": url, "templatePath": path})
        return {"url": url, "path": path}

    return router
