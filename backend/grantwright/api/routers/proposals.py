from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Body, File, Form, HTTPException, Query, Response, UploadFile
from pydantic import ValidationError

from grantwright.api.contracts import AiEditRequest, ExportKind, ExportRequest
from grantwright.api.services.exporting import artifact_response, export_proposal
from grantwright.api.services.runtime import ServiceContainer, read_upload, require_record, validation_detail
from grantwright.export.policy import current_timestamp_ms
from grantwright.generation import ai_edit_proposal
from grantwright.models import Annex, AnnexType, Proposal
from grantwright.records import new_record_id, utc_now_iso

logger = logging.getLogger("grantwright.api")


def build_proposals_router(*, services: ServiceContainer) -> APIRouter:
    router = APIRouter()

    def load_proposal(proposal_id: str) -> dict[str, Any]:
        return require_record(services.proposals.get(proposal_id), "Proposal not found")

    @router.get("/proposals")
    def list_proposals() -> dict[str, object]:
        return {"proposals": services.proposals.list()}

    @router.get("/proposals/{proposal_id}")
    def get_proposal(proposal_id: str) -> dict[str, Any]:
        return load_proposal(proposal_id)

    @router.post("/proposals")
    def save_proposal(payload: dict[str, Any] = Body(...)) -> dict[str, Any]:
        try:
            return services.proposals.save(payload)
        except ValidationError as exc:
            raise HTTPException(status_code=422, detail=validation_detail(exc)) from exc

    @router.put("/proposals/{proposal_id}")
    def update_proposal(proposal_id: str, payload: dict[str, Any] = Body(...)) -> dict[str, Any]:
        try:
            updated = services.proposals.update(proposal_id, payload)
        except ValidationError as exc:
            raise HTTPException(status_code=422, detail=validation_detail(exc)) from exc
        return require_record(updated, "Proposal not found")

    @router.delete("/proposals/{proposal_id}")
    def delete_proposal(proposal_id: str) -> dict[str, bool]:
        services.proposals.delete(proposal_id)
        return {"success": True}

    @router.post("/proposals/{proposal_id}/ai-edit")
    def ai_edit(proposal_id: str, payload: AiEditRequest) -> dict[str, object]:
        result = ai_edit_proposal(
            orchestrator=services.orchestrator,
            proposals=services.proposals,
            proposal_id=proposal_id,
            instruction=payload.instruction,
        )
        return require_record(result, "Proposal not found")

    @router.post("/proposals/{proposal_id}/annexes")
    async def upload_annex(
        proposal_id: str,
        file: UploadFile = File(...),
        annex_type: AnnexType = Form(..., alias="type"),
        title: str = Form(..., min_length=1, max_length=300),
        partner_id: str | None = Form(default=None, alias="partnerId"),
        partner_name: str | None = Form(default=None, alias="partnerName"),
        associated_partner_id: str | None = Form(default=None, alias="associatedPartnerId"),
    ) -> dict[str, object]:
        record = load_proposal(proposal_id)
        file_name, content = await read_upload(file, max_bytes=services.settings.max_upload_file_bytes)
        bucket = services.settings.annex_bucket
        path = f"{proposal_id}/{current_timestamp_ms()}_{file_name}"
        services.blob_storage.upload(
            bucket=bucket,
            path=path,
            content=content,
            content_type=file.content_type or "application/octet-stream",
        )
        annex = Annex(
            id=new_record_id("annex"),
            type=annex_type,
            title=title,
            file_name=file.filename or file_name,
            file_url=services.blob_storage.public_url(bucket=bucket, path=path),
            file_path=path,
            uploaded_at=utc_now_iso(),
            partner_id=partner_id,
            partner_name=partner_name,
            associated_partner_id=associated_partner_id,
        ).to_record()
        updated = services.proposals.update(proposal_id, {"annexes": [*(record.get("annexes") or []), annex]})
        logger.info(
            "annex_uploaded",
            extra={"event": "annex_uploaded", "proposal_id": proposal_id, "annex_type": annex_type, "size_bytes": len(content)},
        )
        return {"annex": annex, "proposal": updated}

    @router.delete("/proposals/{proposal_id}/annexes/{annex_id}")
    def delete_annex(proposal_id: str, annex_id: str) -> dict[str, object]:
        record = load_proposal(proposal_id)
        annexes = record.get("annexes") or []
        target = next((annex for annex in annexes if annex.get("id") == annex_id), None)
        if target is None:
            raise HTTPException(status_code=404, detail="Annex not found")
        if target.get("filePath"):
            services.blob_storage.remove(bucket=services.settings.annex_bucket, paths=[target["filePath"]])
        remaining = [annex for annex in annexes if annex.get("id") != annex_id]
        updated = services.proposals.update(proposal_id, {"annexes": remaining})
        return {"success": True, "proposal": updated}

    @router.get("/proposals/{proposal_id}/export", response_model=None)
    def export_stored_proposal(
        proposal_id: str,
        kind: ExportKind = Query(default=ExportKind.DOCX, alias="type"),
        include_placeholders: bool = Query(default=True),
    ) -> Response:
        proposal = Proposal.model_validate(load_proposal(proposal_id))
        artifact = export_proposal(services, proposal, kind, include_placeholders=include_placeholders)
        return artifact_response(artifact)

    @router.post("/export", response_model=None)
    def export_inline_proposal(payload: ExportRequest) -> Response:
        try:
            proposal = Proposal.model_validate(payload.proposal)
        except ValidationError as exc:
            raise HTTPException(status_code=422, detail=validation_detail(exc)) from exc
        artifact = export_proposal(services, proposal, payload.type, include_placeholders=payload.include_placeholders)
        return artifact_response(artifact)

    return router
