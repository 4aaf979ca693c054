from __future__ import annotations

from functools import cached_property
import logging
from typing import Any

from fastapi import HTTPException, UploadFile
import httpx
from pydantic import ValidationError

from grantwright.config import Settings
from grantwright.gemini_runtime import GeminiProposalOrchestrator
from grantwright.kv_store import KeyValueStore, build_key_value_store
from grantwright.records import (
    AssociatedPartnerRepository,
    FundingSchemeRepository,
    PartnerRepository,
    ProposalRepository,
)
from grantwright.storage import BlobStorage, build_blob_storage, safe_object_name

logger = logging.getLogger("grantwright.api")


class ServiceContainer:
    """Lazily built collaborators shared by the routers of one application instance."""

    def __init__(
        self,
        settings: Settings,
        *,
        store: KeyValueStore | None = None,
        blob_storage: BlobStorage | None = None,
        orchestrator: GeminiProposalOrchestrator | None = None,
        http_client: httpx.Client | None = None,
    ) -> None:
        self.settings = settings
        self._store = store
        self._blob_storage = blob_storage
        self._orchestrator = orchestrator
        self._http_client = http_client
        self._owns_http_client = http_client is None

    @cached_property
    def store(self) -> KeyValueStore:
        return self._store if self._store is not None else build_key_value_store(self.settings)

    @cached_property
    def blob_storage(self) -> BlobStorage:
        return self._blob_storage if self._blob_storage is not None else build_blob_storage(self.settings)

    @cached_property
    def orchestrator(self) -> GeminiProposalOrchestrator:
        return self._orchestrator or GeminiProposalOrchestrator(settings=self.settings)

    @cached_property
    def http_client(self) -> httpx.Client:
        return self._http_client or httpx.Client(timeout=self.settings.http_timeout_seconds, follow_redirects=True)

    @cached_property
    def proposals(self) -> ProposalRepository:
        return ProposalRepository(self.store)

    @cached_property
    def partners(self) -> PartnerRepository:
        return PartnerRepository(self.store)

    @cached_property
    def associated_partners(self) -> AssociatedPartnerRepository:
        return AssociatedPartnerRepository(self.store)

    @cached_property
    def funding_schemes(self) -> FundingSchemeRepository:
        return FundingSchemeRepository(self.store)

    def close(self) -> None:
        if self._owns_http_client and "http_client" in self.__dict__:
            self.http_client.close()


def require_record(record: dict[str, Any] | None, detail: str) -> dict[str, Any]:
    if record is None:
        raise HTTPException(status_code=404, detail=detail)
    return record


async def read_upload(upload: UploadFile, *, max_bytes: int) -> tuple[str, bytes]:
    safe_name = safe_object_name(upload.filename)
    content = await upload.read(max_bytes + 1)
    if len(content) > max_bytes:
        raise HTTPException(status_code=413, detail=f"File '{safe_name}' exceeds max size of {max_bytes} bytes.")
    if not content:
        raise HTTPException(status_code=400, detail="No file uploaded")
    return safe_name, content


def validation_detail(exc: ValidationError) -> list[dict[str, Any]]:
    return [{"loc": list(error["loc"]), "msg": error["msg"], "type": error["type"]} for error in exc.errors()]
