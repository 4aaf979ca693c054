from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
import io
import logging
from urllib.parse import unquote
import zipfile

import httpx

from grantwright.config import Settings
from grantwright.export.composer import compose_proposal_document
from grantwright.export.policy import (
    ANNEX_FOLDERS,
    ANNEXES_FOLDER,
    LOCAL_ONLY_MESSAGE,
    LOCAL_ONLY_URL_SCHEME,
    ZIP_MEDIA_TYPE,
    ExportArtifact,
    ExportError,
    archive_file_name,
    archive_entry_name,
    archive_suffix,
    current_timestamp_ms,
    failure_stub_name,
    failure_stub_text,
    placeholder_name,
    placeholder_text,
    sanitize_file_stem,
)
from grantwright.models import MANDATORY_ANNEX_TYPES, Annex, Proposal
from grantwright.storage import BlobStorage, StorageError

logger = logging.getLogger("grantwright.export")


class AnnexDownloadError(RuntimeError):
    """Raised when an annex file cannot be retrieved from storage or over HTTP."""


class AnnexUnavailableError(AnnexDownloadError):
    """Raised for annexes whose file only ever existed in the uploader's browser."""


@dataclass(frozen=True)
class ArchiveOptions:
    include_proposal: bool = True
    include_annexes: bool = True
    include_placeholders: bool = True


class ArchiveBundler:
    def __init__(
        self,
        *,
        settings: Settings,
        blob_storage: BlobStorage,
        http_client: httpx.Client,
    ) -> None:
        self._settings = settings
        self._blob_storage = blob_storage
        self._http_client = http_client

    def build(
        self,
        proposal: Proposal,
        options: ArchiveOptions | None = None,
        *,
        timestamp_ms: int | None = None,
        generated_at: datetime | None = None,
    ) -> ExportArtifact:
        options = options or ArchiveOptions()
        stamp = timestamp_ms or current_timestamp_ms()
        root = sanitize_file_stem(proposal.title)
        warnings: list[str] = []
        written: set[str] = set()

        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:

            def write(path: str, content: bytes | str) -> None:
                unique = _unique_path(path, written)
                written.add(unique)
                archive.writestr(unique, content)

            if options.include_proposal:
                try:
                    document = compose_proposal_document(
                        proposal,
                        http_client=self._http_client,
                        generated_at=generated_at,
                        timestamp_ms=stamp,
                    )
                except ExportError as exc:
                    if not options.include_annexes:
                        raise
                    warnings.append(f"Proposal document could not be generated: {exc}")
                    logger.error(
                        "archive_document_failed",
                        extra={"event": "archive_document_failed", "proposal_id": proposal.id, "error": str(exc)},
                    )
                else:
                    write(f"{root}/{document.file_name}", document.content)

            if options.include_annexes:
                files_per_type: dict[str, int] = {annex_type: 0 for annex_type in MANDATORY_ANNEX_TYPES}
                for annex in proposal.annexes:
                    folder = _annex_folder(root, annex.type)
                    try:
                        content = self.fetch_annex(annex)
                    except AnnexDownloadError as exc:
                        reason = LOCAL_ONLY_MESSAGE if isinstance(exc, AnnexUnavailableError) else f"Download failed: {exc}"
                        warnings.append(f"{annex.title}: {reason}")
                        logger.warning(
                            "archive_annex_failed",
                            extra={
                                "event": "archive_annex_failed",
                                "proposal_id": proposal.id,
                                "annex_id": annex.id,
                                "annex_type": annex.type,
                                "reason": reason,
                            },
                        )
                        if not options.include_placeholders:
                            continue
                        write(
                            f"{folder}/{failure_stub_name(annex.title)}",
                            failure_stub_text(annex.file_name, annex.file_url, reason),
                        )
                    else:
                        fallback = f"{archive_entry_name(annex.title, fallback='annex')}.pdf"
                        write(f"{folder}/{archive_entry_name(annex.file_name, fallback=fallback)}", content)
                    if annex.type in files_per_type:
                        files_per_type[annex.type] += 1

                if options.include_placeholders:
                    for annex_type, count in files_per_type.items():
                        if count:
                            continue
                        write(
                            f"{_annex_folder(root, annex_type)}/{placeholder_name(annex_type)}",
                            placeholder_text(annex_type),
                        )

        suffix = archive_suffix(include_proposal=options.include_proposal, include_annexes=options.include_annexes)
        file_name = archive_file_name(proposal.title, suffix, stamp)
        content = buffer.getvalue()
        logger.info(
            "archive_built",
            extra={
                "event": "archive_built",
                "proposal_id": proposal.id,
                "file_name": file_name,
                "entries": len(written),
                "warnings": len(warnings),
                "size_bytes": len(content),
            },
        )
        return ExportArtifact(content=content, file_name=file_name, media_type=ZIP_MEDIA_TYPE, warnings=warnings)

    def fetch_annex(self, annex: Annex) -> bytes:
        """Stored path first, then a path parsed from the URL, then a plain HTTP fetch."""
        bucket = self._settings.annex_bucket
        path_error: StorageError | None = None
        if annex.file_path:
            try:
                return self._blob_storage.download(bucket=bucket, path=annex.file_path)
            except StorageError as exc:
                path_error = exc
                if not annex.file_url:
                    raise AnnexDownloadError(str(exc)) from exc

        url = (annex.file_url or "").strip()
        if not url:
            raise AnnexDownloadError("No file path or URL available")
        if url.startswith(LOCAL_ONLY_URL_SCHEME):
            raise AnnexUnavailableError(LOCAL_ONLY_MESSAGE)

        marker = f"{bucket}/"
        if marker in url:
            storage_path = unquote(url.split(marker, 1)[1].split("?", 1)[0])
            if storage_path and storage_path != annex.file_path:
                try:
                    return self._blob_storage.download(bucket=bucket, path=storage_path)
                except StorageError as exc:
                    logger.info(
                        "annex_storage_fallback_to_http",
                        extra={"event": "annex_storage_fallback_to_http", "annex_id": annex.id, "error": str(exc)},
                    )
        elif path_error is not None:
            logger.info(
                "annex_storage_fallback_to_http",
                extra={"event": "annex_storage_fallback_to_http", "annex_id": annex.id, "error": str(path_error)},
            )

        try:
            response = self._http_client.get(url)
        except httpx.HTTPError as exc:
            raise AnnexDownloadError(str(exc)) from exc
        if not response.is_success:
            raise AnnexDownloadError(f"HTTP error! status: {response.status_code}")
        return response.content


def _annex_folder(root: str, annex_type: str) -> str:
    folder = ANNEX_FOLDERS.get(annex_type)
    if folder is None:
        return f"{root}/{ANNEXES_FOLDER}"
    return f"{root}/{ANNEXES_FOLDER}/{folder}"


def _unique_path(path: str, existing: set[str]) -> str:
    if path not in existing:
        return path
    stem, dot, extension = path.rpartition(".")
    if not dot or "/" in extension:
        stem, extension = path, ""
    counter = 2
    while True:
        candidate = f"{stem}_{counter}.{extension}" if extension else f"{stem}_{counter}"
        if candidate not in existing:
            return candidate
        counter += 1
