from __future__ import annotations

import logging
from urllib.parse import quote

from fastapi import Response

from grantwright.api.contracts import ExportKind
from grantwright.api.services.runtime import ServiceContainer
from grantwright.export import ArchiveBundler, ArchiveOptions, ExportArtifact, compose_proposal_document
from grantwright.models import Proposal

logger = logging.getLogger("grantwright.api")

_ARCHIVE_OPTIONS: dict[ExportKind, tuple[bool, bool]] = {
    ExportKind.ZIP_FULL: (True, True),
    ExportKind.ZIP_ANNEXES: (False, True),
    ExportKind.ZIP_PROPOSAL: (True, False),
}


def export_proposal(
    services: ServiceContainer,
    proposal: Proposal,
    kind: ExportKind,
    *,
    include_placeholders: bool = True,
) -> ExportArtifact:
    if kind == ExportKind.DOCX:
        return compose_proposal_document(proposal, http_client=services.http_client)

    include_proposal, include_annexes = _ARCHIVE_OPTIONS[kind]
    bundler = ArchiveBundler(
        settings=services.settings,
        blob_storage=services.blob_storage,
        http_client=services.http_client,
    )
    return bundler.build(
        proposal,
        ArchiveOptions(
            include_proposal=include_proposal,
            include_annexes=include_annexes,
            include_placeholders=include_placeholders,
        ),
    )


def artifact_response(artifact: ExportArtifact) -> Response:
    headers = {
        "Content-Disposition": f"attachment; filename=\"{artifact.file_name}\"; filename*=UTF-8''{quote(artifact.file_name)}",
        "X-Export-Warnings": str(len(artifact.warnings)),
    }
    return Response(content=artifact.content, media_type=artifact.media_type, headers=headers)
