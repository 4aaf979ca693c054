from grantwright.export.archive import ArchiveBundler, ArchiveOptions
from grantwright.export.blocks import parse_rich_text
from grantwright.export.composer import compose_proposal_document
from grantwright.export.policy import ExportArtifact, ExportError

__all__ = [
    "ArchiveBundler",
    "ArchiveOptions",
    "ExportArtifact",
    "ExportError",
    "compose_proposal_document",
    "parse_rich_text",
]
