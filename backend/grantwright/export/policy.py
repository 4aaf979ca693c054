from __future__ import annotations

from dataclasses import dataclass, field
import re
import time

DOCX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
ZIP_MEDIA_TYPE = "application/zip"

ANNEXES_FOLDER = "Annexes"
ANNEX_FOLDERS: dict[str, str] = {
    "declaration": "Declarations_on_Honour",
    "accession_form": "Accession_Forms",
    "letter_of_intent": "Letters_of_Intent",
    "cv": "CVs",
}
ANNEX_GROUP_HEADINGS: tuple[tuple[str, str, str], ...] = (
    ("declaration", "Declaration on Honour:", "[Placeholder for Declaration on Honour form]"),
    ("accession_form", "Accession forms:", "[Placeholder for Accession Forms]"),
    (
        "letter_of_intent",
        "Letters of Intent:",
        "[Placeholder for any other relevant documents, e.g., Letters of Intent, CVs of key personnel]",
    ),
    ("cv", "Other Documents:", "[Placeholder for CVs and other supporting documents]"),
)

LOCAL_ONLY_URL_SCHEME = "blob:"
LOCAL_ONLY_MESSAGE = (
    "This file was stored locally in your browser and is no longer accessible. Please re-upload it."
)

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9]")
_WORK_PACKAGE_PREFIX = re.compile(r"^WP\d+:", re.IGNORECASE)
_TIMELINE_MONTH_INFO = re.compile(r"\(Months?\s+\d+", re.IGNORECASE)
_LEADING_NUMBERING = re.compile(r"^\s*\d+(?:\.\d+)*\.?\s+")
_PATH_SEPARATORS = re.compile(r"[\\/]")


class ExportError(RuntimeError):
    """Raised when an export cannot produce its primary artifact."""


@dataclass(frozen=True)
class ExportArtifact:
    content: bytes
    file_name: str
    media_type: str
    warnings: list[str] = field(default_factory=list)


def current_timestamp_ms() -> int:
    return int(time.time() * 1000)


def sanitize_file_stem(title: str | None, *, fallback: str = "proposal") -> str:
    sanitized = _UNSAFE_CHARS.sub("_", title or "")
    return sanitized or fallback


def document_file_name(title: str | None, timestamp_ms: int) -> str:
    return f"{sanitize_file_stem(title)}_{timestamp_ms}.docx"


def archive_suffix(*, include_proposal: bool, include_annexes: bool) -> str:
    if include_proposal and include_annexes:
        return "full_package"
    if include_annexes:
        return "annexes_only"
    return "proposal"


def archive_file_name(title: str | None, suffix: str, timestamp_ms: int) -> str:
    return f"{sanitize_file_stem(title)}_{suffix}_{timestamp_ms}.zip"


def work_package_heading(name: str, index: int) -> str:
    if _WORK_PACKAGE_PREFIX.match(name or ""):
        return name
    return f"WP{index + 1}: {name}"


def timeline_phase_label(phase: str, start_month: int | None, end_month: int | None) -> str:
    if _TIMELINE_MONTH_INFO.search(phase or ""):
        return phase
    if start_month is None or end_month is None:
        return phase
    return f"{phase} (Month {start_month}-{end_month})"


def strip_leading_numbering(label: str) -> str:
    return _LEADING_NUMBERING.sub("", label or "").strip()


def archive_entry_name(name: str | None, *, fallback: str) -> str:
    """Last path segment of a client-supplied name, so it cannot escape or nest inside its folder."""
    base = _PATH_SEPARATORS.split(name or "")[-1].strip()
    return fallback if base in ("", ".", "..") else base


def failure_stub_name(title: str) -> str:
    return f"{archive_entry_name(title, fallback='annex')}_DOWNLOAD_FAILED.txt"


def failure_stub_text(file_name: str | None, file_url: str | None, reason: str) -> str:
    return f"This file could not be downloaded: {file_name}\nURL: {file_url}\nReason: {reason}"


def placeholder_name(annex_type: str) -> str:
    return f"PLACEHOLDER_{annex_type.upper()}.txt"


def placeholder_text(annex_type: str) -> str:
    return f'No documents of type "{annex_type.replace("_", " ")}" were uploaded for this proposal.'
