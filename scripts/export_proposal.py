#!/usr/bin/env python3
"""Render a proposal JSON file to a DOCX document or ZIP package without running the API."""

from __future__ import annotations

import argparse
import json
from pathlib import Path

from pydantic import ValidationError

from grantwright.api.contracts import ExportKind
from grantwright.api.services.exporting import export_proposal
from grantwright.api.services.runtime import ServiceContainer
from grantwright.config import Settings
from grantwright.export import ExportError
from grantwright.models import Proposal
from grantwright.observability import configure_logging


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("proposal", help="Path to a proposal JSON file (as returned by GET /proposals/{id}).")
    parser.add_argument(
        "--type",
        dest="kind",
        default=ExportKind.DOCX.value,
        choices=[kind.value for kind in ExportKind],
        help="Export type.",
    )
    parser.add_argument("--out-dir", default=".", help="Directory the artifact is written to.")
    parser.add_argument(
        "--no-placeholders",
        action="store_true",
        help="Skip placeholder files for missing mandatory annexes.",
    )
    parser.add_argument(
        "--offline",
        action="store_true",
        help="Use in-memory storage instead of the configured Supabase project.",
    )
    return parser.parse_args()


def main() -> int:
    args = _parse_args()
    proposal_path = Path(args.proposal)
    if not proposal_path.is_file():
        print(f"[ERROR] Proposal file not found: {proposal_path}")
        return 1

    try:
        payload = json.loads(proposal_path.read_text(encoding="utf-8"))
        proposal = Proposal.model_validate(payload)
    except (json.JSONDecodeError, ValidationError) as exc:
        print(f"[ERROR] Invalid proposal file {proposal_path}: {exc}")
        return 1

    settings = Settings()
    if args.offline:
        settings = settings.model_copy(update={"store_backend": "memory", "storage_backend": "memory"})
    configure_logging(settings.log_level)

    services = ServiceContainer(settings)
    try:
        artifact = export_proposal(
            services,
            proposal,
            ExportKind(args.kind),
            include_placeholders=not args.no_placeholders,
        )
    except ExportError as exc:
        print(f"[ERROR] Export failed: {exc}")
        return 1
    finally:
        services.close()

    out_dir = Path(args.out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    out_path = out_dir / artifact.file_name
    out_path.write_bytes(artifact.content)
    print(f"Wrote {args.kind} export: {out_path} ({len(artifact.content)} bytes)")
    for warning in artifact.warnings:
        print(f"[WARN] {warning}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
