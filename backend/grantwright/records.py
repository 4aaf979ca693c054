from __future__ import annotations

from datetime import datetime, timezone
import logging
import secrets
import string
import time
from typing import Any

from grantwright.kv_store import KeyValueStore
from grantwright.models import AssociatedPartner, FundingScheme, Partner, Proposal

logger = logging.getLogger("grantwright.records")

PROPOSAL_ID_PREFIX = "proposal-"
PARTNER_KEY_PREFIX = "partner:"
ASSOCIATED_PARTNER_KEY_PREFIX = "associated-partner:"
FUNDING_SCHEME_KEY_PREFIX = "funding-scheme:"

_ID_ALPHABET = string.ascii_lowercase + string.digits


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def new_record_id(prefix: str) -> str:
    token = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
    return f"{prefix}-{int(time.time() * 1000)}-{token}"


def _sort_stamp(record: dict[str, Any], *fields: str) -> str:
    for field in fields:
        value = record.get(field)
        if isinstance(value, str) and value:
            return value
    return ""


class ProposalRepository:
    """Proposals are stored under their own id, which always starts with `proposal-`."""

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store

    def list(self) -> list[dict[str, Any]]:
        records = self._store.get_by_prefix(PROPOSAL_ID_PREFIX)
        return sorted(records, key=lambda record: _sort_stamp(record, "savedAt", "generatedAt"), reverse=True)

    def get(self, proposal_id: str) -> dict[str, Any] | None:
        return self._store.get(proposal_id)

    def save(self, payload: dict[str, Any]) -> dict[str, Any]:
        record = dict(payload)
        supplied_id = record.get("id")
        # Proposals share the key space with prefixed records; foreign ids get a fresh one.
        if not isinstance(supplied_id, str) or not supplied_id.startswith(PROPOSAL_ID_PREFIX):
            if supplied_id:
                logger.warning(
                    "proposal_id_replaced",
                    extra={"event": "proposal_id_replaced", "supplied_id": str(supplied_id)},
                )
            record["id"] = new_record_id("proposal")
        now = utc_now_iso()
        record["savedAt"] = now
        record["updatedAt"] = now
        proposal = Proposal.model_validate(record).to_record()
        self._store.set(proposal["id"], proposal)
        logger.info("proposal_saved", extra={"event": "proposal_saved", "proposal_id": proposal["id"]})
        return proposal

    def update(self, proposal_id: str, updates: dict[str, Any]) -> dict[str, Any] | None:
        existing = self._store.get(proposal_id)
        if existing is None:
            return None
        merged = {**existing, **updates, "id": proposal_id, "updatedAt": utc_now_iso()}
        proposal = Proposal.model_validate(merged).to_record()
        self._store.set(proposal_id, proposal)
        logger.info("proposal_updated", extra={"event": "proposal_updated", "proposal_id": proposal_id})
        return proposal

    def replace(self, proposal: Proposal) -> dict[str, Any]:
        if not proposal.id:
            raise ValueError("Proposal id is required.")
        proposal.updated_at = utc_now_iso()
        record = proposal.to_record()
        self._store.set(proposal.id, record)
        return record

    def delete(self, proposal_id: str) -> None:
        self._store.delete(proposal_id)
        logger.info("proposal_deleted", extra={"event": "proposal_deleted", "proposal_id": proposal_id})


class _PrefixedRepository:
    key_prefix = ""
    id_prefix = ""
    model: type[Partner] | type[AssociatedPartner] | type[FundingScheme] = Partner
    created_field = "createdAt"
    updated_field: str | None = None

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store

    def key_for(self, record_id: str) -> str:
        return f"{self.key_prefix}{record_id}"

    def list(self) -> list[dict[str, Any]]:
        return self._store.get_by_prefix(self.key_prefix)

    def get(self, record_id: str) -> dict[str, Any] | None:
        return self._store.get(self.key_for(record_id))

    def create(self, payload: dict[str, Any]) -> dict[str, Any]:
        record = dict(payload)
        record["id"] = record.get("id") or new_record_id(self.id_prefix)
        now = utc_now_iso()
        record[self.created_field] = now
        if self.updated_field:
            record[self.updated_field] = now
        validated = self.model.model_validate(record).to_record()
        self._store.set(self.key_for(validated["id"]), validated)
        return validated

    def update(self, record_id: str, updates: dict[str, Any]) -> dict[str, Any] | None:
        existing = self.get(record_id)
        if existing is None:
            return None
        merged = {**existing, **updates, "id": record_id}
        if self.created_field in existing:
            merged[self.created_field] = existing[self.created_field]
        if self.updated_field:
            merged[self.updated_field] = utc_now_iso()
        validated = self.model.model_validate(merged).to_record()
        self._store.set(self.key_for(record_id), validated)
        return validated

    def delete(self, record_id: str) -> None:
        self._store.delete(self.key_for(record_id))


class PartnerRepository(_PrefixedRepository):
    key_prefix = PARTNER_KEY_PREFIX
    id_prefix = "partner"
    model = Partner

    def get_many(self, partner_ids: list[str]) -> list[dict[str, Any]]:
        partners: list[dict[str, Any]] = []
        for partner_id in partner_ids:
            record = self.get(partner_id)
            if record is None:
                logger.warning(
                    "partner_reference_missing",
                    extra={"event": "partner_reference_missing", "partner_id": partner_id},
                )
                continue
            partners.append(record)
        return partners


class AssociatedPartnerRepository(_PrefixedRepository):
    key_prefix = ASSOCIATED_PARTNER_KEY_PREFIX
    id_prefix = "associated-partner"
    model = AssociatedPartner


class FundingSchemeRepository(_PrefixedRepository):
    key_prefix = FUNDING_SCHEME_KEY_PREFIX
    id_prefix = "funding-scheme"
    model = FundingScheme
    created_field = "created_at"
    updated_field = "updated_at"

    def list_active(self) -> list[dict[str, Any]]:
        schemes = [record for record in self.list() if record.get("is_active", True)]
        return sorted(schemes, key=lambda record: (not record.get("is_default", False), str(record.get("name", ""))))
