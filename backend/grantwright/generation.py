from __future__ import annotations

import json
import logging
from typing import Any

import httpx
from pydantic import ValidationError

from grantwright.config import Settings
from grantwright.gemini_runtime import GeminiProposalOrchestrator, GeminiRuntimeError, parse_json_object
from grantwright.models import (
    NARRATIVE_FIELDS,
    STRUCTURED_FIELDS,
    FundingScheme,
    Proposal,
    RelevanceAssessment,
)
from grantwright.records import (
    FundingSchemeRepository,
    PartnerRepository,
    ProposalRepository,
    new_record_id,
    utc_now_iso,
)

logger = logging.getLogger("grantwright.generation")

TEXT_MODE_PLACEHOLDER_URL = "https://text-mode-placeholder.com"
EDITABLE_BASE_SECTIONS: tuple[str, ...] = ("title", *NARRATIVE_FIELDS, "budget")
COPILOT_SECTION_KEYS: tuple[str, ...] = ("title", *NARRATIVE_FIELDS, *STRUCTURED_FIELDS)
_CONSTRAINT_PARAMS = (("budget", "Max Budget"), ("duration", "Duration"), ("partners", "Partner Requirements"))


class SectionResolutionError(ValueError):
    """Raised when a requested or detected section key does not exist on the proposal."""


def fetch_call_content(http_client: httpx.Client, url: str, *, max_chars: int) -> str:
    """Best-effort fetch of a funding call page; an unreachable page yields empty content."""
    try:
        response = http_client.get(url, follow_redirects=True)
    except httpx.HTTPError as exc:
        logger.info("call_fetch_failed", extra={"event": "call_fetch_failed", "url": url, "error": str(exc)})
        return ""
    if not response.is_success:
        logger.info(
            "call_fetch_failed",
            extra={"event": "call_fetch_failed", "url": url, "status_code": response.status_code},
        )
        return ""
    return response.text[:max_chars]


def analyze_call(
    *,
    orchestrator: GeminiProposalOrchestrator,
    http_client: httpx.Client,
    settings: Settings,
    url: str,
    user_prompt: str | None,
) -> dict[str, object]:
    text_mode = url == TEXT_MODE_PLACEHOLDER_URL
    content = "" if text_mode else fetch_call_content(http_client, url, max_chars=settings.call_fetch_max_chars)
    analysis = orchestrator.summarize_call(
        source_url=url,
        source_content=content,
        user_prompt=user_prompt,
        text_mode=text_mode,
    )
    ideas = orchestrator.brainstorm_ideas(str(analysis["summary"]), dict(analysis["constraints"]), user_prompt)
    logger.info(
        "call_analyzed",
        extra={"event": "call_analyzed", "text_mode": text_mode, "content_chars": len(content), "ideas": len(ideas)},
    )
    return {"summary": analysis["summary"], "constraints": analysis["constraints"], "ideas": ideas}


def assess_relevance(
    *,
    orchestrator: GeminiProposalOrchestrator,
    http_client: httpx.Client,
    settings: Settings,
    url: str,
    constraints: dict[str, Any],
    ideas: list[dict[str, Any]],
    user_prompt: str | None,
) -> dict[str, object]:
    content = ""
    if url and url != TEXT_MODE_PLACEHOLDER_URL:
        content = fetch_call_content(http_client, url, max_chars=settings.call_fetch_max_chars)
    payload = orchestrator.assess_relevance(
        source_url=url,
        source_content=content,
        constraints=constraints,
        ideas=ideas,
        user_prompt=user_prompt,
    )
    return RelevanceAssessment.model_validate(payload).model_dump()


def _settings_from_constraints(constraints: dict[str, Any]) -> dict[str, object]:
    custom_params = [
        {"key": label, "value": str(constraints[key])}
        for key, label in _CONSTRAINT_PARAMS
        if constraints.get(key) not in (None, "")
    ]
    return {"currency": "EUR", "sourceUrl": "", "customParams": custom_params}


def generate_proposal(
    *,
    orchestrator: GeminiProposalOrchestrator,
    proposals: ProposalRepository,
    partners: PartnerRepository,
    funding_schemes: FundingSchemeRepository,
    idea: dict[str, Any],
    summary: str,
    constraints: dict[str, Any],
    selected_partner_ids: list[str],
    user_prompt: str | None,
    funding_scheme_id: str | None,
) -> dict[str, object]:
    partner_records = partners.get_many(selected_partner_ids)
    scheme: FundingScheme | None = None
    if funding_scheme_id:
        scheme_record = funding_schemes.get(funding_scheme_id)
        if scheme_record is None:
            raise LookupError(f"Funding scheme '{funding_scheme_id}' not found.")
        scheme = FundingScheme.model_validate(scheme_record)

    payload = orchestrator.draft_proposal(
        idea=idea,
        summary=summary,
        constraints=constraints,
        partners=partner_records,
        user_prompt=user_prompt,
        funding_scheme=scheme,
    )

    now = utc_now_iso()
    record: dict[str, Any] = {
        **payload,
        "id": new_record_id("proposal"),
        "selectedIdea": idea,
        "generatedAt": now,
        "settings": _settings_from_constraints(constraints),
    }
    if scheme is not None:
        record["funding_scheme_id"] = funding_scheme_id
        record["funding_scheme"] = scheme.to_record()
    try:
        Proposal.model_validate(record)
    except ValidationError as exc:
        raise GeminiRuntimeError(f"Generated proposal did not match the expected structure: {exc}") from exc

    saved = proposals.save(record)
    logger.info(
        "proposal_generated",
        extra={
            "event": "proposal_generated",
            "proposal_id": saved["id"],
            "funding_scheme_id": funding_scheme_id,
            "partners": len(partner_records),
        },
    )
    return saved


def editable_section_keys(proposal: Proposal) -> list[str]:
    keys = list(EDITABLE_BASE_SECTIONS)
    for key in proposal.narrative_section_keys():
        if key not in keys:
            keys.append(key)
    return keys


def budget_limit(record: dict[str, Any]) -> str:
    settings = record.get("settings") or {}
    constraints = settings.get("constraints") or {}
    if constraints.get("budget"):
        return str(constraints["budget"])
    for param in settings.get("customParams") or []:
        if param.get("key") == "Max Budget" and param.get("value"):
            return str(param["value"])
    return "Not specified"


def _is_dynamic_key(record: dict[str, Any], proposal: Proposal, key: str) -> bool:
    dynamic = record.get("dynamic_sections") or {}
    return key in dynamic or (key in proposal.narrative_section_keys() and key not in COPILOT_SECTION_KEYS)


def section_content(record: dict[str, Any], proposal: Proposal, key: str) -> Any:
    if _is_dynamic_key(record, proposal, key):
        return (record.get("dynamic_sections") or {}).get(key)
    return record.get(key)


def apply_section_content(record: dict[str, Any], key: str, content: Any) -> dict[str, Any]:
    """Replace exactly one section and return the re-validated record."""
    proposal = Proposal.model_validate(record)
    updated = dict(record)
    if _is_dynamic_key(record, proposal, key):
        dynamic = dict(record.get("dynamic_sections") or {})
        dynamic[key] = content
        updated["dynamic_sections"] = dynamic
    else:
        if key == "title" and not isinstance(content, str):
            raise SectionResolutionError("Title content must be plain text.")
        updated[key] = content
    try:
        return Proposal.model_validate(updated).to_record()
    except ValidationError as exc:
        raise SectionResolutionError(f"Content for section '{key}' has an invalid structure: {exc}") from exc


def ai_edit_proposal(
    *,
    orchestrator: GeminiProposalOrchestrator,
    proposals: ProposalRepository,
    proposal_id: str,
    instruction: str,
) -> dict[str, object] | None:
    record = proposals.get(proposal_id)
    if record is None:
        return None
    proposal = Proposal.model_validate(record)
    available = editable_section_keys(proposal)

    section = orchestrator.detect_section(instruction, available)
    if section not in available:
        logger.warning(
            "ai_edit_section_rejected",
            extra={"event": "ai_edit_section_rejected", "proposal_id": proposal_id, "section": section},
        )
        raise SectionResolutionError(f"Could not match the instruction to a known section (got '{section}').")

    content = orchestrator.rewrite_section(
        summary=proposal.summary,
        budget_limit=budget_limit(record),
        section=section,
        current_content=section_content(record, proposal, section),
        instruction=instruction,
    )
    updated = apply_section_content(record, section, content)
    saved = proposals.replace(Proposal.model_validate(updated))
    logger.info(
        "ai_edit_applied",
        extra={"event": "ai_edit_applied", "proposal_id": proposal_id, "section": section},
    )
    return {"proposal": saved, "editedSection": section}


def draft_custom_section(
    *,
    orchestrator: GeminiProposalOrchestrator,
    section_title: str,
    proposal_context: str,
    existing_sections: list[str],
) -> dict[str, object]:
    drafted = orchestrator.draft_section(
        section_title=section_title,
        proposal_context=proposal_context,
        existing_sections=existing_sections,
    )
    content = drafted["content"]
    if not isinstance(content, str):
        content = Proposal.model_validate({"summary": content}).summary or ""
    return {"title": drafted["title"], "content": content}


def _copilot_action(text: str) -> dict[str, Any] | None:
    if "{" not in text:
        return None
    try:
        payload = parse_json_object(text)
    except GeminiRuntimeError:
        return None
    if not isinstance(payload, dict) or payload.get("action") != "update_section":
        return None
    if not payload.get("section") or payload.get("content") in (None, ""):
        return None
    return payload


def copilot_turn(
    *,
    orchestrator: GeminiProposalOrchestrator,
    proposals: ProposalRepository,
    proposal_id: str,
    message: str,
    history: list[dict[str, str]],
) -> dict[str, object] | None:
    record = proposals.get(proposal_id)
    if record is None:
        return None
    proposal = Proposal.model_validate(record)
    section_keys = list(COPILOT_SECTION_KEYS)
    section_keys.extend(key for key in proposal.narrative_section_keys() if key not in section_keys)

    reply = orchestrator.copilot_reply(context=record, section_keys=section_keys, history=history, message=message)
    action = _copilot_action(reply)
    if action is None:
        return {"response": reply}

    section = str(action["section"])
    if section not in section_keys:
        logger.warning(
            "copilot_section_rejected",
            extra={"event": "copilot_section_rejected", "proposal_id": proposal_id, "section": section},
        )
        return {"response": f"I could not update '{section}' because it is not a section of this proposal."}

    content = action["content"]
    if isinstance(content, str) and section in STRUCTURED_FIELDS:
        try:
            content = json.loads(content)
        except json.JSONDecodeError:
            return {"response": f"I could not update '{section}' because the new content was not valid."}
    try:
        updated = apply_section_content(record, section, content)
    except SectionResolutionError as exc:
        logger.warning(
            "copilot_update_rejected",
            extra={"event": "copilot_update_rejected", "proposal_id": proposal_id, "section": section, "error": str(exc)},
        )
        return {"response": f"I could not update '{section}' because the new content was not valid."}

    proposals.replace(Proposal.model_validate(updated))
    logger.info("copilot_section_updated", extra={"event": "copilot_section_updated", "proposal_id": proposal_id, "section": section})
    return {
        "response": action.get("explanation") or "Section updated successfully.",
        "action": {"type": "update_section", "section": section},
    }
