from __future__ import annotations

from fastapi import APIRouter, HTTPException

from grantwright.api.contracts import (
    AnalyzeRelevanceRequest,
    AnalyzeUrlRequest,
    CopilotRequest,
    GenerateProposalRequest,
    GenerateSectionRequest,
)
from grantwright.api.services.runtime import ServiceContainer, require_record
from grantwright.generation import (
    analyze_call,
    assess_relevance,
    copilot_turn,
    draft_custom_section,
    generate_proposal,
)


def build_generation_router(*, services: ServiceContainer) -> APIRouter:
    router = APIRouter()

    @router.post("/analyze-url")
    def analyze_url(payload: AnalyzeUrlRequest) -> dict[str, object]:
        return analyze_call(
            orchestrator=services.orchestrator,
            http_client=services.http_client,
            settings=services.settings,
            url=payload.url,
            user_prompt=payload.user_prompt,
        )

    @router.post("/analyze-relevance")
    def analyze_relevance(payload: AnalyzeRelevanceRequest) -> dict[str, object]:
        return assess_relevance(
            orchestrator=services.orchestrator,
            http_client=services.http_client,
            settings=services.settings,
            url=payload.url,
            constraints=payload.constraints,
            ideas=payload.ideas,
            user_prompt=payload.user_prompt,
        )

    @router.post("/generate-proposal")
    def generate_proposal_endpoint(payload: GenerateProposalRequest) -> dict[str, object]:
        try:
            return generate_proposal(
                orchestrator=services.orchestrator,
                proposals=services.proposals,
                partners=services.partners,
                funding_schemes=services.funding_schemes,
                idea=payload.idea,
                summary=payload.summary,
                constraints=payload.constraints,
                selected_partner_ids=payload.selected_partners,
                user_prompt=payload.user_prompt,
                funding_scheme_id=payload.funding_scheme_id,
            )
        except LookupError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc

    @router.post("/generate-section")
    def generate_section(payload: GenerateSectionRequest) -> dict[str, object]:
        return draft_custom_section(
            orchestrator=services.orchestrator,
            section_title=payload.section_title,
            proposal_context=payload.proposal_context,
            existing_sections=payload.existing_sections,
        )

    @router.post("/proposal-copilot")
    def proposal_copilot(payload: CopilotRequest) -> dict[str, object]:
        result = copilot_turn(
            orchestrator=services.orchestrator,
            proposals=services.proposals,
            proposal_id=payload.proposal_id,
            message=payload.message,
            history=[message.model_dump() for message in payload.history],
        )
        return require_record(result, "Proposal not found")

    return router
