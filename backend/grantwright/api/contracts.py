from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ApiModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class AnalyzeUrlRequest(ApiModel):
    url: str = Field(..., min_length=1, max_length=2048)
    user_prompt: str | None = Field(default=None, alias="userPrompt", max_length=20000)


class AnalyzeRelevanceRequest(ApiModel):
    url: str = Field(default="", max_length=2048)
    constraints: dict[str, Any] = Field(default_factory=dict)
    ideas: list[dict[str, Any]] = Field(default_factory=list)
    user_prompt: str | None = Field(default=None, alias="userPrompt", max_length=20000)


class GenerateProposalRequest(ApiModel):
    idea: dict[str, Any]
    summary: str = ""
    constraints: dict[str, Any] = Field(default_factory=dict)
    selected_partners: list[str] = Field(default_factory=list, alias="selectedPartners")
    user_prompt: str | None = Field(default=None, alias="userPrompt", max_length=20000)
    funding_scheme_id: str | None = Field(default=None, alias="fundingSchemeId")


class AiEditRequest(ApiModel):
    instruction: str = Field(..., min_length=1, max_length=4000)


class GenerateSectionRequest(ApiModel):
    section_title: str = Field(..., min_length=1, max_length=200, alias="sectionTitle")
    proposal_context: str = Field(default="", alias="proposalContext")
    existing_sections: list[str] = Field(default_factory=list, alias="existingSections")


class CopilotMessage(ApiModel):
    role: str = "user"
    content: str = ""


class CopilotRequest(ApiModel):
    proposal_id: str = Field(..., min_length=1, alias="proposalId")
    message: str = Field(..., min_length=1, max_length=8000)
    history: list[CopilotMessage] = Field(default_factory=list)


class ExportKind(str, Enum):
    DOCX = "docx"
    ZIP_FULL = "zip_full"
    ZIP_ANNEXES = "zip_annexes"
    ZIP_PROPOSAL = "zip_proposal"


class ExportRequest(ApiModel):
    proposal: dict[str, Any]
    type: ExportKind = ExportKind.DOCX
    include_placeholders: bool = Field(default=True, alias="includePlaceholders")
