from __future__ import annotations

import html
import re
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

AnnexType = Literal["declaration", "accession_form", "letter_of_intent", "cv", "generated_letter"]
MANDATORY_ANNEX_TYPES: tuple[str, ...] = ("declaration", "accession_form", "letter_of_intent", "cv")

LEGACY_SECTIONS: tuple[tuple[str, str], ...] = (
    ("introduction", "Introduction"),
    ("relevance", "Relevance"),
    ("objectives", "Objectives"),
    ("methodology", "Methodology"),
    ("workPlan", "Work Plan"),
    ("expectedResults", "Expected Results"),
    ("impact", "Impact"),
    ("innovation", "Innovation"),
    ("sustainability", "Sustainability"),
    ("consortium", "Consortium"),
    ("riskManagement", "Risk Management"),
    ("dissemination", "Dissemination & Communication"),
)
NARRATIVE_FIELDS: tuple[str, ...] = (
    "summary",
    "relevance",
    "methods",
    "introduction",
    "objectives",
    "methodology",
    "expectedResults",
    "impact",
    "innovation",
    "sustainability",
    "consortium",
    "workPlan",
    "riskManagement",
    "dissemination",
)
STRUCTURED_FIELDS: tuple[str, ...] = ("partners", "workPackages", "milestones", "risks", "budget", "timeline")

_PHASE_MONTHS_PATTERN = re.compile(r"\bM(?:onths?)?\s*(\d+)\s*[-–]\s*M?(?:onth)?\s*(\d+)", re.IGNORECASE)
_CURRENCY_NOISE_PATTERN = re.compile(r"[^0-9,.\-]")
_THOUSANDS_COMMA_PATTERN = re.compile(r"^-?\d{1,3}(?:,\d{3})+$")


def coerce_amount(value: Any) -> float:
    """Best-effort numeric parse for LLM-produced money and quantity values."""
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)
    text = _CURRENCY_NOISE_PATTERN.sub("", str(value))
    if not text:
        return 0.0
    if "," in text and "." in text:
        if text.rfind(",") > text.rfind("."):
            text = text.replace(".", "").replace(",", ".")
        else:
            text = text.replace(",", "")
    elif "," in text:
        text = text.replace(",", "") if _THOUSANDS_COMMA_PATTERN.match(text) else text.replace(",", ".")
    try:
        return float(text)
    except ValueError:
        return 0.0


def coerce_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def coerce_rich_text(value: Any) -> str | None:
    """Normalize model output for a narrative field into an HTML string."""
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float)):
        return coerce_text(value)
    if isinstance(value, list):
        items = [coerce_rich_text(item) for item in value]
        rendered = "".join(f"<li>{item}</li>" for item in items if item)
        return f"<ul>{rendered}</ul>" if rendered else ""
    if isinstance(value, dict):
        if isinstance(value.get("content"), str):
            return value["content"]
        paragraphs = []
        for key, item in value.items():
            label = html.escape(humanize_key(str(key)))
            paragraphs.append(f"<p><strong>{label}:</strong> {coerce_rich_text(item) or ''}</p>")
        return "".join(paragraphs)
    return str(value)


def humanize_key(key: str) -> str:
    words = key.replace("_", " ").strip()
    return re.sub(r"\b\w", lambda match: match.group(0).upper(), words)


def _as_list(value: Any) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    if isinstance(value, tuple):
        return list(value)
    return [value]


class RecordModel(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    def to_record(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class BudgetBreakdown(RecordModel):
    sub_item: str = Field(default="", alias="subItem")
    quantity: float = 0
    unit_cost: float = Field(default=0, alias="unitCost")
    total: float = 0

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return {"subItem": coerce_text(data)}
        normalized = dict(data)
        if "subItem" not in normalized:
            for legacy_key in ("sub_item", "item", "name", "description"):
                if legacy_key in normalized:
                    normalized["subItem"] = normalized.pop(legacy_key)
                    break
        if "unitCost" not in normalized and "unit_cost" in normalized:
            normalized["unitCost"] = normalized.pop("unit_cost")
        normalized["subItem"] = coerce_text(normalized.get("subItem"))
        normalized["quantity"] = coerce_amount(normalized.get("quantity"))
        normalized["unitCost"] = coerce_amount(normalized.get("unitCost"))
        normalized.pop("total", None)
        return normalized

    @model_validator(mode="after")
    def _compute_total(self) -> BudgetBreakdown:
        self.total = self.quantity * self.unit_cost
        return self


class BudgetItem(RecordModel):
    item: str = ""
    cost: float = 0
    description: str | None = None
    breakdown: list[BudgetBreakdown] | None = None

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return {"item": coerce_text(data)}
        normalized = dict(data)
        if not normalized.get("item") and "category" in normalized:
            normalized["item"] = normalized.pop("category")
        normalized["item"] = coerce_text(normalized.get("item"))
        normalized["cost"] = coerce_amount(normalized.get("cost"))
        if normalized.get("description") is not None:
            normalized["description"] = coerce_text(normalized["description"])
        if "breakdown" in normalized and normalized["breakdown"] is not None:
            normalized["breakdown"] = _as_list(normalized["breakdown"])
        return normalized


class WorkPackage(RecordModel):
    name: str = ""
    description: str = ""
    deliverables: list[str] = Field(default_factory=list)

    @field_validator("name", "description", mode="before")
    @classmethod
    def _text(cls, value: Any) -> str:
        return coerce_text(value)

    @field_validator("deliverables", mode="before")
    @classmethod
    def _deliverables(cls, value: Any) -> list[str]:
        deliverables: list[str] = []
        for item in _as_list(value):
            if isinstance(item, dict):
                item = item.get("title") or item.get("name") or item.get("description")
            text = coerce_text(item).strip()
            if text:
                deliverables.append(text)
        return deliverables


class Milestone(RecordModel):
    milestone: str = ""
    work_package: str = Field(default="", alias="workPackage")
    due_date: str = Field(default="", alias="dueDate")

    @field_validator("milestone", "work_package", "due_date", mode="before")
    @classmethod
    def _text(cls, value: Any) -> str:
        return coerce_text(value)


class Risk(RecordModel):
    risk: str = ""
    likelihood: str = ""
    impact: str = ""
    mitigation: str = ""

    @field_validator("risk", "likelihood", "impact", "mitigation", mode="before")
    @classmethod
    def _text(cls, value: Any) -> str:
        return coerce_text(value)


class TimelinePhase(RecordModel):
    phase: str = ""
    activities: list[str] = Field(default_factory=list)
    start_month: int | None = Field(default=None, alias="startMonth")
    end_month: int | None = Field(default=None, alias="endMonth")

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return {"phase": coerce_text(data)}
        normalized = dict(data)
        normalized["phase"] = coerce_text(normalized.get("phase"))
        activities = _as_list(normalized.get("activities"))
        if not activities and normalized.get("activity"):
            activities = [normalized.pop("activity")]
        normalized["activities"] = [coerce_text(item) for item in activities if coerce_text(item).strip()]
        for field_key, field_name in (("startMonth", "start_month"), ("endMonth", "end_month")):
            raw = normalized.get(field_key, normalized.pop(field_name, None))
            normalized[field_key] = int(coerce_amount(raw)) if raw not in (None, "") else None
        if normalized["startMonth"] is None or normalized["endMonth"] is None:
            match = _PHASE_MONTHS_PATTERN.search(normalized["phase"])
            if match:
                normalized["startMonth"] = normalized["startMonth"] or int(match.group(1))
                normalized["endMonth"] = normalized["endMonth"] or int(match.group(2))
        return normalized


class Partner(RecordModel):
    id: str | None = None
    name: str = ""
    role: str | None = None
    organisation_id: str | None = Field(default=None, alias="organisationId")
    country: str | None = None
    city: str | None = None
    description: str | None = None
    experience: str | None = None
    organization_type: str | None = Field(default=None, alias="organizationType")
    website: str | None = None
    contact_email: str | None = Field(default=None, alias="contactEmail")
    keywords: list[str] | None = None
    logo_url: str | None = Field(default=None, alias="logoUrl")
    pdf_url: str | None = Field(default=None, alias="pdfUrl")
    created_at: str | None = Field(default=None, alias="createdAt")

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, data: Any) -> Any:
        if isinstance(data, str):
            return {"name": data}
        if isinstance(data, dict) and isinstance(data.get("keywords"), str):
            data = {**data, "keywords": [word.strip() for word in data["keywords"].split(",") if word.strip()]}
        return data

    @field_validator("name", mode="before")
    @classmethod
    def _name(cls, value: Any) -> str:
        return coerce_text(value)


class AssociatedPartner(RecordModel):
    id: str | None = None
    name: str = ""
    logo_url: str | None = Field(default=None, alias="logoUrl")
    contact_person: str | None = Field(default=None, alias="contactPerson")
    role: str | None = None
    email: str | None = None
    phone: str | None = None
    address: str | None = None
    template_url: str | None = Field(default=None, alias="templateUrl")
    template_path: str | None = Field(default=None, alias="templatePath")
    created_at: str | None = Field(default=None, alias="createdAt")


class Annex(RecordModel):
    id: str | None = None
    type: AnnexType
    title: str = ""
    file_name: str | None = Field(default=None, alias="fileName")
    file_url: str | None = Field(default=None, alias="fileUrl")
    file_path: str | None = Field(default=None, alias="filePath")
    uploaded_at: str | None = Field(default=None, alias="uploadedAt")
    partner_id: str | None = Field(default=None, alias="partnerId")
    partner_name: str | None = Field(default=None, alias="partnerName")
    associated_partner_id: str | None = Field(default=None, alias="associatedPartnerId")


class CustomParam(RecordModel):
    key: str = ""
    value: str = ""

    @field_validator("key", "value", mode="before")
    @classmethod
    def _text(cls, value: Any) -> str:
        return coerce_text(value)


class ProposalSettings(RecordModel):
    currency: str = "EUR"
    source_url: str = Field(default="", alias="sourceUrl")
    custom_params: list[CustomParam] = Field(default_factory=list, alias="customParams")

    def param(self, key: str) -> str | None:
        for item in self.custom_params:
            if item.key == key and item.value:
                return item.value
        return None


class CustomSection(RecordModel):
    id: str | None = None
    title: str = ""
    content: str = ""

    @field_validator("content", mode="before")
    @classmethod
    def _content(cls, value: Any) -> str:
        return coerce_rich_text(value) or ""


class FundingSchemeSection(RecordModel):
    key: str
    label: str = ""
    type: str | None = None
    char_limit: int | None = Field(default=None, alias="charLimit")
    word_limit: int | None = Field(default=None, alias="wordLimit")
    page_limit: float | None = Field(default=None, alias="pageLimit")
    mandatory: bool = False
    order: int = 0
    description: str | None = None
    ai_prompt: str | None = Field(default=None, alias="aiPrompt")
    subsections: list[FundingSchemeSection] | None = None


class FundingSchemeTemplate(RecordModel):
    schema_version: str = Field(default="1.0", alias="schemaVersion")
    sections: list[FundingSchemeSection] = Field(default_factory=list)
    metadata: dict[str, Any] | None = None


class FundingScheme(RecordModel):
    id: str | None = None
    name: str = ""
    description: str | None = None
    logo_url: str | None = None
    template_json: FundingSchemeTemplate = Field(default_factory=FundingSchemeTemplate)
    is_default: bool = False
    is_active: bool = True
    created_at: str | None = None
    updated_at: str | None = None

    def ordered_sections(self) -> list[FundingSchemeSection]:
        return sorted(self.template_json.sections, key=lambda section: section.order)


class Proposal(RecordModel):
    id: str | None = None
    title: str | None = None
    final_project_name: str | None = Field(default=None, alias="finalProjectName")
    project_acronym: str | None = Field(default=None, alias="projectAcronym")

    summary: str | None = None
    introduction: str | None = None
    relevance: str | None = None
    objectives: str | None = None
    methods: str | None = None
    methodology: str | None = None
    work_plan: str | None = Field(default=None, alias="workPlan")
    expected_results: str | None = Field(default=None, alias="expectedResults")
    impact: str | None = None
    innovation: str | None = None
    sustainability: str | None = None
    consortium: str | None = None
    risk_management: str | None = Field(default=None, alias="riskManagement")
    dissemination: str | None = None

    funding_scheme_id: str | None = None
    funding_scheme: FundingScheme | None = None
    dynamic_sections: dict[str, str] = Field(default_factory=dict)
    custom_sections: list[CustomSection] = Field(default_factory=list, alias="customSections")

    partners: list[Partner] = Field(default_factory=list)
    work_packages: list[WorkPackage] = Field(default_factory=list, alias="workPackages")
    milestones: list[Milestone] = Field(default_factory=list)
    risks: list[Risk] = Field(default_factory=list)
    budget: list[BudgetItem] = Field(default_factory=list)
    timeline: list[TimelinePhase] = Field(default_factory=list)
    annexes: list[Annex] = Field(default_factory=list)
    associated_partner_ids: list[str] = Field(default_factory=list, alias="associatedPartnerIds")

    selected_idea: dict[str, Any] | None = Field(default=None, alias="selectedIdea")
    generated_at: str | None = Field(default=None, alias="generatedAt")
    saved_at: str | None = Field(default=None, alias="savedAt")
    updated_at: str | None = Field(default=None, alias="updatedAt")
    settings: ProposalSettings | None = None

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        normalized = dict(data)
        if "dynamicSections" in normalized:
            legacy = normalized.pop("dynamicSections")
            if not normalized.get("dynamic_sections"):
                normalized["dynamic_sections"] = legacy
        for field_key in NARRATIVE_FIELDS:
            if field_key in normalized:
                normalized[field_key] = coerce_rich_text(normalized[field_key])
        dynamic = normalized.get("dynamic_sections")
        if isinstance(dynamic, dict):
            normalized["dynamic_sections"] = {
                str(key): coerce_rich_text(value) or "" for key, value in dynamic.items()
            }
        elif dynamic is None:
            normalized.pop("dynamic_sections", None)
        for field_key in (*STRUCTURED_FIELDS, "annexes", "customSections", "associatedPartnerIds"):
            if field_key in normalized:
                normalized[field_key] = _as_list(normalized[field_key])
        if isinstance(normalized.get("title"), (int, float)):
            normalized["title"] = coerce_text(normalized["title"])
        return normalized

    def narrative_section_keys(self) -> list[str]:
        keys = list(self.dynamic_sections)
        if self.funding_scheme is not None:
            for section in self.funding_scheme.ordered_sections():
                if section.key not in keys:
                    keys.append(section.key)
        return keys


class Idea(RecordModel):
    title: str = ""
    description: str = ""


class RelevanceAssessment(RecordModel):
    score: Literal["Good", "Fair", "Poor"] = "Fair"
    justification: str = ""

    @field_validator("score", mode="before")
    @classmethod
    def _score(cls, value: Any) -> str:
        text = coerce_text(value).strip().capitalize()
        return text if text in {"Good", "Fair", "Poor"} else "Fair"
