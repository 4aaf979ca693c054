from __future__ import annotations

import json
from typing import Any

from grantwright.models import FundingScheme

JSON_ONLY = "Return ONLY valid JSON, no other text."

LEGACY_OUTPUT_SECTIONS = (
    ("summary", "Executive summary"),
    ("relevance", "Why this project is relevant"),
    ("impact", "Expected impact"),
    ("methods", "Methodology"),
    ("introduction", "Introduction"),
    ("objectives", "Project objectives"),
    ("methodology", "Detailed methodology"),
    ("expectedResults", "Expected results"),
    ("innovation", "Innovation aspects"),
    ("sustainability", "Sustainability plan"),
    ("consortium", "Consortium description"),
    ("workPlan", "Work plan"),
    ("riskManagement", "Risk management"),
    ("dissemination", "Dissemination and communication strategy"),
)


def _constraint(constraints: dict[str, Any], key: str) -> str:
    value = constraints.get(key)
    return str(value) if value not in (None, "") else "Not specified"


def call_summary_prompt(*, source_url: str, source_content: str, user_prompt: str | None, text_mode: bool) -> str:
    output = (
        "Return JSON:\n"
        "{\n"
        '  "summary": "Summary of the opportunity",\n'
        '  "constraints": {\n'
        '    "partners": "e.g., 3-5 partners required",\n'
        '    "budget": "250000",\n'
        '    "duration": "e.g., 24-36 months"\n'
        "  }\n"
        "}\n\n"
        f"{JSON_ONLY}"
    )
    if text_mode:
        return (
            "Analyze this funding call text or project description.\n\n"
            f"TEXT CONTENT:\n{user_prompt or ''}\n\n"
            "TASK: Extract key information.\n"
            'CRITICAL: If a budget limit is mentioned (e.g. "budget 250k", "max 250,000"), '
            'extract ONLY the numeric value (e.g. "250000").\n\n'
            "Extract:\n"
            "1. A summary of the opportunity\n"
            "2. Partner requirements\n"
            "3. Numeric budget limit (use ONLY the number if found)\n"
            "4. Project duration\n\n"
            f"{output}"
        )
    requirements = f"USER SPECIFIC REQUIREMENTS: {user_prompt}\n" if user_prompt else ""
    return (
        "Analyze this funding call and extract key information.\n\n"
        f"URL: {source_url}\n"
        f"URL CONTENT: {source_content}\n"
        f"{requirements}\n"
        "TASK: Parse the funding call AND the user requirements.\n"
        "CRITICAL: User requirements take precedence. If the user specifies a budget limit, use that exactly.\n\n"
        "Extract:\n"
        "1. A summary of the funding opportunity\n"
        "2. Partner requirements\n"
        '3. Numeric budget limit (extract ONLY the number if possible, e.g. "250000")\n'
        "4. Project duration\n\n"
        f"{output}"
    )


def idea_brainstorm_prompt(summary: str, constraints: dict[str, Any], user_prompt: str | None) -> str:
    requirements = ""
    task = "TASK: Generate 6-10 innovative project ideas based on the context summary."
    if user_prompt:
        requirements = (
            f"MANDATORY USER REQUIREMENTS - HIGHEST PRIORITY:\n{user_prompt}\n\n"
            "CRITICAL: ALL project ideas MUST directly address these user requirements.\n\n"
        )
        task = "TASK: Generate 6-10 high-quality project ideas that DIRECTLY address the user requirements above."
    return (
        "You are a creative brainstorming assistant.\n\n"
        f"{requirements}"
        f"CONTEXT SUMMARY: {summary}\n\n"
        "CONSTRAINTS:\n"
        f"- Partners: {_constraint(constraints, 'partners')}\n"
        f"- Budget: {_constraint(constraints, 'budget')}\n"
        f"- Duration: {_constraint(constraints, 'duration')}\n\n"
        f"{task}\n\n"
        "Each idea must be feasible within the constraints, innovative and impactful.\n\n"
        "OUTPUT FORMAT:\n"
        '{\n  "ideas": [\n    {"title": "Project idea title", "description": "Detailed description (2-3 sentences)"}\n  ]\n}\n\n'
        f"{JSON_ONLY}"
    )


def relevance_prompt(
    *,
    source_url: str,
    source_content: str,
    constraints: dict[str, Any],
    ideas: list[dict[str, Any]],
    user_prompt: str | None,
) -> str:
    criterion = (
        f"USER REQUIREMENTS (PRIMARY CRITERION):\n{user_prompt}\n\n" if user_prompt else ""
    )
    return (
        "Validate these project ideas against the source content"
        f"{' and the user requirements' if user_prompt else ''}.\n\n"
        f"{criterion}"
        f"SOURCE URL: {source_url}\n"
        f"SOURCE CONTENT: {source_content}\n\n"
        f"PROJECT IDEAS:\n{json.dumps(ideas, indent=2, ensure_ascii=False)}\n\n"
        f"CONSTRAINTS:\n{json.dumps(constraints, indent=2, ensure_ascii=False)}\n\n"
        "Scoring:\n"
        '- "Good": ideas strongly align\n'
        '- "Fair": ideas partially align\n'
        '- "Poor": ideas do not align\n\n'
        'OUTPUT FORMAT (JSON ONLY):\n{\n  "score": "Good" | "Fair" | "Poor",\n  "justification": "..."\n}\n\n'
        f"{JSON_ONLY}"
    )


def proposal_prompt(
    *,
    idea: dict[str, Any],
    summary: str,
    constraints: dict[str, Any],
    partners: list[dict[str, Any]],
    user_prompt: str | None,
    funding_scheme: FundingScheme | None,
) -> str:
    target_budget = _constraint(constraints, "budget")
    partner_info = ""
    if partners:
        lines = [
            f"- {partner.get('name')} ({partner.get('country') or 'Country not specified'}): "
            f"{partner.get('description') or 'No description'}"
            for partner in partners
        ]
        partner_info = "\nCONSORTIUM PARTNERS:\n" + "\n".join(lines) + "\n"
    requirements = (
        f"\nMANDATORY USER REQUIREMENTS - MUST BE ADDRESSED IN ALL SECTIONS:\n{user_prompt}\n" if user_prompt else ""
    )

    scheme_instructions = ""
    if funding_scheme is not None:
        section_lines = []
        dynamic_lines = []
        for section in funding_scheme.ordered_sections():
            limit = f" [Limit: {section.char_limit} chars]" if section.char_limit else ""
            section_lines.append(f'- {section.label} (Key: "{section.key}"): {section.description or ""}{limit}')
            dynamic_lines.append(f'    "{section.key}": "<p>Content for {section.label}...</p>"')
        scheme_instructions = (
            f"\nFUNDING SCHEME TEMPLATE ({funding_scheme.name}):\n"
            'The proposal MUST follow this structure. Generate content for these sections inside a "dynamicSections" '
            "object, keyed as below:\n" + "\n".join(section_lines) + "\n"
        )
        narrative_format = (
            '  "summary": "<p>Executive summary...</p>",\n'
            '  "dynamicSections": {\n' + ",\n".join(dynamic_lines) + "\n  },\n"
        )
    else:
        narrative_format = "".join(f'  "{key}": "<p>{hint}...</p>",\n' for key, hint in LEGACY_OUTPUT_SECTIONS)

    return (
        "You are an expert EU funding proposal writer.\n\n"
        "SELECTED PROJECT IDEA:\n"
        f"Title: {idea.get('title', '')}\n"
        f"Description: {idea.get('description', '')}\n\n"
        f"CONTEXT: {summary}\n\n"
        "### HARD PROJECT CONSTRAINTS (NO EXCEPTIONS) ###\n"
        f"- EXACT TARGET BUDGET: €{target_budget}\n"
        f"- PARTNERS: {_constraint(constraints, 'partners')}\n"
        f"- DURATION: {_constraint(constraints, 'duration')}\n"
        f"{partner_info}{requirements}{scheme_instructions}\n"
        "### BUDGET ADHERENCE RULES (MANDATORY):\n"
        f"1. THE TOTAL SUM OF ALL 'cost' VALUES IN THE 'budget' ARRAY MUST BE EXACTLY €{target_budget}.\n"
        "2. If you include sub-items with quantity and unitCost, the 'total' for that sub-item MUST be "
        "(quantity * unitCost).\n"
        "3. The 'cost' for a category MUST be the sum of its sub-item 'total' values.\n"
        f"4. THE OVERALL TOTAL (sum of all category 'cost' fields) MUST EQUAL EXACTLY €{target_budget}.\n"
        "5. Perform a final tally before answering.\n\n"
        "### OUTPUT FORMAT (JSON ONLY):\n"
        "{\n"
        f'  "title": {json.dumps(idea.get("title", ""), ensure_ascii=False)},\n'
        f"{narrative_format}"
        '  "partners": [{"name": "Partner Name", "role": "Role in project"}],\n'
        '  "workPackages": [{"name": "WP1: Work Package Name", "description": "Description", '
        '"deliverables": ["Deliverable 1"]}],\n'
        '  "milestones": [{"milestone": "Milestone description", "workPackage": "WP1", "dueDate": "Month 6"}],\n'
        '  "risks": [{"risk": "Risk description", "likelihood": "Low|Medium|High", "impact": "Low|Medium|High", '
        '"mitigation": "Mitigation strategy"}],\n'
        '  "budget": [{"category": "Project Management", "cost": 50000, "breakdown": '
        '[{"subItem": "Coordination", "quantity": 1, "unitCost": 30000, "total": 30000}, '
        '{"subItem": "Meetings", "quantity": 4, "unitCost": 5000, "total": 20000}]}],\n'
        '  "timeline": [{"phase": "M1-M6", "activity": "Research & Design"}]\n'
        "}\n\n"
        f"{JSON_ONLY}"
    )


def section_detection_prompt(instruction: str, available_sections: list[str]) -> str:
    options = "\n".join(f"- {section}" for section in available_sections)
    return (
        f'Given this user instruction: "{instruction}"\n\n'
        "Which ONE section of the proposal should be edited?\n\n"
        f"Available sections:\n{options}\n\n"
        'Return JSON: { "section": "sectionName" }\n\n'
        f"{JSON_ONLY}"
    )


def section_edit_prompt(
    *,
    summary: str | None,
    budget_limit: str,
    section: str,
    current_content: Any,
    instruction: str,
) -> str:
    return (
        "You are editing a specific section of a funding proposal.\n\n"
        f"PROPOSAL SUMMARY: {summary or ''}\n"
        "MANDATORY CONSTRAINTS:\n"
        f"- Max Budget: {budget_limit}\n\n"
        f"SECTION TO EDIT: {section}\n"
        f"CURRENT CONTENT: {json.dumps(current_content, ensure_ascii=False)}\n\n"
        f"USER INSTRUCTION: {instruction}\n\n"
        "TASK: Generate the NEW content for this section only.\n"
        "CRITICAL: You MUST STRICTLY respect the mandatory constraints (especially the Max Budget). "
        "If you are editing the budget section, keep the same item structure and ensure the total stays within "
        "the limit. Narrative sections use HTML (<p>, <strong>, <ul>, <li>).\n\n"
        'Return JSON: { "content": ... }\n\n'
        f"{JSON_ONLY}"
    )


def new_section_prompt(*, section_title: str, proposal_context: str, existing_sections: list[str]) -> str:
    return (
        "You are generating a new section for a research/project proposal.\n\n"
        f'SECTION TO CREATE: "{section_title}"\n\n'
        f"PROPOSAL CONTEXT:\n{proposal_context}\n\n"
        f"EXISTING SECTIONS:\n{', '.join(existing_sections)}\n\n"
        f'Generate comprehensive, professional content for the "{section_title}" section.\n\n'
        "Requirements:\n"
        "- Write 3-5 well-structured paragraphs\n"
        "- Use HTML formatting (<p>, <strong>, <ul>, <li> tags)\n"
        "- Use professional, academic language\n"
        "- Complement existing sections without repeating content\n\n"
        "Return JSON:\n"
        f'{{\n  "title": {json.dumps(section_title, ensure_ascii=False)},\n'
        '  "content": "<p>HTML formatted content here...</p>"\n}\n\n'
        f"{JSON_ONLY}"
    )


def copilot_system_prompt(context: dict[str, Any], section_keys: list[str]) -> str:
    return (
        f"You are a proposal assistant. Context: {json.dumps(context, ensure_ascii=False)}\n\n"
        'IMPORTANT: If the user asks to "redo", "rewrite", "update", or "change" a specific section, '
        "you MUST perform the update.\n\n"
        "To perform an update, your response MUST be a JSON object with this structure:\n"
        "{\n"
        '  "action": "update_section",\n'
        '  "section": "section_name_key",\n'
        '  "content": "The new content for the section...",\n'
        '  "explanation": "I have updated the section as requested."\n'
        "}\n\n"
        f'The "section_name_key" must be one of: {", ".join(section_keys)}.\n'
        'The "content" is the full new content for that section (HTML for narrative sections, '
        "a JSON array for structured sections).\n"
        'The "explanation" is shown to the user.\n\n'
        "If the user is just asking a question, reply with normal text (not JSON)."
    )


COPILOT_ACKNOWLEDGEMENT = (
    "I understand. I will answer questions normally, but if asked to update a section, "
    "I will output the specific JSON format to trigger the update."
)

PARTNER_EXTRACTION_PROMPT = (
    "Extract partner organization information from the attached PDF file.\n\n"
    "Return ONLY a valid JSON object:\n"
    "{\n"
    '  "name": "organization name",\n'
    '  "organisationId": "OID/PIC number if available",\n'
    '  "description": "brief summary",\n'
    '  "keywords": ["keyword1", "keyword2"],\n'
    '  "experience": "relevant experience",\n'
    '  "country": "country",\n'
    '  "organizationType": "SME, University, NGO, etc",\n'
    '  "website": "URL or null",\n'
    '  "contactEmail": "email or null"\n'
    "}"
)
