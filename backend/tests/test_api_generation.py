from __future__ import annotations

import json

import httpx
import pytest

from grantwright.gemini_runtime import QUOTA_EXCEEDED_MESSAGE, GeminiQuotaError, GeminiRuntimeError
from grantwright.generation import TEXT_MODE_PLACEHOLDER_URL


def test_analyze_url_fetches_call_page_and_brainstorms(client, orchestrator, http_requests) -> None:
    response = client.post(
        "/analyze-url",
        json={"url": "https://calls.example.org/call-1", "userPrompt": "Focus on cities"},
    )

    assert response.status_code == 200
    payload = response.json()
    assert payload["summary"] == "Call for urban climate projects."
    assert payload["constraints"]["budget"] == "EUR 250,000"
    assert payload["ideas"][0]["title"] == "Green Corridors"
    assert [str(request.url) for request in http_requests] == ["https://calls.example.org/call-1"]
    summarize_call = orchestrator.calls[0][1]
    assert "Funding call text" in summarize_call["source_content"]
    assert summarize_call["text_mode"] is False


def test_analyze_url_in_text_mode_skips_fetch(client, orchestrator, http_requests) -> None:
    response = client.post("/analyze-url", json={"url": TEXT_MODE_PLACEHOLDER_URL, "userPrompt": "Pasted call text"})

    assert response.status_code == 200
    assert http_requests == []
    assert orchestrator.calls[0][1]["text_mode"] is True


def _unavailable(request: httpx.Request) -> httpx.Response:
    return httpx.Response(503)


@pytest.mark.parametrize("http_handler", [_unavailable])
def test_unreachable_call_page_is_analyzed_without_content(client, orchestrator) -> None:
    response = client.post("/analyze-url", json={"url": "https://calls.example.org/down"})

    assert response.status_code == 200
    assert orchestrator.calls[0][1]["source_content"] == ""


def test_analyze_relevance_normalizes_score(client) -> None:
    response = client.post(
        "/analyze-relevance",
        json={"url": TEXT_MODE_PLACEHOLDER_URL, "constraints": {}, "ideas": [{"title": "Idea"}]},
    )

    assert response.status_code == 200
    assert response.json()["score"] == "Good"
    assert response.json()["justification"] == "Strong fit."


def test_generate_proposal_persists_record_with_constraint_params(client, orchestrator) -> None:
    partner = client.post("/partners", json={"name": "Acme Research", "country": "Ireland"}).json()

    response = client.post(
        "/generate-proposal",
        json={
            "idea": {"title": "Green Corridors", "description": "Planted streets"},
            "summary": "Call summary",
            "constraints": {"budget": "EUR 250,000", "duration": "24 months"},
            "selectedPartners": [partner["id"], "partner-missing"],
        },
    )

    assert response.status_code == 200
    proposal = response.json()
    assert proposal["id"].startswith("proposal-")
    assert proposal["selectedIdea"]["title"] == "Green Corridors"
    assert proposal["settings"]["customParams"] == [
        {"key": "Max Budget", "value": "EUR 250,000"},
        {"key": "Duration", "value": "24 months"},
    ]
    assert proposal["budget"][0]["breakdown"][0]["total"] == 20000
    assert client.get(f"/proposals/{proposal['id']}").json()["title"] == "Green Corridors"
    draft_call = next(kwargs for name, kwargs in orchestrator.calls if name == "draft_proposal")
    assert [item["id"] for item in draft_call["partners"]] == [partner["id"]]
    assert draft_call["funding_scheme"] is None


def test_generate_proposal_embeds_funding_scheme(client, orchestrator) -> None:
    scheme = client.post(
        "/funding-schemes",
        json={
            "name": "Horizon Pilot",
            "template_json": {"sections": [{"key": "excellence", "label": "1. Excellence", "order": 1}]},
        },
    ).json()
    orchestrator.drafted_proposal = {
        "title": "Scheme Draft",
        "dynamicSections": {"excellence": "<p>Excellent work.</p>"},
    }

    response = client.post(
        "/generate-proposal",
        json={"idea": {"title": "Idea"}, "fundingSchemeId": scheme["id"]},
    )

    assert response.status_code == 200
    proposal = response.json()
    assert proposal["funding_scheme_id"] == scheme["id"]
    assert proposal["funding_scheme"]["name"] == "Horizon Pilot"
    assert proposal["dynamic_sections"] == {"excellence": "<p>Excellent work.</p>"}


def test_generate_proposal_with_unknown_scheme_is_not_found(client) -> None:
    response = client.post("/generate-proposal", json={"idea": {"title": "Idea"}, "fundingSchemeId": "missing"})
    assert response.status_code == 404


def test_malformed_generated_proposal_is_bad_gateway(client, orchestrator) -> None:
    orchestrator.drafted_proposal = {"title": "Broken", "annexes": [{"type": "unknown"}]}

    response = client.post("/generate-proposal", json={"idea": {"title": "Idea"}})

    assert response.status_code == 502
    assert client.get("/proposals").json()["proposals"] == []


def test_quota_errors_map_to_too_many_requests(client, orchestrator, monkeypatch: pytest.MonkeyPatch) -> None:
    def exhausted(**kwargs):
        raise GeminiQuotaError(QUOTA_EXCEEDED_MESSAGE)

    monkeypatch.setattr(orchestrator, "summarize_call", exhausted)

    response = client.post("/analyze-url", json={"url": TEXT_MODE_PLACEHOLDER_URL})

    assert response.status_code == 429
    assert response.json() == {"detail": QUOTA_EXCEEDED_MESSAGE}


def test_other_model_errors_map_to_bad_gateway(client, orchestrator, monkeypatch: pytest.MonkeyPatch) -> None:
    def failing(**kwargs):
        raise GeminiRuntimeError("Gemini response was not valid JSON.")

    monkeypatch.setattr(orchestrator, "draft_section", failing)

    response = client.post("/generate-section", json={"sectionTitle": "Ethics"})

    assert response.status_code == 502
    assert response.json()["detail"] == "Gemini response was not valid JSON."


def test_generate_section_returns_title_and_html(client, orchestrator) -> None:
    response = client.post(
        "/generate-section",
        json={"sectionTitle": "Ethics", "proposalContext": "Green Corridors", "existingSections": ["Summary"]},
    )

    assert response.status_code == 200
    assert response.json() == {"title": "Ethics", "content": "<p>Drafted section.</p>"}
    assert orchestrator.calls[-1][1]["existing_sections"] == ["Summary"]


def _saved_proposal(client) -> str:
    response = client.post(
        "/proposals",
        json={"title": "Green Corridors", "summary": "<p>Old summary.</p>", "relevance": "<p>Relevant.</p>"},
    )
    return response.json()["id"]


def test_copilot_plain_reply_does_not_modify_proposal(client, orchestrator) -> None:
    proposal_id = _saved_proposal(client)

    response = client.post(
        "/proposal-copilot",
        json={
            "proposalId": proposal_id,
            "message": "What is weak here?",
            "history": [{"role": "user", "content": "Hi"}, {"role": "assistant", "content": "Hello"}],
        },
    )

    assert response.status_code == 200
    assert response.json() == {"response": "Happy to help with the proposal."}
    copilot_call = orchestrator.calls[-1][1]
    assert copilot_call["history"] == [{"role": "user", "content": "Hi"}, {"role": "assistant", "content": "Hello"}]
    assert "summary" in copilot_call["section_keys"]


def test_copilot_update_action_replaces_section(client, orchestrator) -> None:
    proposal_id = _saved_proposal(client)
    orchestrator.copilot_text = "```json\n" + json.dumps(
        {
            "action": "update_section",
            "section": "summary",
            "content": "<p>Sharper summary.</p>",
            "explanation": "I tightened the summary.",
        }
    ) + "\n```"

    response = client.post("/proposal-copilot", json={"proposalId": proposal_id, "message": "Tighten the summary"})

    assert response.status_code == 200
    assert response.json() == {
        "response": "I tightened the summary.",
        "action": {"type": "update_section", "section": "summary"},
    }
    stored = client.get(f"/proposals/{proposal_id}").json()
    assert stored["summary"] == "<p>Sharper summary.</p>"
    assert stored["relevance"] == "<p>Relevant.</p>"


def test_copilot_update_for_unknown_section_is_declined(client, orchestrator) -> None:
    proposal_id = _saved_proposal(client)
    orchestrator.copilot_text = json.dumps(
        {"action": "update_section", "section": "appendixZ", "content": "<p>Nope</p>"}
    )

    response = client.post("/proposal-copilot", json={"proposalId": proposal_id, "message": "Add appendix"})

    assert response.status_code == 200
    assert "action" not in response.json()
    assert "appendixZ" in response.json()["response"]
    assert client.get(f"/proposals/{proposal_id}").json()["summary"] == "<p>Old summary.</p>"


def test_copilot_missing_proposal_is_not_found(client) -> None:
    response = client.post("/proposal-copilot", json={"proposalId": "proposal-missing", "message": "Hi"})
    assert response.status_code == 404
