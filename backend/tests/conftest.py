from __future__ import annotations

from typing import Any, Callable

import httpx
import pytest
from fastapi.testclient import TestClient

from grantwright.config import Settings
from grantwright.kv_store import InMemoryKeyValueStore
from grantwright.main import create_app
from grantwright.storage import InMemoryBlobStorage


class FakeOrchestrator:
    """Stands in for the Gemini orchestrator; every call is recorded in `calls`."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, dict[str, object]]] = []
        self.detected_section = "summary"
        self.rewritten_content: Any = "<p>Rewritten summary.</p>"
        self.copilot_text = "Happy to help with the proposal."
        self.drafted_proposal: dict[str, object] = {
            "title": "Green Corridors",
            "summary": "<p>Urban greening for climate resilience.</p>",
            "relevance": "<p>Aligned with the call priorities.</p>",
            "partners": [{"name": "Acme Research", "role": "Coordinator"}],
            "workPackages": [{"name": "Management", "description": "Coordination.", "deliverables": ["D1.1"]}],
            "budget": [
                {
                    "item": "Personnel",
                    "cost": 20000,
                    "breakdown": [{"subItem": "Researcher", "quantity": 2, "unitCost": 10000}],
                }
            ],
            "timeline": [{"phase": "Kick-off", "activities": ["Plan"], "startMonth": 1, "endMonth": 3}],
        }
        self.partner_profile: dict[str, object] = {
            "name": "Acme Research",
            "country": "Ireland",
            "keywords": ["climate", "cities"],
            "contactEmail": "info@acme.example",
        }

    def summarize_call(self, **kwargs: object) -> dict[str, object]:
        self.calls.append(("summarize_call", kwargs))
        return {"summary": "Call for urban climate projects.", "constraints": {"budget": "EUR 250,000", "duration": "24 months"}}

    def brainstorm_ideas(self, summary: str, constraints: dict[str, Any], user_prompt: str | None) -> list[dict[str, object]]:
        self.calls.append(("brainstorm_ideas", {"summary": summary, "constraints": constraints, "user_prompt": user_prompt}))
        return [{"title": "Green Corridors", "description": "Connect parks with planted streets."}]

    def assess_relevance(self, **kwargs: object) -> dict[str, object]:
        self.calls.append(("assess_relevance", kwargs))
        return {"score": "good", "justification": "Strong fit."}

    def draft_proposal(self, **kwargs: object) -> dict[str, object]:
        self.calls.append(("draft_proposal", kwargs))
        return dict(self.drafted_proposal)

    def detect_section(self, instruction: str, available_sections: list[str]) -> str:
        self.calls.append(("detect_section", {"instruction": instruction, "available_sections": available_sections}))
        return self.detected_section

    def rewrite_section(self, **kwargs: object) -> Any:
        self.calls.append(("rewrite_section", kwargs))
        return self.rewritten_content

    def draft_section(self, **kwargs: object) -> dict[str, object]:
        self.calls.append(("draft_section", kwargs))
        return {"title": kwargs["section_title"], "content": "<p>Drafted section.</p>"}

    def copilot_reply(self, **kwargs: object) -> str:
        self.calls.append(("copilot_reply", kwargs))
        return self.copilot_text

    def extract_partner_profile(self, pdf_bytes: bytes) -> dict[str, object]:
        self.calls.append(("extract_partner_profile", {"size": len(pdf_bytes)}))
        return dict(self.partner_profile)


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        store_backend="memory",
        storage_backend="memory",
        supabase_url="http://supabase.test",
        supabase_service_role_key="",
        gemini_api_key="test-key",
        cors_origins="http://localhost:5173",
    )


@pytest.fixture
def orchestrator() -> FakeOrchestrator:
    return FakeOrchestrator()


@pytest.fixture
def store() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


@pytest.fixture
def blob_storage() -> InMemoryBlobStorage:
    return InMemoryBlobStorage(public_base_url="http://supabase.test")


@pytest.fixture
def http_requests() -> list[httpx.Request]:
    return []


@pytest.fixture
def http_handler() -> Callable[[httpx.Request], httpx.Response]:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html><body>Funding call text</body></html>")

    return handler


@pytest.fixture
def http_client(http_requests: list[httpx.Request], http_handler) -> httpx.Client:
    def recording_handler(request: httpx.Request) -> httpx.Response:
        http_requests.append(request)
        return http_handler(request)

    client = httpx.Client(transport=httpx.MockTransport(recording_handler))
    yield client
    client.close()


@pytest.fixture
def client(test_settings, store, blob_storage, orchestrator, http_client) -> TestClient:
    app = create_app(
        test_settings,
        store=store,
        blob_storage=blob_storage,
        orchestrator=orchestrator,
        http_client=http_client,
    )
    with TestClient(app) as test_client:
        yield test_client
