from __future__ import annotations

import io
import zipfile

import pytest


def _create_proposal(client, **overrides: object) -> dict[str, object]:
    payload: dict[str, object] = {
        "title": "Green Corridors",
        "summary": "<p>Original summary.</p>",
        "relevance": "<p>Relevant.</p>",
        "budget": [{"item": "Personnel", "cost": 1000}],
        "settings": {"customParams": [{"key": "Max Budget", "value": "EUR 250,000"}]},
    }
    payload.update(overrides)
    response = client.post("/proposals", json=payload)
    assert response.status_code == 200
    return response.json()


def test_proposal_crud_round_trip(client) -> None:
    created = _create_proposal(client)
    proposal_id = created["id"]
    assert proposal_id.startswith("proposal-")
    assert created["savedAt"] == created["updatedAt"]

    listed = client.get("/proposals").json()["proposals"]
    assert [item["id"] for item in listed] == [proposal_id]

    updated = client.put(f"/proposals/{proposal_id}", json={"title": "Blue Corridors", "id": "proposal-hijack"})
    assert updated.status_code == 200
    assert updated.json()["title"] == "Blue Corridors"
    assert updated.json()["id"] == proposal_id
    assert updated.json()["summary"] == "<p>Original summary.</p>"

    assert client.delete(f"/proposals/{proposal_id}").json() == {"success": True}
    assert client.get(f"/proposals/{proposal_id}").status_code == 404


def test_missing_proposal_returns_not_found(client) -> None:
    response = client.get("/proposals/proposal-missing")
    assert response.status_code == 404
    assert response.json() == {"detail": "Proposal not found"}
    assert client.put("/proposals/proposal-missing", json={"title": "x"}).status_code == 404


def test_saved_proposal_cannot_take_a_foreign_key(client) -> None:
    partner = client.post("/partners", json={"name": "Acme"}).json()

    created = client.post("/proposals", json={"id": f"partner:{partner['id']}", "title": "Hijack"}).json()
    plain = client.post("/proposals", json={"id": "my-draft", "title": "Plain"}).json()
    kept = client.post("/proposals", json={"id": "proposal-123-keep", "title": "Kept"}).json()

    assert created["id"].startswith("proposal-")
    assert plain["id"].startswith("proposal-")
    assert kept["id"] == "proposal-123-keep"
    assert client.get(f"/partners/{partner['id']}").json()["name"] == "Acme"
    listed = {item["id"] for item in client.get("/proposals").json()["proposals"]}
    assert listed == {created["id"], plain["id"], kept["id"]}


def test_invalid_proposal_payload_is_rejected(client) -> None:
    response = client.post("/proposals", json={"title": "Bad", "annexes": [{"type": "passport", "title": "P"}]})
    assert response.status_code == 422
    assert response.json()["detail"][0]["loc"][0] == "annexes"


def test_narrative_fields_are_normalized_on_save(client) -> None:
    created = _create_proposal(
        client,
        objectives=["Reduce heat islands", "Engage residents"],
        dynamicSections={"excellence": {"content": "<p>Excellent.</p>"}},
    )
    assert created["objectives"] == "<ul><li>Reduce heat islands</li><li>Engage residents</li></ul>"
    assert created["dynamic_sections"] == {"excellence": "<p>Excellent.</p>"}
    assert "dynamicSections" not in created


def test_ai_edit_rewrites_only_detected_section(client, orchestrator) -> None:
    proposal_id = _create_proposal(client)["id"]

    response = client.post(f"/proposals/{proposal_id}/ai-edit", json={"instruction": "Make the summary punchier"})

    assert response.status_code == 200
    payload = response.json()
    assert payload["editedSection"] == "summary"
    assert payload["proposal"]["summary"] == "<p>Rewritten summary.</p>"
    assert payload["proposal"]["relevance"] == "<p>Relevant.</p>"
    stored = client.get(f"/proposals/{proposal_id}").json()
    assert stored["summary"] == "<p>Rewritten summary.</p>"

    rewrite_call = next(kwargs for name, kwargs in orchestrator.calls if name == "rewrite_section")
    assert rewrite_call["budget_limit"] == "EUR 250,000"
    assert rewrite_call["current_content"] == "<p>Original summary.</p>"


def test_ai_edit_can_replace_structured_budget(client, orchestrator) -> None:
    proposal_id = _create_proposal(client)["id"]
    orchestrator.detected_section = "budget"
    orchestrator.rewritten_content = [
        {"item": "Travel", "cost": 500, "breakdown": [{"subItem": "Flights", "quantity": 2, "unitCost": 250}]}
    ]

    response = client.post(f"/proposals/{proposal_id}/ai-edit", json={"instruction": "Move budget to travel"})

    assert response.status_code == 200
    budget = response.json()["proposal"]["budget"]
    assert budget[0]["item"] == "Travel"
    assert budget[0]["breakdown"][0]["total"] == 500


def test_ai_edit_rejects_unknown_section(client, orchestrator) -> None:
    proposal_id = _create_proposal(client)["id"]
    orchestrator.detected_section = "budgetJustification"

    response = client.post(f"/proposals/{proposal_id}/ai-edit", json={"instruction": "Justify the budget"})

    assert response.status_code == 422
    assert "budgetJustification" in response.json()["detail"]
    assert not any(name == "rewrite_section" for name, _ in orchestrator.calls)
    assert client.get(f"/proposals/{proposal_id}").json()["summary"] == "<p>Original summary.</p>"


def test_ai_edit_missing_proposal_returns_not_found(client) -> None:
    response = client.post("/proposals/proposal-missing/ai-edit", json={"instruction": "Anything"})
    assert response.status_code == 404


def test_annex_upload_stores_file_and_patches_proposal(client, blob_storage) -> None:
    proposal_id = _create_proposal(client)["id"]

    response = client.post(
        f"/proposals/{proposal_id}/annexes",
        files={"file": ("cv jane.pdf", b"%PDF-cv", "application/pdf")},
        data={"type": "cv", "title": "CV Jane", "partnerName": "Acme"},
    )

    assert response.status_code == 200
    annex = response.json()["annex"]
    assert annex["fileName"] == "cv jane.pdf"
    assert annex["partnerName"] == "Acme"
    assert annex["filePath"].startswith(f"{proposal_id}/")
    assert annex["filePath"].endswith("_cv_jane.pdf")
    assert annex["fileUrl"] == f"http://supabase.test/storage/v1/object/public/proposal-annexes/{annex['filePath']}"
    assert blob_storage.download(bucket="proposal-annexes", path=annex["filePath"]) == b"%PDF-cv"
    stored = client.get(f"/proposals/{proposal_id}").json()
    assert [item["id"] for item in stored["annexes"]] == [annex["id"]]


def test_annex_upload_validation(client) -> None:
    proposal_id = _create_proposal(client)["id"]

    bad_type = client.post(
        f"/proposals/{proposal_id}/annexes",
        files={"file": ("x.pdf", b"%PDF", "application/pdf")},
        data={"type": "passport", "title": "Passport"},
    )
    empty = client.post(
        f"/proposals/{proposal_id}/annexes",
        files={"file": ("x.pdf", b"", "application/pdf")},
        data={"type": "cv", "title": "CV"},
    )
    missing = client.post(
        "/proposals/proposal-missing/annexes",
        files={"file": ("x.pdf", b"%PDF", "application/pdf")},
        data={"type": "cv", "title": "CV"},
    )

    assert bad_type.status_code == 422
    assert empty.status_code == 400
    assert empty.json() == {"detail": "No file uploaded"}
    assert missing.status_code == 404


def test_annex_delete_removes_blob_and_record_entry(client, blob_storage) -> None:
    proposal_id = _create_proposal(client)["id"]
    annex = client.post(
        f"/proposals/{proposal_id}/annexes",
        files={"file": ("decl.pdf", b"%PDF-decl", "application/pdf")},
        data={"type": "declaration", "title": "Declaration"},
    ).json()["annex"]

    response = client.delete(f"/proposals/{proposal_id}/annexes/{annex['id']}")

    assert response.status_code == 200
    assert response.json()["proposal"]["annexes"] == []
    assert blob_storage.content_type(bucket="proposal-annexes", path=annex["filePath"]) is None
    assert client.delete(f"/proposals/{proposal_id}/annexes/{annex['id']}").status_code == 404


def test_export_stored_proposal_as_docx(client) -> None:
    proposal_id = _create_proposal(client)["id"]

    response = client.get(f"/proposals/{proposal_id}/export")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith(
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
    )
    assert 'filename="Green_Corridors_' in response.headers["content-disposition"]
    assert response.content[:2] == b"PK"


def test_export_full_package_bundles_uploaded_annexes(client, http_requests) -> None:
    proposal_id = _create_proposal(client)["id"]
    client.post(
        f"/proposals/{proposal_id}/annexes",
        files={"file": ("cv.pdf", b"%PDF-cv", "application/pdf")},
        data={"type": "cv", "title": "CV Jane"},
    )

    response = client.get(f"/proposals/{proposal_id}/export", params={"type": "zip_full"})

    assert response.status_code == 200
    assert response.headers["content-type"] == "application/zip"
    assert response.headers["x-export-warnings"] == "0"
    with zipfile.ZipFile(io.BytesIO(response.content)) as archive:
        names = archive.namelist()
        assert archive.read("Green_Corridors/Annexes/CVs/cv.pdf") == b"%PDF-cv"
    assert "Green_Corridors/Annexes/CVs/PLACEHOLDER_CV.txt" not in names
    assert len([name for name in names if name.startswith("Green_Corridors/Annexes/") and "PLACEHOLDER_" in name]) == 3
    assert http_requests == []


@pytest.mark.parametrize("kind", ["zip_annexes", "zip_proposal"])
def test_export_inline_proposal(client, kind: str) -> None:
    response = client.post(
        "/export",
        json={
            "proposal": {
                "title": "Inline Draft",
                "summary": "<p>Draft</p>",
                "annexes": [{"id": "a1", "type": "declaration", "title": "Decl", "fileUrl": "blob:http://localhost/x"}],
            },
            "type": kind,
            "includePlaceholders": True,
        },
    )

    assert response.status_code == 200
    suffix = "annexes_only" if kind == "zip_annexes" else "proposal"
    assert f'filename="Inline_Draft_{suffix}_' in response.headers["content-disposition"]
    assert response.headers["x-export-warnings"] == ("1" if kind == "zip_annexes" else "0")


def test_export_rejects_unknown_type(client) -> None:
    proposal_id = _create_proposal(client)["id"]
    assert client.get(f"/proposals/{proposal_id}/export", params={"type": "pdf"}).status_code == 422
