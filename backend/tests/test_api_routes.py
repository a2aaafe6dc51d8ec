"""
test_api_routes.py — HTTP tests through FastAPI's TestClient.

The app runs on a fresh InMemoryProjectStore per test (dependency override) and
real HS256 tokens from create_access_token, so the auth guard is exercised too.

Tests cover:
  - auth: missing / invalid token
  - project CRUD and member-only visibility
  - progress cell / row edits, financials, history filter and grouping
  - domain errors mapped to HTTP (422 ValidationFailed, 404 ResolutionError)
  - template, unit and sharing endpoints
  - dashboard, backup export / import, report download
  - assistant chat and budget preview with stubbed LLM calls
"""

import json

import pytest
from fastapi.testclient import TestClient

from app.api.deps import create_access_token, get_project_store
from app.main import app
from app.services import llm_client
from app.services.project_store import InMemoryProjectStore

OWNER = {"Authorization": f"Bearer {create_access_token('owner-1', 'owner@obra.com.br')}"}
OTHER = {"Authorization": f"Bearer {create_access_token('user-2', 'fiscal@obra.com.br')}"}

NEW_PROJECT = {
    "name": "Residencial Teste",
    "cost_of_works": 200000.0,
    "housing_units": [{"id": "u1", "name": "Casa 01"}, {"id": "u2", "name": "Casa 02"}],
    "pls_data": [
        {"id": "1", "name": "Fundação", "subItems": [{"id": "1.1", "name": "Sapata", "incidence": 50}]},
        {"id": "2", "name": "Estrutura", "subItems": [{"id": "2.1", "name": "Pilares", "incidence": 50}]},
    ],
}


@pytest.fixture
def client(tmp_path, monkeypatch):
    store = InMemoryProjectStore()
    app.dependency_overrides[get_project_store] = lambda: store
    monkeypatch.setattr("app.services.report_engine.DOWNLOAD_DIR", str(tmp_path))
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def project_id(client):
    response = client.post("/api/projects", json=NEW_PROJECT, headers=OWNER)
    assert response.status_code == 201
    return response.json()["id"]


# ===========================================================================
# Class 1: Auth and CRUD
# ===========================================================================

class TestAuthAndCrud:

    def test_missing_token(self, client):
        assert client.get("/api/projects").status_code == 401

    def test_invalid_token(self, client):
        response = client.get("/api/projects", headers={"Authorization": "Bearer nonsense"})
        assert response.status_code == 401

    def test_me(self, client):
        assert client.get("/api/me", headers=OWNER).json() == {"uid": "owner-1", "email": "owner@obra.com.br"}

    def test_create_and_list(self, client, project_id):
        projects = client.get("/api/projects", headers=OWNER).json()
        assert [p["id"] for p in projects] == [project_id]
        assert projects[0]["ownerId"] == "owner-1"
        assert projects[0]["progress"] == {"1.1": [0.0, 0.0], "2.1": [0.0, 0.0]}

    def test_invalid_draft_is_422_with_errors(self, client):
        response = client.post("/api/projects", json={"name": "", "cost_of_works": 0}, headers=OWNER)
        assert response.status_code == 422
        assert "name: required" in response.json()["errors"]

    def test_non_member_gets_404(self, client, project_id):
        assert client.get(f"/api/projects/{project_id}", headers=OTHER).status_code == 404

    def test_replace_project_keeps_identity(self, client, project_id):
        document = client.get(f"/api/projects/{project_id}", headers=OWNER).json()
        document["name"] = "Novo Nome"
        document["ownerId"] = "user-2"
        document["housing_units"] = document["housing_units"][:1]
        saved = client.put(f"/api/projects/{project_id}", json=document, headers=OWNER).json()
        assert saved["name"] == "Novo Nome"
        assert saved["ownerId"] == "owner-1"
        assert saved["progress"]["1.1"] == [0.0]

    def test_replace_project_cannot_rewrite_history(self, client, project_id):
        client.put(f"/api/projects/{project_id}/progress/1.1/u1", json={"value": 40}, headers=OWNER)
        document = client.get(f"/api/projects/{project_id}", headers=OWNER).json()
        assert len(document["history"]) == 1
        document["history"] = []
        document["progress"]["2.1"] = [90, 90]
        saved = client.put(f"/api/projects/{project_id}", json=document, headers=OWNER).json()
        assert saved["progress"]["2.1"] == [90.0, 90.0]
        assert [(e["itemId"], e["unitId"], e["newProgress"]) for e in saved["history"]] == [
            ("1.1", "u1", 40.0),
            ("2.1", "u1", 90.0),
            ("2.1", "u2", 90.0),
        ]
        stored = client.get(f"/api/projects/{project_id}/history", params={"q": "pilares"}, headers=OWNER).json()
        assert len(stored) == 2

    def test_delete_is_owner_only(self, client, project_id):
        client.get("/api/projects", headers=OTHER)
        client.post(f"/api/projects/{project_id}/members", json={"email": "fiscal@obra.com.br"}, headers=OWNER)
        assert client.delete(f"/api/projects/{project_id}", headers=OTHER).status_code == 403
        assert client.delete(f"/api/projects/{project_id}", headers=OWNER).status_code == 204
        assert client.get("/api/projects", headers=OWNER).json() == []


# ===========================================================================
# Class 2: Progress, financials and history
# ===========================================================================

class TestProgress:

    def test_cell_update_and_financials(self, client, project_id):
        response = client.put(f"/api/projects/{project_id}/progress/1.1/u1", json={"value": 100}, headers=OWNER)
        assert response.status_code == 200
        assert response.json()["progress"]["1.1"] == [100.0, 0.0]
        financials = client.get(f"/api/projects/{project_id}/financials", headers=OWNER).json()
        assert abs(financials["totalProgress"] - 25.0) < 1e-6
        assert abs(financials["totalReleased"] - 50000.0) < 0.01
        assert abs(financials["balanceToMeasure"] - 150000.0) < 0.01

    def test_unknown_unit_is_404(self, client, project_id):
        response = client.put(f"/api/projects/{project_id}/progress/1.1/ghost", json={"value": 10}, headers=OWNER)
        assert response.status_code == 404

    def test_row_update(self, client, project_id):
        response = client.put(f"/api/projects/{project_id}/progress/2.1", json={"values": [30, 130]}, headers=OWNER)
        assert response.json()["progress"]["2.1"] == [30.0, 100.0]

    def test_history_filter_and_grouping(self, client, project_id):
        client.put(f"/api/projects/{project_id}/progress/1.1/u1", json={"value": 10}, headers=OWNER)
        client.put(f"/api/projects/{project_id}/progress/2.1/u2", json={"value": 20}, headers=OWNER)
        history = client.get(f"/api/projects/{project_id}/history", headers=OWNER).json()
        assert len(history) == 2
        filtered = client.get(f"/api/projects/{project_id}/history", params={"q": "pilar"}, headers=OWNER).json()
        assert [e["itemName"] for e in filtered] == ["Pilares"]
        grouped = client.get(f"/api/projects/{project_id}/history", params={"grouped": True}, headers=OWNER).json()
        assert sum(len(v) for v in grouped.values()) == 2

    def test_snapshot(self, client, project_id):
        snap = client.get(f"/api/projects/{project_id}/snapshot", headers=OWNER).json()
        assert snap["unitCount"] == 2
        assert snap["balance"]["status"] == "balanced"


# ===========================================================================
# Class 3: Template, units, sharing
# ===========================================================================

class TestStructureEdits:

    def test_unbalanced_template_rejected(self, client, project_id):
        template = [{"id": "1", "name": "A", "subItems": [{"id": "1.1", "name": "x", "incidence": 40}]}]
        response = client.put(f"/api/projects/{project_id}/template", json={"template": template}, headers=OWNER)
        assert response.status_code == 422
        forced = client.put(f"/api/projects/{project_id}/template", json={"template": template, "force": True}, headers=OWNER)
        assert forced.status_code == 200
        balance = client.get(f"/api/projects/{project_id}/template/balance", headers=OWNER).json()
        assert balance["status"] == "invalid"

    def test_item_rename_and_id_change(self, client, project_id):
        response = client.patch(
            f"/api/projects/{project_id}/template/categories/1/items/1.1",
            json={"name": "Sapata corrida", "newId": "1.5"},
            headers=OWNER,
        )
        item = response.json()["pls_data"][0]["subItems"][0]
        assert (item["id"], item["name"]) == ("1.5", "Sapata corrida")
        assert "1.5" in response.json()["progress"]

    def test_add_category_and_item(self, client, project_id):
        client.post(f"/api/projects/{project_id}/template/categories", json={"name": "Cobertura"}, headers=OWNER)
        response = client.post(
            f"/api/projects/{project_id}/template/categories/3/items",
            json={"name": "Telhado", "incidence": 0},
            headers=OWNER,
        )
        assert response.status_code == 201
        assert response.json()["progress"]["3.1"] == [0.0, 0.0]

    def test_generate_rename_and_remove_units(self, client, project_id):
        response = client.post(f"/api/projects/{project_id}/units", json={"start": 3, "end": 4}, headers=OWNER)
        units = response.json()["housing_units"]
        assert [u["name"] for u in units] == ["Casa 01", "Casa 02", "Casa 03", "Casa 04"]
        renamed = client.patch(f"/api/projects/{project_id}/units/u1", json={"name": "Casa A"}, headers=OWNER)
        assert renamed.json()["housing_units"][0]["name"] == "Casa A"
        removed = client.delete(f"/api/projects/{project_id}/units/u2", headers=OWNER).json()
        assert len(removed["housing_units"]) == 3
        assert all(len(row) == 3 for row in removed["progress"].values())

    def test_units_request_needs_name_or_range(self, client, project_id):
        assert client.post(f"/api/projects/{project_id}/units", json={}, headers=OWNER).status_code == 422

    def test_sharing(self, client, project_id):
        assert client.post(
            f"/api/projects/{project_id}/members", json={"email": "nobody@x.com"}, headers=OWNER
        ).status_code == 404
        client.get("/api/projects", headers=OTHER)  # registers the profile
        added = client.post(f"/api/projects/{project_id}/members", json={"email": "FISCAL@obra.com.br"}, headers=OWNER)
        assert added.json()["uid"] == "user-2"
        assert client.get(f"/api/projects/{project_id}", headers=OTHER).status_code == 200
        members = client.get(f"/api/projects/{project_id}/members", headers=OTHER).json()
        assert {m["uid"] for m in members} == {"owner-1", "user-2"}
        assert client.delete(f"/api/projects/{project_id}/members/owner-1", headers=OWNER).status_code == 422
        assert client.delete(f"/api/projects/{project_id}/members/user-2", headers=OWNER).status_code == 204
        assert client.get(f"/api/projects/{project_id}", headers=OTHER).status_code == 404


# ===========================================================================
# Class 4: Dashboard, backups, reports
# ===========================================================================

class TestOutputs:

    def test_dashboard(self, client, project_id):
        client.put(f"/api/projects/{project_id}/progress/1.1/u1", json={"value": 100}, headers=OWNER)
        board = client.get("/api/dashboard", headers=OWNER).json()
        assert board["projects"][0]["isOwner"] is True
        assert abs(board["totalReleased"] - 50000.0) < 0.01
        assert abs(board["totalBalanceToMeasure"] - 150000.0) < 0.01

    def test_backup_export_and_import(self, client, project_id):
        response = client.get("/api/backup", headers=OWNER)
        assert "backup_pls_" in response.headers["content-disposition"]
        payload = response.content
        imported = client.post(
            "/api/backup/import", files={"file": ("backup.json", payload, "application/json")}, headers=OTHER,
        ).json()
        assert imported["imported"] == 1
        assert imported["projects"][0]["id"] != project_id
        assert imported["projects"][0]["ownerId"] == "user-2"

    def test_restore_rejects_invalid_file(self, client):
        response = client.post(
            "/api/backup/restore", files={"file": ("x.json", b'{"a": 1}', "application/json")}, headers=OWNER,
        )
        assert response.status_code == 422

    def test_json_report_download_is_archived(self, client, project_id):
        response = client.post(f"/api/projects/{project_id}/reports/json", json={"title": "Medição 1"}, headers=OWNER)
        assert response.status_code == 200
        assert json.loads(response.content)["reportTitle"] == "Medição 1"
        archive = client.get(f"/api/projects/{project_id}/reports/archive", headers=OWNER).json()
        assert archive[0]["format"] == "json"

    def test_unit_report(self, client, project_id):
        response = client.get(f"/api/projects/{project_id}/units/u1/report", headers=OWNER)
        assert json.loads(response.content)["unit"] == "Casa 01"


# ===========================================================================
# Class 5: LLM-backed endpoints (stubbed)
# ===========================================================================

class TestLlmEndpoints:

    def test_assistant_chat_applies_updates(self, client, project_id, monkeypatch):
        async def fake_tools(messages, tools, temperature=0.1):
            return {"content": "", "tool_calls": [{
                "name": "updateProgress",
                "arguments": {"updates": [{"serviceName": "Sapata", "unitNames": ["all"], "progress": 80}]},
            }]}

        monkeypatch.setattr(llm_client, "complete_with_tools", fake_tools)
        body = client.post(f"/api/projects/{project_id}/assistant/chat", json={"message": "sapata 80%"}, headers=OWNER).json()
        assert body["applied"] is True
        assert body["updatedPairs"] == 2
        stored = client.get(f"/api/projects/{project_id}", headers=OWNER).json()
        assert stored["progress"]["1.1"] == [80.0, 80.0]

    def test_budget_preview(self, client, fake_llm):
        fake_llm["text"] = json.dumps([
            {"id": "1", "name": "Fundação", "subItems": [{"id": "1.1", "name": "Sapata", "incidence": 100}]},
        ])
        response = client.post(
            "/api/ingestion/budget", files={"file": ("orcamento.csv", b"1;Sapata;100", "text/csv")}, headers=OWNER,
        )
        assert response.status_code == 200
        assert response.json()["balance"]["status"] == "balanced"

    def test_extraction_failure_is_502(self, client, fake_llm):
        fake_llm["text"] = "not json at all"
        response = client.post(
            "/api/ingestion/fre", files={"file": ("fre.txt", b"conteudo", "text/plain")}, headers=OWNER,
        )
        assert response.status_code == 502
        assert response.json()["kind"] == "extraction"

    def test_empty_upload_is_400(self, client):
        response = client.post("/api/ingestion/fre", files={"file": ("fre.txt", b"", "text/plain")}, headers=OWNER)
        assert response.status_code == 400


def test_health(client):
    body = client.get("/health").json()
    assert body["status"] == "active"
    assert body["store"] == "InMemoryProjectStore"
