"""
Integration tests for the HTTP gateway.

Runs the FastAPI app against a Server using the local platform backend.

Tests cover:
- Anonymous session CRUD
- Sign-in migration into a provisioned tenant
- Tenant status and settings database info
- Error mapping
"""

import pytest
from fastapi.testclient import TestClient

from console.gateway.app import create_app
from dbaas.cvdb_server.config import ServerConfig, StorageConfig
from dbaas.cvdb_server.server import Server

SESSION = {"X-Session-ID": "sess-1"}
PRINCIPAL = {"X-Principal-ID": "user_42abc"}
SIGNED_IN = {**SESSION, **PRINCIPAL}


class TestGateway:
    """Tests for the cvdb gateway."""

    @pytest.fixture
    def client(self, data_dir):
        config = ServerConfig(storage=StorageConfig(data_dir=data_dir, wal_mode=False))
        app = create_app(server=Server(config))
        with TestClient(app) as client:
            yield client

    def create_job(self, client, headers, company="Acme"):
        response = client.post(
            "/api/v1/jobs",
            json={"company": company, "role": "Engineer", "startDate": "2020-01-01"},
            headers=headers,
        )
        assert response.status_code == 201
        return response.json()

    def create_highlight(self, client, headers, **fields):
        body = {
            "type": "achievement",
            "title": "Shipped",
            "content": "Shipped the thing",
            "startDate": "2020-06-01",
        }
        body.update(fields)
        response = client.post("/api/v1/highlights", json=body, headers=headers)
        assert response.status_code == 201
        return response.json()

    def test_health(self, client):
        assert client.get("/health").json()["status"] == "healthy"

    def test_requires_session_or_principal(self, client):
        response = client.get("/api/v1/jobs")

        assert response.status_code == 401
        assert response.json()["error_code"] == "NOT_AUTHENTICATED"

    def test_anonymous_crud(self, client):
        job = self.create_job(client, SESSION)
        highlight = self.create_highlight(client, SESSION, jobId=job["id"], domains=["fintech"])

        jobs = client.get("/api/v1/jobs", headers=SESSION).json()
        assert [(j["id"], j["highlightCount"]) for j in jobs] == [(job["id"], 1)]

        patched = client.patch(
            f"/api/v1/jobs/{job['id']}", json={"company": "NewCo", "endDate": ""}, headers=SESSION
        ).json()
        assert patched["company"] == "NewCo"
        assert patched["endDate"] is None

        toggled = client.post(
            f"/api/v1/highlights/{highlight['id']}/toggle-visibility", headers=SESSION
        ).json()
        assert toggled["isHidden"] is True

        assert client.delete(f"/api/v1/jobs/{job['id']}", headers=SESSION).status_code == 204
        orphan = client.get(f"/api/v1/highlights/{highlight['id']}", headers=SESSION).json()
        assert orphan["jobId"] is None

    def test_sessions_are_separate(self, client):
        self.create_job(client, SESSION)

        assert client.get("/api/v1/jobs", headers={"X-Session-ID": "sess-2"}).json() == []

    def test_search(self, client):
        self.create_highlight(client, SESSION, title="A", domains=["fintech"])
        self.create_highlight(client, SESSION, title="B", type="project", domains=["fintech"])
        self.create_highlight(client, SESSION, title="C", domains=["health"])

        response = client.post(
            "/api/v1/search",
            json={"types": ["achievement"], "domains": ["fintech"]},
            headers=SESSION,
        )

        assert [h["title"] for h in response.json()] == ["A"]
        assert client.get("/api/v1/domains", headers=SESSION).json() == ["fintech", "health"]

    def test_validation_errors(self, client):
        response = client.post(
            "/api/v1/jobs",
            json={"company": "Acme", "role": "Eng", "startDate": "2020-05-01", "endDate": "2020-01-01"},
            headers=SESSION,
        )

        assert response.status_code == 422

    def test_patch_end_date_before_stored_start(self, client):
        job = self.create_job(client, SESSION)

        response = client.patch(
            f"/api/v1/jobs/{job['id']}", json={"endDate": "2019-01-01"}, headers=SESSION
        )

        assert response.status_code == 400
        assert client.get(f"/api/v1/jobs/{job['id']}", headers=SESSION).json()["endDate"] is None

    def test_not_found(self, client):
        response = client.patch("/api/v1/jobs/missing", json={"company": "X"}, headers=SESSION)

        assert response.status_code == 404
        assert response.json()["details"]["resource_id"] == "missing"

    def test_storage_failures_map_alike_in_both_modes(self, client):
        """A highlight pointing at a missing job fails the same way for sessions and principals."""
        client.post("/api/v1/tenant/provision", headers=PRINCIPAL)
        body = {
            "jobId": "ghost",
            "type": "project",
            "title": "T",
            "content": "C",
            "startDate": "2020-02-01",
        }

        local = client.post("/api/v1/highlights", json=body, headers=SESSION)
        remote = client.post("/api/v1/highlights", json=body, headers=PRINCIPAL)

        assert local.status_code == remote.status_code == 502
        assert local.json()["error_code"] == "LOCAL_STORAGE_ERROR"
        assert remote.json()["error_code"] == "TENANT_CONNECTION_ERROR"

    def test_import_reports_record_errors(self, client):
        backup = {
            "version": "1.0",
            "jobs": [{"id": "j1", "company": "Acme", "role": "Eng", "startDate": "2020-01-01"}],
            "highlights": [
                {"id": "h1", "jobId": "j1", "type": "project", "title": "T", "content": "C",
                 "startDate": "2020-02-01"},
                {"id": "h2", "jobId": "ghost", "type": "project", "title": "T", "content": "C",
                 "startDate": "2020-02-01"},
            ],
        }

        result = client.post("/api/v1/import", json=backup, headers=SESSION).json()

        assert result["success"] is False
        assert result["jobsImported"] == 1
        assert result["highlightsImported"] == 1
        assert len(result["errors"]) == 1

    def test_import_keeps_valid_records_beside_malformed_ones(self, client):
        backup = {
            "version": "1.0",
            "jobs": [{"id": "j1", "company": "Acme", "role": "Eng", "startDate": "2020-01-01"}],
            "highlights": [
                {"id": "h1", "jobId": "j1", "type": "project", "title": "T", "content": "C",
                 "startDate": "2020-02-01"},
                {"id": "h2", "type": "bogus", "title": "T", "content": "C",
                 "startDate": "2020-02-01"},
            ],
        }

        response = client.post("/api/v1/import", json=backup, headers=SESSION)

        assert response.status_code == 200
        result = response.json()
        assert result["success"] is False
        assert (result["jobsImported"], result["highlightsImported"]) == (1, 1)
        assert len(result["errors"]) == 1
        assert "h2" in result["errors"][0]
        jobs = client.get("/api/v1/jobs", headers=SESSION).json()
        assert [(j["id"], j["highlightCount"]) for j in jobs] == [("j1", 1)]

    def test_malformed_import(self, client):
        response = client.post("/api/v1/import", json={"version": "1.0"}, headers=SESSION)

        assert response.status_code == 400

    def test_tenant_routes_require_principal(self, client):
        assert client.get("/api/v1/tenant/status", headers=SESSION).status_code == 401

    def test_principal_without_tenant(self, client):
        response = client.get("/api/v1/jobs", headers=PRINCIPAL)

        assert response.status_code == 404
        assert client.get("/api/v1/tenant/status", headers=PRINCIPAL).json() == {"status": None}

    def test_sign_in_migration(self, client):
        """Anonymous data moves to the principal's tenant on sign-in."""
        job = self.create_job(client, SESSION)
        self.create_highlight(client, SESSION, jobId=job["id"])
        self.create_highlight(client, SESSION)
        client.put("/api/v1/profile", json={"fullName": "Ada"}, headers=SESSION)

        response = client.post("/api/v1/session/migrate", headers=SIGNED_IN)

        assert response.status_code == 200
        body = response.json()
        assert body["step"] == "done"
        assert body["result"]["jobsMigrated"] == 1
        assert body["result"]["highlightsMigrated"] == 2

        remote_jobs = client.get("/api/v1/jobs", headers=SIGNED_IN).json()
        assert [j["id"] for j in remote_jobs] == [job["id"]]
        assert client.get("/api/v1/profile", headers=SIGNED_IN).json() == {"fullName": "Ada"}
        assert client.get("/api/v1/jobs", headers=SESSION).json() == []

        again = client.post("/api/v1/session/migrate", headers=SIGNED_IN).json()
        assert again["result"] is None

        state = client.get("/api/v1/session/migration", headers=SESSION).json()
        assert state == {"step": "done", "error": None, "hasRun": True}

    def test_tenant_database_info(self, client):
        provisioned = client.post("/api/v1/tenant/provision", headers=PRINCIPAL).json()
        assert provisioned["status"] == "ready"

        info = client.get("/api/v1/tenant/database", headers=PRINCIPAL).json()

        assert info["dbUrl"] == provisioned["dbUrl"]
        assert info["roCredential"]
        assert "rwCredential" not in info
        assert client.get("/api/v1/tenant/status", headers=PRINCIPAL).json() == {
            "status": "ready"
        }

    def test_migrate_requires_session(self, client):
        response = client.post("/api/v1/session/migrate", headers=PRINCIPAL)

        assert response.status_code == 400

    def test_dismiss(self, client):
        response = client.post("/api/v1/session/migration/dismiss", headers=SESSION)

        assert response.json() == {"dismissed": True}
