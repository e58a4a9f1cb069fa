"""Tests for the status dashboard API."""

import tempfile
from pathlib import Path

import pytest
from starlette.testclient import TestClient

from issue_orchestrator.core import state as state_mod
from issue_orchestrator.web.app import create_app


@pytest.fixture
def web_env():
    """A state file with one issue per interesting status."""
    with tempfile.TemporaryDirectory() as tmp:
        state_file = Path(tmp) / "orchestrator.json"
        state = state_mod.init_state()

        done = state_mod.get_or_create(state, 1, "Setup database")
        done.branch = "feat/1-setup-database"
        state_mod.mark_completed(done, pr_number=42)
        state_mod.mark_failed(state_mod.get_or_create(state, 2, "Build API"), "Verification failed at test")
        state_mod.mark_split(state_mod.get_or_create(state, 3, "Rewrite UI"), [4, 5])
        state_mod.get_or_create(state, 4, "UI shell")
        state_mod.save_state(state, state_file)

        yield TestClient(create_app(state_file)), state_file


class TestDashboardAPI:
    def test_index_returns_html(self, web_env):
        client, _ = web_env
        resp = client.get("/")
        assert resp.status_code == 200
        assert "Issue Orchestrator" in resp.text

    def test_status(self, web_env):
        client, _ = web_env
        data = client.get("/api/status").json()
        assert data["counts"] == {"pending": 1, "in_progress": 0, "completed": 1, "failed": 1, "split": 1}
        assert data["total"] == 4
        assert data["progress_pct"] == 25.0
        assert data["started_at"]

    def test_list_issues(self, web_env):
        client, _ = web_env
        issues = client.get("/api/issues").json()
        assert [i["number"] for i in issues] == [1, 2, 3, 4]
        assert issues[0]["pr_number"] == 42
        assert issues[2]["sub_issues"] == [4, 5]

    def test_filter_by_status(self, web_env):
        client, _ = web_env
        issues = client.get("/api/issues?status=failed").json()
        assert [i["number"] for i in issues] == [2]
        assert issues[0]["error"] == "Verification failed at test"

    def test_get_issue(self, web_env):
        client, _ = web_env
        issue = client.get("/api/issues/1").json()
        assert issue["title"] == "Setup database"
        assert issue["branch"] == "feat/1-setup-database"
        assert issue["error"] is None

    def test_unknown_issue(self, web_env):
        client, _ = web_env
        assert client.get("/api/issues/999").status_code == 404

    def test_reads_fresh_state_each_request(self, web_env):
        client, state_file = web_env
        state = state_mod.load_state(state_file)
        state_mod.mark_completed(state.issues[2], pr_number=43)
        state_mod.save_state(state, state_file)

        assert client.get("/api/issues/2").json()["status"] == "completed"
        assert client.get("/api/status").json()["counts"]["completed"] == 2

    def test_never_writes_state(self, web_env):
        client, state_file = web_env
        before = state_file.read_text()
        client.get("/api/status")
        client.get("/api/issues")
        assert state_file.read_text() == before


def test_missing_state_file():
    with tempfile.TemporaryDirectory() as tmp:
        client = TestClient(create_app(Path(tmp) / "missing.json"))
        assert client.get("/api/status").json()["counts"] is None
        assert client.get("/api/issues").json() == []
        assert client.get("/api/issues/1").status_code == 404
