"""Tests for the devcontrol HTTP API."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from devcontrol.config.settings import Settings
from devcontrol.endpoint import server
from devcontrol.endpoint.server import create_app
from devcontrol.gateway.executor import ExecOutcome
from devcontrol.gateway.gateway import CommandGateway
from tests.conftest import ADMIN_TOKEN, VIEWER_TOKEN, FakeExecutor

ADMIN = {"Authorization": f"Bearer {ADMIN_TOKEN}"}
VIEWER = {"Authorization": f"Bearer {VIEWER_TOKEN}"}


@pytest.fixture
def client(settings: Settings, gateway: CommandGateway) -> TestClient:
    """A test client with the fake-executor gateway injected."""
    return TestClient(create_app(settings=settings, gateway=gateway))


class TestHealthEndpoint:
    def test_health_needs_no_token(self, client: TestClient) -> None:
        resp = client.get("/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "ok"
        assert data["enabled"] is True


class TestAuthentication:
    def test_missing_token(self, client: TestClient, fake_executor: FakeExecutor) -> None:
        resp = client.get("/containers")
        assert resp.status_code == 401
        assert fake_executor.calls == []

    def test_unknown_token(self, client: TestClient, fake_executor: FakeExecutor) -> None:
        resp = client.get("/containers", headers={"Authorization": "Bearer nope"})
        assert resp.status_code == 401
        assert fake_executor.calls == []

    def test_missing_capability(self, client: TestClient, fake_executor: FakeExecutor) -> None:
        resp = client.post(
            "/containers/manage", json={"action": "start", "container": "web"}, headers=VIEWER
        )
        assert resp.status_code == 403
        assert fake_executor.calls == []

    def test_viewer_cannot_backup(self, client: TestClient, fake_executor: FakeExecutor) -> None:
        resp = client.post("/backup", json={"action": "backup"}, headers=VIEWER)
        assert resp.status_code == 403
        assert fake_executor.calls == []


class TestDisabled:
    def test_disabled_returns_503(self, settings: Settings, gateway: CommandGateway) -> None:
        settings.enabled = False
        client = TestClient(create_app(settings=settings, gateway=gateway))
        resp = client.get("/containers", headers=ADMIN)
        assert resp.status_code == 503
        assert client.get("/health").json()["enabled"] is False


class TestManageContainer:
    def test_start_success(self, client: TestClient, fake_executor: FakeExecutor) -> None:
        fake_executor.outcomes.append(ExecOutcome(0, "web-01"))
        resp = client.post(
            "/containers/manage", json={"action": "start", "container": "web-01"}, headers=ADMIN
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["success"] is True
        assert data["output"] == "web-01"
        assert data["action"] == "start"
        assert data["container"] == "web-01"
        assert fake_executor.argvs == [["docker", "start", "web-01"]]

    def test_invalid_name_rejected(self, client: TestClient, fake_executor: FakeExecutor) -> None:
        resp = client.post(
            "/containers/manage", json={"action": "restart", "container": "../etc"}, headers=ADMIN
        )
        assert resp.status_code == 400
        data = resp.json()
        assert data["success"] is False
        assert data["message"]
        assert fake_executor.calls == []

    def test_invalid_action_rejected(self, client: TestClient, fake_executor: FakeExecutor) -> None:
        resp = client.post(
            "/containers/manage", json={"action": "rm", "container": "web"}, headers=ADMIN
        )
        assert resp.status_code == 400
        assert resp.json()["success"] is False
        assert fake_executor.calls == []

    def test_missing_field(self, client: TestClient, fake_executor: FakeExecutor) -> None:
        resp = client.post("/containers/manage", json={"action": "start"}, headers=ADMIN)
        assert resp.status_code == 400
        data = resp.json()
        assert data["success"] is False
        assert "container" in data["message"]
        assert "detail" not in data
        assert fake_executor.calls == []

    def test_malformed_json_body(self, client: TestClient, fake_executor: FakeExecutor) -> None:
        resp = client.post(
            "/containers/manage",
            content=b"{not json",
            headers={**ADMIN, "Content-Type": "application/json"},
        )
        assert resp.status_code == 400
        assert resp.json()["success"] is False
        assert fake_executor.calls == []

    def test_subprocess_failure_is_200(self, client: TestClient, fake_executor: FakeExecutor) -> None:
        fake_executor.outcomes.append(ExecOutcome(1, "Error: No such container: web"))
        resp = client.post("/containers/web/stop", headers=ADMIN)
        assert resp.status_code == 200
        data = resp.json()
        assert data["success"] is False
        assert "No such container" in data["output"]
        assert "command_line" not in data
        assert "error" not in data

    @pytest.mark.parametrize("action", ["start", "stop", "restart"])
    def test_shortcut_routes(
        self, action: str, client: TestClient, fake_executor: FakeExecutor
    ) -> None:
        resp = client.post(f"/containers/web/{action}", headers=ADMIN)
        assert resp.status_code == 200
        assert resp.json()["action"] == action
        assert fake_executor.argvs == [["docker", action, "web"]]


class TestLogsEndpoint:
    def test_logs(self, client: TestClient, fake_executor: FakeExecutor) -> None:
        fake_executor.outcomes.append(ExecOutcome(0, "ready"))
        resp = client.get("/containers/db/logs", params={"lines": 50}, headers=VIEWER)
        assert resp.status_code == 200
        data = resp.json()
        assert data == {
            "success": True, "message": "", "logs": "ready", "container": "db", "lines": 50,
        }
        assert fake_executor.argvs == [["docker", "logs", "--tail", "50", "db"]]

    def test_logs_default_lines(self, client: TestClient, fake_executor: FakeExecutor) -> None:
        client.get("/containers/db/logs", headers=VIEWER)
        assert fake_executor.argvs == [["docker", "logs", "--tail", "100", "db"]]

    def test_logs_bad_line_count(self, client: TestClient, fake_executor: FakeExecutor) -> None:
        resp = client.get("/containers/db/logs", params={"lines": 0}, headers=VIEWER)
        assert resp.status_code == 400
        assert fake_executor.calls == []

    def test_logs_non_numeric_line_count(
        self, client: TestClient, fake_executor: FakeExecutor
    ) -> None:
        resp = client.get("/containers/db/logs", params={"lines": "many"}, headers=VIEWER)
        assert resp.status_code == 400
        data = resp.json()
        assert set(data) == {"success", "message"}
        assert data["success"] is False
        assert "lines" in data["message"]
        assert fake_executor.calls == []


class TestContainerStatus:
    def test_listing(self, client: TestClient, fake_executor: FakeExecutor) -> None:
        lines = [
            json.dumps({"ID": "1", "Names": "web", "Image": "nginx", "Status": "Up 1 hour", "Ports": "80/tcp"}),
            "garbage",
            json.dumps({"ID": "2", "Names": "db", "Image": "mysql:8", "Status": "Exited (0)", "Ports": ""}),
        ]
        fake_executor.outcomes.append(ExecOutcome(0, "\n".join(lines)))
        resp = client.get("/containers", headers=VIEWER)
        assert resp.status_code == 200
        data = resp.json()
        assert data["success"] is True
        assert data["total"] == 2
        assert [c["name"] for c in data["containers"]] == ["web", "db"]
        assert data["containers"][0] == {
            "id": "1", "name": "web", "image": "nginx", "status": "Up 1 hour", "ports": "80/tcp",
        }

    def test_docker_unavailable(self, client: TestClient, fake_executor: FakeExecutor) -> None:
        fake_executor.outcomes.append(ExecOutcome(127, "Command not found: docker"))
        data = client.get("/containers", headers=VIEWER).json()
        assert data["success"] is False
        assert data["containers"] == []
        assert data["total"] == 0


class TestBackupRestore:
    def test_backup_default_name(
        self, client: TestClient, fake_executor: FakeExecutor, backup_dir: Path
    ) -> None:
        resp = client.post("/backup", json={"action": "backup"}, headers=ADMIN)
        assert resp.status_code == 200
        data = resp.json()
        assert data["success"] is True
        assert data["filename"].startswith("backup_")
        assert data["message"] == f"Backup created: {data['filename']}"
        assert (backup_dir / data["filename"]).is_file()

    def test_restore_missing_file(self, client: TestClient, fake_executor: FakeExecutor) -> None:
        resp = client.post("/backup", json={"action": "restore", "filename": "gone.sql"}, headers=ADMIN)
        assert resp.status_code == 404
        data = resp.json()
        assert data["success"] is False
        assert "gone.sql" in data["message"]
        assert fake_executor.calls == []

    def test_restore_requires_filename(self, client: TestClient, fake_executor: FakeExecutor) -> None:
        resp = client.post("/backup", json={"action": "restore"}, headers=ADMIN)
        assert resp.status_code == 400
        assert fake_executor.calls == []

    def test_restore_existing(
        self, client: TestClient, fake_executor: FakeExecutor, backup_dir: Path
    ) -> None:
        backup_dir.mkdir()
        (backup_dir / "dump.sql").write_text("SELECT 1;")
        resp = client.post("/backup", json={"action": "restore", "filename": "dump.sql"}, headers=ADMIN)
        assert resp.status_code == 200
        assert resp.json()["message"] == "Restore completed: dump.sql"
        assert fake_executor.argvs[0][0] == "mysql"

    def test_invalid_data_action(self, client: TestClient, fake_executor: FakeExecutor) -> None:
        resp = client.post("/backup", json={"action": "drop"}, headers=ADMIN)
        assert resp.status_code == 400
        data = resp.json()
        assert data["success"] is False
        assert data["action"] == "drop"
        assert fake_executor.calls == []

    def test_list_backups(self, client: TestClient, backup_dir: Path) -> None:
        backup_dir.mkdir()
        (backup_dir / "a.sql").write_text("x")
        data = client.get("/backups", headers=ADMIN).json()
        assert data["total"] == 1
        assert data["backups"][0]["filename"] == "a.sql"
        assert data["backups"][0]["size_bytes"] == 1


class TestSystemInfo:
    def test_docker_available(self, client: TestClient, fake_executor: FakeExecutor) -> None:
        fake_executor.outcomes.append(ExecOutcome(0, "24.0.7"))
        data = client.get("/system-info", headers=VIEWER).json()
        assert data["docker_available"] is True
        assert data["docker_version"] == "24.0.7"
        assert data["docker_error"] == ""
        assert data["hostname"]

    def test_docker_missing(self, client: TestClient, fake_executor: FakeExecutor) -> None:
        fake_executor.outcomes.append(ExecOutcome(127, "Command not found: docker"))
        data = client.get("/system-info", headers=VIEWER).json()
        assert data["docker_available"] is False
        assert data["docker_error"] == "Command not found: docker"

    def test_metrics(self, client: TestClient, fake_executor: FakeExecutor) -> None:
        fake_executor.outcomes.append(ExecOutcome(
            0, json.dumps({"ID": "1", "Names": "web", "Image": "nginx", "Status": "Up 5 minutes"})
        ))
        data = client.get("/metrics", headers=VIEWER).json()
        metrics = data["metrics"]
        assert metrics["containers_total"] == 1
        assert metrics["containers_running"] == 1
        assert metrics["backup_count"] == 0
        assert "load_1m" in metrics


class TestMain:
    def test_reads_yaml_config_and_mysql_pwd(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        config_dir = tmp_path / "config"
        config_dir.mkdir()
        (config_dir / "devcontrol.yaml").write_text(
            "server:\n  host: 0.0.0.0\n  port: 9123\n"
        )
        monkeypatch.chdir(tmp_path)
        for key in ("DEVCONTROL_DB_PASSWORD", "DEVCONTROL_SERVER__HOST", "DEVCONTROL_SERVER__PORT"):
            monkeypatch.delenv(key, raising=False)
        monkeypatch.setenv("MYSQL_PWD", "from-env")
        served: dict = {}

        def fake_run(app, host, port):  # type: ignore[no-untyped-def]
            served.update(app=app, host=host, port=port)

        monkeypatch.setattr(server.uvicorn, "run", fake_run)
        server.main()

        assert (served["host"], served["port"]) == ("0.0.0.0", 9123)
        app_settings = served["app"].state.settings
        assert app_settings.db_password.get_secret_value() == "from-env"

    def test_explicit_settings_skip_loading(
        self, settings: Settings, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        def fail_load(*args, **kwargs):  # type: ignore[no-untyped-def]
            raise AssertionError("settings should not be reloaded")

        monkeypatch.setattr(server, "load_settings", fail_load)
        monkeypatch.setattr(server.uvicorn, "run", lambda app, host, port: None)
        server.main(settings)
