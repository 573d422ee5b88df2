"""Tests for the command-line entry point."""

from __future__ import annotations

import json
import logging

import pytest
import structlog

from remotetask.run import main


@pytest.fixture(autouse=True)
def restore_logging():
    root = logging.getLogger()
    saved_handlers = list(root.handlers)
    saved_level = root.level
    yield
    structlog.reset_defaults()
    root.handlers[:] = saved_handlers
    root.setLevel(saved_level)


def _write_config(tmp_path, server, **extra) -> str:
    data = {
        "request_a": {"method": "POST", "url": server.get_url("tasks"), "body": '{"id":"{n}"}'},
        "request_b": {"method": "PUT", "url": server.get_url("tasks/delete"), "body": '{"id":"{n}"}'},
        "generated_fields": [{"name": "n", "generator": "counter", "field_type": "body"}],
    }
    data.update(extra)
    path = tmp_path / "run.json"
    path.write_text(json.dumps(data), encoding="utf-8")
    return str(path)


class TestArguments:
    def test_requires_config_or_scenario(self):
        assert main([]) == 2

    def test_rejects_config_and_scenario_together(self, tmp_path):
        assert main(["--config", str(tmp_path / "x.json"), "--scenario", "algo-task"]) == 2

    def test_scenario_requires_host(self):
        assert main(["--scenario", "algo-task"]) == 2

    def test_bad_duration(self, tmp_path, digest_server):
        path = _write_config(tmp_path, digest_server)
        assert main(["--config", path, "--a-to-b", "soon"]) == 2

    def test_missing_config_file(self, tmp_path):
        assert main(["--config", str(tmp_path / "missing.json")]) == 2


class TestRuns:
    def test_config_run_writes_report(self, tmp_path, digest_server, monkeypatch):
        monkeypatch.setenv("REMOTETASK_DIGEST_USERNAME", "admin")
        monkeypatch.setenv("REMOTETASK_DIGEST_PASSWORD", "s3cret-pass")
        path = _write_config(tmp_path, digest_server)
        output = tmp_path / "out" / "report.json"

        code = main(
            [
                "--config", path,
                "--max-requests", "2",
                "--a-to-b", "50ms",
                "--a-to-a", "100ms",
                "--session-scope", "per_run",
                "--output", str(output),
            ]
        )

        assert code == 0
        report = json.loads(output.read_text(encoding="utf-8"))
        assert report["result"]["stats"]["successful"] == 4
        assert report["config"]["session_scope"] == "per_run"
        assert report["config"]["delay_between_a_and_b_ms"] == 50
        assert "s3cret-pass" not in output.read_text(encoding="utf-8")
        assert digest_server.challenges_issued == 1

    def test_client_construction_failure_exits_1(self, tmp_path, digest_server):
        path = _write_config(
            tmp_path,
            digest_server,
            verify_tls=True,
            ca_bundle=str(tmp_path / "missing.pem"),
        )

        assert main(["--config", path, "--max-requests", "1"]) == 1


class TestInvalidConfigDocuments:
    def test_bad_timeout_exits_2(self, tmp_path, digest_server):
        path = _write_config(tmp_path, digest_server, timeout_seconds="abc")
        assert main(["--config", path]) == 2

    def test_non_utf8_file_exits_2(self, tmp_path):
        path = tmp_path / "run.json"
        path.write_bytes(b"\xff\xfe")
        assert main(["--config", str(path)]) == 2
