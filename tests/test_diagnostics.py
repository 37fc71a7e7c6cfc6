"""
진단 스냅샷 테스트
"""

import json
from mesh_vpn_agent.diagnostics import DiagnosticsExporter

SNAPSHOT = {
    "outcome": "Failed",
    "last_error_kind": "DeadlineExceeded",
    "reason": "agent not ready within 60s",
    "service_name": "netbird",
    "service_state": "Stopped",
    "transitions": ["Idle", "NetworkCheck", "AgentReadiness", "Failed"],
    "attempts": [],
    "recovery_actions": [
        {"attempt_index": 0, "error_kind": "DeadlineExceeded", "action": "RestartAgent",
         "wait_seconds": 5, "succeeded": True, "trigger": "readiness"},
    ],
    "readiness": {"ServiceRunning": False, "DaemonResponding": False},
    "last_status_text": "Daemon status: NeedsLogin",
}


def test_export_writes_json_and_report(tmp_path):
    exporter = DiagnosticsExporter(str(tmp_path / "diag"))
    path = exporter.export(SNAPSHOT)

    assert path is not None
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    assert data["last_error_kind"] == "DeadlineExceeded"
    assert data["readiness"]["ServiceRunning"] == False
    assert "generated_at" in data

    report = path[:-len(".json")] + ".md"
    with open(report, encoding="utf-8") as f:
        content = f.read()
    assert "DeadlineExceeded" in content
    assert "RestartAgent" in content
    assert "[준비 대기 초과]" in content
    assert "✗ ServiceRunning" in content
    assert "NeedsLogin" in content

    assert [str(p) for p in exporter.list_reports()] == [path]


def test_export_failure_returns_none(tmp_path):
    """저장 실패 시 예외 대신 None"""
    blocker = tmp_path / "file"
    blocker.write_text("not a directory")
    exporter = DiagnosticsExporter(str(blocker / "diag"))

    assert exporter.export(SNAPSHOT) is None


def test_list_reports_missing_dir(tmp_path):
    assert DiagnosticsExporter(str(tmp_path / "none")).list_reports() == []
