"""
상태 조회 모듈 테스트
"""

import json
import subprocess
from mesh_vpn_agent import status as status_module
from mesh_vpn_agent.status import StatusProbe, parse_json_status, parse_text_status

MARKERS = ["NeedsLogin", "failed to connect to daemon", "connection refused"]

CONNECTED_JSON = json.dumps({
    "management": {"url": "https://api.netbird.io:443", "connected": True, "error": ""},
    "signal": {"url": "https://signal.netbird.io:443", "connected": True, "error": ""},
    "netbirdIp": "100.92.10.4/16",
    "daemonVersion": "0.28.4",
    "cliVersion": "0.28.4",
})

CONNECTED_TEXT = """OS: linux/amd64
Daemon version: 0.28.4
CLI version: 0.28.4
Management: Connected to https://api.netbird.io:443
Signal: Connected to https://signal.netbird.io:443
Relays: 2/2 Available
NetBird IP: 100.92.10.4/16
Interface type: Kernel
Peers count: 3/5 Connected
"""

DISCONNECTED_TEXT = """Daemon version: 0.28.4
CLI version: 0.28.4
Daemon status: NeedsLogin

Run UP command to log in with SSO (interactive login):
"""


def test_parse_json_connected():
    """JSON 연결 상태 파싱"""
    snapshot = parse_json_status(CONNECTED_JSON, 0, MARKERS)
    assert snapshot.source == "json"
    assert snapshot.management_connected == True
    assert snapshot.signal_connected == True
    assert snapshot.assigned_address == "100.92.10.4/16"
    assert snapshot.daemon_version_present == True
    assert snapshot.raw_indicators == frozenset()


def test_parse_json_management_error():
    """JSON 오류 필드에서 지표 추출"""
    raw = json.dumps({
        "management": {"connected": False, "error": "rpc error: connection refused"},
        "signal": {"connected": False},
        "daemonVersion": "0.28.4",
    })
    snapshot = parse_json_status(raw, 0, MARKERS)
    assert snapshot.management_connected == False
    assert snapshot.assigned_address is None
    assert "connection refused" in snapshot.raw_indicators


def test_parse_json_invalid_returns_none():
    """JSON이 아니면 None"""
    assert parse_json_status("not json", 0, MARKERS) is None
    assert parse_json_status("[1, 2]", 0, MARKERS) is None


def test_parse_text_connected():
    """상세 텍스트 파싱"""
    snapshot = parse_text_status(CONNECTED_TEXT, 0, MARKERS)
    assert snapshot.source == "text"
    assert snapshot.management_connected == True
    assert snapshot.signal_connected == True
    assert snapshot.assigned_address == "100.92.10.4/16"
    assert snapshot.daemon_version_present == True


def test_parse_text_needs_login():
    """로그인 필요 상태 파싱"""
    snapshot = parse_text_status(DISCONNECTED_TEXT, 0, MARKERS)
    assert snapshot.management_connected == False
    assert snapshot.assigned_address is None
    assert "NeedsLogin" in snapshot.raw_indicators


def test_parse_text_disconnected_management():
    """Disconnected 문자열은 연결로 보지 않음"""
    snapshot = parse_text_status("Management: Disconnected\nSignal: Connected\n", 0, MARKERS)
    assert snapshot.management_connected == False
    assert snapshot.signal_connected == True


def test_indicator_scope_matches_between_modes():
    """JSON/텍스트 모드 모두 stdout 전체와 stderr에서 오류 지표 검색"""
    raw_json = json.dumps({"daemonVersion": "0.28.4", "status": "NeedsLogin"})
    raw_text = "Daemon version: 0.28.4\nDaemon status: NeedsLogin\n"
    stderr = "warning: failed to connect to daemon"

    from_json = parse_json_status(raw_json, 0, MARKERS, stderr)
    from_text = parse_text_status(raw_text, 0, MARKERS, stderr)

    expected = frozenset({"NeedsLogin", "failed to connect to daemon"})
    assert from_json.raw_indicators == expected
    assert from_text.raw_indicators == expected
    assert from_json.stderr == stderr


class FakeCompleted:
    def __init__(self, returncode, stdout="", stderr=""):
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr


def test_probe_prefers_json(handle, monkeypatch):
    """JSON 출력 우선 사용"""
    calls = []

    def fake_run(cmd, **kwargs):
        calls.append(cmd)
        return FakeCompleted(0, CONNECTED_JSON)

    monkeypatch.setattr(status_module.subprocess, "run", fake_run)
    snapshot = StatusProbe(handle, error_markers=MARKERS).probe()

    assert snapshot.source == "json"
    assert calls == [["/usr/bin/netbird", "status", "--json"]]


def test_probe_falls_back_to_text(handle, monkeypatch):
    """JSON 실패 시 상세 텍스트 사용"""
    calls = []

    def fake_run(cmd, **kwargs):
        calls.append(cmd)
        if "--json" in cmd:
            return FakeCompleted(1, "", "unknown flag: --json")
        return FakeCompleted(0, CONNECTED_TEXT)

    monkeypatch.setattr(status_module.subprocess, "run", fake_run)
    snapshot = StatusProbe(handle, error_markers=MARKERS).probe()

    assert snapshot.source == "text"
    assert snapshot.management_connected == True
    assert calls[-1] == ["/usr/bin/netbird", "status", "-d"]


def test_probe_daemon_down(handle, monkeypatch):
    """데몬 미응답 시 오류 지표 포함"""
    def fake_run(cmd, **kwargs):
        return FakeCompleted(1, "", "failed to connect to daemon error: context deadline exceeded")

    monkeypatch.setattr(status_module.subprocess, "run", fake_run)
    snapshot = StatusProbe(handle, error_markers=MARKERS).probe()

    assert snapshot.exit_code == 1
    assert snapshot.daemon_version_present == False
    assert "failed to connect to daemon" in snapshot.raw_indicators


def test_probe_timeout(handle, monkeypatch):
    """상태 조회 타임아웃"""
    def fake_run(cmd, **kwargs):
        raise subprocess.TimeoutExpired(cmd, kwargs.get("timeout"))

    monkeypatch.setattr(status_module.subprocess, "run", fake_run)
    snapshot = StatusProbe(handle, timeout=1).probe()

    assert snapshot.exit_code == -1
    assert snapshot.management_connected == False
