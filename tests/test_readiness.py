"""
데몬 준비 상태 게이트 테스트
"""

import json
import os
from dataclasses import replace
import time
from mesh_vpn_agent.models import ServiceState, StatusSnapshot
from mesh_vpn_agent.readiness import READINESS_CHECKS, ReadinessGate
from mesh_vpn_agent.status import DEFAULT_ERROR_MARKERS, parse_json_status


class FakeServiceManager:
    def __init__(self, states):
        self.states = list(states)
        self.queries = 0

    def query_state(self, name):
        self.queries += 1
        if len(self.states) > 1:
            return self.states.pop(0)
        return self.states[0]


class FakeProbe:
    def __init__(self, snapshot):
        self.snapshot = snapshot
        self.calls = 0

    def probe(self):
        self.calls += 1
        return self.snapshot


RESPONSIVE = StatusSnapshot(daemon_version_present=True, exit_code=0, raw_text="Daemon version: 0.28.4")


def make_gate(handle, states, snapshot=RESPONSIVE):
    gate = ReadinessGate(handle, FakeServiceManager(states), FakeProbe(snapshot))
    gate._no_active_session = lambda: True
    return gate


def test_checks_are_ordered(handle):
    """점검 순서 유지"""
    gate = make_gate(handle, [ServiceState.RUNNING])
    checks = gate.check_once()
    assert tuple(checks.checks) == READINESS_CHECKS
    assert checks.ready == True


def test_service_down_short_circuits(handle):
    """서비스 중지 시 나머지 점검 생략"""
    gate = make_gate(handle, [ServiceState.STOPPED])
    checks = gate.check_once()

    assert checks.ready == False
    assert checks.failed() == list(READINESS_CHECKS)
    assert gate.probe.calls == 0


def test_control_channel_error(handle):
    """제어 채널 오류 감지"""
    snapshot = StatusSnapshot(daemon_version_present=False, exit_code=1,
                              stderr="failed to connect to daemon error: connection refused")
    gate = make_gate(handle, [ServiceState.RUNNING], snapshot)
    checks = gate.check_once()

    assert checks.checks["ServiceRunning"] == True
    assert checks.checks["DaemonResponding"] == False
    assert checks.checks["ControlChannelOpen"] == False


def test_daemon_error_in_stderr_closes_channel(handle):
    snapshot = StatusSnapshot(daemon_version_present=True, exit_code=0,
                              stderr="rpc error: context deadline exceeded")
    checks = make_gate(handle, [ServiceState.RUNNING], snapshot).check_once()
    assert checks.checks["ControlChannelOpen"] == False


def test_management_down_does_not_block_readiness(handle):
    """관리 서버 연결 오류는 데몬 준비 상태와 무관"""
    raw = json.dumps({
        "management": {"connected": False, "error": "dial tcp 10.0.0.1:443: connect: connection refused"},
        "signal": {"connected": False, "error": "context deadline exceeded"},
        "daemonVersion": "0.28.4",
    })
    snapshot = parse_json_status(raw, 0, DEFAULT_ERROR_MARKERS)
    checks = make_gate(handle, [ServiceState.RUNNING], snapshot).check_once()

    assert "connection refused" in snapshot.raw_indicators
    assert checks.checks["ControlChannelOpen"] == True
    assert checks.ready == True


def test_state_store_writable_uses_existing_parent(handle, tmp_path):
    """상태 디렉토리가 없으면 상위 디렉토리 기준"""
    missing = replace(handle, state_dir=str(tmp_path / "not" / "yet" / "created"))
    gate = make_gate(missing, [ServiceState.RUNNING])
    assert gate._state_store_writable() == os.access(str(tmp_path), os.W_OK)


def test_wait_until_ready(handle):
    """준비될 때까지 폴링"""
    gate = make_gate(handle, [ServiceState.STOPPED, ServiceState.STOPPED, ServiceState.RUNNING])
    ready, checks = gate.wait(max_wait=5, poll_interval=0.01)

    assert ready == True
    assert gate.polls == 3
    assert checks.ready == True


def test_wait_times_out(handle):
    """제한 시간 초과 시 마지막 점검 결과 반환"""
    gate = make_gate(handle, [ServiceState.STOPPED])
    started = time.monotonic()
    ready, checks = gate.wait(max_wait=0.1, poll_interval=0.02)

    assert ready == False
    assert checks.checks["ServiceRunning"] == False
    assert time.monotonic() - started < 2
    assert gate.polls >= 2


def test_wait_cancelled(handle):
    """취소 토큰으로 즉시 중단"""
    gate = make_gate(handle, [ServiceState.STOPPED])
    gate.token.cancel()
    ready, checks = gate.wait(max_wait=30, poll_interval=5)

    assert ready == False
    assert gate.polls == 0
