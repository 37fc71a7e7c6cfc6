"""
에이전트 준비 상태 게이트
서비스가 '시작됨'이 아니라 제어 채널까지 응답하는지 제한 시간 내에 폴링
"""

import os
import subprocess
from typing import Optional, Tuple
from .agent import ServiceManager
from .logger import get_logger
from .models import AgentHandle, ReadinessCheckSet, ServiceState
from .polling import CancellationToken, bounded_poll
from .status import StatusProbe

READINESS_CHECKS = (
    "ServiceRunning",
    "DaemonResponding",
    "ControlChannelOpen",
    "NoActiveSession",
    "StateStoreWritable",
)

CONTROL_CHANNEL_ERRORS = (
    "failed to connect to daemon",
    "connection refused",
    "daemon is not running",
    "context deadline exceeded",
)


class ReadinessGate:
    """데몬 준비 상태 확인"""

    def __init__(self, handle: AgentHandle, service_manager: ServiceManager,
                 probe: StatusProbe, token: Optional[CancellationToken] = None):
        self.handle = handle
        self.service_manager = service_manager
        self.probe = probe
        self.token = token or CancellationToken()
        self.logger = get_logger()
        self.polls = 0

    def _no_active_session(self) -> bool:
        """다른 등록/로그인 프로세스가 진행 중인지 확인"""
        binary = os.path.basename(self.handle.executable)
        try:
            result = subprocess.run(
                ["pgrep", "-f", f"{binary} (up|login)"],
                capture_output=True,
                text=True,
                timeout=5
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            self.logger.debug(f"pgrep unavailable, assuming no active session: {e}")
            return True
        # pgrep: 0 = 일치하는 프로세스 있음, 1 = 없음, 그 외 = 오류
        if result.returncode == 0:
            self.logger.debug(f"Active registration process found: {result.stdout.strip()}")
            return False
        return True

    def _state_store_writable(self) -> bool:
        """상태 디렉토리(또는 가장 가까운 상위 디렉토리) 쓰기 가능 여부"""
        path = os.path.abspath(self.handle.state_dir)
        while not os.path.exists(path):
            parent = os.path.dirname(path)
            if parent == path:
                return False
            path = parent
        return os.access(path, os.W_OK)

    def check_once(self) -> ReadinessCheckSet:
        """모든 점검을 순서대로 1회 수행"""
        checks = ReadinessCheckSet()
        service_running = self.service_manager.query_state(self.handle.service_name) == ServiceState.RUNNING
        checks.checks["ServiceRunning"] = service_running

        if not service_running:
            # 서비스가 없으면 나머지 점검은 시도하지 않음
            for name in READINESS_CHECKS[1:]:
                checks.checks[name] = False
            return checks

        snapshot = self.probe.probe()
        checks.checks["DaemonResponding"] = snapshot.daemon_version_present
        # 데몬 왕복(종료 코드, stderr)만 본다. management/signal 오류 필드는 제외
        daemon_errors = snapshot.stderr.lower()
        checks.checks["ControlChannelOpen"] = snapshot.exit_code == 0 and not any(
            marker in daemon_errors for marker in CONTROL_CHANNEL_ERRORS
        )
        checks.checks["NoActiveSession"] = self._no_active_session()
        checks.checks["StateStoreWritable"] = self._state_store_writable()
        return checks

    def _poll(self) -> Tuple[bool, ReadinessCheckSet]:
        self.polls += 1
        checks = self.check_once()
        if not checks.ready:
            self.logger.debug(f"Readiness pending, failed checks: {checks.failed()}")
        return checks.ready, checks

    def wait(self, max_wait: float, poll_interval: float) -> Tuple[bool, ReadinessCheckSet]:
        """준비 완료까지 최대 max_wait 초 대기"""
        self.logger.info(f"Waiting up to {max_wait}s for agent readiness...")
        outcome = bounded_poll(self._poll, max_wait, poll_interval, self.token)
        checks = outcome.last or ReadinessCheckSet()

        if outcome.satisfied:
            self.logger.info(f"Agent ready after {outcome.polls} poll(s)")
        elif outcome.cancelled:
            self.logger.warning("Readiness wait cancelled")
        else:
            self.logger.warning(f"Agent not ready after {max_wait}s: {checks.checks}")
        return outcome.satisfied, checks
