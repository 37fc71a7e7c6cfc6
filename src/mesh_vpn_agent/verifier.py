"""
연결 검증 모듈
등록 성공 보고 후 상태를 독립적으로 재조회하여 모든 연결 지표가 동시에 충족되는지 확인
"""

from typing import List, Optional, Tuple
from .logger import get_logger
from .models import StatusSnapshot
from .polling import CancellationToken, bounded_poll
from .status import StatusProbe


class ConvergenceVerifier:
    """연결 상태 검증"""

    def __init__(self, probe: StatusProbe, poll_interval: float = 3.0,
                 require_signal: bool = True, token: Optional[CancellationToken] = None):
        self.probe = probe
        self.poll_interval = poll_interval
        self.require_signal = require_signal
        self.token = token or CancellationToken()
        self.logger = get_logger()
        self.last_snapshot: Optional[StatusSnapshot] = None

    def missing_indicators(self, snapshot: StatusSnapshot) -> List[str]:
        """스냅샷 1개에서 충족되지 않은 지표 목록"""
        missing = []
        if not snapshot.management_connected:
            missing.append("ManagementConnected")
        if self.require_signal and not snapshot.signal_connected:
            missing.append("SignalConnected")
        if not snapshot.assigned_address:
            missing.append("AddressAssigned")
        if not snapshot.daemon_version_present:
            missing.append("DaemonResponsive")
        if snapshot.raw_indicators:
            missing.append("NoErrorIndicators")
        return missing

    def is_converged(self, snapshot: StatusSnapshot) -> bool:
        return not self.missing_indicators(snapshot)

    def _poll(self) -> Tuple[bool, StatusSnapshot]:
        snapshot = self.probe.probe()
        self.last_snapshot = snapshot
        missing = self.missing_indicators(snapshot)
        if missing:
            self.logger.debug(f"Verification pending, missing: {missing}")
        return not missing, snapshot

    def verify(self, max_wait: float) -> bool:
        """모든 지표가 동시에 충족될 때까지 최대 max_wait 초 폴링"""
        self.logger.info(f"Verifying connection (up to {max_wait}s)...")
        outcome = bounded_poll(self._poll, max_wait, self.poll_interval, self.token)

        if outcome.satisfied:
            self.logger.info(f"Connection verified after {outcome.polls} poll(s)")
        elif outcome.cancelled:
            self.logger.warning("Verification cancelled")
        else:
            missing = self.missing_indicators(outcome.last) if outcome.last else []
            self.logger.error(f"Verification failed after {max_wait}s, missing: {missing}")
        return outcome.satisfied
