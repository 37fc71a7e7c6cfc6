"""
에이전트 상태 조회 모듈
구조화(JSON) 출력을 우선 사용하고, 실패 시 상세 텍스트 출력을 패턴 매칭
"""

import json
import re
import subprocess
from typing import Iterable, List, Optional, Tuple
from .logger import get_logger
from .models import AgentHandle, StatusSnapshot

DEFAULT_ERROR_MARKERS = (
    "NeedsLogin",
    "LoginFailed",
    "failed to connect to daemon",
    "connection refused",
    "context deadline exceeded",
    "daemon is not running",
)

_MANAGEMENT_RE = re.compile(r"^\s*Management:\s*(\w+)", re.IGNORECASE | re.MULTILINE)
_SIGNAL_RE = re.compile(r"^\s*Signal:\s*(\w+)", re.IGNORECASE | re.MULTILINE)
_ADDRESS_RE = re.compile(r"^\s*(?:NetBird|Tailscale|VPN)?\s*IP:\s*(\d{1,3}(?:\.\d{1,3}){3}(?:/\d+)?)",
                         re.IGNORECASE | re.MULTILINE)
_DAEMON_VERSION_RE = re.compile(r"^\s*Daemon version:\s*\S+", re.IGNORECASE | re.MULTILINE)


def find_indicators(text: str, markers: Iterable[str]) -> frozenset:
    """text에 포함된 오류 문자열 집합"""
    lowered = text.lower()
    return frozenset(marker for marker in markers if marker.lower() in lowered)


def parse_json_status(raw: str, exit_code: int, markers: Iterable[str],
                      stderr: str = "") -> Optional[StatusSnapshot]:
    """`status --json` 출력 파싱. 해석할 수 없으면 None

    오류 지표는 텍스트 모드와 같은 범위(stdout 전체 + stderr)에서 찾는다.
    """
    try:
        data = json.loads(raw)
    except (TypeError, ValueError):
        return None
    if not isinstance(data, dict):
        return None

    management = data.get("management") or {}
    signal = data.get("signal") or {}
    address = data.get("netbirdIp") or data.get("ip") or None
    if isinstance(address, list):
        address = address[0] if address else None

    return StatusSnapshot(
        management_connected=bool(isinstance(management, dict) and management.get("connected")),
        signal_connected=bool(isinstance(signal, dict) and signal.get("connected")),
        assigned_address=address or None,
        daemon_version_present=bool(data.get("daemonVersion")),
        raw_indicators=find_indicators(f"{raw}\n{stderr}", markers),
        exit_code=exit_code,
        raw_text=raw,
        source="json",
        stderr=stderr,
    )


def parse_text_status(raw: str, exit_code: int, markers: Iterable[str],
                      stderr: str = "") -> StatusSnapshot:
    """`status -d` 텍스트 출력 패턴 매칭"""
    management = _MANAGEMENT_RE.search(raw)
    signal = _SIGNAL_RE.search(raw)
    address = _ADDRESS_RE.search(raw)

    return StatusSnapshot(
        management_connected=bool(management and management.group(1).lower() == "connected"),
        signal_connected=bool(signal and signal.group(1).lower() == "connected"),
        assigned_address=address.group(1) if address else None,
        daemon_version_present=bool(_DAEMON_VERSION_RE.search(raw)),
        raw_indicators=find_indicators(f"{raw}\n{stderr}", markers),
        exit_code=exit_code,
        raw_text=f"{raw}\n{stderr}" if raw and stderr else (raw or stderr),
        source="text",
        stderr=stderr,
    )


class StatusProbe:
    """에이전트 상태 조회"""

    def __init__(self, handle: AgentHandle, timeout: int = 15,
                 error_markers: Optional[List[str]] = None):
        self.handle = handle
        self.timeout = timeout
        self.error_markers = list(error_markers) if error_markers is not None else list(DEFAULT_ERROR_MARKERS)
        self.logger = get_logger()

    def _run(self, *args: str) -> Tuple[int, str, str]:
        """(종료 코드, stdout, stderr). 실행 자체가 실패하면 사유를 stderr 자리에 둔다"""
        try:
            result = subprocess.run(
                [self.handle.executable, "status", *args],
                capture_output=True,
                text=True,
                timeout=self.timeout
            )
        except subprocess.TimeoutExpired:
            self.logger.warning(f"Status query timed out after {self.timeout}s")
            return -1, "", "status query timed out: context deadline exceeded"
        except OSError as e:
            self.logger.error(f"Status query failed: {e}")
            return -1, "", f"failed to run status query: {e}"

        return result.returncode, result.stdout or "", (result.stderr or "").strip()

    def probe(self) -> StatusSnapshot:
        """상태 1회 조회 (캐시 없음)"""
        exit_code, stdout, stderr = self._run("--json")
        snapshot = parse_json_status(stdout, exit_code, self.error_markers, stderr) if exit_code == 0 else None
        if snapshot is None:
            self.logger.debug("Structured status unavailable, falling back to detailed text")
            exit_code, stdout, stderr = self._run("-d")
            snapshot = parse_text_status(stdout, exit_code, self.error_markers, stderr)

        self.logger.debug(
            f"Status probe ({snapshot.source}): management={snapshot.management_connected} "
            f"signal={snapshot.signal_connected} ip={snapshot.assigned_address} "
            f"indicators={sorted(snapshot.raw_indicators)} exit={snapshot.exit_code}"
        )
        return snapshot
