"""
수렴 과정에서 주고받는 데이터 모델
상태 스냅샷, 점검 결과, 등록 시도 기록, 복구 결정, 최종 결과
"""

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Tuple


EXIT_SUCCESS = 0
EXIT_CONFIG_ERROR = 2
EXIT_PRIVILEGE_REQUIRED = 5


class ErrorKind(str, Enum):
    """등록 실패 분류 (닫힌 집합)"""
    DEADLINE_EXCEEDED = "DeadlineExceeded"
    CONNECTION_REFUSED = "ConnectionRefused"
    INVALID_CREDENTIAL = "InvalidCredential"
    NETWORK_ERROR = "NetworkError"
    VERIFICATION_FAILED = "VerificationFailed"
    UNKNOWN = "Unknown"


EXIT_CODES = {
    ErrorKind.UNKNOWN: 1,
    ErrorKind.DEADLINE_EXCEEDED: 10,
    ErrorKind.CONNECTION_REFUSED: 11,
    ErrorKind.INVALID_CREDENTIAL: 12,
    ErrorKind.NETWORK_ERROR: 13,
    ErrorKind.VERIFICATION_FAILED: 14,
}


class RecoveryAction(str, Enum):
    """복구 동작 (닫힌 집합)"""
    NONE = "None"
    WAIT_LONGER = "WaitLonger"
    RESTART_AGENT = "RestartAgent"
    PARTIAL_STATE_RESET = "PartialStateReset"
    FULL_STATE_RESET = "FullStateReset"
    RETEST_PREREQUISITES = "RetestPrerequisites"

    @property
    def rank(self) -> int:
        """공격성 순위 (클수록 파괴적)"""
        return _ACTION_RANK[self]


_ACTION_RANK = {
    RecoveryAction.WAIT_LONGER: 0,
    RecoveryAction.RETEST_PREREQUISITES: 1,
    RecoveryAction.RESTART_AGENT: 2,
    RecoveryAction.PARTIAL_STATE_RESET: 3,
    RecoveryAction.FULL_STATE_RESET: 4,
    RecoveryAction.NONE: 5,
}


class ServiceState(str, Enum):
    """OS 서비스 상태"""
    RUNNING = "Running"
    STOPPED = "Stopped"
    UNKNOWN = "Unknown"


class ConvergenceState(str, Enum):
    """오케스트레이터 상태"""
    IDLE = "Idle"
    NETWORK_CHECK = "NetworkCheck"
    AGENT_READINESS = "AgentReadiness"
    PREREQ_CHECK = "PrereqCheck"
    STATE_CLEAR = "StateClear"
    ATTEMPTING = "Attempting"
    VERIFYING = "Verifying"
    RECOVERING = "Recovering"
    CONVERGED = "Converged"
    FAILED = "Failed"


@dataclass(frozen=True)
class AgentHandle:
    """로컬 에이전트 식별 정보 (실행 중 불변)"""
    executable: str
    service_name: str
    config_path: str
    state_dir: str
    session_file: str = "state.json"


@dataclass(frozen=True)
class StatusSnapshot:
    """에이전트 상태 조회 1회 결과"""
    management_connected: bool = False
    signal_connected: bool = False
    assigned_address: Optional[str] = None
    daemon_version_present: bool = False
    raw_indicators: FrozenSet[str] = frozenset()
    exit_code: int = -1
    raw_text: str = ""
    source: str = "text"
    stderr: str = ""

    def to_dict(self) -> Dict:
        data = asdict(self)
        data["raw_indicators"] = sorted(self.raw_indicators)
        return data


@dataclass
class ReadinessCheckSet:
    """데몬 준비 상태 점검 결과 (순서 유지)"""
    checks: Dict[str, bool] = field(default_factory=dict)

    @property
    def ready(self) -> bool:
        return bool(self.checks) and all(self.checks.values())

    def failed(self) -> List[str]:
        return [name for name, ok in self.checks.items() if not ok]


@dataclass
class NetworkPrerequisites:
    """네트워크 사전 점검 결과

    critical/advisory 값은 True(통과), False(실패), None(점검 불가) 중 하나
    """
    critical: Dict[str, Optional[bool]] = field(default_factory=dict)
    advisory: Dict[str, Optional[bool]] = field(default_factory=dict)
    critical_pass: bool = False
    blocking_issues: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    fallback_used: bool = False

    def as_tuple(self) -> Tuple[bool, List[str], List[str]]:
        return self.critical_pass, list(self.blocking_issues), list(self.warnings)


@dataclass
class PrerequisiteCheck:
    """등록 사전 조건 단일 점검"""
    name: str
    passed: bool
    critical: bool
    message: str = ""


@dataclass
class PrerequisiteReport:
    """등록 사전 조건 검증 결과"""
    checks: List[PrerequisiteCheck] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return all(check.passed for check in self.checks if check.critical)

    def critical_failures(self) -> List[PrerequisiteCheck]:
        return [check for check in self.checks if check.critical and not check.passed]

    def advisory_failures(self) -> List[PrerequisiteCheck]:
        return [check for check in self.checks if not check.critical and not check.passed]

    def get(self, name: str) -> Optional[PrerequisiteCheck]:
        for check in self.checks:
            if check.name == name:
                return check
        return None


@dataclass
class RegistrationAttempt:
    """등록 시도 1회 기록"""
    index: int
    success: bool
    error_kind: Optional[ErrorKind] = None
    raw_message: str = ""
    exit_code: Optional[int] = None
    duration: float = 0.0

    def to_dict(self) -> Dict:
        return {
            "index": self.index,
            "outcome": "Success" if self.success else "Failure",
            "error_kind": self.error_kind.value if self.error_kind else None,
            "raw_message": self.raw_message,
            "exit_code": self.exit_code,
            "duration": round(self.duration, 3),
        }


@dataclass(frozen=True)
class RecoveryDecision:
    """복구 정책 조회 결과"""
    action: RecoveryAction
    wait_seconds: float = 0.0


@dataclass
class RecoveryRecord:
    """실행된 복구 동작 기록

    trigger: "ladder" 는 복구 정책 결정, "readiness" 는 준비 대기 시간 초과 후 재시작
    """
    LADDER = "ladder"
    READINESS = "readiness"

    attempt_index: int
    error_kind: ErrorKind
    action: RecoveryAction
    wait_seconds: float
    succeeded: bool = True
    trigger: str = LADDER

    def to_dict(self) -> Dict:
        return {
            "attempt_index": self.attempt_index,
            "error_kind": self.error_kind.value,
            "action": self.action.value,
            "wait_seconds": self.wait_seconds,
            "succeeded": self.succeeded,
            "trigger": self.trigger,
        }


@dataclass
class ConvergeOptions:
    """converge() 호출 옵션"""
    force_full_reset: bool = False
    max_attempts: Optional[int] = None
    daemon_wait_seconds: Optional[float] = None
    verify_wait_seconds: Optional[float] = None
    fresh_install: bool = False


@dataclass
class ConvergenceResult:
    """전체 수렴 실행의 최종 결과"""
    success: bool
    last_error_kind: Optional[ErrorKind] = None
    diagnostics_path: Optional[str] = None
    reason: str = ""
    already_converged: bool = False
    attempts: List[RegistrationAttempt] = field(default_factory=list)
    recovery_actions: List[RecoveryRecord] = field(default_factory=list)
    transitions: List[str] = field(default_factory=list)
    final_snapshot: Optional[StatusSnapshot] = None

    @property
    def exit_code(self) -> int:
        if self.success:
            return EXIT_SUCCESS
        return EXIT_CODES.get(self.last_error_kind or ErrorKind.UNKNOWN, 1)
