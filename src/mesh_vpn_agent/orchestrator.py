"""
수렴 오케스트레이터
네트워크 점검 → 데몬 준비 → 사전 조건 → (상태 정리) → 등록 → 검증 → 복구 상태 기계
"""

from typing import Dict, List, Optional
from rich.console import Console
from .agent import AgentLocator, AgentStateStore, ServiceManager
from .config import Config, ConfigError
from .diagnostics import DiagnosticsExporter
from .logger import get_logger
from .models import (
    AgentHandle,
    ConvergeOptions,
    ConvergenceResult,
    ConvergenceState,
    ErrorKind,
    NetworkPrerequisites,
    PrerequisiteReport,
    ReadinessCheckSet,
    RecoveryAction,
    RecoveryDecision,
    RecoveryRecord,
    RegistrationAttempt,
    StatusSnapshot,
)
from .network import NetworkGate
from .polling import CancellationToken
from .prerequisites import PrerequisiteValidator
from .readiness import ReadinessGate
from .recovery import RecoveryPolicy
from .registration import RegistrationExecutor
from .status import StatusProbe
from .verifier import ConvergenceVerifier

console = Console()


def _option(value, default):
    """호출 옵션 값. None이면 설정 값 사용 (0도 명시 값으로 취급)"""
    return default if value is None else value


class ConvergenceCancelled(Exception):
    """외부에서 취소 요청됨"""


class ConvergenceOrchestrator:
    """에이전트 수렴 오케스트레이터"""

    def __init__(self, config: Config, handle: AgentHandle,
                 credential: Optional[str], endpoint: str,
                 options: Optional[ConvergeOptions] = None,
                 token: Optional[CancellationToken] = None,
                 service_manager=None, probe=None, network_gate=None,
                 readiness_gate=None, validator=None, executor=None,
                 verifier=None, state_store=None, policy=None, exporter=None):
        self.config = config
        self.handle = handle
        self.credential = credential
        self.endpoint = endpoint
        self.options = options or ConvergeOptions()
        self.token = token or CancellationToken()
        self.logger = get_logger()
        self.logger.add_secret(credential)

        conv = config.convergence
        self.max_attempts = int(_option(self.options.max_attempts, conv.max_attempts))
        self.daemon_wait = float(_option(self.options.daemon_wait_seconds, conv.daemon_wait_seconds))
        self.verify_wait = float(_option(self.options.verify_wait_seconds, conv.verify_wait_seconds))
        if self.max_attempts < 1:
            raise ConfigError(f"max_attempts는 1 이상이어야 합니다: {self.max_attempts}")
        for name, value in (("daemon_wait_seconds", self.daemon_wait), ("verify_wait_seconds", self.verify_wait)):
            if value <= 0:
                raise ConfigError(f"{name}는 0보다 커야 합니다: {value}")

        self.service_manager = service_manager or ServiceManager()
        self.probe = probe or StatusProbe(handle, config.agent.status_timeout, conv.error_markers)
        self.network_gate = network_gate or NetworkGate(
            config.network, endpoint, config.management.verify_tls)
        self.readiness_gate = readiness_gate or ReadinessGate(
            handle, self.service_manager, self.probe, self.token)
        self.validator = validator or PrerequisiteValidator(
            handle, config.management, conv.critical_checks, conv.min_free_mb)
        self.executor = executor or RegistrationExecutor(handle, config.agent.registration_timeout)
        self.verifier = verifier or ConvergenceVerifier(
            self.probe, conv.verify_poll_interval, conv.require_signal, self.token)
        self.state_store = state_store or AgentStateStore(handle)
        self.policy = policy or RecoveryPolicy(conv.wait_longer_seconds, conv.settle_seconds)
        self.exporter = exporter or DiagnosticsExporter(config.logging.diagnostics_dir)

        self.state = ConvergenceState.IDLE
        self.transitions: List[str] = [ConvergenceState.IDLE.value]
        self.attempts: List[RegistrationAttempt] = []
        self.recovery_actions: List[RecoveryRecord] = []
        self.last_error_kind: Optional[ErrorKind] = None
        self.last_checks: Optional[ReadinessCheckSet] = None
        self.last_network: Optional[NetworkPrerequisites] = None
        self.last_prerequisites: Optional[PrerequisiteReport] = None
        self.last_snapshot: Optional[StatusSnapshot] = None

    def _transition(self, state: ConvergenceState):
        self.logger.info(f"State: {self.state.value} -> {state.value}")
        self.state = state
        self.transitions.append(state.value)

    def _sleep(self, seconds: float):
        if seconds > 0:
            self.logger.debug(f"Waiting {seconds}s...")
        if self.token.wait(seconds):
            raise ConvergenceCancelled()

    def _ensure_not_cancelled(self):
        if self.token.cancelled:
            raise ConvergenceCancelled()

    def run(self) -> ConvergenceResult:
        """상태 기계 실행"""
        self.logger.info("=== Convergence started ===")
        try:
            return self._run()
        except ConvergenceCancelled:
            self.logger.warning("Convergence cancelled")
            return self._fail(self.last_error_kind or ErrorKind.UNKNOWN, "cancelled")
        except KeyboardInterrupt:
            console.print("\n[yellow]사용자에 의해 중단되었습니다.[/yellow]")
            self.logger.warning("Convergence interrupted by user")
            self.token.cancel()
            return self._fail(self.last_error_kind or ErrorKind.UNKNOWN, "interrupted")
        except Exception as e:
            console.print(f"\n[red]예상치 못한 오류 발생: {str(e)}[/red]")
            self.logger.exception("Unexpected error during convergence")
            return self._fail(ErrorKind.UNKNOWN, f"unexpected error: {e}")

    def _run(self) -> ConvergenceResult:
        # 1. 네트워크 사전 점검 (2회 제한)
        self._transition(ConvergenceState.NETWORK_CHECK)
        network = self._check_network()
        if not network.critical_pass:
            return self._fail(ErrorKind.NETWORK_ERROR,
                              "critical network prerequisites failed: " + "; ".join(network.blocking_issues))

        # 2. 데몬 준비 상태
        self._transition(ConvergenceState.AGENT_READINESS)
        if not self._await_readiness():
            return self._fail(ErrorKind.DEADLINE_EXCEEDED, "agent readiness timed out after restart")

        # 이미 연결된 상태라면 등록을 건너뜀 (idempotent)
        if not self.options.force_full_reset:
            snapshot = self.probe.probe()
            self.last_snapshot = snapshot
            if self.verifier.is_converged(snapshot):
                console.print("[green]✓ 이미 연결되어 있습니다. 등록을 건너뜁니다.[/green]")
                self.logger.info("Agent already converged (idempotent)")
                return self._succeed(snapshot, already_converged=True)

        # 3. 등록 사전 조건
        self._transition(ConvergenceState.PREREQ_CHECK)
        if not self.credential:
            return self._fail(ErrorKind.INVALID_CREDENTIAL, "no setup credential provided")

        report = self.validator.validate(self.credential, self.endpoint,
                                         skip_conflict=self.options.force_full_reset or self.options.fresh_install)
        self.last_prerequisites = report
        if not report.passed:
            failed = ", ".join(f"{c.name} ({c.message})" for c in report.critical_failures())
            return self._fail(PrerequisiteValidator.failure_kind(report),
                              f"registration prerequisites failed: {failed}")

        # 4. 신규 설치 또는 강제 초기화 시 상태 정리
        #    (설치 스크립트가 띄운 데몬이 기본 서버로 설정 파일을 써 둘 수 있음)
        if self.options.fresh_install or self.options.force_full_reset:
            self._transition(ConvergenceState.STATE_CLEAR)
            ok, msg = self._reset_state(RecoveryAction.FULL_STATE_RESET)
            if not ok:
                return self._fail(ErrorKind.UNKNOWN, f"state clear failed: {msg}")

        # 5. 등록 / 검증 / 복구 루프
        attempt_index = 0
        while True:
            attempt_index += 1
            if not self._await_readiness():
                return self._fail(ErrorKind.DEADLINE_EXCEEDED,
                                  f"agent not ready before attempt #{attempt_index}")

            self._transition(ConvergenceState.ATTEMPTING)
            attempt = self.executor.register(self.credential, self.endpoint, attempt_index)
            self.attempts.append(attempt)

            if attempt.success:
                self._transition(ConvergenceState.VERIFYING)
                verified = self.verifier.verify(self.verify_wait)
                self.last_snapshot = self.verifier.last_snapshot or self.last_snapshot
                self._ensure_not_cancelled()
                if verified:
                    return self._succeed(self.last_snapshot)
                kind = ErrorKind.VERIFICATION_FAILED
                self.logger.warning(f"Attempt #{attempt_index} reported success but verification failed")
            else:
                kind = attempt.error_kind or ErrorKind.UNKNOWN

            self.last_error_kind = kind
            self._transition(ConvergenceState.RECOVERING)

            decision = self.policy.decide(kind, attempt_index)
            if decision.action == RecoveryAction.NONE:
                return self._fail(kind, f"{kind.value} is not recoverable")
            if attempt_index >= self.max_attempts:
                return self._fail(kind, f"max attempts ({self.max_attempts}) exhausted")

            if not self._perform(decision, kind, attempt_index):
                return self._fail(ErrorKind.NETWORK_ERROR,
                                  "network prerequisites failed during recovery")

    def _check_network(self) -> NetworkPrerequisites:
        """네트워크 점검. 실패 시 백오프 후 1회만 재점검"""
        result = self.network_gate.evaluate()
        if not result.critical_pass:
            backoff = self.config.network.retry_backoff
            console.print(f"[yellow]⚠ 네트워크 점검 실패, {backoff}초 후 재점검합니다.[/yellow]")
            self.logger.warning(f"Network check failed, retrying once after {backoff}s")
            self._sleep(backoff)
            result = self.network_gate.evaluate()

        for warning in result.warnings:
            console.print(f"  [yellow]⚠ {warning}[/yellow]")
        self.last_network = result
        return result

    def _await_readiness(self) -> bool:
        """준비 대기. 시간 초과 시 에이전트 재시작 후 1회 더 대기"""
        poll = self.config.convergence.daemon_poll_interval
        ready, checks = self.readiness_gate.wait(self.daemon_wait, poll)
        self.last_checks = checks
        self._ensure_not_cancelled()
        if ready:
            return True

        console.print("[yellow]⚠ 에이전트가 준비되지 않았습니다. 재시작합니다...[/yellow]")
        self.logger.warning(f"Agent not ready ({checks.failed()}), restarting once")
        restarted = self._restart_agent()
        # attempt_index는 재시작 시점까지 완료된 시도 수 (0이면 첫 시도 전)
        self.recovery_actions.append(RecoveryRecord(
            len(self.attempts), ErrorKind.DEADLINE_EXCEEDED, RecoveryAction.RESTART_AGENT, 0, restarted,
            trigger=RecoveryRecord.READINESS))

        ready, checks = self.readiness_gate.wait(self.daemon_wait, poll)
        self.last_checks = checks
        self._ensure_not_cancelled()
        if not ready:
            self.logger.error(f"Agent still not ready after restart: {checks.checks}")
        return ready

    def _restart_agent(self) -> bool:
        self.service_manager.stop(self.handle.service_name)
        ok, _ = self.service_manager.start(self.handle.service_name)
        return ok

    def _reset_state(self, action: RecoveryAction):
        """서비스 중지 → 상태 삭제 → 서비스 시작"""
        self.service_manager.stop(self.handle.service_name)
        if action == RecoveryAction.FULL_STATE_RESET:
            ok, msg = self.state_store.clear_all()
        else:
            ok, msg = self.state_store.clear_session()
        started, start_msg = self.service_manager.start(self.handle.service_name)
        if ok and not started:
            return False, f"service start failed: {start_msg}"
        return ok, msg

    def _perform(self, decision: RecoveryDecision, kind: ErrorKind, attempt_index: int) -> bool:
        """복구 동작 실행. 진행 불가(네트워크 재점검 실패)면 False"""
        action = decision.action
        console.print(f"[yellow]복구 동작: {action.value} (대기 {decision.wait_seconds}초)[/yellow]")
        self.logger.info(f"Recovery for {kind.value} at attempt #{attempt_index}: "
                         f"{action.value}, wait {decision.wait_seconds}s")

        succeeded = True
        proceed = True
        if action == RecoveryAction.RESTART_AGENT:
            succeeded = self._restart_agent()
        elif action in (RecoveryAction.PARTIAL_STATE_RESET, RecoveryAction.FULL_STATE_RESET):
            succeeded, msg = self._reset_state(action)
            if not succeeded:
                self.logger.error(f"{action.value} failed: {msg}")
        elif action == RecoveryAction.RETEST_PREREQUISITES:
            network = self.network_gate.evaluate()
            self.last_network = network
            succeeded = proceed = network.critical_pass

        self.recovery_actions.append(
            RecoveryRecord(attempt_index, kind, action, decision.wait_seconds, succeeded))
        if not proceed:
            return False

        self._sleep(decision.wait_seconds)
        return True

    def _succeed(self, snapshot: Optional[StatusSnapshot], already_converged: bool = False) -> ConvergenceResult:
        self._transition(ConvergenceState.CONVERGED)
        if snapshot:
            self.logger.info(f"Verified status: {snapshot.to_dict()}")
        console.print("[bold green]✓ 에이전트 연결 확인 완료[/bold green]")
        self.logger.info("=== Convergence completed successfully ===")
        return ConvergenceResult(
            success=True,
            reason="already converged" if already_converged else "converged",
            already_converged=already_converged,
            attempts=list(self.attempts),
            recovery_actions=list(self.recovery_actions),
            transitions=list(self.transitions),
            final_snapshot=snapshot,
        )

    def _fail(self, kind: ErrorKind, reason: str) -> ConvergenceResult:
        self.last_error_kind = kind
        self._transition(ConvergenceState.FAILED)
        console.print(f"[bold red]✗ 수렴 실패: {kind.value} - {reason}[/bold red]")
        self.logger.error(f"Convergence failed ({kind.value}): {reason}")
        diagnostics_path = self.exporter.export(self._diagnostics(kind, reason))
        return ConvergenceResult(
            success=False,
            last_error_kind=kind,
            diagnostics_path=diagnostics_path,
            reason=reason,
            attempts=list(self.attempts),
            recovery_actions=list(self.recovery_actions),
            transitions=list(self.transitions),
            final_snapshot=self.last_snapshot,
        )

    def _diagnostics(self, kind: ErrorKind, reason: str) -> Dict:
        """진단 스냅샷 수집 (읽기 전용)"""
        try:
            service_state = self.service_manager.query_state(self.handle.service_name).value
        except Exception as e:
            self.logger.warning(f"Service state unavailable for diagnostics: {e}")
            service_state = "Unknown"

        snapshot = self.last_snapshot
        if snapshot is None:
            try:
                snapshot = self.probe.probe()
            except Exception as e:
                self.logger.warning(f"Status probe unavailable for diagnostics: {e}")

        network = None
        if self.last_network is not None:
            network = {
                "critical_pass": self.last_network.critical_pass,
                "critical": self.last_network.critical,
                "advisory": self.last_network.advisory,
                "blocking_issues": self.last_network.blocking_issues,
                "warnings": self.last_network.warnings,
                "fallback_used": self.last_network.fallback_used,
            }

        prerequisites = None
        if self.last_prerequisites is not None:
            prerequisites = [
                {"name": c.name, "passed": c.passed, "critical": c.critical, "message": c.message}
                for c in self.last_prerequisites.checks
            ]

        return {
            "outcome": "Failed",
            "last_error_kind": kind.value,
            "reason": reason,
            "endpoint": self.endpoint,
            "agent": {
                "executable": self.handle.executable,
                "config_path": self.handle.config_path,
                "state_dir": self.handle.state_dir,
            },
            "service_name": self.handle.service_name,
            "service_state": service_state,
            "transitions": list(self.transitions),
            "attempts": [attempt.to_dict() for attempt in self.attempts],
            "recovery_actions": [record.to_dict() for record in self.recovery_actions],
            "readiness": dict(self.last_checks.checks) if self.last_checks else None,
            "network": network,
            "prerequisites": prerequisites,
            "last_status": snapshot.to_dict() if snapshot else None,
            "last_status_text": snapshot.raw_text if snapshot else "",
        }


def converge(credential: Optional[str], endpoint: str,
             options: Optional[ConvergeOptions] = None,
             config: Optional[Config] = None,
             handle: Optional[AgentHandle] = None,
             token: Optional[CancellationToken] = None) -> ConvergenceResult:
    """로컬 에이전트를 endpoint에 등록하고 연결 상태로 수렴"""
    config = config or Config()
    handle = handle or AgentLocator(config.agent).detect()
    if handle is None:
        logger = get_logger()
        logger.error(f"Agent binary '{config.agent.binary}' not found")
        exporter = DiagnosticsExporter(config.logging.diagnostics_dir)
        reason = f"agent '{config.agent.binary}' is not installed"
        path = exporter.export({
            "outcome": "Failed",
            "last_error_kind": ErrorKind.UNKNOWN.value,
            "reason": reason,
            "endpoint": endpoint,
            "service_name": config.agent.service_name,
            "transitions": [ConvergenceState.IDLE.value, ConvergenceState.FAILED.value],
        })
        return ConvergenceResult(success=False, last_error_kind=ErrorKind.UNKNOWN,
                                 diagnostics_path=path, reason=reason,
                                 transitions=[ConvergenceState.IDLE.value, ConvergenceState.FAILED.value])

    orchestrator = ConvergenceOrchestrator(config, handle, credential, endpoint, options, token)
    return orchestrator.run()
