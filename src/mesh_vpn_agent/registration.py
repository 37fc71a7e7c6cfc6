"""
등록 실행 모듈
에이전트 등록 명령을 정확히 1회 실행하고 결과를 오류 분류 규칙으로 분류
"""

import re
import subprocess
import time
from typing import Optional, Pattern, Tuple
from rich.console import Console
from .logger import get_logger
from .models import AgentHandle, ErrorKind, RegistrationAttempt

console = Console()

# 순서가 의미를 가짐: 첫 번째로 일치하는 규칙이 적용됨
CLASSIFICATION_RULES: Tuple[Tuple[ErrorKind, Pattern], ...] = (
    (ErrorKind.DEADLINE_EXCEEDED, re.compile(
        r"deadline exceeded|deadlineexceeded|timed out|timeout expired", re.IGNORECASE)),
    (ErrorKind.CONNECTION_REFUSED, re.compile(
        r"connection refused|actively refused|connectex: no connection could be made", re.IGNORECASE)),
    (ErrorKind.INVALID_CREDENTIAL, re.compile(
        r"invalid setup.?key|setup.?key (is )?(invalid|expired|revoked|not found)"
        r"|couldn't add peer: setup key|unauthenticated|permissiondenied"
        r"|invalid (auth|pre-?auth|api) ?key|key (is )?(expired|revoked)|\b401\b|\b403\b",
        re.IGNORECASE)),
    (ErrorKind.NETWORK_ERROR, re.compile(
        r"i/o timeout|no such host|network is unreachable|no route to host|name resolution"
        r"|temporary failure in name|\bdns\b|tls handshake|connection reset|code = unavailable|\beof\b",
        re.IGNORECASE)),
)


def classify_failure(text: str, exit_code: Optional[int] = None) -> ErrorKind:
    """실패 출력 텍스트를 ErrorKind로 분류"""
    for kind, pattern in CLASSIFICATION_RULES:
        if pattern.search(text or ""):
            return kind
    # timeout(1) 래퍼가 돌려주는 종료 코드
    if exit_code == 124:
        return ErrorKind.DEADLINE_EXCEEDED
    return ErrorKind.UNKNOWN


def mask_credential(text: str, credential: str) -> str:
    """로그용 자격 증명 마스킹"""
    if not credential:
        return text
    visible = credential[:4]
    return text.replace(credential, f"{visible}{'*' * 8}")


class RegistrationExecutor:
    """등록 명령 1회 실행 (내부 재시도 없음)"""

    def __init__(self, handle: AgentHandle, timeout: int = 90):
        self.handle = handle
        self.timeout = timeout
        self.logger = get_logger()

    def build_command(self, credential: str, endpoint: str) -> list:
        return [
            self.handle.executable, "up",
            "--setup-key", credential,
            "--management-url", endpoint,
        ]

    def _execute(self, credential: str, endpoint: str) -> Tuple[int, str]:
        try:
            result = subprocess.run(
                self.build_command(credential, endpoint),
                capture_output=True,
                text=True,
                timeout=self.timeout
            )
        except subprocess.TimeoutExpired:
            return -1, f"registration timed out after {self.timeout}s (deadline exceeded)"
        except OSError as e:
            return -1, f"failed to execute registration command: {e}"

        output = "\n".join(part.strip() for part in (result.stdout, result.stderr) if part and part.strip())
        return result.returncode, output

    def register(self, credential: str, endpoint: str, attempt_index: int) -> RegistrationAttempt:
        """등록 시도 1회"""
        console.print(f"[cyan]등록 시도 #{attempt_index} ({endpoint})...[/cyan]")
        self.logger.info(f"Registration attempt #{attempt_index} against {endpoint}")

        started = time.monotonic()
        exit_code, output = self._execute(credential, endpoint)
        duration = time.monotonic() - started
        output = mask_credential(output, credential)

        if exit_code == 0:
            self.logger.info(f"Registration attempt #{attempt_index} reported success ({duration:.1f}s)")
            return RegistrationAttempt(attempt_index, True, None, output, exit_code, duration)

        kind = classify_failure(output, exit_code)
        console.print(f"[red]✗ 등록 실패 #{attempt_index}: {kind.value}[/red]")
        self.logger.error(f"Registration attempt #{attempt_index} failed ({kind.value}, exit={exit_code}): {output}")
        return RegistrationAttempt(attempt_index, False, kind, output, exit_code, duration)
