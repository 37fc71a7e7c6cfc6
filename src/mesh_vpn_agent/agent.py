"""
로컬 VPN 에이전트 주변 도구
설치 확인/설치, 서비스 제어(systemd), 상태 디렉토리 정리
"""

import os
import shutil
import subprocess
from typing import Optional, Tuple
from rich.console import Console
from .config import AgentConfig
from .logger import get_logger
from .models import AgentHandle, ServiceState

console = Console()


class AgentLocator:
    """에이전트 실행 파일 탐지"""

    def __init__(self, config: AgentConfig):
        self.config = config
        self.logger = get_logger()

    def detect(self) -> Optional[AgentHandle]:
        """설치된 에이전트를 찾아 AgentHandle 반환 (없으면 None)"""
        try:
            result = subprocess.run(
                ["which", self.config.binary],
                capture_output=True,
                text=True
            )
        except OSError as e:
            self.logger.error(f"Agent detection failed: {e}")
            return None

        if result.returncode != 0 or not result.stdout.strip():
            self.logger.debug(f"{self.config.binary} not found in PATH")
            return None

        executable = result.stdout.strip().splitlines()[0]
        handle = AgentHandle(
            executable=executable,
            service_name=self.config.service_name,
            config_path=self.config.config_path,
            state_dir=self.config.state_dir,
            session_file=self.config.session_file,
        )
        self.logger.debug(f"Resolved agent handle: {handle}")
        return handle


class AgentInstaller:
    """에이전트 설치 (벤더 설치 스크립트, 재실행 안전)"""

    def __init__(self, config: AgentConfig):
        self.config = config
        self.logger = get_logger()

    def install(self) -> Tuple[bool, str]:
        """에이전트 설치"""
        console.print(f"[cyan]{self.config.binary} 클라이언트 설치 중...[/cyan]")
        self.logger.info(f"Installing {self.config.binary} from {self.config.install_url}")

        try:
            result = subprocess.run(
                f"curl -fsSL {self.config.install_url} | sh",
                shell=True,
                capture_output=True,
                text=True,
                timeout=600
            )
        except subprocess.TimeoutExpired:
            error_msg = "설치 타임아웃 (600초)"
            self.logger.error(error_msg)
            return False, error_msg
        except OSError as e:
            error_msg = f"설치 오류: {str(e)}"
            self.logger.exception(error_msg)
            return False, error_msg

        if result.returncode == 0:
            console.print(f"[green]✓ {self.config.binary} 클라이언트 설치 완료[/green]")
            self.logger.info("Agent installed successfully")
            return True, "설치 완료"

        error_msg = f"설치 실패: {result.stderr.strip() or result.stdout.strip()}"
        self.logger.error(error_msg)
        return False, error_msg


class ServiceManager:
    """systemd 서비스 제어"""

    def __init__(self, timeout: int = 30):
        self.timeout = timeout
        self.logger = get_logger()

    def _systemctl(self, action: str, name: str) -> Tuple[bool, str]:
        try:
            result = subprocess.run(
                ["systemctl", action, name],
                capture_output=True,
                text=True,
                timeout=self.timeout
            )
        except subprocess.TimeoutExpired:
            return False, f"systemctl {action} {name} timed out"
        except OSError as e:
            return False, str(e)

        output = (result.stdout or result.stderr or "").strip()
        return result.returncode == 0, output

    def start(self, name: str) -> Tuple[bool, str]:
        """서비스 시작"""
        ok, output = self._systemctl("start", name)
        if ok:
            self.logger.info(f"Service {name} started")
        else:
            self.logger.error(f"Failed to start service {name}: {output}")
        return ok, output

    def stop(self, name: str) -> Tuple[bool, str]:
        """서비스 중지"""
        ok, output = self._systemctl("stop", name)
        if ok:
            self.logger.info(f"Service {name} stopped")
        else:
            self.logger.warning(f"Failed to stop service {name}: {output}")
        return ok, output

    def query_state(self, name: str) -> ServiceState:
        """서비스 상태 조회"""
        ok, output = self._systemctl("is-active", name)
        if ok and output == "active":
            return ServiceState.RUNNING
        if output in ("inactive", "failed", "deactivating"):
            return ServiceState.STOPPED
        self.logger.debug(f"Service {name} state unknown: {output!r}")
        return ServiceState.UNKNOWN


class AgentStateStore:
    """에이전트 상태 파일 관리

    파일 내용은 읽기 전용 텍스트 검색만 하며, 삭제는 파일/디렉토리 단위로만 수행
    """

    def __init__(self, handle: AgentHandle):
        self.handle = handle
        self.logger = get_logger()

    @property
    def session_path(self) -> str:
        return os.path.join(self.handle.state_dir, self.handle.session_file)

    def has_registration(self) -> bool:
        return os.path.exists(self.handle.config_path)

    def mentions(self, text: str) -> bool:
        """설정 파일에 text가 포함되어 있는지 확인"""
        try:
            with open(self.handle.config_path, 'r', encoding='utf-8', errors='replace') as f:
                return text.lower() in f.read().lower()
        except OSError as e:
            self.logger.warning(f"Cannot read agent config {self.handle.config_path}: {e}")
            return False

    def clear_session(self) -> Tuple[bool, str]:
        """세션 파일만 삭제 (PartialStateReset)"""
        path = self.session_path
        if not os.path.exists(path):
            self.logger.debug(f"No session file at {path}")
            return True, "세션 파일 없음"
        try:
            os.remove(path)
        except OSError as e:
            error_msg = f"세션 파일 삭제 실패: {e}"
            self.logger.error(error_msg)
            return False, error_msg
        self.logger.info(f"Removed session file {path}")
        return True, "세션 파일 삭제"

    def clear_all(self) -> Tuple[bool, str]:
        """설정 파일과 상태 디렉토리 내용을 모두 삭제 (FullStateReset)"""
        removed = []
        try:
            if os.path.exists(self.handle.config_path):
                os.remove(self.handle.config_path)
                removed.append(self.handle.config_path)
            if os.path.isdir(self.handle.state_dir):
                for entry in os.listdir(self.handle.state_dir):
                    path = os.path.join(self.handle.state_dir, entry)
                    if os.path.isdir(path) and not os.path.islink(path):
                        shutil.rmtree(path)
                    else:
                        os.remove(path)
                    removed.append(path)
        except OSError as e:
            error_msg = f"상태 삭제 실패: {e}"
            self.logger.error(error_msg)
            return False, error_msg

        self.logger.info(f"Cleared agent state ({len(removed)} entries)")
        return True, f"{len(removed)}개 항목 삭제"
