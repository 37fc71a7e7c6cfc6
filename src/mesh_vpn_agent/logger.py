"""
로깅 시스템
파일 및 콘솔 로깅, 디버그 모드, 자격 증명 마스킹, 오래된 로그 정리
"""

import glob
import logging
import os
from datetime import datetime
from typing import List, Optional, Set
from rich.logging import RichHandler
from rich.console import Console

console = Console()

DEFAULT_LOG_DIR = "/var/log/mesh-vpn-agent"
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


class SecretRedactionFilter(logging.Filter):
    """등록된 비밀 값을 로그 메시지에서 마스킹"""

    def __init__(self):
        super().__init__()
        self.secrets: Set[str] = set()

    def redact(self, text: str) -> str:
        for secret in self.secrets:
            text = text.replace(secret, f"{secret[:4]}{'*' * 8}")
        return text

    def filter(self, record: logging.LogRecord) -> bool:
        if self.secrets:
            record.msg = self.redact(record.getMessage())
            record.args = None
        return True


class AgentLogger:
    """에이전트 로거

    agent_<ts>.log 에 전체 로그, error_<ts>.log 에 ERROR 이상만 기록하고
    콘솔에는 Rich 핸들러로 출력한다. 모든 핸들러에 SecretRedactionFilter가 걸린다.
    """

    def __init__(self, log_dir: str = DEFAULT_LOG_DIR, log_level: str = "INFO",
                 debug: bool = False, keep_files: int = 0):
        self.log_dir = log_dir
        self.log_level = logging.DEBUG if debug else getattr(logging, log_level.upper())
        self.debug_mode = debug
        self.redaction = SecretRedactionFilter()

        os.makedirs(log_dir, exist_ok=True)
        if keep_files > 0:
            # 이번 실행 로그를 포함해 keep_files 개 유지
            self.prune_old_logs(keep_files - 1)

        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        self.log_file = os.path.join(log_dir, f"agent_{timestamp}.log")
        self.error_file = os.path.join(log_dir, f"error_{timestamp}.log")

        self.logger = logging.getLogger("mesh_vpn_agent")
        self.logger.setLevel(self.log_level)
        self.logger.propagate = False

        # 재초기화 시 이전 파일 핸들을 닫음
        for handler in list(self.logger.handlers):
            handler.close()
        self.logger.handlers.clear()

        for handler in self._build_handlers(debug):
            handler.addFilter(self.redaction)
            self.logger.addHandler(handler)

    def _build_handlers(self, debug: bool) -> List[logging.Handler]:
        formatter = logging.Formatter(LOG_FORMAT, datefmt='%Y-%m-%d %H:%M:%S')

        file_handler = logging.FileHandler(self.log_file, encoding='utf-8')
        file_handler.setLevel(self.log_level)
        file_handler.setFormatter(formatter)

        error_handler = logging.FileHandler(self.error_file, encoding='utf-8')
        error_handler.setLevel(logging.ERROR)
        error_handler.setFormatter(formatter)

        rich_handler = RichHandler(
            console=console,
            rich_tracebacks=True,
            show_time=False,
            show_path=debug
        )
        rich_handler.setLevel(self.log_level)

        return [file_handler, error_handler, rich_handler]

    def prune_old_logs(self, keep: int) -> int:
        """가장 최근 keep 개 실행분만 남기고 로그 파일 삭제"""
        removed = 0
        for prefix in ("agent_", "error_"):
            files = sorted(glob.glob(os.path.join(self.log_dir, f"{prefix}*.log")))
            for path in files[:max(len(files) - keep, 0)]:
                try:
                    os.remove(path)
                    removed += 1
                except OSError:
                    continue
        return removed

    def add_secret(self, secret: Optional[str]):
        """마스킹할 비밀 값 등록 (Setup Key 등)"""
        if secret:
            self.redaction.secrets.add(secret)

    def debug(self, message: str):
        self.logger.debug(message)

    def info(self, message: str):
        self.logger.info(message)

    def warning(self, message: str):
        self.logger.warning(message)

    def error(self, message: str):
        self.logger.error(message)

    def critical(self, message: str):
        self.logger.critical(message)

    def exception(self, message: str):
        """예외 로그 (트레이스백 포함)"""
        self.logger.exception(message)

    def get_log_files(self) -> dict:
        """로그 파일 경로 반환"""
        return {
            "main_log": self.log_file,
            "error_log": self.error_file,
            "log_dir": self.log_dir
        }


# 글로벌 로거 인스턴스
_logger: Optional[AgentLogger] = None


def get_logger() -> AgentLogger:
    """로거 인스턴스 가져오기 (초기화 전이면 기본 경로 사용)"""
    global _logger
    if _logger is None:
        _logger = AgentLogger()
    return _logger


def init_logger(log_dir: str, log_level: str = "INFO", debug: bool = False,
                keep_files: int = 0) -> AgentLogger:
    """설정 값으로 로거 (재)초기화"""
    global _logger
    _logger = AgentLogger(log_dir, log_level, debug, keep_files)
    return _logger
