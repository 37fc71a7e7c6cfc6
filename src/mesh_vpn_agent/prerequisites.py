"""
등록 사전 조건 검증 모듈
자격 증명 형식, 관리 서버 연결, 기존 등록 충돌, 저장 공간, 방화벽 egress 정책
"""

import os
import re
import shutil
import requests
from typing import Callable, Dict, List, Optional, Tuple
from urllib.parse import urlparse
from .agent import AgentStateStore
from .config import ManagementConfig
from .firewall import FirewallInspector
from .logger import get_logger
from .models import AgentHandle, ErrorKind, PrerequisiteCheck, PrerequisiteReport

UUID_RE = re.compile(r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$")
OPAQUE_TOKEN_RE = re.compile(r"^[A-Za-z0-9_\-]+$")

# 치명적 점검 실패 시 보고할 오류 분류
FAILURE_KINDS = {
    "ValidCredential": ErrorKind.INVALID_CREDENTIAL,
    "EndpointReachable": ErrorKind.NETWORK_ERROR,
    "NoConflictingRegistration": ErrorKind.UNKNOWN,
}


def credential_format(credential: str, prefixes: List[str], min_length: int) -> Optional[str]:
    """자격 증명이 허용된 형식이면 형식 이름, 아니면 None"""
    if not credential or len(credential) < min_length:
        return None
    if UUID_RE.match(credential):
        return "uuid"
    for prefix in prefixes:
        for separator in ("_", "-"):
            head = f"{prefix}{separator}"
            if credential.startswith(head) and OPAQUE_TOKEN_RE.match(credential[len(head):]):
                return "prefixed"
    if OPAQUE_TOKEN_RE.match(credential):
        return "opaque"
    return None


class PrerequisiteValidator:
    """등록 시도 전 사전 조건 검증 (상태 변경 없음)"""

    def __init__(self, handle: AgentHandle, config: ManagementConfig,
                 critical_checks: Optional[List[str]] = None,
                 min_free_mb: int = 100,
                 firewall: Optional[FirewallInspector] = None):
        self.handle = handle
        self.config = config
        self.critical_checks = set(critical_checks if critical_checks is not None else FAILURE_KINDS)
        self.min_free_mb = min_free_mb
        self.state_store = AgentStateStore(handle)
        self.firewall = firewall or FirewallInspector()
        self.logger = get_logger()

    def check_credential(self, credential: str) -> Tuple[bool, str]:
        """자격 증명 형식 확인"""
        kind = credential_format(credential, self.config.credential_prefixes,
                                 self.config.min_credential_length)
        if kind:
            return True, f"자격 증명 형식 확인 ({kind})"
        return False, (f"허용되지 않는 자격 증명 형식 "
                       f"(UUID/토큰, 최소 {self.config.min_credential_length}자)")

    def check_endpoint(self, endpoint: str) -> Tuple[bool, str]:
        """관리 서버 연결 확인 (5xx 미만 응답이면 연결 가능)"""
        try:
            response = requests.get(endpoint, timeout=self.config.request_timeout,
                                    verify=self.config.verify_tls, allow_redirects=False)
        except requests.exceptions.SSLError:
            return False, f"SSL 인증서 오류 ({endpoint})"
        except requests.exceptions.Timeout:
            return False, f"타임아웃 ({endpoint})"
        except requests.exceptions.ConnectionError:
            return False, f"연결 실패 ({endpoint})"
        except requests.exceptions.RequestException as e:
            return False, f"요청 오류: {e}"

        if response.status_code >= 500:
            return False, f"서버 오류 응답 ({response.status_code})"
        return True, f"관리 서버 응답 ({response.status_code})"

    def check_conflict(self, endpoint: str) -> Tuple[bool, str]:
        """다른 관리 서버로 등록된 기존 상태가 있는지 확인"""
        if not self.state_store.has_registration():
            return True, "기존 등록 없음"
        host = urlparse(endpoint).hostname or endpoint
        if self.state_store.mentions(host):
            return True, f"기존 등록이 동일 서버({host})를 가리킴"
        return False, f"기존 등록이 다른 관리 서버를 가리킴 ({self.handle.config_path})"

    def check_storage(self) -> Tuple[bool, str]:
        """상태 디렉토리 여유 공간 확인"""
        path = os.path.abspath(self.handle.state_dir)
        while not os.path.exists(path):
            parent = os.path.dirname(path)
            if parent == path:
                break
            path = parent
        try:
            free_mb = shutil.disk_usage(path).free // (1024 * 1024)
        except OSError as e:
            return False, f"디스크 사용량 확인 실패: {e}"
        if free_mb < self.min_free_mb:
            return False, f"여유 공간 부족 ({free_mb}MB < {self.min_free_mb}MB)"
        return True, f"여유 공간 {free_mb}MB"

    def check_firewall(self) -> Tuple[bool, str]:
        return self.firewall.check_egress()

    def validate(self, credential: str, endpoint: str, skip_conflict: bool = False) -> PrerequisiteReport:
        """사전 조건 전체 검증"""
        self.logger.info("Validating registration prerequisites...")
        checks: Dict[str, Callable[[], Tuple[bool, str]]] = {
            "ValidCredential": lambda: self.check_credential(credential),
            "EndpointReachable": lambda: self.check_endpoint(endpoint),
        }
        if not skip_conflict:
            checks["NoConflictingRegistration"] = lambda: self.check_conflict(endpoint)
        checks["StorageHeadroom"] = self.check_storage
        checks["EgressAllowed"] = self.check_firewall

        report = PrerequisiteReport()
        for name, check in checks.items():
            passed, message = check()
            critical = name in self.critical_checks
            report.checks.append(PrerequisiteCheck(name, passed, critical, message))
            if passed:
                self.logger.debug(f"[pass] {name}: {message}")
            elif critical:
                self.logger.error(f"[critical] {name}: {message}")
            else:
                self.logger.warning(f"[advisory] {name}: {message}")

        self.logger.info(f"Prerequisites {'passed' if report.passed else 'failed'}")
        return report

    @staticmethod
    def failure_kind(report: PrerequisiteReport) -> ErrorKind:
        """첫 번째 치명적 실패에 대응하는 오류 분류"""
        for check in report.critical_failures():
            return FAILURE_KINDS.get(check.name, ErrorKind.UNKNOWN)
        return ErrorKind.UNKNOWN
