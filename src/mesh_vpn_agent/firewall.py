"""
호스트 방화벽 정책 점검 모듈
UFW, firewalld, iptables 에서 아웃바운드(egress) 차단 정책 감지 (읽기 전용)
"""

import subprocess
from typing import List, Optional, Tuple
from .logger import get_logger


class FirewallInspector:
    """방화벽 egress 정책 확인 클래스"""

    def __init__(self, timeout: int = 10):
        self.timeout = timeout
        self.logger = get_logger()
        self.firewall_type = None

    def _run(self, cmd: List[str]) -> Tuple[Optional[int], str]:
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.timeout
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            return None, str(e)
        return result.returncode, result.stdout

    def detect_firewall(self) -> str:
        """시스템의 방화벽 타입 감지"""
        for tool, name in (("ufw", "ufw"), ("firewall-cmd", "firewalld"), ("iptables", "iptables")):
            code, _ = self._run(["which", tool])
            if code == 0:
                return name
        return "none"

    def check_egress(self) -> Tuple[bool, str]:
        """아웃바운드 기본 차단 정책 여부 확인"""
        self.firewall_type = self.detect_firewall()
        self.logger.debug(f"Detected firewall: {self.firewall_type}")

        if self.firewall_type == "ufw":
            return self._check_ufw()
        elif self.firewall_type == "firewalld":
            return self._check_firewalld()
        elif self.firewall_type == "iptables":
            return self._check_iptables()
        return True, "방화벽 관리 도구 없음"

    def _check_ufw(self) -> Tuple[bool, str]:
        code, output = self._run(["ufw", "status", "verbose"])
        if code != 0:
            return True, "UFW 상태 확인 불가"
        if "Status: inactive" in output:
            return True, "UFW 비활성화"
        for line in output.splitlines():
            if line.startswith("Default:") and ("deny (outgoing)" in line or "reject (outgoing)" in line):
                return False, "UFW 아웃바운드 기본 정책이 차단(deny)입니다"
        return True, "UFW 아웃바운드 허용"

    def _check_firewalld(self) -> Tuple[bool, str]:
        code, output = self._run(["firewall-cmd", "--direct", "--get-all-rules"])
        if code != 0:
            return True, "firewalld 규칙 확인 불가"
        for line in output.splitlines():
            if "OUTPUT" in line and ("DROP" in line or "REJECT" in line):
                return False, f"firewalld 아웃바운드 차단 규칙: {line.strip()}"
        return True, "firewalld 아웃바운드 허용"

    def _check_iptables(self) -> Tuple[bool, str]:
        code, output = self._run(["iptables", "-S", "OUTPUT"])
        if code != 0:
            return True, "iptables 규칙 확인 불가"
        for line in output.splitlines():
            if line.strip() in ("-P OUTPUT DROP", "-P OUTPUT REJECT"):
                return False, "iptables OUTPUT 기본 정책이 DROP입니다"
        return True, "iptables 아웃바운드 허용"
