"""
네트워크 사전 점검 모듈
인터페이스, 기본 경로, DNS, 인터넷 연결(필수) 및 시간 동기화, 프록시, 릴레이(권고) 점검
"""

import os
import socket
import subprocess
import requests
from typing import Callable, Dict, List, Optional, Tuple
from .config import NetworkConfig
from .logger import get_logger
from .models import NetworkPrerequisites

PROXY_VARIABLES = ("HTTP_PROXY", "HTTPS_PROXY", "ALL_PROXY")

# (통과 여부 또는 None, 메시지)
CheckOutcome = Tuple[Optional[bool], str]


class NetworkGate:
    """호스트 네트워크 사용 가능 여부 확인"""

    def __init__(self, config: NetworkConfig, management_url: str,
                 verify_tls: bool = True, resolv_conf: str = "/etc/resolv.conf"):
        self.config = config
        self.management_url = management_url
        self.verify_tls = verify_tls
        self.resolv_conf = resolv_conf
        self.logger = get_logger()

    def _command(self, cmd: List[str]) -> Tuple[Optional[int], str]:
        """명령 실행. 실행 자체가 불가능하면 (None, 오류)"""
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.config.check_timeout
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            return None, str(e)
        return result.returncode, result.stdout

    def check_active_interface(self) -> CheckOutcome:
        """loopback 이외의 활성 인터페이스 확인"""
        code, output = self._command(["ip", "-o", "link", "show", "up"])
        if code is None or code != 0:
            return None, f"인터페이스 조회 불가: {output.strip()}"

        interfaces = []
        for line in output.splitlines():
            parts = line.split(":")
            if len(parts) >= 2:
                name = parts[1].strip().split("@")[0]
                if name and name != "lo":
                    interfaces.append(name)

        if interfaces:
            return True, f"활성 인터페이스: {', '.join(interfaces)}"
        return False, "활성 네트워크 인터페이스 없음"

    def check_default_route(self) -> CheckOutcome:
        """기본 경로 확인"""
        code, output = self._command(["ip", "route", "show", "default"])
        if code is None or code != 0:
            return None, f"경로 조회 불가: {output.strip()}"
        if output.strip():
            return True, f"기본 경로: {output.strip().splitlines()[0]}"
        return False, "기본 경로(default route) 없음"

    def check_dns_server(self) -> CheckOutcome:
        """DNS 서버 설정 확인"""
        try:
            with open(self.resolv_conf, 'r', encoding='utf-8') as f:
                servers = [
                    line.split()[1] for line in f
                    if line.strip().startswith("nameserver") and len(line.split()) > 1
                ]
        except OSError as e:
            return None, f"{self.resolv_conf} 읽기 불가: {e}"

        if servers:
            return True, f"DNS 서버: {', '.join(servers)}"
        return False, "DNS 서버가 설정되지 않음"

    def check_dns(self, domain: Optional[str] = None) -> CheckOutcome:
        """DNS 조회 테스트"""
        domain = domain or self.config.dns_probe_host
        try:
            socket.gethostbyname(domain)
            return True, f"DNS 조회 성공 ({domain})"
        except socket.gaierror:
            return False, f"DNS 조회 실패 ({domain})"
        except OSError as e:
            return None, f"DNS 테스트 오류: {e}"

    def check_http(self, url: str) -> CheckOutcome:
        """HTTP/HTTPS 응답 여부 확인 (응답 코드 무관)"""
        try:
            response = requests.get(url, timeout=self.config.check_timeout, verify=self.verify_tls)
            return True, f"HTTP 응답 수신 ({url}, status: {response.status_code})"
        except requests.exceptions.SSLError:
            return False, f"SSL 인증서 오류 ({url})"
        except requests.exceptions.Timeout:
            return False, f"타임아웃 ({url})"
        except requests.exceptions.ConnectionError:
            return False, f"연결 실패 ({url})"
        except requests.exceptions.RequestException as e:
            return False, f"HTTP 테스트 오류: {e}"

    def check_clock_sync(self) -> CheckOutcome:
        """NTP 시간 동기화 확인"""
        code, output = self._command(["timedatectl", "show", "-p", "NTPSynchronized", "--value"])
        if code is None or code != 0:
            return None, "시간 동기화 상태 조회 불가"
        if output.strip().lower() == "yes":
            return True, "시간 동기화됨"
        return False, "시스템 시간이 NTP와 동기화되지 않음"

    def check_proxy(self) -> CheckOutcome:
        """가로채기 프록시 설정 여부"""
        found = [
            name for var in PROXY_VARIABLES for name in (var, var.lower())
            if os.environ.get(name)
        ]
        if found:
            return False, f"프록시 환경 변수 설정됨: {', '.join(found)}"
        return True, "프록시 없음"

    def check_port(self, host: str, port: int) -> CheckOutcome:
        """TCP 포트 연결 테스트"""
        try:
            with socket.create_connection((host, port), timeout=self.config.check_timeout):
                return True, f"{host}:{port} 연결 성공"
        except socket.gaierror:
            return False, f"{host} 호스트를 찾을 수 없습니다"
        except OSError as e:
            return False, f"{host}:{port} 연결 실패 ({e})"

    @staticmethod
    def _split_host(target: str) -> Tuple[str, int]:
        if ":" in target:
            host, port = target.rsplit(":", 1)
            return host, int(port)
        return target, 443

    def critical_checks(self) -> Dict[str, Callable[[], CheckOutcome]]:
        return {
            "ActiveInterface": self.check_active_interface,
            "DefaultRoute": self.check_default_route,
            "DnsServerConfigured": self.check_dns_server,
            "DnsResolution": self.check_dns,
            "InternetReachable": lambda: self.check_http(self.config.internet_probe_url),
        }

    def advisory_checks(self) -> Dict[str, Callable[[], CheckOutcome]]:
        checks = {
            "ClockSynchronized": self.check_clock_sync,
            "NoInterceptingProxy": self.check_proxy,
        }
        for target in self.config.relay_hosts:
            host, port = self._split_host(target)
            checks[f"RelayReachable:{host}"] = (lambda h=host, p=port: self.check_port(h, p))
        return checks

    def _run_check(self, name: str, check: Callable[[], CheckOutcome]) -> CheckOutcome:
        try:
            return check()
        except Exception as e:
            # 점검 메커니즘 자체의 실패는 '알 수 없음'으로 취급
            self.logger.warning(f"Network check {name} unavailable: {e}")
            return None, f"{name} 점검 불가: {e}"

    def evaluate(self) -> NetworkPrerequisites:
        """네트워크 사전 점검 1회 수행"""
        self.logger.info("Evaluating network prerequisites...")
        result = NetworkPrerequisites()
        failures = []

        for name, check in self.critical_checks().items():
            ok, msg = self._run_check(name, check)
            result.critical[name] = ok
            if ok is None:
                self.logger.warning(f"[unknown] {name}: {msg}")
            elif ok:
                self.logger.debug(f"[pass] {name}: {msg}")
            else:
                self.logger.warning(f"[fail] {name}: {msg}")
                failures.append(f"{name}: {msg}")

        for name, check in self.advisory_checks().items():
            ok, msg = self._run_check(name, check)
            result.advisory[name] = ok
            if ok is False:
                result.warnings.append(f"{name}: {msg}")
                self.logger.warning(f"[advisory] {name}: {msg}")
            elif ok is None:
                self.logger.debug(f"[advisory unknown] {name}: {msg}")

        if failures:
            result.critical_pass = False
            result.blocking_issues = failures
        elif all(value is True for value in result.critical.values()):
            result.critical_pass = True
        else:
            # 점검 불가 항목이 있으면 관리 서버 종단 간 연결을 기준으로 판단
            result.fallback_used = True
            reachable, msg = self.check_http(self.management_url)
            self.logger.info(f"End-to-end management probe: {msg}")
            result.critical_pass = bool(reachable)
            if not reachable:
                result.blocking_issues = [f"ManagementReachable: {msg}"]

        if result.critical_pass:
            self.logger.info("Network prerequisites passed")
        else:
            self.logger.error(f"Network prerequisites failed: {result.blocking_issues}")
        return result
