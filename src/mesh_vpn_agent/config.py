"""
설정 관리 모듈
YAML/JSON 기반 설정 파일 관리 및 기본값 제공
"""

import os
import yaml
import json
from typing import Dict, Any, Optional
from dataclasses import dataclass, field, asdict


class ConfigError(ValueError):
    """잘못된 설정 값"""


@dataclass
class AgentConfig:
    """로컬 VPN 에이전트 설정"""
    binary: str = "netbird"
    service_name: str = "netbird"
    config_path: str = "/etc/netbird/config.json"
    state_dir: str = "/var/lib/netbird"
    session_file: str = "state.json"
    install_url: str = "https://pkgs.netbird.io/install.sh"
    registration_timeout: int = 90
    status_timeout: int = 15


@dataclass
class ManagementConfig:
    """관리 서버 및 Setup Key 설정"""
    url: str = "https://api.netbird.io:443"
    setup_key: str = ""
    credential_prefixes: list = field(default_factory=lambda: ["nbp", "nbs", "tskey"])
    min_credential_length: int = 32
    verify_tls: bool = True
    request_timeout: int = 10


@dataclass
class NetworkConfig:
    """네트워크 사전 점검 설정"""
    dns_probe_host: str = "pkgs.netbird.io"
    internet_probe_url: str = "https://pkgs.netbird.io"
    relay_hosts: list = field(default_factory=lambda: ["signal.netbird.io:443", "relay.netbird.io:443"])
    check_timeout: int = 5
    retry_backoff: int = 15


@dataclass
class ConvergenceConfig:
    """수렴(등록/검증/복구) 설정"""
    max_attempts: int = 5
    daemon_wait_seconds: int = 60
    daemon_poll_interval: float = 2.0
    verify_wait_seconds: int = 90
    verify_poll_interval: float = 3.0
    wait_longer_seconds: int = 10
    settle_seconds: int = 5
    require_signal: bool = True
    error_markers: list = field(default_factory=lambda: [
        "NeedsLogin",
        "LoginFailed",
        "failed to connect to daemon",
        "connection refused",
        "context deadline exceeded",
        "daemon is not running",
    ])
    critical_checks: list = field(default_factory=lambda: [
        "ValidCredential",
        "EndpointReachable",
        "NoConflictingRegistration",
    ])
    min_free_mb: int = 100


@dataclass
class LoggingConfig:
    """로그 및 진단 파일 설정"""
    log_dir: str = "/var/log/mesh-vpn-agent"
    log_level: str = "INFO"
    diagnostics_dir: str = "/var/log/mesh-vpn-agent/diagnostics"
    keep_log_files: int = 20  # 0이면 정리하지 않음


class Config:
    """전체 설정 관리 클래스"""

    DEFAULT_CONFIG_PATHS = [
        "/etc/mesh-vpn-agent/config.yaml",
        "~/.mesh-vpn-agent/config.yaml",
        "./config/config.yaml",
        "./config.yaml",
    ]

    SECTIONS = ("agent", "management", "network", "convergence", "logging")

    def __init__(self, config_path: Optional[str] = None):
        self.config_path = config_path
        self.agent = AgentConfig()
        self.management = ManagementConfig()
        self.network = NetworkConfig()
        self.convergence = ConvergenceConfig()
        self.logging = LoggingConfig()

        if config_path:
            self.load(config_path)
        else:
            self._load_from_default_paths()

    def _load_from_default_paths(self):
        """기본 경로에서 설정 파일 로드"""
        for path in self.DEFAULT_CONFIG_PATHS:
            expanded_path = os.path.expanduser(path)
            if os.path.exists(expanded_path):
                self.load(expanded_path)
                return

    def load(self, path: str):
        """설정 파일 로드"""
        path = os.path.expanduser(path)
        if not os.path.exists(path):
            return

        with open(path, 'r', encoding='utf-8') as f:
            if path.endswith('.json'):
                data = json.load(f)
            else:
                data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ConfigError(f"설정 파일 형식이 올바르지 않습니다: {path}")

        self._update_from_dict(data)
        self.config_path = path

    def _update_from_dict(self, data: Dict[str, Any]):
        """딕셔너리에서 설정 업데이트"""
        for section_name in self.SECTIONS:
            values = data.get(section_name)
            if not values:
                continue
            if not isinstance(values, dict):
                raise ConfigError(f"'{section_name}' 섹션은 매핑이어야 합니다")
            section = getattr(self, section_name)
            for key, value in values.items():
                if hasattr(section, key):
                    setattr(section, key, value)

    def validate(self):
        """설정 값 검증"""
        conv = self.convergence
        if int(conv.max_attempts) < 1:
            raise ConfigError("convergence.max_attempts는 1 이상이어야 합니다")
        for name in ("daemon_wait_seconds", "verify_wait_seconds",
                     "daemon_poll_interval", "verify_poll_interval"):
            if float(getattr(conv, name)) <= 0:
                raise ConfigError(f"convergence.{name}는 0보다 커야 합니다")
        if int(self.logging.keep_log_files) < 0:
            raise ConfigError("logging.keep_log_files는 음수일 수 없습니다")
        for name in ("wait_longer_seconds", "settle_seconds", "min_free_mb"):
            if float(getattr(conv, name)) < 0:
                raise ConfigError(f"convergence.{name}는 음수일 수 없습니다")
        if int(self.management.min_credential_length) < 1:
            raise ConfigError("management.min_credential_length는 1 이상이어야 합니다")
        if not self.management.url.startswith(("http://", "https://")):
            raise ConfigError(f"management.url이 올바르지 않습니다: {self.management.url}")
        if self.logging.log_level.upper() not in ("DEBUG", "INFO", "WARNING", "WARN", "ERROR", "CRITICAL"):
            raise ConfigError(f"logging.log_level이 올바르지 않습니다: {self.logging.log_level}")

    def save(self, path: Optional[str] = None):
        """설정 파일 저장"""
        save_path = path or self.config_path or self.DEFAULT_CONFIG_PATHS[0]
        save_path = os.path.expanduser(save_path)

        directory = os.path.dirname(save_path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        data = self.to_dict()

        with open(save_path, 'w', encoding='utf-8') as f:
            if save_path.endswith('.json'):
                json.dump(data, f, indent=2)
            else:
                yaml.dump(data, f, default_flow_style=False, allow_unicode=True)

    def to_dict(self) -> Dict[str, Any]:
        """딕셔너리로 변환"""
        return {name: asdict(getattr(self, name)) for name in self.SECTIONS}

    def create_sample(self, output_path: str):
        """샘플 설정 파일 생성"""
        template = """# Mesh VPN Agent Configuration File
# 이 파일을 복사하여 config.yaml로 사용하세요

# 로컬 VPN 에이전트
agent:
  binary: "netbird"
  service_name: "netbird"
  config_path: "/etc/netbird/config.json"  # 기존 등록 충돌 검사에 사용
  state_dir: "/var/lib/netbird"  # FullStateReset 시 전체 삭제
  session_file: "state.json"  # PartialStateReset 시 이 파일만 삭제
  install_url: "https://pkgs.netbird.io/install.sh"
  registration_timeout: 90
  status_timeout: 15

# 관리 서버
management:
  url: "https://api.netbird.io:443"
  setup_key: ""  # 관리 콘솔에서 발급한 Setup Key
  credential_prefixes: ["nbp", "nbs", "tskey"]
  min_credential_length: 32
  verify_tls: true
  request_timeout: 10

# 네트워크 사전 점검
network:
  dns_probe_host: "pkgs.netbird.io"
  internet_probe_url: "https://pkgs.netbird.io"
  relay_hosts:  # 권고(advisory) 점검 대상
    - "signal.netbird.io:443"
    - "relay.netbird.io:443"
  check_timeout: 5
  retry_backoff: 15  # 1차 실패 후 재점검까지 대기 (초)

# 수렴 설정
convergence:
  max_attempts: 5
  daemon_wait_seconds: 60
  daemon_poll_interval: 2
  verify_wait_seconds: 90
  verify_poll_interval: 3
  wait_longer_seconds: 10
  settle_seconds: 5
  require_signal: true
  min_free_mb: 100
  critical_checks:
    - "ValidCredential"
    - "EndpointReachable"
    - "NoConflictingRegistration"

# 로그
logging:
  log_dir: "/var/log/mesh-vpn-agent"
  log_level: "INFO"  # DEBUG, INFO, WARNING, ERROR
  diagnostics_dir: "/var/log/mesh-vpn-agent/diagnostics"
  keep_log_files: 20  # 최근 N회 실행분 로그만 유지 (0 = 무제한)
"""

        directory = os.path.dirname(output_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(output_path, 'w', encoding='utf-8') as f:
            f.write(template)
