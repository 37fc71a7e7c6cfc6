"""
공용 테스트 픽스처
"""

import pytest
from mesh_vpn_agent.config import Config
from mesh_vpn_agent.logger import init_logger
from mesh_vpn_agent.models import AgentHandle


@pytest.fixture(autouse=True)
def agent_logger(tmp_path):
    """테스트마다 임시 디렉토리에 로그 기록"""
    return init_logger(str(tmp_path / "logs"), "DEBUG", False)


@pytest.fixture
def handle(tmp_path):
    """임시 경로를 사용하는 AgentHandle"""
    config_dir = tmp_path / "etc"
    state_dir = tmp_path / "state"
    config_dir.mkdir()
    state_dir.mkdir()
    return AgentHandle(
        executable="/usr/bin/netbird",
        service_name="netbird",
        config_path=str(config_dir / "config.json"),
        state_dir=str(state_dir),
        session_file="state.json",
    )


@pytest.fixture
def fast_config(tmp_path):
    """대기 시간을 최소화한 설정"""
    cfg = Config(str(tmp_path / "missing.yaml"))
    cfg.network.retry_backoff = 0
    cfg.convergence.daemon_poll_interval = 0.01
    cfg.convergence.verify_poll_interval = 0.01
    cfg.convergence.daemon_wait_seconds = 0.05
    cfg.convergence.verify_wait_seconds = 0.05
    cfg.convergence.wait_longer_seconds = 0
    cfg.convergence.settle_seconds = 0
    cfg.logging.log_dir = str(tmp_path / "logs")
    cfg.logging.diagnostics_dir = str(tmp_path / "diagnostics")
    return cfg
