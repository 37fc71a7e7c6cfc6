"""
복구 정책 테스트
"""

import pytest
from mesh_vpn_agent.models import ErrorKind, RecoveryAction
from mesh_vpn_agent.recovery import ESCALATION_LADDERS, RecoveryPolicy


@pytest.mark.parametrize("kind", list(ErrorKind))
def test_ladder_never_deescalates(kind):
    """시도 번호가 늘어도 복구 동작이 완화되지 않음"""
    policy = RecoveryPolicy()
    ranks = [policy.action_for(kind, i).rank for i in range(1, 8)]
    assert ranks == sorted(ranks)


def test_invalid_credential_never_retries():
    """잘못된 자격 증명은 첫 시도부터 복구 없음"""
    policy = RecoveryPolicy()
    for attempt in range(1, 5):
        decision = policy.decide(ErrorKind.INVALID_CREDENTIAL, attempt)
        assert decision.action == RecoveryAction.NONE
        assert decision.wait_seconds == 0


def test_deadline_ladder():
    policy = RecoveryPolicy()
    actions = [policy.action_for(ErrorKind.DEADLINE_EXCEEDED, i) for i in range(1, 6)]
    assert actions == [
        RecoveryAction.WAIT_LONGER,
        RecoveryAction.RESTART_AGENT,
        RecoveryAction.PARTIAL_STATE_RESET,
        RecoveryAction.FULL_STATE_RESET,
        RecoveryAction.FULL_STATE_RESET,
    ]


def test_network_error_retests_before_restart():
    policy = RecoveryPolicy()
    assert policy.action_for(ErrorKind.NETWORK_ERROR, 2) == RecoveryAction.RETEST_PREREQUISITES
    assert policy.action_for(ErrorKind.NETWORK_ERROR, 3) == RecoveryAction.RESTART_AGENT


def test_unlisted_kind_uses_unknown_ladder():
    """사다리에 없는 분류는 Unknown 사다리 사용"""
    ladders = {ErrorKind.UNKNOWN: ESCALATION_LADDERS[ErrorKind.UNKNOWN]}
    policy = RecoveryPolicy(ladders=ladders)
    assert policy.action_for(ErrorKind.CONNECTION_REFUSED, 1) == RecoveryAction.WAIT_LONGER
    assert policy.action_for(ErrorKind.CONNECTION_REFUSED, 3) == RecoveryAction.RESTART_AGENT


def test_wait_longer_scales_with_attempt():
    policy = RecoveryPolicy(wait_longer_seconds=10, settle_seconds=5)
    assert policy.decide(ErrorKind.UNKNOWN, 1).wait_seconds == 10
    assert policy.decide(ErrorKind.UNKNOWN, 2).wait_seconds == 20
    assert policy.decide(ErrorKind.UNKNOWN, 3).wait_seconds == 5
