"""
복구 정책 모듈
(ErrorKind, 시도 번호) → RecoveryAction 고정 테이블 조회. 실행은 오케스트레이터가 담당
"""

from typing import Dict, Optional, Tuple
from .models import ErrorKind, RecoveryAction, RecoveryDecision

A = RecoveryAction

# 시도 번호(1부터)별 단계적 복구 사다리. 사다리를 넘어가면 마지막 단계를 반복
ESCALATION_LADDERS: Dict[ErrorKind, Tuple[RecoveryAction, ...]] = {
    ErrorKind.DEADLINE_EXCEEDED: (
        A.WAIT_LONGER, A.RESTART_AGENT, A.PARTIAL_STATE_RESET, A.FULL_STATE_RESET,
    ),
    ErrorKind.CONNECTION_REFUSED: (
        A.RESTART_AGENT, A.RESTART_AGENT, A.PARTIAL_STATE_RESET, A.FULL_STATE_RESET,
    ),
    ErrorKind.INVALID_CREDENTIAL: (
        A.NONE,
    ),
    ErrorKind.NETWORK_ERROR: (
        A.WAIT_LONGER, A.RETEST_PREREQUISITES, A.RESTART_AGENT, A.PARTIAL_STATE_RESET,
    ),
    ErrorKind.VERIFICATION_FAILED: (
        A.WAIT_LONGER, A.RESTART_AGENT, A.PARTIAL_STATE_RESET, A.FULL_STATE_RESET,
    ),
    ErrorKind.UNKNOWN: (
        A.WAIT_LONGER, A.WAIT_LONGER, A.RESTART_AGENT,
    ),
}

DEFAULT_LADDER = ESCALATION_LADDERS[ErrorKind.UNKNOWN]


class RecoveryPolicy:
    """복구 동작 조회 (상태 없음)"""

    def __init__(self, wait_longer_seconds: float = 10, settle_seconds: float = 5,
                 ladders: Optional[Dict[ErrorKind, Tuple[RecoveryAction, ...]]] = None):
        self.wait_longer_seconds = wait_longer_seconds
        self.settle_seconds = settle_seconds
        self.ladders = ladders if ladders is not None else ESCALATION_LADDERS

    def action_for(self, kind: ErrorKind, attempt_index: int) -> RecoveryAction:
        ladder = self.ladders.get(kind, DEFAULT_LADDER)
        position = min(max(attempt_index, 1), len(ladder)) - 1
        return ladder[position]

    def decide(self, kind: ErrorKind, attempt_index: int) -> RecoveryDecision:
        """실패 분류와 시도 번호에 대한 복구 결정"""
        action = self.action_for(kind, attempt_index)
        if action == RecoveryAction.NONE:
            return RecoveryDecision(action, 0)
        if action == RecoveryAction.WAIT_LONGER:
            return RecoveryDecision(action, self.wait_longer_seconds * max(attempt_index, 1))
        return RecoveryDecision(action, self.settle_seconds)
