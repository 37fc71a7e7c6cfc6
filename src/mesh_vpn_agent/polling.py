"""
제한 시간 폴링 유틸리티
모든 대기는 CancellationToken을 거쳐 외부에서 중단할 수 있음
"""

import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional, Tuple


class CancellationToken:
    """폴링 루프 중단 신호"""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self):
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, seconds: float) -> bool:
        """최대 seconds 동안 대기. 취소되면 즉시 True 반환"""
        if seconds <= 0:
            return self._event.is_set()
        return self._event.wait(seconds)


@dataclass
class PollResult:
    """폴링 결과"""
    satisfied: bool
    last: Any = None
    polls: int = 0
    cancelled: bool = False
    elapsed: float = 0.0


def bounded_poll(check: Callable[[], Tuple[bool, Any]],
                 max_wait: float,
                 interval: float,
                 token: Optional[CancellationToken] = None,
                 clock: Callable[[], float] = time.monotonic) -> PollResult:
    """check()가 만족될 때까지 max_wait 초 동안 반복

    check는 (만족 여부, 마지막 관측값)을 반환한다. 최소 1회는 항상 실행된다.
    """
    token = token or CancellationToken()
    start_time = clock()
    polls = 0
    last = None

    while True:
        if token.cancelled:
            return PollResult(False, last, polls, True, clock() - start_time)

        polls += 1
        ok, last = check()
        elapsed = clock() - start_time
        if ok:
            return PollResult(True, last, polls, False, elapsed)

        remaining = max_wait - elapsed
        if remaining <= 0:
            return PollResult(False, last, polls, False, elapsed)

        if token.wait(min(interval, remaining)):
            return PollResult(False, last, polls, True, clock() - start_time)
