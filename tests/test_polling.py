"""
제한 시간 폴링 테스트
"""

import threading
from mesh_vpn_agent.polling import CancellationToken, bounded_poll


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def test_runs_at_least_once_with_zero_wait():
    calls = []

    def check():
        calls.append(1)
        return False, "pending"

    result = bounded_poll(check, 0, 1)
    assert result.satisfied == False
    assert result.polls == 1
    assert result.last == "pending"


def test_stops_when_satisfied():
    values = iter([False, False, True])
    result = bounded_poll(lambda: (next(values), None), 5, 0.01)
    assert result.satisfied == True
    assert result.polls == 3


def test_respects_deadline():
    """max_wait 경과 후에는 더 이상 폴링하지 않음"""
    clock = FakeClock()

    def check():
        clock.now += 4
        return False, clock.now

    result = bounded_poll(check, 10, 0.001, clock=clock)
    assert result.satisfied == False
    assert result.polls == 3
    assert result.elapsed == 12


def test_cancel_interrupts_wait():
    token = CancellationToken()
    timer = threading.Timer(0.05, token.cancel)
    timer.start()
    try:
        result = bounded_poll(lambda: (False, None), 30, 10, token)
    finally:
        timer.cancel()

    assert result.cancelled == True
    assert result.polls == 1
    assert result.elapsed < 10
