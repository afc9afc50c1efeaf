import itertools

import pytest

from range_controller.cloning.polling import Backoff, fixed, poll_until
from range_controller.exceptions import OperationTimeoutError, TransientError

from tests.fakes import FakeClock


def test_backoff_doubles_to_ceiling():
    assert list(itertools.islice(Backoff().delays(), 7)) == [1, 2, 4, 8, 16, 30, 30]
    assert list(itertools.islice(fixed(2.0).delays(), 3)) == [2.0, 2.0, 2.0]


def test_returns_first_truthy_value():
    clock = FakeClock()
    answers = iter([None, False, "ready"])

    assert poll_until(lambda: next(answers), timeout=60, sleep=clock.sleep, clock=clock.monotonic) == "ready"
    assert clock.sleeps == [1, 2]


def test_transient_errors_are_retried():
    clock = FakeClock()
    calls = []

    def check():
        calls.append(1)
        if len(calls) < 3:
            raise TransientError("flaky")
        return True

    assert poll_until(check, timeout=60, sleep=clock.sleep, clock=clock.monotonic) is True
    assert len(calls) == 3


def test_timeout_runs_compensation():
    clock = FakeClock()
    cleaned = []

    with pytest.raises(OperationTimeoutError) as err:
        poll_until(lambda: False, timeout=10, description="thing", on_timeout=lambda: cleaned.append(1),
                   sleep=clock.sleep, clock=clock.monotonic)

    assert cleaned == [1]
    assert "thing" in str(err.value)
    assert isinstance(err.value, TimeoutError)
    assert sum(clock.sleeps) == pytest.approx(10)


def test_failed_compensation_is_folded_into_error():
    clock = FakeClock()

    def cleanup():
        raise TransientError("delete refused")

    with pytest.raises(OperationTimeoutError, match="cleanup failed: delete refused"):
        poll_until(lambda: False, timeout=5, on_timeout=cleanup, sleep=clock.sleep, clock=clock.monotonic)
