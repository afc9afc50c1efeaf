# range_controller/cloning/polling.py
import logging
import time
from dataclasses import dataclass
from typing import Callable, Iterator, Optional, TypeVar

from range_controller.exceptions import OperationTimeoutError, PodError, TransientError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class Backoff:
    initial: float = 1.0
    factor: float = 2.0
    ceiling: float = 30.0

    def delays(self) -> Iterator[float]:
        delay = self.initial
        while True:
            yield delay
            delay = min(delay * self.factor, self.ceiling)


EXPONENTIAL = Backoff()


def fixed(interval: float) -> Backoff:
    return Backoff(initial=interval, factor=1.0, ceiling=interval)


def poll_until(
    check: Callable[[], T],
    timeout: float,
    backoff: Backoff = EXPONENTIAL,
    description: str = "operation",
    on_timeout: Optional[Callable[[], None]] = None,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> T:
    """
    Call ``check`` until it returns something truthy and return that value.

    A TransientError raised by ``check`` counts as a failed attempt. Once
    ``timeout`` seconds have elapsed, ``on_timeout`` runs as compensation and
    OperationTimeoutError is raised; a failing compensation is folded into the
    error message.
    """
    start = clock()
    delays = backoff.delays()
    last_error = None

    while True:
        try:
            result = check()
        except TransientError as e:
            last_error = e
            logger.debug("poll for %s failed, will retry: %s", description, e)
        else:
            if result:
                return result

        elapsed = clock() - start
        if elapsed >= timeout:
            message = f"timed out after {timeout:.0f}s waiting for {description}"
            if last_error is not None:
                message += f" (last error: {last_error})"
            if on_timeout is not None:
                try:
                    on_timeout()
                except PodError as e:
                    message += f"; cleanup failed: {e}"
            logger.warning(message)
            raise OperationTimeoutError(message)

        sleep(max(0.0, min(next(delays), timeout - elapsed)))
