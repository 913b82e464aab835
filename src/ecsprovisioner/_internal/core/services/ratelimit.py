import threading
import time
from typing import Callable, Optional

from ecsprovisioner._internal.core.errors import RateLimitExceededError


class RateLimiter:
    """
    Token bucket limiter that refills `rate` tokens per second up to `burst` tokens.

    Callers reserve tokens in arrival order under a lock and then sleep until their token
    is due, so concurrent callers are served FIFO. A caller that cannot get its token within
    `timeout` or is cancelled while waiting gives the reservation back.
    """

    def __init__(
        self,
        rate: float = 1.0,
        burst: int = 1,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if rate <= 0:
            raise ValueError(f"rate must be positive, got {rate}")
        if burst < 1:
            raise ValueError(f"burst must be at least 1, got {burst}")
        self.rate = rate
        self.burst = burst
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._tokens = float(burst)
        self._last = clock()

    @property
    def tokens(self) -> float:
        with self._lock:
            self._advance(self._clock())
            return self._tokens

    def wait(
        self,
        timeout: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
    ):
        """
        Blocks until a token is available.

        Raises:
            RateLimitExceededError: the token would not be available within `timeout` seconds
                or `cancel_event` was set before or while waiting.
        """
        with self._lock:
            if cancel_event is not None and cancel_event.is_set():
                raise RateLimitExceededError("rate limit exceeded: wait cancelled")
            self._advance(self._clock())
            self._tokens -= 1
            delay = 0.0
            if self._tokens < 0:
                delay = -self._tokens / self.rate
            if timeout is not None and delay > timeout:
                self._tokens += 1
                raise RateLimitExceededError(
                    f"rate limit exceeded: a token would be available in {delay:.2f}s,"
                    f" timeout is {timeout:.2f}s"
                )
        if delay <= 0:
            return
        if cancel_event is None:
            self._sleep(delay)
            return
        if cancel_event.wait(delay):
            with self._lock:
                self._advance(self._clock())
                self._tokens = min(self.burst, self._tokens + 1)
            raise RateLimitExceededError("rate limit exceeded: wait cancelled")

    def _advance(self, now: float):
        elapsed = now - self._last
        if elapsed > 0:
            self._tokens = min(float(self.burst), self._tokens + elapsed * self.rate)
            self._last = now
