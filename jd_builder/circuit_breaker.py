"""
Circuit breaker for upstream AI calls.

When the upstream service keeps failing, retrying every request just adds
load and makes users wait for errors. The breaker counts consecutive
failures and, past a threshold, rejects calls outright for a reset window.
After the window one trial period (half-open) decides whether to close the
circuit again or re-open it.

States:
    closed     calls pass through; failures are counted
    open       calls are rejected with CircuitOpenError
    half_open  calls pass through; enough successes close the circuit,
               any failure re-opens it
"""
import time
import logging
import threading
from enum import Enum

from .config import CIRCUIT_FAILURE_THRESHOLD, CIRCUIT_RESET_SECONDS
from .exceptions import CircuitOpenError

HALF_OPEN_SUCCESS_THRESHOLD = 2


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Tracks the health of one upstream dependency.

    Args:
        name (str): Used in log lines and metrics.
        failure_threshold (int): Consecutive failures that open the circuit.
        reset_timeout (float): Seconds the circuit stays open before a trial.
        success_threshold (int): Successes in half-open needed to close.
        clock (callable): Returns the current time in seconds.
    """

    def __init__(self, name, failure_threshold=CIRCUIT_FAILURE_THRESHOLD,
                 reset_timeout=CIRCUIT_RESET_SECONDS, success_threshold=HALF_OPEN_SUCCESS_THRESHOLD,
                 clock=time.monotonic):
        self.name = name
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self.success_threshold = success_threshold
        self._clock = clock
        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._opened_at = None
        self._total_calls = 0
        self._total_failures = 0
        self._rejected_calls = 0

    @property
    def state(self):
        with self._lock:
            self._maybe_half_open()
            return self._state

    def before_call(self):
        """
        Admits or rejects one call.

        Raises:
            CircuitOpenError: If the circuit is open and the reset window has not passed.
        """
        with self._lock:
            self._maybe_half_open()
            if self._state == CircuitState.OPEN:
                self._rejected_calls += 1
                raise CircuitOpenError()
            self._total_calls += 1

    def record_success(self):
        with self._lock:
            self._failure_count = 0
            if self._state == CircuitState.HALF_OPEN:
                self._success_count += 1
                if self._success_count >= self.success_threshold:
                    self._transition(CircuitState.CLOSED)

    def record_failure(self):
        with self._lock:
            self._total_failures += 1
            self._failure_count += 1
            if self._state == CircuitState.HALF_OPEN or self._failure_count >= self.failure_threshold:
                self._transition(CircuitState.OPEN)

    def call(self, func, *args, **kwargs):
        """Runs `func` under the breaker. Any exception it raises counts as a failure."""
        self.before_call()
        try:
            result = func(*args, **kwargs)
        except Exception:
            self.record_failure()
            raise
        self.record_success()
        return result

    def reset(self):
        with self._lock:
            self._transition(CircuitState.CLOSED)
            self._failure_count = 0

    def get_metrics(self):
        with self._lock:
            self._maybe_half_open()
            return {
                "name": self.name,
                "state": self._state.value,
                "failure_count": self._failure_count,
                "total_calls": self._total_calls,
                "total_failures": self._total_failures,
                "rejected_calls": self._rejected_calls,
            }

    # Callers hold self._lock
    def _maybe_half_open(self):
        if self._state == CircuitState.OPEN and self._clock() - self._opened_at >= self.reset_timeout:
            self._transition(CircuitState.HALF_OPEN)

    def _transition(self, state):
        if state == self._state:
            return
        logging.warning(f"Circuit '{self.name}' {self._state.value} -> {state.value}")
        self._state = state
        self._success_count = 0
        if state == CircuitState.OPEN:
            self._opened_at = self._clock()
        elif state == CircuitState.CLOSED:
            self._opened_at = None
            self._failure_count = 0
