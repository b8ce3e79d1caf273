"""Per-resource throttling for outbound provider calls."""

import logging
import threading
import time
from collections.abc import Callable
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MIN_INTERVAL = 0.5


class RateLimiter:
    """
    Serializes and spaces out calls to named external resources.

    Each resource has a single slot: at most one call is in flight at a time,
    and consecutive calls start at least ``1 / max_requests_per_second``
    seconds apart. Different resources never block each other. Waiters are
    not guaranteed FIFO order.

    Parameters
    ----------
    clock : Callable[[], float]
        Monotonic clock in seconds
    sleep : Callable[[float], None]
        Sleep function

    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._clock = clock
        self._sleep = sleep
        self._slots: dict[str, threading.Lock] = {}
        self._last_call: dict[str, float] = {}
        self._min_interval: dict[str, float] = {}
        self._registry_lock = threading.Lock()

    def _slot(self, resource: str) -> threading.Lock:
        with self._registry_lock:
            slot = self._slots.get(resource)
            if slot is None:
                slot = self._slots[resource] = threading.Lock()
            return slot

    def configure(self, resource: str, max_requests_per_second: float) -> None:
        """
        Set the rate for a resource.

        Parameters
        ----------
        resource : str
            Resource name (e.g., 'ethereum-rpc')
        max_requests_per_second : float
            Allowed call rate, must be positive

        Raises
        ------
        ValueError
            If the rate is not positive

        """
        if max_requests_per_second <= 0:
            msg = f"Rate for {resource} must be positive, got {max_requests_per_second}"
            raise ValueError(msg)

        self._slot(resource)
        with self._registry_lock:
            self._min_interval[resource] = 1.0 / max_requests_per_second

    def min_interval(self, resource: str) -> float:
        """Minimum spacing in seconds; unconfigured resources get 0.5s."""
        with self._registry_lock:
            return self._min_interval.get(resource, DEFAULT_MIN_INTERVAL)

    def execute(self, resource: str, operation: Callable[[], T]) -> T:
        """
        Run ``operation`` once the resource's slot and interval allow it.

        Parameters
        ----------
        resource : str
            Resource name
        operation : Callable[[], T]
            The outbound call

        Returns
        -------
        T
            Result of ``operation``; its exceptions propagate unchanged

        """
        interval = self.min_interval(resource)
        with self._slot(resource):
            last_call = self._last_call.get(resource)
            if last_call is not None:
                wait = interval - (self._clock() - last_call)
                if wait > 0:
                    logger.debug("Throttling %s for %.3fs", resource, wait)
                    self._sleep(wait)

            self._last_call[resource] = self._clock()
            return operation()
