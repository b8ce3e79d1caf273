"""Cache-aside contract shared by the in-process and Redis backends."""

import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable
from concurrent.futures import Future
from typing import Any, TypeVar

from pydantic import TypeAdapter, ValidationError

logger = logging.getLogger(__name__)

T = TypeVar("T")

_adapters: dict[Any, TypeAdapter] = {}
_adapters_lock = threading.Lock()


def _adapter(value_type: Any) -> TypeAdapter:
    with _adapters_lock:
        adapter = _adapters.get(value_type)
        if adapter is None:
            adapter = _adapters[value_type] = TypeAdapter(value_type)
        return adapter


class _Flight:
    """A compute in progress for one key; waiters share its future."""

    def __init__(self) -> None:
        self.future: Future = Future()


class BaseCache(ABC):
    """
    Cache-aside store with typed JSON serialization and single-flight misses.

    Subclasses only move serialized payloads: ``_read``, ``_write``,
    ``_delete`` and ``_contains``. Expired entries must be reported as absent.

    Values go through ``pydantic.TypeAdapter(value_type)``, so models round-trip
    as models. A payload that no longer validates is purged and treated as a
    miss.

    Concurrent misses on the same key share one compute (single-flight).
    ``remove`` detaches a compute in flight: its waiters still get the result,
    but it is not stored.

    Parameters
    ----------
    default_ttl : float
        Time-to-live in seconds used when ``ttl`` is not given

    """

    def __init__(self, default_ttl: float = 300) -> None:
        self.default_ttl = default_ttl
        self._flights: dict[str, _Flight] = {}
        self._flights_lock = threading.Lock()

    @abstractmethod
    def _read(self, key: str) -> bytes | None:
        """Return the stored payload, or None if absent or expired."""

    @abstractmethod
    def _write(self, key: str, payload: bytes, ttl: float) -> None:
        """Store a payload that expires ``ttl`` seconds from now."""

    @abstractmethod
    def _delete(self, key: str) -> None:
        """Delete a key; no-op when absent."""

    @abstractmethod
    def _contains(self, key: str) -> bool:
        """Whether an unexpired entry exists."""

    def get(self, key: str, value_type: Any = Any) -> Any | None:
        """
        Get a cached value.

        Parameters
        ----------
        key : str
            Cache key
        value_type : Any
            Type to deserialize into (a model, ``list[Model]``, ``Decimal``...)

        Returns
        -------
        Any | None
            Cached value, or None when absent, expired, or undecodable

        """
        payload = self._read(key)
        if payload is None:
            return None

        try:
            return _adapter(value_type).validate_json(payload)
        except (ValidationError, ValueError) as e:
            logger.warning("Discarding undecodable cache entry %s: %s", key, e)
            self._delete(key)
            return None

    def set(self, key: str, value: Any, ttl: float | None = None, value_type: Any = Any) -> None:
        """
        Store a value.

        Parameters
        ----------
        key : str
            Cache key
        value : Any
            Value to cache (never None)
        ttl : float | None
            Time-to-live in seconds. Uses default_ttl if None.
        value_type : Any
            Type used for serialization

        """
        if value is None:
            msg = "None cannot be cached"
            raise ValueError(msg)

        ttl = self.default_ttl if ttl is None else ttl
        payload = _adapter(value_type).dump_json(value)
        self._write(key, payload, ttl)
        logger.debug("Cached %s for %ss", key, ttl)

    def remove(self, key: str) -> None:
        """Delete a key and detach any compute in flight for it."""
        with self._flights_lock:
            self._flights.pop(key, None)
        self._delete(key)
        logger.debug("Removed cache key %s", key)

    def exists(self, key: str) -> bool:
        return self._contains(key)

    def get_or_set(
        self,
        key: str,
        factory: Callable[[], T],
        ttl: float | None = None,
        value_type: Any = Any,
    ) -> T:
        """
        Return the cached value or compute, store, and return it.

        Parameters
        ----------
        key : str
            Cache key
        factory : Callable[[], T]
            Computes the value on a miss
        ttl : float | None
            Time-to-live in seconds. Uses default_ttl if None.
        value_type : Any
            Type used for (de)serialization

        Returns
        -------
        T
            Cached or freshly computed value

        Raises
        ------
        Exception
            Whatever ``factory`` raises; nothing is cached in that case

        """
        cached = self.get(key, value_type)
        if cached is not None:
            logger.debug("Cache hit for %s", key)
            return cached

        with self._flights_lock:
            flight = self._flights.get(key)
            leader = flight is None
            if leader:
                flight = self._flights[key] = _Flight()

        if not leader:
            logger.debug("Joining in-flight compute for %s", key)
            return flight.future.result()

        # A flight that landed between the first read and registration
        cached = self.get(key, value_type)
        if cached is not None:
            self._land(key, flight)
            flight.future.set_result(cached)
            return cached

        logger.debug("Cache miss for %s, computing", key)
        try:
            value = factory()
        except BaseException as e:
            self._land(key, flight)
            flight.future.set_exception(e)
            raise

        try:
            self._land(key, flight, value, ttl, value_type)
        finally:
            flight.future.set_result(value)
        return value

    def _land(
        self,
        key: str,
        flight: _Flight,
        value: Any = None,
        ttl: float | None = None,
        value_type: Any = Any,
    ) -> None:
        """
        Store the result of a flight and unregister it, unless ``remove`` detached it.

        The backend write runs outside ``_flights_lock`` with the flight still
        registered; a ``remove`` that detaches it mid-write deletes the key
        again once the write is done.

        """
        with self._flights_lock:
            if self._flights.get(key) is not flight:
                logger.debug("Compute for %s was invalidated, not storing", key)
                return
            if value is None:
                del self._flights[key]
                return

        try:
            self.set(key, value, ttl, value_type)
        finally:
            with self._flights_lock:
                detached = self._flights.get(key) is not flight
                if not detached:
                    del self._flights[key]
            if detached:
                logger.debug("Compute for %s was invalidated while storing", key)
                self._delete(key)

    def close(self) -> None:
        """Release backend connections."""
