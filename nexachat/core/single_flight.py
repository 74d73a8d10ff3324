"""
Single-flight guard: run an initializer at most once at a time, remember success.

- run(factory): returns at once after a success; waits on an in-flight attempt;
  otherwise runs factory itself. Failures are not remembered, the next call retries.
- guard_for(key): process-wide guard per storage location (e.g. one per sqlite file).
"""
from __future__ import annotations
import logging
import threading
from concurrent.futures import Future
from typing import Callable, Dict, Optional

log = logging.getLogger(__name__)


class SingleFlight:
    def __init__(self, name: str = "init"):
        self.name = name
        self._lock = threading.Lock()
        self._done = False
        self._inflight: Optional[Future] = None

    @property
    def done(self) -> bool:
        with self._lock:
            return self._done

    def run(self, factory: Callable[[], object]) -> None:
        with self._lock:
            if self._done:
                log.debug("[single-flight] %s already initialized", self.name)
                return
            pending = self._inflight
            if pending is None:
                pending = self._inflight = Future()
                owner = True
            else:
                owner = False

        if not owner:
            log.debug("[single-flight] %s in progress, waiting", self.name)
            # re-raises the owner's failure to every waiter
            pending.result()
            return

        try:
            factory()
        except BaseException as e:
            with self._lock:
                self._inflight = None
            log.error("[single-flight] %s failed: %s", self.name, e)
            pending.set_exception(e)
            raise

        with self._lock:
            self._done = True
            self._inflight = None
        pending.set_result(None)
        log.info("[single-flight] %s completed", self.name)

    def reset(self) -> None:
        with self._lock:
            self._done = False
            self._inflight = None


_GUARDS: Dict[str, SingleFlight] = {}
_GUARDS_LOCK = threading.Lock()


def guard_for(key: str) -> SingleFlight:
    with _GUARDS_LOCK:
        guard = _GUARDS.get(key)
        if guard is None:
            guard = _GUARDS[key] = SingleFlight(key)
        return guard


def reset_guards() -> None:
    with _GUARDS_LOCK:
        _GUARDS.clear()


__all__ = ["SingleFlight", "guard_for", "reset_guards"]
