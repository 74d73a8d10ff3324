"""
EventBus: hands events from request threads to a single worker thread.
- post(evt, **payload): callable from any thread
- on(evt, handler): register a handler, run on the worker thread
- start()/stop(): worker lifecycle; pump_once() drains synchronously (tests, shutdown)
"""
from __future__ import annotations
import logging
import queue
import threading
from typing import Callable, Dict, List, Optional

log = logging.getLogger(__name__)


class EventBus:
    def __init__(self, poll_sec: float = 0.05):
        self.poll_sec = poll_sec
        self.q: "queue.Queue[tuple[str, dict]]" = queue.Queue()
        self.handlers: Dict[str, List[Callable[[dict], None]]] = {}
        self._stop = threading.Event()
        self._th: Optional[threading.Thread] = None

    def on(self, evt: str, handler: Callable[[dict], None]) -> None:
        self.handlers.setdefault(evt, []).append(handler)

    def post(self, evt: str, **payload) -> None:
        self.q.put((evt, payload))

    def _dispatch(self, evt: str, payload: dict) -> None:
        for h in self.handlers.get(evt, []):
            try:
                h(payload)
            except Exception:
                log.exception("[bus] handler error on %s", evt)

    def pump_once(self) -> int:
        # drain everything queued so far, in order
        handled = 0
        while True:
            try:
                evt, payload = self.q.get_nowait()
            except queue.Empty:
                break
            self._dispatch(evt, payload)
            handled += 1
        return handled

    def _loop(self) -> None:
        while not self._stop.is_set():
            try:
                evt, payload = self.q.get(timeout=self.poll_sec)
            except queue.Empty:
                continue
            self._dispatch(evt, payload)

    def start(self) -> None:
        self._stop.clear()
        self._th = threading.Thread(target=self._loop, name="event-bus", daemon=True)
        self._th.start()

    def stop(self) -> None:
        self._stop.set()
        if self._th:
            self._th.join(timeout=1.0)
        self.pump_once()
