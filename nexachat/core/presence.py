"""
Typing indicators: who is composing a message in which room.

- TypingStore: (user, room) -> entry, read-time freshness filter (5 s)
- TypingSweeper: background thread dropping entries older than 10 s every 10 s

Two thresholds on purpose: readers stop seeing an entry well before the sweeper frees it.
"""
from __future__ import annotations
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

from nexachat.db.models import TypingIndicator

log = logging.getLogger(__name__)

FRESH_SEC = 5.0
EXPIRE_SEC = 10.0
SWEEP_INTERVAL_SEC = 10.0


class TypingStore:
    def __init__(self, fresh_sec: float = FRESH_SEC, expire_sec: float = EXPIRE_SEC,
                 clock: Callable[[], float] = time.time):
        self.fresh_sec = fresh_sec
        self.expire_sec = expire_sec
        self.clock = clock
        self._lock = threading.Lock()
        self._entries: Dict[Tuple[str, str], TypingIndicator] = {}

    def set(self, user_id: str, room_id: str, username: str) -> TypingIndicator:
        entry = TypingIndicator(user_id=user_id, username=username, room_id=room_id,
                                timestamp=self.clock())
        with self._lock:
            self._entries[(user_id, room_id)] = entry
        return entry

    def clear(self, user_id: str, room_id: str) -> bool:
        with self._lock:
            return self._entries.pop((user_id, room_id), None) is not None

    def list(self, room_id: str) -> List[TypingIndicator]:
        cutoff = self.clock() - self.fresh_sec
        with self._lock:
            return [e for e in self._entries.values()
                    if e.room_id == room_id and e.timestamp > cutoff]

    def sweep(self) -> int:
        cutoff = self.clock() - self.expire_sec
        with self._lock:
            stale = [k for k, e in self._entries.items() if e.timestamp < cutoff]
            for key in stale:
                del self._entries[key]
        return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


@dataclass
class TypingSweeperConfig:
    interval_sec: float = SWEEP_INTERVAL_SEC


class TypingSweeper:
    def __init__(self, cfg: TypingSweeperConfig, store: TypingStore):
        self.cfg = cfg
        self.store = store
        self._stop = threading.Event()
        self._th: Optional[threading.Thread] = None

    def start(self):
        self._stop.clear()
        self._th = threading.Thread(target=self._loop, name="typing-sweeper", daemon=True)
        self._th.start()

    def stop(self):
        self._stop.set()
        if self._th:
            self._th.join(timeout=1.0)

    def _loop(self):
        while not self._stop.wait(self.cfg.interval_sec):
            try:
                removed = self.store.sweep()
                if removed:
                    log.debug("[typing] swept %d stale entries", removed)
            except Exception:
                log.exception("[typing] sweep failed")
