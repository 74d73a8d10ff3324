"""
Retention sweeper: periodically deletes messages older than a fixed horizon.

Room counters are adjusted by the repository in the same write; stored files of
swept messages are removed through the file store when one is given and no
surviving message still points at them.
"""
from __future__ import annotations
import logging
import threading
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from nexachat.db.repository import Repository

log = logging.getLogger(__name__)


@dataclass
class RetentionConfig:
    horizon_hours: float = 24.0
    interval_sec: float = 24 * 60 * 60


class RetentionSweeper:
    def __init__(self, cfg: RetentionConfig, repo: Repository, file_store=None):
        self.cfg = cfg
        self.repo = repo
        self.file_store = file_store
        self._stop = threading.Event()
        self._th: Optional[threading.Thread] = None

    def start(self):
        self._stop.clear()
        self._th = threading.Thread(target=self._loop, name="retention-sweeper", daemon=True)
        self._th.start()
        log.info("[retention] started: horizon=%sh interval=%ss",
                 self.cfg.horizon_hours, self.cfg.interval_sec)

    def stop(self):
        self._stop.set()
        if self._th:
            self._th.join(timeout=1.0)

    def run_once(self) -> int:
        """Delete expired messages now. Returns how many were removed; never raises."""
        cutoff = self.repo.clock() - timedelta(hours=self.cfg.horizon_hours)
        try:
            removed = self.repo.delete_messages_before(cutoff)
        except Exception:
            log.exception("[retention] sweep failed, retrying next tick")
            return 0

        if self.file_store is not None:
            for path in {p for msg in removed for p in msg.stored_paths()}:
                try:
                    if self.repo.count_messages_referencing(path) == 0:
                        self.file_store.delete(path)
                except Exception as e:
                    log.warning("[retention] could not remove %s: %s", path, e)

        log.info("[retention] removed %d messages older than %s", len(removed), cutoff.isoformat())
        return len(removed)

    def _loop(self):
        while not self._stop.wait(self.cfg.interval_sec):
            self.run_once()
