"""Background asyncio task that purges stale submission history.

Housekeeping only: the rate-limit rule filters by window anyway, this just
bounds memory for identities that stop submitting.

Configuration via environment (through ScoringConfig.from_env):
    CERTGUARD_SWEEP_INTERVAL — seconds between sweeps (default 3600)
    CERTGUARD_RETENTION      — age after which entries are dropped (default 86400)
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Optional

from certguard.audit import DecisionEvent, DecisionLog
from certguard.history import SubmissionHistory

logger = logging.getLogger(__name__)


class HistorySweeper:
    """Periodically calls ``history.purge(retention)``."""

    def __init__(self, history: SubmissionHistory, *, interval: float = 3600,
                 retention: float = 24 * 3600, decision_log: Optional[DecisionLog] = None):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.history = history
        self.interval = interval
        self.retention = timedelta(seconds=retention)
        self.decision_log = decision_log
        self._task: asyncio.Task | None = None
        self._running = False

    @classmethod
    def from_config(cls, history: SubmissionHistory, config, **kwargs) -> "HistorySweeper":
        return cls(history, interval=config.sweep_interval_seconds,
                   retention=config.history_retention_seconds, **kwargs)

    @property
    def running(self) -> bool:
        return self._running

    def sweep_once(self, now: Optional[datetime] = None) -> int:
        removed = self.history.purge(self.retention, now=now)
        if removed:
            logger.info("History sweep removed %d stale entries", removed)
            if self.decision_log is not None:
                self.decision_log.record(DecisionEvent.HISTORY_PURGED, "history",
                                         {"removed": removed})
        return removed

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info("HistorySweeper started (interval=%.0fs, retention=%s)",
                    self.interval, self.retention)

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("HistorySweeper stopped")

    async def _loop(self) -> None:
        while self._running:
            try:
                self.sweep_once()
            except Exception:
                logger.exception("History sweep failed")
            await asyncio.sleep(self.interval)
