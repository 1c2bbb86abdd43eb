"""SubmissionHistory — bounded, time-windowed record of recent submissions.

Keeps the last N submissions per submitter identity. Used by the rate-limit
rule to spot bursts and exact re-submissions. State is process-local and
soft: losing it on restart only weakens the rate-limit signal.

Usage:
    history = SubmissionHistory(cap=20)
    prior = history.check_and_record(submission, window=timedelta(minutes=30))

    recent = history.recent_for("0xabc", window=timedelta(minutes=30))
    removed = history.purge(retention=timedelta(hours=24))
"""

from __future__ import annotations

import logging
import threading
import zlib
from collections import deque
from datetime import datetime, timedelta, timezone
from typing import Optional, Union

from certguard.models import HistoryEntry, Submission, parse_timestamp

logger = logging.getLogger(__name__)

Window = Union[timedelta, float, int]


def _as_timedelta(window: Window) -> timedelta:
    if isinstance(window, timedelta):
        return window
    return timedelta(seconds=float(window))


def _now(now: Optional[datetime]) -> datetime:
    return parse_timestamp(now) if now is not None else datetime.now(timezone.utc)


def _in_window(entries, cutoff: datetime, end: datetime) -> list[HistoryEntry]:
    return [e for e in entries if cutoff < e.submitted_at <= end]


class SubmissionHistory:
    """Per-identity bounded submission log.

    Each identity owns a deque capped at ``cap`` entries. Identities hash
    onto a fixed set of stripe locks, so every read-modify-write of one
    identity's deque is atomic while the lock table never grows. Lock
    order is stripe lock, then ``_index_lock``; the latter guards the
    identity -> deque mapping itself.
    """

    DEFAULT_CAP = 20
    STRIPES = 64

    def __init__(self, cap: int = DEFAULT_CAP, stripes: int = STRIPES):
        if cap < 1:
            raise ValueError("cap must be >= 1")
        if stripes < 1:
            raise ValueError("stripes must be >= 1")
        self._cap = cap
        self._entries: dict[str, deque[HistoryEntry]] = {}
        self._stripes = tuple(threading.Lock() for _ in range(stripes))
        self._index_lock = threading.Lock()

    @property
    def cap(self) -> int:
        return self._cap

    def _lock_for(self, identity: str) -> threading.Lock:
        return self._stripes[zlib.crc32(identity.encode("utf-8")) % len(self._stripes)]

    def _get(self, identity: str) -> Optional[deque[HistoryEntry]]:
        with self._index_lock:
            return self._entries.get(identity)

    def _append(self, entry: HistoryEntry) -> None:
        # caller holds the identity's stripe lock
        with self._index_lock:
            entries = self._entries.get(entry.submitter_identity)
            if entries is None:
                entries = self._entries[entry.submitter_identity] = deque(maxlen=self._cap)
        entries.append(entry)

    def record(self, submission: Submission) -> HistoryEntry:
        """Append a submission, dropping the oldest entries past the cap."""
        entry = HistoryEntry.from_submission(submission)
        with self._lock_for(entry.submitter_identity):
            self._append(entry)
        return entry

    def check_and_record(self, submission: Submission, window: Window) -> list[HistoryEntry]:
        """Return the submitter's entries in the window ending at the
        submission's own time, then record it, as one atomic step.

        Two concurrent submissions from one identity therefore always see
        each other, whichever is recorded first.
        """
        entry = HistoryEntry.from_submission(submission)
        end = entry.submitted_at
        cutoff = end - _as_timedelta(window)
        with self._lock_for(entry.submitter_identity):
            entries = self._get(entry.submitter_identity)
            prior = _in_window(entries, cutoff, end) if entries else []
            self._append(entry)
        return prior

    def recent_for(self, identity: str, window: Window,
                   now: Optional[datetime] = None) -> list[HistoryEntry]:
        """Entries for ``identity`` inside ``(now - window, now]``.

        Returned oldest first, most recent last. Unknown identities yield an
        empty list.
        """
        end = _now(now)
        cutoff = end - _as_timedelta(window)
        with self._lock_for(identity):
            entries = self._get(identity)
            if not entries:
                return []
            return _in_window(entries, cutoff, end)

    def purge(self, retention: Window = timedelta(hours=24),
              now: Optional[datetime] = None) -> int:
        """Drop entries older than ``retention``. Returns the number removed."""
        cutoff = _now(now) - _as_timedelta(retention)
        with self._index_lock:
            identities = list(self._entries)
        removed = 0
        for identity in identities:
            with self._lock_for(identity):
                entries = self._get(identity)
                if entries is None:
                    continue
                kept = [e for e in entries if e.submitted_at > cutoff]
                removed += len(entries) - len(kept)
                if kept:
                    entries.clear()
                    entries.extend(kept)
                else:
                    with self._index_lock:
                        del self._entries[identity]
        if removed:
            logger.debug("Purged %d history entries older than %s", removed, cutoff.isoformat())
        return removed

    def reset(self, identity: str) -> None:
        """Forget all entries for one identity."""
        with self._lock_for(identity):
            with self._index_lock:
                self._entries.pop(identity, None)

    def reset_all(self) -> None:
        with self._index_lock:
            self._entries.clear()

    @property
    def size(self) -> int:
        with self._index_lock:
            return sum(len(e) for e in self._entries.values())

    def stats(self) -> dict:
        with self._index_lock:
            identities = {ident: len(e) for ident, e in self._entries.items()}
        return {
            "cap": self._cap,
            "total_identities": len(identities),
            "total_entries": sum(identities.values()),
            "identities": identities,
        }

    def __len__(self) -> int:
        """Number of identities currently tracked."""
        with self._index_lock:
            return len(self._entries)
