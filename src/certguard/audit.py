"""
certguard decision log — tamper-evident record of scoring decisions.

Every entry carries the SHA-256 of its predecessor, so rewriting a past
decision (say, lowering a recorded anomaly score) breaks the chain and is
caught by ``verify_integrity()``.

With a ``path`` the log is also appended to a JSON Lines file as it grows,
one entry per line, and ``DecisionLog.load(path)`` resumes the chain after a
restart.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import threading
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from certguard.errors import CertguardError

logger = logging.getLogger(__name__)

GENESIS = "0" * 64


class DecisionEvent(str, Enum):
    SUBMISSION_SCORED = "submission.scored"
    EVALUATOR_DEGRADED = "evaluator.degraded"
    INSTITUTION_REGISTERED = "institution.registered"
    INSTITUTION_REVOKED = "institution.revoked"
    HISTORY_PURGED = "history.purged"


class DecisionLogCorrupted(CertguardError):
    def __init__(self, sequence: int, source: str = ""):
        self.sequence = sequence
        where = f" in {source}" if source else ""
        super().__init__(f"Decision log chain broken at entry {sequence}{where}")


@dataclass
class DecisionEntry:
    sequence: int
    event: str
    subject: str
    recorded_at: str
    details: dict
    prev_hash: str = GENESIS
    entry_hash: str = ""

    def compute_hash(self) -> str:
        body = asdict(self)
        body.pop("entry_hash")
        canonical = json.dumps(body, sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode()).hexdigest()

    def seal(self) -> "DecisionEntry":
        self.entry_hash = self.compute_hash()
        return self


class DecisionLog:
    """Append-only, hash-chained log shared by a scorer and its caller.

    Usage:
        log = DecisionLog("decisions.jsonl")
        scorer = CertificateScorer(decision_log=log)
        scorer.score(submission)

        ok, bad_sequence = log.verify_integrity()
        scored = log.query(subject="0xabc", event=DecisionEvent.SUBMISSION_SCORED)
    """

    def __init__(self, path: Optional[str] = None):
        self.path = path
        self._entries: list[DecisionEntry] = []
        self._lock = threading.Lock()

    def record(self, event: DecisionEvent, subject: str,
               details: Optional[dict] = None) -> DecisionEntry:
        with self._lock:
            entry = DecisionEntry(
                sequence=len(self._entries),
                event=DecisionEvent(event).value,
                subject=subject,
                recorded_at=datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
                details=dict(details or {}),
                prev_hash=self._entries[-1].entry_hash if self._entries else GENESIS,
            ).seal()
            self._entries.append(entry)
            if self.path:
                with open(self.path, "a") as f:
                    f.write(json.dumps(asdict(entry), sort_keys=True) + "\n")
        logger.debug("Decision %d: %s %s", entry.sequence, entry.event, subject)
        return entry

    def verify_integrity(self) -> tuple[bool, Optional[int]]:
        """(True, None) when intact, else (False, sequence of first bad entry)."""
        with self._lock:
            entries = list(self._entries)
        prev = GENESIS
        for i, entry in enumerate(entries):
            if entry.sequence != i or entry.prev_hash != prev or entry.entry_hash != entry.compute_hash():
                return False, i
            prev = entry.entry_hash
        return True, None

    def query(self, subject: Optional[str] = None,
              event: Optional[DecisionEvent] = None) -> list[DecisionEntry]:
        """Matching entries, oldest first."""
        event_val = DecisionEvent(event).value if event is not None else None
        with self._lock:
            return [
                e for e in self._entries
                if (subject is None or e.subject == subject)
                and (event_val is None or e.event == event_val)
            ]

    def latest_score(self, subject: str) -> Optional[dict]:
        """Details of the most recent scoring decision for a submitter."""
        scored = self.query(subject=subject, event=DecisionEvent.SUBMISSION_SCORED)
        return dict(scored[-1].details) if scored else None

    @classmethod
    def load(cls, path: str) -> "DecisionLog":
        """Reopen a JSON Lines log, verifying the chain.

        A missing file gives an empty log that will be created on the first
        ``record()``. Raises DecisionLogCorrupted if any line was altered.
        """
        log = cls(path)
        if os.path.exists(path):
            with open(path) as f:
                for n, line in enumerate(f):
                    if not line.strip():
                        continue
                    try:
                        log._entries.append(DecisionEntry(**json.loads(line)))
                    except (ValueError, TypeError) as e:
                        raise DecisionLogCorrupted(n, path) from e
        ok, bad = log.verify_integrity()
        if not ok:
            raise DecisionLogCorrupted(bad, path)
        return log

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
