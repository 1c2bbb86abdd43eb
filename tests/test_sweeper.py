"""Tests for the background history sweeper."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from certguard.audit import DecisionEvent, DecisionLog
from certguard.config import ScoringConfig
from certguard.history import SubmissionHistory
from certguard.sweeper import HistorySweeper

from conftest import build_submission


def _old_history():
    history = SubmissionHistory()
    history.record(build_submission(submitted_at=datetime.now(timezone.utc) - timedelta(days=2)))
    history.record(build_submission(submitted_at=datetime.now(timezone.utc), content_digest="fresh"))
    return history


def test_sweep_once_purges_and_logs():
    log = DecisionLog()
    sweeper = HistorySweeper(_old_history(), decision_log=log)
    assert sweeper.sweep_once() == 1
    assert sweeper.history.size == 1
    assert log.query(event=DecisionEvent.HISTORY_PURGED)[0].details == {"removed": 1}


def test_sweep_nothing_no_log():
    log = DecisionLog()
    sweeper = HistorySweeper(SubmissionHistory(), decision_log=log)
    assert sweeper.sweep_once() == 0
    assert len(log) == 0


def test_from_config():
    cfg = ScoringConfig(sweep_interval_seconds=5, history_retention_seconds=60)
    sweeper = HistorySweeper.from_config(SubmissionHistory(), cfg)
    assert sweeper.interval == 5
    assert sweeper.retention == timedelta(seconds=60)


def test_invalid_interval():
    with pytest.raises(ValueError):
        HistorySweeper(SubmissionHistory(), interval=0)


@pytest.mark.asyncio
async def test_start_and_stop():
    history = _old_history()
    sweeper = HistorySweeper(history, interval=0.01)
    await sweeper.start()
    assert sweeper.running
    await asyncio.sleep(0.05)
    await sweeper.stop()
    assert not sweeper.running
    assert history.size == 1


@pytest.mark.asyncio
async def test_start_twice_is_noop():
    sweeper = HistorySweeper(SubmissionHistory(), interval=10)
    await sweeper.start()
    task = sweeper._task
    await sweeper.start()
    assert sweeper._task is task
    await sweeper.stop()
