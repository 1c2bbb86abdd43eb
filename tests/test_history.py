"""Tests for SubmissionHistory."""

import threading
from datetime import timedelta

import pytest

from certguard.history import SubmissionHistory

from conftest import NOW, build_submission


def _at(minutes, identity="0xstudent", digest=None):
    return build_submission(
        submitter_identity=identity,
        submitted_at=NOW + timedelta(minutes=minutes),
        content_digest=digest or f"digest-{minutes}",
    )


class TestRecord:
    def test_record_returns_entry(self, history):
        entry = history.record(_at(0))
        assert entry.submitter_identity == "0xstudent"
        assert entry.submitted_at == NOW
        assert entry.content_digest == "digest-0"

    def test_cap_keeps_most_recent(self):
        history = SubmissionHistory(cap=20)
        for i in range(25):
            history.record(_at(i))
        entries = history.recent_for("0xstudent", timedelta(days=1), now=NOW + timedelta(hours=1))
        assert len(entries) == 20
        assert entries[0].content_digest == "digest-5"
        assert entries[-1].content_digest == "digest-24"

    def test_invalid_cap(self):
        with pytest.raises(ValueError):
            SubmissionHistory(cap=0)

    def test_identities_isolated(self, history):
        history.record(_at(0, identity="0xa"))
        history.record(_at(1, identity="0xb"))
        assert len(history.recent_for("0xa", 3600, now=NOW)) == 1
        assert history.stats()["total_identities"] == 2


class TestRecentFor:
    def test_unknown_identity(self, history):
        assert history.recent_for("0xnobody", timedelta(minutes=30), now=NOW) == []

    def test_window_excludes_old(self, history):
        for minutes in (0, 10, 25, 40):
            history.record(_at(minutes))
        recent = history.recent_for("0xstudent", timedelta(minutes=30), now=NOW + timedelta(minutes=40))
        assert [e.content_digest for e in recent] == ["digest-25", "digest-40"]

    def test_cutoff_is_exclusive(self, history):
        history.record(_at(0))
        assert history.recent_for("0xstudent", timedelta(minutes=30),
                                  now=NOW + timedelta(minutes=30)) == []

    def test_window_in_seconds(self, history):
        history.record(_at(0))
        assert len(history.recent_for("0xstudent", 60, now=NOW + timedelta(seconds=30))) == 1


class TestPurge:
    def test_purge_old_entries(self, history):
        history.record(_at(0, identity="0xa"))
        history.record(_at(0, identity="0xb"))
        history.record(_at(60 * 23, identity="0xb"))
        removed = history.purge(timedelta(hours=24), now=NOW + timedelta(hours=25))
        assert removed == 2
        stats = history.stats()
        assert stats["identities"] == {"0xb": 1}
        assert history.size == 1

    def test_purge_nothing(self, history):
        history.record(_at(0))
        assert history.purge(now=NOW + timedelta(minutes=5)) == 0
        assert history.size == 1


class TestReset:
    def test_reset_one(self, history):
        history.record(_at(0, identity="0xa"))
        history.record(_at(0, identity="0xb"))
        history.reset("0xa")
        assert history.recent_for("0xa", 3600, now=NOW) == []
        assert history.size == 1

    def test_reset_all(self, history):
        history.record(_at(0, identity="0xa"))
        history.record(_at(0, identity="0xb"))
        history.reset_all()
        assert history.size == 0
        history.record(_at(1, identity="0xa"))
        assert history.size == 1


class TestConcurrency:
    def test_concurrent_records_respect_cap(self):
        history = SubmissionHistory(cap=20)
        barrier = threading.Barrier(8)

        def worker(n):
            barrier.wait()
            for i in range(10):
                history.record(_at(n * 10 + i))

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert history.size == 20
        assert history.stats()["identities"] == {"0xstudent": 20}

    def test_concurrent_distinct_identities(self):
        history = SubmissionHistory(cap=5)

        def worker(n):
            for i in range(5):
                history.record(_at(i, identity=f"0x{n}"))

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert history.size == 50
        assert history.stats()["total_identities"] == 10

    def test_stats_while_new_identities_arrive(self):
        history = SubmissionHistory()
        stop = threading.Event()
        errors = []

        def reader():
            while not stop.is_set():
                try:
                    history.stats()
                    history.size
                    history.purge(now=NOW)
                except RuntimeError as e:
                    errors.append(e)

        readers = [threading.Thread(target=reader) for _ in range(3)]
        for t in readers:
            t.start()
        for i in range(2000):
            history.record(_at(i % 60, identity=f"0x{i}"))
        stop.set()
        for t in readers:
            t.join()

        assert errors == []
        assert history.stats()["total_identities"] == 2000


class TestWindowEnd:
    def test_later_entries_not_counted(self, history):
        history.record(_at(20))
        history.record(_at(5))
        recent = history.recent_for("0xstudent", timedelta(minutes=30), now=NOW + timedelta(minutes=10))
        assert [e.content_digest for e in recent] == ["digest-5"]

    def test_entry_at_window_end_counted(self, history):
        history.record(_at(10))
        assert len(history.recent_for("0xstudent", timedelta(minutes=30),
                                      now=NOW + timedelta(minutes=10))) == 1


class TestCheckAndRecord:
    def test_returns_prior_then_records(self, history):
        assert history.check_and_record(_at(0), timedelta(minutes=30)) == []
        prior = history.check_and_record(_at(5), timedelta(minutes=30))
        assert [e.content_digest for e in prior] == ["digest-0"]
        assert history.size == 2

    def test_window_anchored_at_submission(self, history):
        history.record(_at(0))
        assert history.check_and_record(_at(45), timedelta(minutes=30)) == []

    def test_concurrent_duplicates_see_each_other(self):
        history = SubmissionHistory()
        barrier = threading.Barrier(8)
        results = []

        def worker():
            barrier.wait()
            results.append(history.check_and_record(_at(0, digest="same"), timedelta(minutes=30)))

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(len(r) for r in results) == list(range(8))


class TestBoundedState:
    def test_unknown_lookups_leave_no_state(self, history):
        for i in range(1000):
            history.recent_for(f"0xghost{i}", timedelta(minutes=30), now=NOW)
            history.reset(f"0xghost{i}")
        assert len(history) == 0
        assert history.stats()["total_identities"] == 0

    def test_full_purge_forgets_identities(self):
        history = SubmissionHistory(stripes=8)
        for i in range(1000):
            history.record(_at(0, identity=f"0x{i}"))
        assert len(history) == 1000
        assert history.purge(timedelta(hours=1), now=NOW + timedelta(hours=2)) == 1000
        assert len(history) == 0
        assert len(history._stripes) == 8

    def test_invalid_stripes(self):
        with pytest.raises(ValueError):
            SubmissionHistory(stripes=0)
