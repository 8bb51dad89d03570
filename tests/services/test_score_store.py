"""
Score Store and Review Queue Tests.
"""

from evalguard.models import (
    ReviewItem, ReviewPriority, ReviewStatus, Score, ScoreDataType, ScoreSource, Trace
)
from evalguard.services.review_queue import ReviewQueue
from evalguard.services.score_store import ScoreStore


class TestScoreStore:
    """Test idempotent score persistence."""

    def test_upsert_creates_score(self, db_session, make_trace):
        trace = make_trace(input="hi", output="hello")
        store = ScoreStore(db_session)

        score = store.upsert(trace, name="moderation", value=0, data_type=ScoreDataType.BOOLEAN)
        db_session.commit()

        assert score.id is not None
        assert score.scoreable_type == "trace"
        assert score.value == 0.0
        assert store.find(trace, "moderation") == score

    def test_upsert_same_key_updates(self, db_session, make_trace):
        trace = make_trace(input="hi", output="hello")
        store = ScoreStore(db_session)

        first = store.upsert(trace, name="quality", value=0.2, comment="first")
        second = store.upsert(trace, name="quality", value=0.9, comment="second")
        db_session.commit()

        assert first.id == second.id
        assert db_session.query(Score).count() == 1
        assert second.value == 0.9
        assert second.comment == "second"

    def test_sources_are_separate_keys(self, db_session, make_trace):
        trace = make_trace(input="hi", output="hello")
        store = ScoreStore(db_session)

        store.upsert(trace, name="quality", value=0.2)
        store.upsert(trace, name="quality", value=1.0, source=ScoreSource.HUMAN)
        db_session.commit()

        assert db_session.query(Score).count() == 2
        assert store.find(trace, "quality", ScoreSource.HUMAN).value == 1.0
        assert store.find(trace, "quality", ScoreSource.PROGRAMMATIC).value == 0.2

    def test_for_owner(self, db_session, make_trace):
        trace = make_trace(input="hi", output="hello")
        other = make_trace(input="yo", output="hey")
        store = ScoreStore(db_session)

        store.upsert(trace, name="b", value=1)
        store.upsert(trace, name="a", value=0)
        store.upsert(other, name="a", value=1)
        db_session.commit()

        assert [score.name for score in store.for_owner(trace)] == ["a", "b"]

    def test_run_aggregates(self, db_session, make_run):
        run = make_run([
            {"expected": "a", "output": "a"},
            {"expected": "b", "output": "x"},
            {"expected": "c", "output": "c"},
            {"expected": "d", "output": "d"},
        ])
        store = ScoreStore(db_session)
        for run_item, value in zip(run.run_items, [1.0, 0.0, 1.0, 1.0]):
            store.upsert(run_item, name="exact_match", value=value)
        store.upsert(run.run_items[0], name="contains", value=0.5)
        db_session.commit()

        assert store.average_score(run, "exact_match") == 0.75
        assert store.average_score(run, "missing") is None
        assert store.score_summary(run) == {"exact_match": 0.75, "contains": 0.5}
        assert store.pass_rate(run, "exact_match") == 75.0
        assert store.pass_rate(run) == 80.0

    def test_concurrent_insert_converges(self, db_session, session_factory, make_trace, monkeypatch):
        trace_id = make_trace(input="hi", output="hello").id
        db_session.commit()

        other = session_factory()
        try:
            ScoreStore(other).upsert(other.get(Trace, trace_id), name="quality", value=0.2)
            other.commit()
        finally:
            other.close()

        store = ScoreStore(db_session)
        find = store.find
        lookups = []

        def stale_find(*args, **kwargs):
            lookups.append(args)
            return None if len(lookups) == 1 else find(*args, **kwargs)

        monkeypatch.setattr(store, "find", stale_find)

        score = store.upsert(db_session.get(Trace, trace_id), name="quality", value=0.9)
        db_session.commit()

        assert len(lookups) == 2
        assert score.value == 0.9
        assert db_session.query(Score.value, Score.source).all() == [(0.9, ScoreSource.PROGRAMMATIC)]


class TestReviewQueue:
    """Test idempotent review enqueueing."""

    def test_enqueue_creates_pending_item(self, db_session, make_trace):
        trace = make_trace(input="hi", output="hello")
        queue = ReviewQueue(db_session)

        item = queue.enqueue(trace, reason="content_moderation", priority=ReviewPriority.HIGH,
                             details={"flagged": True})
        db_session.commit()

        assert item.reviewable_type == "trace"
        assert item.reviewable_id == trace.id
        assert item.status == ReviewStatus.PENDING
        assert item.priority == ReviewPriority.HIGH
        assert item.reason_details == {"flagged": True}
        assert queue.in_review_queue(trace)

    def test_enqueue_twice_returns_existing(self, db_session, make_trace):
        trace = make_trace(input="hi", output="hello")
        queue = ReviewQueue(db_session)

        first = queue.enqueue(trace, reason="high_cost")
        second = queue.enqueue(trace, reason="content_moderation", priority=ReviewPriority.CRITICAL)
        db_session.commit()

        assert first.id == second.id
        assert second.reason == "high_cost"
        assert db_session.query(ReviewItem).count() == 1

    def test_sessions_and_traces_are_distinct(self, db_session, make_trace):
        trace = make_trace(input="hi", output="hello")
        queue = ReviewQueue(db_session)

        queue.enqueue(trace, reason="x")
        queue.enqueue(trace.session, reason="y")
        db_session.commit()

        assert db_session.query(ReviewItem).count() == 2

    def test_unreviewed(self, db_session, make_trace):
        from evalguard.models import Trace

        reviewed = make_trace(input="a", output="b")
        fresh = make_trace(input="c", output="d")
        ReviewQueue(db_session).enqueue(reviewed, reason="x")
        db_session.commit()

        remaining = ReviewQueue.unreviewed(db_session.query(Trace), Trace).all()

        assert [trace.id for trace in remaining] == [fresh.id]

    def test_review_lifecycle(self, db_session, make_trace):
        trace = make_trace(input="hi", output="hello")
        item = ReviewQueue(db_session).enqueue(trace, reason="x")

        item.start_review()
        assert item.status == ReviewStatus.IN_PROGRESS
        assert item.actionable

        item.complete(by="reviewer@example.com")
        assert item.status == ReviewStatus.COMPLETED
        assert item.completed_by == "reviewer@example.com"
        assert item.completed_at is not None
        assert not item.actionable
