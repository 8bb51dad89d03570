"""
Dataset Runner Job Tests.
"""

import pytest
from sqlalchemy.exc import OperationalError

from evalguard.config import settings
from evalguard.errors import InvalidConfiguration, RecordNotFound
from evalguard.jobs import DatasetRunnerJob, JobStatus
from evalguard.models import DatasetRun, DatasetRunStatus, Score
from evalguard.services.dataset_runner import DatasetRunnerService
from evalguard.services.evaluator_runner import EvaluatorRunnerService


@pytest.fixture
def failing_evaluation(monkeypatch):
    """Make every evaluation pass fail with a transient error."""
    calls = []

    def fail(self):
        calls.append(self.dataset_run.id)
        raise ConnectionError("connection reset")

    monkeypatch.setattr(EvaluatorRunnerService, "call", fail)
    return calls


class TestDatasetRunnerJob:
    """Test background dataset run execution."""

    def test_runs_pending_run(self, db_session, make_run):
        run = make_run([{"expected": "a", "output": "a"}])

        result = DatasetRunnerJob(db_session).run(run.id)

        assert result.status == DatasetRunStatus.COMPLETED
        assert db_session.query(Score).count() == 1

    def test_uses_registered_agent_executor(self, db_session, make_run, agent_executor):
        run = make_run([{"input": "echo", "expected": "echo"}])

        result = DatasetRunnerJob(db_session).run(run.id)

        assert [call[0] for call in agent_executor.calls] == ["echo"]
        assert result.completed_items == 1

    @pytest.mark.parametrize("status", [
        DatasetRunStatus.RUNNING, DatasetRunStatus.COMPLETED, DatasetRunStatus.FAILED
    ])
    def test_no_op_unless_pending(self, db_session, make_run, status):
        run = make_run([{"expected": "a", "output": "a"}], status=status)

        result = DatasetRunnerJob(db_session).run(run.id)

        assert result.status == status
        assert db_session.query(Score).count() == 0

    def test_missing_run_is_retried_then_raised(self, db_session, sleeps):
        with pytest.raises(RecordNotFound):
            DatasetRunnerJob(db_session, sleep=sleeps.append).run(9999)

        assert sleeps == [1.0, 2.0]

    def test_retries_exhausted_marks_failed(self, db_session, make_run, sleeps, failing_evaluation):
        run = make_run([{"expected": "a", "output": "a"}], name="flaky")
        run_id = run.id

        with pytest.raises(ConnectionError):
            DatasetRunnerJob(db_session, sleep=sleeps.append).run(run_id)

        assert failing_evaluation == [run_id, run_id, run_id]
        assert sleeps == [1.0, 2.0]

        run = db_session.get(DatasetRun, run_id)
        assert run.status == DatasetRunStatus.FAILED
        assert run.run_metadata["retries_exhausted"] is True
        assert run.run_metadata["error"] == "connection reset"
        assert run.run_metadata["error_class"] == "ConnectionError"
        assert run.run_metadata["failed_at"].endswith("Z")

    def test_invalid_configuration_is_not_retried(self, db_session, make_run, sleeps):
        run = make_run([{"expected": "a", "output": "a"}], evaluators=[{"type": "sentiment"}])

        with pytest.raises(InvalidConfiguration):
            DatasetRunnerJob(db_session, sleep=sleeps.append).run(run.id)

        assert sleeps == []
        assert run.status == DatasetRunStatus.FAILED
        assert "retries_exhausted" not in run.run_metadata

    def test_terminal_handler_tolerates_missing_run(self, db_session):
        DatasetRunnerJob(db_session).on_retries_exhausted(RuntimeError("boom"), 9999)

    def test_terminal_handler_never_raises(self, db_session, make_run, monkeypatch):
        run = make_run([])

        def broken_get(*args, **kwargs):
            raise RuntimeError("session unusable")

        monkeypatch.setattr(db_session, "get", broken_get)

        DatasetRunnerJob(db_session).on_retries_exhausted(RuntimeError("boom"), run.id)

    def test_terminal_handler_leaves_finished_run(self, db_session, make_run):
        run = make_run([], status=DatasetRunStatus.COMPLETED)

        DatasetRunnerJob(db_session).on_retries_exhausted(RuntimeError("late"), run.id)

        assert run.status == DatasetRunStatus.COMPLETED
        assert "error" not in run.run_metadata

    def test_through_queue(self, db_session, make_run, job_queue):
        run = make_run([{"expected": "a", "output": "b"}])
        run_id = run.id
        db_session.close()

        job = DatasetRunnerJob.enqueue(run_id)
        job_queue.run_pending()

        assert job.queue == "evaluations"
        assert job.status == JobStatus.SUCCEEDED
        assert db_session.get(DatasetRun, run_id).status == DatasetRunStatus.COMPLETED

    def test_unloadable_agent_executor_marks_failed(self, db_session, make_run, sleeps, monkeypatch):
        run = make_run([{"input": "echo", "expected": "echo"}])
        monkeypatch.setattr(settings, "agent_executor", "no_such_module:factory")

        with pytest.raises(InvalidConfiguration):
            DatasetRunnerJob(db_session, sleep=sleeps.append).run(run.id)

        assert sleeps == []
        assert run.status == DatasetRunStatus.FAILED
        assert run.run_metadata["error_class"] == "InvalidConfiguration"
        assert "no_such_module" in run.run_metadata["error"]
        assert run.run_metadata["failed_at"].endswith("Z")


class TestDatasetRunnerJobStuckClaim:
    """Test retries when the run cannot be released after a failed attempt."""

    @pytest.fixture
    def unreleasable(self, monkeypatch):
        def fail_release(self, error):
            raise OperationalError("UPDATE dataset_runs", {}, Exception("database is locked"))

        monkeypatch.setattr(DatasetRunnerService, "_release", fail_release)

    def test_retries_exhausted_marks_failed(self, db_session, make_run, sleeps, failing_evaluation, unreleasable):
        run = make_run([{"expected": "a", "output": "a"}])
        run_id = run.id

        with pytest.raises(OperationalError):
            DatasetRunnerJob(db_session, sleep=sleeps.append).run(run_id)

        assert failing_evaluation == [run_id, run_id, run_id]
        assert sleeps == [1.0, 2.0]

        run = db_session.get(DatasetRun, run_id)
        assert run.status == DatasetRunStatus.FAILED
        assert run.run_metadata["retries_exhausted"] is True
        assert run.run_metadata["error_class"] == "OperationalError"

    def test_next_attempt_reclaims_run(self, db_session, make_run, sleeps, unreleasable, monkeypatch):
        run = make_run([{"expected": "a", "output": "a"}])
        original_call = EvaluatorRunnerService.call
        attempts = []

        def fail_once(self):
            attempts.append(self.dataset_run.id)
            if len(attempts) == 1:
                raise ConnectionError("connection reset")
            return original_call(self)

        monkeypatch.setattr(EvaluatorRunnerService, "call", fail_once)

        result = DatasetRunnerJob(db_session, sleep=sleeps.append).run(run.id)

        assert len(attempts) == 2
        assert sleeps == [1.0]
        assert result.status == DatasetRunStatus.COMPLETED
        assert db_session.query(Score).count() == 1

    def test_run_claimed_elsewhere_is_left_alone(self, db_session, make_run):
        run = make_run([{"expected": "a", "output": "a"}], status=DatasetRunStatus.RUNNING)
        job = DatasetRunnerJob(db_session)

        job.run(run.id)

        assert job.claimed is False
        assert run.status == DatasetRunStatus.RUNNING
