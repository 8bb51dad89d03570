"""
Dataset Runner Service Tests.

Claiming, agent execution, scoring and final status of dataset runs.
"""

import pytest

from evalguard.errors import InvalidConfiguration
from evalguard.evaluators import EVALUATORS, BaseEvaluator
from evalguard.models import DatasetRunStatus, Score
from evalguard.services.dataset_runner import DatasetRunnerService
from evalguard.services.evaluator_runner import EvaluatorRunnerService
from evalguard.services.score_store import ScoreStore


@pytest.fixture
def exploding_evaluator():
    class ExplodingEvaluator(BaseEvaluator):
        def evaluate(self, run_item):
            raise ValueError("evaluator bug")

    EVALUATORS["exploding"] = ExplodingEvaluator
    yield ExplodingEvaluator
    EVALUATORS.pop("exploding")


class TestEvaluatorRunnerService:
    """Test evaluator selection and per-item isolation."""

    def test_defaults_to_exact_match(self, db_session, make_run):
        run = make_run([{"expected": "a", "output": "a"}])

        runner = EvaluatorRunnerService(db_session, run)

        assert [evaluator.name for evaluator in runner.evaluators] == ["exact_match"]

    def test_uses_dataset_evaluators(self, db_session, make_run):
        run = make_run(
            [{"expected": "a", "output": "a"}],
            evaluators=[{"type": "contains", "keywords": ["a"]}, {"type": "json_structure"}]
        )

        runner = EvaluatorRunnerService(db_session, run)

        assert [evaluator.name for evaluator in runner.evaluators] == ["contains", "json_structure"]

    def test_explicit_configs_win(self, db_session, make_run):
        run = make_run([{"expected": "a", "output": "a"}], evaluators=[{"type": "contains"}])

        runner = EvaluatorRunnerService(db_session, run, evaluator_configs=[{"type": "exact_match"}])

        assert [evaluator.name for evaluator in runner.evaluators] == ["exact_match"]

    def test_unknown_type_fails_at_construction(self, db_session, make_run):
        run = make_run([{"expected": "a", "output": "a"}])

        with pytest.raises(InvalidConfiguration):
            EvaluatorRunnerService(db_session, run, evaluator_configs=[{"type": "nope"}])

    def test_only_succeeded_items_are_scored(self, db_session, make_run):
        run = make_run([
            {"expected": "a", "output": "a"},
            {"expected": "b", "output": "b", "error": "TimeoutError: slow"},
            {"expected": "c"},
        ])

        EvaluatorRunnerService(db_session, run).call()
        db_session.commit()

        scores = db_session.query(Score).all()
        assert len(scores) == 1
        assert scores[0].scoreable_id == run.run_items[0].id

    def test_evaluator_error_is_isolated(self, db_session, make_run, exploding_evaluator):
        run = make_run([{"expected": "a", "output": "a"}, {"expected": "b", "output": "b"}])

        EvaluatorRunnerService(
            db_session, run,
            evaluator_configs=[{"type": "exploding"}, {"type": "exact_match"}]
        ).call()
        db_session.commit()

        scores = db_session.query(Score).all()
        assert len(scores) == 2
        assert {score.name for score in scores} == {"exact_match"}


class TestDatasetRunnerService:
    """Test dataset run execution."""

    def test_scores_existing_traces_and_completes(self, db_session, make_run):
        run = make_run([
            {"expected": "Paris", "output": "Paris"},
            {"expected": "Rome", "output": "Madrid"},
        ])
        run.run_items[0].trace.total_cost = 0.25
        run.run_items[0].trace.total_tokens = 100
        run.run_items[1].trace.total_cost = 0.5
        db_session.commit()

        result = DatasetRunnerService(db_session, run).call()

        assert result.status == DatasetRunStatus.COMPLETED
        assert result.total_items == 2
        assert result.completed_items == 2
        assert result.failed_items == 0
        assert result.total_cost == pytest.approx(0.75)
        assert result.total_tokens == 100
        assert ScoreStore(db_session).average_score(run, "exact_match") == 0.5

    def test_running_run_is_not_claimed(self, db_session, make_run):
        run = make_run([{"expected": "a", "output": "a"}], status=DatasetRunStatus.RUNNING)

        result = DatasetRunnerService(db_session, run).call()

        assert result.status == DatasetRunStatus.RUNNING
        assert db_session.query(Score).count() == 0

    def test_finished_run_is_not_rerun(self, db_session, make_run):
        run = make_run([{"expected": "a", "output": "a"}], status=DatasetRunStatus.COMPLETED)

        DatasetRunnerService(db_session, run).call()

        assert db_session.query(Score).count() == 0

    def test_empty_run_completes(self, db_session, make_run):
        run = make_run([])

        result = DatasetRunnerService(db_session, run).call()

        assert result.status == DatasetRunStatus.COMPLETED
        assert result.total_items == 0

    def test_all_items_failed_fails_run(self, db_session, make_run):
        run = make_run([
            {"expected": "a", "error": "RuntimeError: boom"},
            {"expected": "b", "error": "RuntimeError: boom"},
        ])

        result = DatasetRunnerService(db_session, run).call()

        assert result.status == DatasetRunStatus.FAILED
        assert result.failed_items == 2

    def test_agent_executor_runs_pending_items(self, db_session, make_run, agent_executor):
        run = make_run([
            {"input": "2+2", "expected": "2+2"},
            {"input": "crash", "expected": "crash"},
            {"input": "done", "expected": "done", "output": "done"},
        ])
        executor = agent_executor
        executor.failures = {"crash"}

        result = DatasetRunnerService(db_session, run, agent_executor=executor).call()

        assert [call[0] for call in executor.calls] == ["2+2", "crash"]
        assert executor.calls[0][1]["dataset_run_id"] == run.id

        ok_item, crashed_item, existing_item = run.run_items
        assert ok_item.succeeded
        assert ok_item.trace.output == "2+2"
        assert ok_item.trace.end_time is not None
        assert ok_item.trace.session.session_metadata["source"] == "dataset_evaluation"
        assert "dataset_evaluation" in ok_item.trace.tags

        assert crashed_item.failed
        assert crashed_item.error == "RuntimeError: agent crashed on crash"
        assert crashed_item.trace.trace_metadata["error_class"] == "RuntimeError"

        assert result.status == DatasetRunStatus.COMPLETED
        assert result.completed_items == 2
        assert result.failed_items == 1
        assert ScoreStore(db_session).average_score(run, "exact_match") == 1.0

    def test_invalid_configuration_marks_failed(self, db_session, make_run):
        run = make_run([{"expected": "a", "output": "a"}], evaluators=[{"type": "sentiment"}])

        with pytest.raises(InvalidConfiguration):
            DatasetRunnerService(db_session, run).call()

        assert run.status == DatasetRunStatus.FAILED
        assert run.run_metadata["error_class"] == "InvalidConfiguration"
        assert "sentiment" in run.run_metadata["error"]
        assert run.run_metadata["failed_at"].endswith("Z")

    def test_transient_error_releases_run(self, db_session, make_run, monkeypatch):
        run = make_run([{"expected": "a", "output": "a"}])

        def fail(self):
            raise ConnectionError("database went away")

        monkeypatch.setattr(EvaluatorRunnerService, "call", fail)

        with pytest.raises(ConnectionError):
            DatasetRunnerService(db_session, run).call()

        assert run.status == DatasetRunStatus.PENDING
        assert run.run_metadata["last_error"] == "database went away"
        assert run.run_metadata["last_error_class"] == "ConnectionError"
