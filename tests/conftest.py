"""
Pytest configuration and fixtures.

Provides a throwaway SQLite database per test, an in-process job queue
and factories for datasets, runs, sessions and traces.
"""

import pytest
from uuid import uuid4
from sqlalchemy.orm import sessionmaker

from evalguard import providers
from evalguard.database import Base, create_db_engine
from evalguard.jobs.queue import JobQueue, set_queue
from evalguard.models import (
    AgentSession, Dataset, DatasetItem, DatasetRun, DatasetRunItem,
    DatasetRunStatus, Trace
)
from evalguard.schemas.moderation import ModerationResponse


class FakeModerationClient:
    """Returns a canned response and records every moderated text."""

    def __init__(self, response: ModerationResponse = None, error: Exception = None):
        self.response = response or ModerationResponse()
        self.error = error
        self.calls = []

    def moderate(self, content: str) -> ModerationResponse:
        self.calls.append(content)
        if self.error is not None:
            raise self.error
        return self.response


class FakeAgentExecutor:
    """Echoes inputs back, or raises for inputs listed in `failures`."""

    def __init__(self, outputs=None, failures=()):
        self.outputs = outputs or {}
        self.failures = set(failures)
        self.calls = []

    def execute(self, input, context):
        self.calls.append((input, context))
        if input in self.failures:
            raise RuntimeError(f"agent crashed on {input}")
        return self.outputs.get(input, input)


# ============================================================================
# DATABASE FIXTURES
# ============================================================================

@pytest.fixture(scope="function")
def db_engine(tmp_path):
    """Create test database engine."""
    import evalguard.models  # noqa: F401

    engine = create_db_engine(f"sqlite:///{tmp_path / 'evalguard_test.db'}")
    Base.metadata.create_all(bind=engine)

    yield engine

    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(db_engine):
    return sessionmaker(bind=db_engine, autoflush=False)


@pytest.fixture(scope="function")
def db_session(session_factory):
    """Provide a clean database session for each test."""
    session = session_factory()

    yield session

    session.rollback()
    session.close()


# ============================================================================
# JOB FIXTURES
# ============================================================================

@pytest.fixture
def sleeps():
    """Backoff delays requested by jobs, in order."""
    return []


@pytest.fixture
def job_queue(session_factory, sleeps):
    """Default job queue bound to the test database."""
    queue = JobQueue(session_factory=session_factory, sleep=sleeps.append)
    set_queue(queue)

    yield queue

    set_queue(None)


@pytest.fixture
def moderation_client():
    """Fake moderation client registered as the default."""
    client = FakeModerationClient()
    providers.set_moderation_client(client)

    yield client

    providers.set_moderation_client(None)


@pytest.fixture
def agent_executor():
    """Fake agent executor registered as the default."""
    executor = FakeAgentExecutor()
    providers.set_agent_executor(executor)

    yield executor

    providers.set_agent_executor(None)


# ============================================================================
# RECORD FACTORIES
# ============================================================================

@pytest.fixture
def make_session(db_session):
    """Create an AgentSession."""
    def _make(metadata=None, **kwargs):
        session = AgentSession(user_id="user-1", session_metadata=metadata or {}, **kwargs)
        db_session.add(session)
        db_session.commit()
        return session
    return _make


@pytest.fixture
def make_trace(db_session, make_session):
    """Create a Trace, in a new session unless one is given."""
    def _make(input=None, output=None, session=None, **kwargs):
        trace = Trace(
            session=session or make_session(),
            name="chat",
            input=input,
            output=output,
            **kwargs
        )
        db_session.add(trace)
        db_session.commit()
        return trace
    return _make


@pytest.fixture
def make_run(db_session):
    """
    Create a dataset run from item specs.

    Each spec is a dict with optional keys: input, expected, output
    (attaches a trace), error.
    """
    def _make(items, evaluators=None, status=DatasetRunStatus.PENDING, name="run-1"):
        dataset = Dataset(
            name=f"dataset-{uuid4().hex[:8]}",
            agent_class="EchoAgent",
            dataset_metadata={"evaluators": evaluators} if evaluators else {}
        )
        run = DatasetRun(dataset=dataset, name=name, status=status)
        db_session.add_all([dataset, run])

        for spec in items:
            item = DatasetItem(
                dataset=dataset,
                input=spec.get("input", "question"),
                expected_output=spec.get("expected")
            )
            run_item = DatasetRunItem(dataset_run=run, dataset_item=item, error=spec.get("error"))
            if "output" in spec:
                run_item.trace = Trace(
                    session=AgentSession(),
                    name="agent",
                    input=item.input,
                    output=spec["output"]
                )
            db_session.add(run_item)

        db_session.commit()
        return run
    return _make
