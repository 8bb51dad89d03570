"""
DatasetRun and DatasetRunItem models.

A run executes an agent over every item of a dataset; each run item links
the dataset item to the trace the agent produced and carries its scores.
"""

from datetime import datetime
from enum import Enum as PyEnum
from typing import Any, Optional

from sqlalchemy import (
    Column, Integer, String, Text, Float, DateTime, ForeignKey, Index,
    UniqueConstraint, Enum as SQLEnum
)
from sqlalchemy.orm import relationship

from evalguard.database import Base, JSONType
from evalguard.domain.values import is_blank, normalize_for_comparison


class DatasetRunStatus(str, PyEnum):
    """
    Run lifecycle: pending -> running -> completed | failed.

    completed and failed are terminal.
    """
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class DatasetRun(Base):
    """
    DatasetRun: Aggregate over run items.

    run_metadata is a free-form mapping. On terminal failure the runner
    writes error, error_class, failed_at and (after retries) retries_exhausted.
    """
    __tablename__ = "dataset_runs"

    id = Column(Integer, primary_key=True)
    dataset_id = Column(Integer, ForeignKey("datasets.id"), nullable=False)
    name = Column(String(255), nullable=False)
    description = Column(Text)

    status = Column(
        SQLEnum(DatasetRunStatus, name="dataset_run_status",
                values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=DatasetRunStatus.PENDING
    )
    run_metadata = Column("metadata", JSONType, nullable=False, default=dict)

    # Aggregates, refreshed by the runner after processing
    total_items = Column(Integer, nullable=False, default=0)
    completed_items = Column(Integer, nullable=False, default=0)
    failed_items = Column(Integer, nullable=False, default=0)
    total_cost = Column(Float, nullable=False, default=0.0)
    total_tokens = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    dataset = relationship("Dataset", back_populates="runs")
    run_items = relationship(
        "DatasetRunItem", back_populates="dataset_run", order_by="DatasetRunItem.id"
    )

    __table_args__ = (
        UniqueConstraint("dataset_id", "name", name="uq_dataset_run_name"),
        Index("idx_dataset_runs_dataset_status", "dataset_id", "status"),
    )

    @property
    def finished(self) -> bool:
        return self.status in (DatasetRunStatus.COMPLETED, DatasetRunStatus.FAILED)

    @property
    def running(self) -> bool:
        return self.status == DatasetRunStatus.RUNNING

    @property
    def in_progress(self) -> bool:
        return self.status in (DatasetRunStatus.PENDING, DatasetRunStatus.RUNNING)

    @property
    def progress_percentage(self) -> float:
        if not self.total_items:
            return 0.0
        return round((self.completed_items + self.failed_items) / self.total_items * 100, 1)

    def __repr__(self):
        return f"<DatasetRun(id={self.id}, name='{self.name}', status='{self.status}')>"


class DatasetRunItem(Base):
    """
    DatasetRunItem: One dataset item within one run.

    Pending until the agent has produced a trace (succeeded) or an
    error (failed). Only the runner mutates run items.
    """
    __tablename__ = "dataset_run_items"

    owner_type = "dataset_run_item"

    id = Column(Integer, primary_key=True)
    dataset_run_id = Column(Integer, ForeignKey("dataset_runs.id"), nullable=False)
    dataset_item_id = Column(Integer, ForeignKey("dataset_items.id"), nullable=False)
    trace_id = Column(Integer, ForeignKey("traces.id"), nullable=True)
    error = Column(Text)

    created_at = Column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    dataset_run = relationship("DatasetRun", back_populates="run_items")
    dataset_item = relationship("DatasetItem")
    trace = relationship("Trace")

    __table_args__ = (
        UniqueConstraint("dataset_run_id", "dataset_item_id", name="uq_run_item_run_and_item"),
    )

    # ===== Status =====

    @property
    def succeeded(self) -> bool:
        return self.trace_id is not None and is_blank(self.error)

    @property
    def failed(self) -> bool:
        return not is_blank(self.error)

    @property
    def pending(self) -> bool:
        return self.trace_id is None and self.error is None

    @property
    def status(self) -> str:
        if self.failed:
            return "failed"
        if self.succeeded:
            return "succeeded"
        return "pending"

    # ===== Access =====

    @property
    def input(self) -> Any:
        return self.dataset_item.input

    @property
    def expected_output(self) -> Any:
        return self.dataset_item.expected_output

    @property
    def actual_output(self) -> Any:
        return self.trace.output if self.trace is not None else None

    def output_matches(self) -> Optional[bool]:
        """
        Compare actual and expected output after normalization.

        Returns None when either side is blank.
        """
        expected = self.expected_output
        actual = self.actual_output
        if is_blank(expected) or is_blank(actual):
            return None
        return normalize_for_comparison(expected) == normalize_for_comparison(actual)

    def __repr__(self):
        return f"<DatasetRunItem(id={self.id}, run_id={self.dataset_run_id}, status='{self.status}')>"
