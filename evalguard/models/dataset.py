"""
Dataset models.

A dataset is a named collection of inputs with expected outputs.
Runs of an agent against a dataset are recorded as DatasetRun rows.
"""

from datetime import datetime
from enum import Enum as PyEnum

from sqlalchemy import (
    Column, Integer, String, Text, DateTime, ForeignKey, Index, Enum as SQLEnum
)
from sqlalchemy.orm import relationship

from evalguard.database import Base, JSONType


class DatasetItemStatus(str, PyEnum):
    """Whether an item takes part in new runs."""
    ACTIVE = "active"
    ARCHIVED = "archived"


class Dataset(Base):
    """
    Dataset: Named collection of evaluation inputs.

    dataset_metadata["evaluators"] holds the default evaluator
    configuration list for runs of this dataset, e.g.
    [{"type": "exact_match"}, {"type": "contains", "keywords": ["refund"]}].
    """
    __tablename__ = "datasets"

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False, unique=True)
    description = Column(Text)
    agent_class = Column(String(255))

    # Metadata (renamed to avoid SQLAlchemy reserved attribute)
    dataset_metadata = Column("metadata", JSONType, nullable=False, default=dict)

    created_at = Column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)

    items = relationship("DatasetItem", back_populates="dataset", order_by="DatasetItem.id")
    runs = relationship("DatasetRun", back_populates="dataset")

    def __repr__(self):
        return f"<Dataset(id={self.id}, name='{self.name}')>"


class DatasetItem(Base):
    """DatasetItem: One input with its (optional) expected output."""
    __tablename__ = "dataset_items"

    id = Column(Integer, primary_key=True)
    dataset_id = Column(Integer, ForeignKey("datasets.id"), nullable=False)
    status = Column(
        SQLEnum(DatasetItemStatus, name="dataset_item_status",
                values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=DatasetItemStatus.ACTIVE
    )

    input = Column(JSONType, nullable=False)
    expected_output = Column(JSONType)
    item_metadata = Column("metadata", JSONType, nullable=False, default=dict)

    created_at = Column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)

    dataset = relationship("Dataset", back_populates="items")

    __table_args__ = (
        Index("idx_dataset_items_dataset_status", "dataset_id", "status"),
    )

    def __repr__(self):
        return f"<DatasetItem(id={self.id}, dataset_id={self.dataset_id}, status='{self.status}')>"
