"""
AgentSession and Trace models.

Sessions group the traces of one conversation or one dataset item
execution. Both are owned by the recording side; evaluation and
moderation only read them and attach scores or review items.
"""

from datetime import datetime
from typing import Optional
from uuid import uuid4

from sqlalchemy import Column, Integer, String, Float, DateTime, ForeignKey, Index
from sqlalchemy.orm import relationship

from evalguard.database import Base, JSONType


class AgentSession(Base):
    """
    AgentSession: A grouped sequence of traces.

    session_metadata carries scheduling hints read by the moderation
    selectors: "user_facing" (true/"true") and "agent_type".
    """
    __tablename__ = "sessions"

    owner_type = "session"

    id = Column(Integer, primary_key=True)
    session_id = Column(String(64), nullable=False, unique=True, default=lambda: str(uuid4()))
    user_id = Column(String(255))

    session_metadata = Column("metadata", JSONType, nullable=False, default=dict)

    start_time = Column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)
    end_time = Column(DateTime(timezone=True))

    total_cost = Column(Float, nullable=False, default=0.0)
    total_tokens = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)

    traces = relationship("Trace", back_populates="session", order_by="Trace.id")

    __table_args__ = (
        Index("idx_sessions_created", "created_at"),
    )

    @property
    def total_traces_count(self) -> int:
        return len(self.traces)

    def __repr__(self):
        return f"<AgentSession(id={self.id}, session_id='{self.session_id}')>"


class Trace(Base):
    """
    Trace: One recorded interaction.

    input and output hold whatever the agent received and produced
    (strings or JSON structures).
    """
    __tablename__ = "traces"

    owner_type = "trace"

    id = Column(Integer, primary_key=True)
    trace_id = Column(String(64), nullable=False, unique=True, default=lambda: str(uuid4()))
    session_id = Column(Integer, ForeignKey("sessions.id"), nullable=False)
    name = Column(String(255))

    input = Column(JSONType)
    output = Column(JSONType)
    trace_metadata = Column("metadata", JSONType, nullable=False, default=dict)
    tags = Column(JSONType, nullable=False, default=list)

    total_cost = Column(Float, nullable=False, default=0.0)
    total_tokens = Column(Integer, nullable=False, default=0)

    start_time = Column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)
    end_time = Column(DateTime(timezone=True))

    created_at = Column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)

    session = relationship("AgentSession", back_populates="traces")

    __table_args__ = (
        Index("idx_traces_session", "session_id"),
        Index("idx_traces_created", "created_at"),
    )

    @property
    def duration_ms(self) -> Optional[float]:
        if self.end_time is None or self.start_time is None:
            return None
        return round((self.end_time - self.start_time).total_seconds() * 1000, 2)

    def finalize(self, output=None, metadata: Optional[dict] = None) -> None:
        """Record the output and end time, merging extra metadata."""
        self.output = output
        self.trace_metadata = {**(self.trace_metadata or {}), **(metadata or {})}
        self.end_time = datetime.utcnow()

    def __repr__(self):
        return f"<Trace(id={self.id}, trace_id='{self.trace_id}', name='{self.name}')>"
