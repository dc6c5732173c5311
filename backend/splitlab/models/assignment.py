"""Visitor assignment model."""
from sqlalchemy import (
    Column, String, Float, Boolean, DateTime, ForeignKey,
    UniqueConstraint, Enum as SQLEnum, Uuid,
)
from sqlalchemy.orm import relationship
from datetime import datetime
import uuid

from splitlab.database import Base
from splitlab.models.ab_test import Variant


class Assignment(Base):
    """Binds one visitor to one variant of one test."""

    __tablename__ = "ab_test_assignments"
    __table_args__ = (
        # Concurrent first visits race on this constraint
        UniqueConstraint("test_id", "visitor_id", name="uq_assignment_test_visitor"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    test_id = Column(Uuid(as_uuid=True), ForeignKey("ab_tests.id", ondelete="CASCADE"), nullable=False, index=True)
    visitor_id = Column(String(255), nullable=False, index=True)
    variant = Column(SQLEnum(Variant), nullable=False)
    assigned_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    # Conversion tracking
    converted = Column(Boolean, default=False, nullable=False)
    converted_at = Column(DateTime)
    conversion_value = Column(Float)

    # Client metadata
    ip_address = Column(String(64))
    user_agent = Column(String(512))
    page = Column(String(2048))

    # Relationships
    test = relationship("ABTest", back_populates="assignments")

    def __repr__(self):
        return f"<Assignment {self.visitor_id} variant={self.variant.value} converted={self.converted}>"
