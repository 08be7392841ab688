import enum

from sqlalchemy import JSON, Column, DateTime, Enum, Integer, String

from storefront.db import Base
from storefront.utils.clock import utcnow


class IdempotencyStatus(enum.Enum):
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"  # may be taken over by a retry


class IdempotencyRecord(Base):
    """
    One externally-triggered operation that must take effect at most once,
    e.g. `payment.confirm:<gateway payment id>`. The stored response is
    replayed to duplicates.
    """

    __tablename__ = "idempotency_records"
    id = Column(Integer, primary_key=True, autoincrement=True)
    key = Column(String(160), unique=True, nullable=False, index=True)
    operation = Column(String(64), nullable=False)
    order_id = Column(Integer, nullable=True, index=True)
    status = Column(
        Enum(IdempotencyStatus), nullable=False, default=IdempotencyStatus.IN_PROGRESS
    )
    response_body = Column(JSON, nullable=True)
    last_error = Column(String(1024), nullable=True)
    attempts = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
