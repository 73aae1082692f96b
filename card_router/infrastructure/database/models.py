"""SQLAlchemy ORM models for the Decision Log"""

import uuid
from sqlalchemy import Column, String, BigInteger, Boolean, DateTime, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func

Base = declarative_base()


class RoutingDecisionRecord(Base):
    """Append-only routing decision, one row per authorization"""

    __tablename__ = "routing_decision"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    authorization_id = Column(Text, nullable=False, unique=True)
    amount = Column(BigInteger, nullable=False)
    currency = Column(String(3), nullable=False)
    merchant_category_code = Column(Text, nullable=True)
    merchant_name = Column(Text, nullable=False)
    category = Column(Text, nullable=False, index=True)
    selected_instrument_id = Column(Text, nullable=False)
    settlement_outcome = Column(Text, nullable=False)
    settlement_id = Column(Text, nullable=True)
    final_status = Column(Text, nullable=False)
    decline_reason = Column(Text, nullable=True)
    needs_reconciliation = Column(Boolean, nullable=False, default=False, index=True)
    upstream_acknowledged = Column(Boolean, nullable=False, default=True)
    decided_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
