"""
FraudGuard — ORM Models (PostgreSQL)
"""

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON, Column, String, Integer, Boolean, DateTime, Text, Numeric,
    ForeignKey, Index, UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship

from app.services.db import Base

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")
Money = Numeric(14, 2, asdecimal=True)


def _utcnow():
    return datetime.now(timezone.utc)


def _uuid4():
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Enumerations (stored as plain strings)
# ---------------------------------------------------------------------------
class RiskLevel(str, enum.Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class RuleKind(str, enum.Enum):
    AMOUNT_THRESHOLD = "AMOUNT_THRESHOLD"
    FREQUENCY_WINDOW = "FREQUENCY_WINDOW"


class TransactionChannel(str, enum.Enum):
    BKASH = "BKASH"
    NAGAD = "NAGAD"
    CARD = "CARD"
    BANK = "BANK"
    CASH = "CASH"
    OTHER = "OTHER"


FRAUD_CONFIRMED = "FRAUD_CONFIRMED"
FINAL_DECISION_STATUSES = ("FINAL", "COMMUNICATED")


# ---------------------------------------------------------------------------
# Transaction  (immutable once recorded)
# ---------------------------------------------------------------------------
class Transaction(Base):
    __tablename__ = "transactions"
    __table_args__ = (
        Index("ix_transactions_account_occurred", "account_id", "occurred_at"),
        Index("ix_transactions_recipient", "recipient_account"),
    )

    id: str = Column(String(36), primary_key=True, default=_uuid4)
    account_id: str = Column(String(128), nullable=False)
    amount = Column(Money, nullable=False)
    channel: str = Column(String(16), nullable=False, default=TransactionChannel.OTHER.value)
    recipient_account: str = Column(String(128), nullable=True)
    location: str = Column(String(255), nullable=True)
    occurred_at: datetime = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    created_at: datetime = Column(DateTime(timezone=True), default=_utcnow)

    # relationships
    assessment = relationship(
        "SuspiciousTransaction", back_populates="transaction", uselist=False, lazy="selectin",
    )


# ---------------------------------------------------------------------------
# SuspiciousTransaction  (assessment, 1-to-1 with Transaction, upserted)
# ---------------------------------------------------------------------------
class SuspiciousTransaction(Base):
    __tablename__ = "suspicious_transactions"
    __table_args__ = (
        Index("ix_suspicious_transactions_level", "risk_level"),
    )

    id: str = Column(String(36), primary_key=True, default=_uuid4)
    transaction_id: str = Column(String(36), ForeignKey("transactions.id", ondelete="CASCADE"), unique=True, nullable=False)
    risk_score: int = Column(Integer, nullable=False, default=0)
    risk_level: str = Column(String(16), nullable=False, default=RiskLevel.LOW.value)
    reasons: str = Column(Text, nullable=False, default="")                  # "CODE_A; CODE_B"
    triggered_rules: list = Column(JSONType, default=list)                   # same codes, as a list
    rule_set_version: str = Column(String(64), nullable=True)
    flagged_at: datetime = Column(DateTime(timezone=True), default=_utcnow)

    transaction = relationship("Transaction", back_populates="assessment")


# ---------------------------------------------------------------------------
# FraudRule  (admin-managed scoring rules)
# ---------------------------------------------------------------------------
class FraudRule(Base):
    __tablename__ = "fraud_rules"

    id: str = Column(String(36), primary_key=True, default=_uuid4)
    code: str = Column(String(64), unique=True, nullable=False)              # e.g. "HIGH_AMOUNT"
    description: str = Column(Text, nullable=False, default="")
    kind: str = Column(String(32), nullable=False)                           # RuleKind
    amount_threshold = Column(Money, nullable=True)
    freq_count_limit: int = Column(Integer, nullable=True)
    freq_window_min: int = Column(Integer, nullable=True)
    risk_points: int = Column(Integer, nullable=False, default=0)
    is_active: bool = Column(Boolean, default=True)
    created_at: datetime = Column(DateTime(timezone=True), default=_utcnow)
    updated_at: datetime = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


# ---------------------------------------------------------------------------
# BlacklistEntry  (one per recipient)
# ---------------------------------------------------------------------------
class BlacklistEntry(Base):
    __tablename__ = "blacklisted_recipients"
    __table_args__ = (
        UniqueConstraint("recipient_value", name="uq_blacklisted_recipients_recipient"),
    )

    id: str = Column(String(36), primary_key=True, default=_uuid4)
    recipient_value: str = Column(String(128), nullable=False)
    reason: str = Column(Text, nullable=True)
    created_by: str = Column(String(128), nullable=False)
    created_at: datetime = Column(DateTime(timezone=True), default=_utcnow)


# ---------------------------------------------------------------------------
# BlacklistThresholds  (singleton row, id = 1)
# ---------------------------------------------------------------------------
class BlacklistThresholds(Base):
    __tablename__ = "blacklist_thresholds"

    id: int = Column(Integer, primary_key=True, default=1)
    min_complaints: int = Column(Integer, nullable=False)
    min_reported_amount = Column(Money, nullable=False)
    min_confirmed_fraud: int = Column(Integer, nullable=False)
    version: int = Column(Integer, nullable=False, default=1)
    updated_by: str = Column(String(128), nullable=True)
    updated_at: datetime = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


# ---------------------------------------------------------------------------
# Case management tables  (owned by the case service; read-only here)
# ---------------------------------------------------------------------------
class FraudCase(Base):
    __tablename__ = "fraud_cases"

    id: str = Column(String(36), primary_key=True, default=_uuid4)
    title: str = Column(String(255), nullable=False)
    category: str = Column(String(32), nullable=False)                       # PAYMENT_FRAUD | SCAM | …
    status: str = Column(String(32), nullable=False, default="OPEN")
    created_at: datetime = Column(DateTime(timezone=True), default=_utcnow)


class CaseTransaction(Base):
    __tablename__ = "case_transactions"

    case_id: str = Column(String(36), ForeignKey("fraud_cases.id", ondelete="CASCADE"), primary_key=True)
    transaction_id: str = Column(String(36), ForeignKey("transactions.id", ondelete="CASCADE"), primary_key=True)
    created_at: datetime = Column(DateTime(timezone=True), default=_utcnow)


class CaseDecision(Base):
    __tablename__ = "case_decisions"
    __table_args__ = (
        Index("ix_case_decisions_case_category", "case_id", "category"),
    )

    id: str = Column(String(36), primary_key=True, default=_uuid4)
    case_id: str = Column(String(36), ForeignKey("fraud_cases.id", ondelete="CASCADE"), nullable=False)
    category: str = Column(String(32), nullable=False)                       # FRAUD_CONFIRMED | CLEARED | …
    status: str = Column(String(16), nullable=False, default="DRAFT")        # DRAFT | FINAL | COMMUNICATED
    admin_user_id: str = Column(String(128), nullable=False)
    created_at: datetime = Column(DateTime(timezone=True), default=_utcnow)


# ---------------------------------------------------------------------------
# AuditLog  (immutable append-only)
# ---------------------------------------------------------------------------
class AuditLog(Base):
    __tablename__ = "audit_logs"
    __table_args__ = (
        Index("ix_audit_logs_transaction_created", "transaction_id", "created_at"),
        Index("ix_audit_logs_actor", "actor"),
    )

    id: str = Column(String(36), primary_key=True, default=_uuid4)
    transaction_id: str = Column(String(36), ForeignKey("transactions.id", ondelete="CASCADE"), nullable=True)
    actor: str = Column(String(128), nullable=False)                          # system | admin:<sub>
    action: str = Column(String(64), nullable=False)                          # ASSESSMENT_RECORDED | BLACKLIST_ADDED | …
    details: dict = Column(JSONType, default=dict)
    created_at: datetime = Column(DateTime(timezone=True), default=_utcnow)
