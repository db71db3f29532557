"""
FraudGuard — Recipient Aggregator

Rolls up the history of every transaction ever routed to a recipient into
the three signals the blacklist recommendation engine consumes:

complaint_count        distinct MEDIUM/HIGH assessments on the recipient's transactions
total_reported_amount  sum over distinct transactions linked to a fraud-category case
confirmed_fraud_count  distinct linked cases carrying a final FRAUD_CONFIRMED decision

Pure reads.  Each query is written once with an optional recipient filter so
the single-recipient and all-recipients paths can never disagree.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy import distinct, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.models import (
    FINAL_DECISION_STATUSES, FRAUD_CONFIRMED,
    CaseDecision, CaseTransaction, FraudCase, RiskLevel, SuspiciousTransaction, Transaction,
)
from app.services.blacklist import normalize_recipient
from app.services.db import bounded

logger = logging.getLogger("fraudguard.aggregator")

COMPLAINT_LEVELS = (RiskLevel.MEDIUM.value, RiskLevel.HIGH.value)
CENTS = Decimal("0.01")


@dataclass(frozen=True)
class RecipientAggregates:
    complaint_count: int = 0
    total_reported_amount: Decimal = Decimal("0.00")
    confirmed_fraud_count: int = 0


def _money(value) -> Decimal:
    return Decimal(str(value or 0)).quantize(CENTS)


# ===========================================================================
# Grouped queries  (recipient → value)
# ===========================================================================
async def _complaint_counts(db: AsyncSession, recipient: Optional[str]) -> Dict[str, int]:
    stmt = (
        select(Transaction.recipient_account, func.count(distinct(SuspiciousTransaction.id)))
        .join(SuspiciousTransaction, SuspiciousTransaction.transaction_id == Transaction.id)
        .where(
            Transaction.recipient_account.is_not(None),
            SuspiciousTransaction.risk_level.in_(COMPLAINT_LEVELS),
        )
        .group_by(Transaction.recipient_account)
    )
    if recipient is not None:
        stmt = stmt.where(Transaction.recipient_account == recipient)
    result = await db.execute(stmt)
    return {row[0]: int(row[1]) for row in result.all()}


async def _reported_amounts(db: AsyncSession, recipient: Optional[str]) -> Dict[str, Decimal]:
    fraud_linked = (
        select(CaseTransaction.transaction_id)
        .join(FraudCase, FraudCase.id == CaseTransaction.case_id)
        .where(FraudCase.category.in_(settings.FRAUD_CASE_CATEGORIES))
    )
    stmt = (
        select(Transaction.recipient_account, func.coalesce(func.sum(Transaction.amount), 0))
        .where(
            Transaction.recipient_account.is_not(None),
            Transaction.id.in_(fraud_linked),
        )
        .group_by(Transaction.recipient_account)
    )
    if recipient is not None:
        stmt = stmt.where(Transaction.recipient_account == recipient)
    result = await db.execute(stmt)
    return {row[0]: _money(row[1]) for row in result.all()}


async def _confirmed_fraud_counts(db: AsyncSession, recipient: Optional[str]) -> Dict[str, int]:
    confirmed_cases = (
        select(CaseDecision.case_id)
        .where(
            CaseDecision.category == FRAUD_CONFIRMED,
            CaseDecision.status.in_(FINAL_DECISION_STATUSES),
        )
    )
    stmt = (
        select(Transaction.recipient_account, func.count(distinct(CaseTransaction.case_id)))
        .join(CaseTransaction, CaseTransaction.transaction_id == Transaction.id)
        .where(
            Transaction.recipient_account.is_not(None),
            CaseTransaction.case_id.in_(confirmed_cases),
        )
        .group_by(Transaction.recipient_account)
    )
    if recipient is not None:
        stmt = stmt.where(Transaction.recipient_account == recipient)
    result = await db.execute(stmt)
    return {row[0]: int(row[1]) for row in result.all()}


async def _assessed_recipients(db: AsyncSession) -> List[str]:
    stmt = (
        select(Transaction.recipient_account)
        .distinct()
        .join(SuspiciousTransaction, SuspiciousTransaction.transaction_id == Transaction.id)
        .where(Transaction.recipient_account.is_not(None))
        .order_by(Transaction.recipient_account.asc())
    )
    result = await db.execute(stmt)
    return list(result.scalars())


# ===========================================================================
# Public API
# ===========================================================================
async def _aggregate(db: AsyncSession, recipient: Optional[str]) -> Dict[str, RecipientAggregates]:
    complaints = await _complaint_counts(db, recipient)
    amounts = await _reported_amounts(db, recipient)
    confirmed = await _confirmed_fraud_counts(db, recipient)

    recipients = [recipient] if recipient is not None else await _assessed_recipients(db)
    return {
        r: RecipientAggregates(
            complaint_count=complaints.get(r, 0),
            total_reported_amount=amounts.get(r, Decimal("0.00")),
            confirmed_fraud_count=confirmed.get(r, 0),
        )
        for r in recipients
    }


async def aggregate_recipient(db: AsyncSession, recipient: str) -> RecipientAggregates:
    """Signals for one recipient; all zeros when it has no history."""
    recipient = normalize_recipient(recipient)
    aggregates = await bounded(_aggregate(db, recipient), operation=f"aggregate recipient {recipient}")
    return aggregates[recipient]


async def aggregate_all_recipients(db: AsyncSession) -> Dict[str, RecipientAggregates]:
    """Signals for every recipient with at least one assessed transaction."""
    aggregates = await bounded(_aggregate(db, None), operation="aggregate all recipients")
    logger.debug("Aggregated %d recipients", len(aggregates))
    return aggregates
