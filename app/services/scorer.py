"""
FraudGuard — Risk Scoring Orchestrator

Fetches everything one evaluation needs (transaction, active rule snapshot,
account history window, blacklist status), runs the pure rules engine, and
upserts the SuspiciousTransaction assessment together with an AuditLog entry
inside the caller's database transaction.  Either both rows commit or
neither does.
"""

import logging
import time
from typing import List

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.models import AuditLog, FraudRule, SuspiciousTransaction, Transaction, _uuid4, _utcnow
from app.rules.engine import Assessment, RiskPolicy, RuleSet, evaluate_transaction
from app.services import blacklist
from app.services.errors import NotFound, StoreUnavailable
from app.services.db import dialect_name
from app.services.observability import Metrics, log_transaction_evaluated
from app.services.velocity import fetch_account_history

logger = logging.getLogger("fraudguard.scorer")

_UPSERT_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


def current_policy() -> RiskPolicy:
    return RiskPolicy(
        medium_threshold=settings.RISK_BAND_MEDIUM,
        high_threshold=settings.RISK_BAND_HIGH,
        blacklist_bonus=settings.BLACKLIST_SCORE_BONUS,
    )


# ===========================================================================
# Inputs
# ===========================================================================
async def load_rule_set(db: AsyncSession) -> RuleSet:
    stmt = select(FraudRule).where(FraudRule.is_active.is_(True))
    result = await db.execute(stmt)
    return RuleSet.from_rows(result.scalars())


async def get_transaction(db: AsyncSession, transaction_id: str) -> Transaction:
    # populate_existing also refreshes the selectin-loaded assessment
    stmt = (
        select(Transaction)
        .where(Transaction.id == transaction_id)
        .execution_options(populate_existing=True)
    )
    result = await db.execute(stmt)
    txn = result.scalar_one_or_none()
    if txn is None:
        raise NotFound(f"transaction {transaction_id} not found")
    return txn


async def get_assessment(db: AsyncSession, transaction_id: str) -> SuspiciousTransaction:
    stmt = (
        select(SuspiciousTransaction)
        .where(SuspiciousTransaction.transaction_id == transaction_id)
        .execution_options(populate_existing=True)
    )
    result = await db.execute(stmt)
    row = result.scalar_one_or_none()
    if row is None:
        raise NotFound(f"transaction {transaction_id} has not been assessed")
    return row


# ===========================================================================
# Upsert
# ===========================================================================
async def _upsert_assessment(db: AsyncSession, assessment: Assessment) -> None:
    insert_fn = _UPSERT_INSERTS.get(dialect_name(db))
    if insert_fn is None:
        raise StoreUnavailable(f"no upsert support for dialect {dialect_name(db)!r}")

    values = {
        "risk_score": assessment.score,
        "risk_level": assessment.level.value,
        "reasons": assessment.reasons_text,
        "triggered_rules": list(assessment.reasons),
        "rule_set_version": assessment.rule_set_version,
        "flagged_at": _utcnow(),
    }
    stmt = insert_fn(SuspiciousTransaction).values(
        id=_uuid4(),
        transaction_id=assessment.transaction_id,
        **values,
    )
    stmt = stmt.on_conflict_do_update(index_elements=["transaction_id"], set_=values)
    await db.execute(stmt)


# ===========================================================================
# Core orchestration
# ===========================================================================
async def score_transaction(
    db: AsyncSession,
    transaction_id: str,
    actor: str = "system",
) -> SuspiciousTransaction:
    """
    1. Load the transaction                        → NotFound if absent
    2. Snapshot active rules                       → RuleSet (versioned)
    3. Fetch account history for the widest frequency window
    4. Registry lookup for the recipient
    5. Pure evaluation                             → Assessment
    6. Upsert assessment + audit row (same DB transaction)
    """
    start_time = time.perf_counter()

    txn = await get_transaction(db, transaction_id)
    rule_set = await load_rule_set(db)
    history: List[Transaction] = await fetch_account_history(
        db, txn, rule_set.max_window_minutes()
    )

    blacklisted = set()
    if txn.recipient_account and await blacklist.contains(db, txn.recipient_account):
        blacklisted.add(txn.recipient_account)

    assessment = evaluate_transaction(txn, history, rule_set, blacklisted, current_policy())
    for code in assessment.skipped_rules:
        Metrics.rules_skipped_total.labels(rule_code=code).inc()

    await _upsert_assessment(db, assessment)
    db.add(AuditLog(
        transaction_id=txn.id,
        actor=actor,
        action="ASSESSMENT_RECORDED",
        details={
            "risk_score": assessment.score,
            "risk_level": assessment.level.value,
            "reasons": list(assessment.reasons),
            "rule_set_version": assessment.rule_set_version,
            "skipped_rules": list(assessment.skipped_rules),
        },
    ))
    await db.flush()   # push to DB within the caller's transaction

    duration_ms = (time.perf_counter() - start_time) * 1_000
    log_transaction_evaluated(
        txn.id, assessment.level.value, assessment.score, assessment.reasons_text, duration_ms,
    )
    return await get_assessment(db, txn.id)


async def reevaluate_recipient(
    db: AsyncSession,
    recipient: str,
    actor: str,
) -> List[SuspiciousTransaction]:
    """Re-score every transaction routed to *recipient*, oldest first."""
    recipient = blacklist.normalize_recipient(recipient)
    stmt = (
        select(Transaction.id)
        .where(Transaction.recipient_account == recipient)
        .order_by(Transaction.occurred_at.asc(), Transaction.id.asc())
    )
    result = await db.execute(stmt)
    txn_ids = list(result.scalars())

    assessments = [await score_transaction(db, txn_id, actor=actor) for txn_id in txn_ids]
    logger.info(
        "Re-evaluated %d transactions for recipient=%s actor=%s",
        len(assessments), recipient, actor,
    )
    return assessments
