"""
FraudGuard — Account History Window

Frequency rules count the *account's* transactions over a sliding window that
ends at the scored transaction's timestamp.  This module fetches exactly that
window so the rules engine can stay pure.
"""

import logging
from datetime import timedelta
from typing import List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.models import Transaction

logger = logging.getLogger("fraudguard.velocity")


async def fetch_account_history(
    db: AsyncSession,
    transaction: Transaction,
    window_minutes: int,
) -> List[Transaction]:
    """
    Return the account's transactions with ``occurred_at`` in
    ``[transaction.occurred_at - window_minutes, transaction.occurred_at]``.

    Transactions recorded *after* the scored one are excluded, so replaying
    an old transaction reproduces its original score.
    """
    if window_minutes <= 0:
        return []

    window_end = transaction.occurred_at
    window_start = window_end - timedelta(minutes=window_minutes)

    stmt = (
        select(Transaction)
        .where(
            Transaction.account_id == transaction.account_id,
            Transaction.occurred_at >= window_start,
            Transaction.occurred_at <= window_end,
        )
        .order_by(Transaction.occurred_at.asc(), Transaction.id.asc())
    )
    result = await db.execute(stmt)
    history = list(result.scalars())

    logger.debug(
        "History window account=%s minutes=%d rows=%d",
        transaction.account_id, window_minutes, len(history),
    )
    return history
