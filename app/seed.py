"""
FraudGuard — Seed Data Script
Inserts the default fraud rules defined in app/rules/default_rules.py if
the fraud_rules table is empty, and the blacklist-threshold row if none
has been saved yet.

Usage (run once after the database is provisioned):
    python -m app.seed
"""

import asyncio
import logging

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.services.db import AsyncSessionLocal, init_db
from app.services.observability import setup_logging
from app.services.thresholds import SINGLETON_ID, ThresholdSnapshot
from app.models.models import BlacklistThresholds, FraudRule
from app.rules.default_rules import DEFAULT_RULES

logger = logging.getLogger("fraudguard.seed")


async def seed_rules(db: AsyncSession) -> int:
    count_result = await db.execute(select(func.count()).select_from(FraudRule))
    existing: int = count_result.scalar()  # type: ignore[assignment]

    if existing > 0:
        logger.info("fraud_rules already has %d rows — skipping rule seed.", existing)
        return 0

    logger.info("Inserting %d default fraud rules …", len(DEFAULT_RULES))
    for rule_data in DEFAULT_RULES:
        db.add(FraudRule(**rule_data))
    return len(DEFAULT_RULES)


async def seed_thresholds(db: AsyncSession) -> bool:
    if await db.get(BlacklistThresholds, SINGLETON_ID) is not None:
        logger.info("blacklist_thresholds already saved — skipping.")
        return False

    defaults = ThresholdSnapshot.defaults()
    db.add(BlacklistThresholds(
        id=SINGLETON_ID,
        min_complaints=defaults.min_complaints,
        min_reported_amount=defaults.min_reported_amount,
        min_confirmed_fraud=defaults.min_confirmed_fraud,
        version=1,
        updated_by="seed",
    ))
    return True


async def seed():
    await init_db()                                    # ensure tables exist

    async with AsyncSessionLocal() as db:
        inserted = await seed_rules(db)
        thresholds_added = await seed_thresholds(db)
        await db.commit()
        logger.info(
            "Seed complete — %d rules inserted, thresholds %s.",
            inserted, "inserted" if thresholds_added else "unchanged",
        )


if __name__ == "__main__":
    setup_logging()
    asyncio.run(seed())
