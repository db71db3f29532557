"""
FraudGuard — Blacklist Recommendation Thresholds

A single admin-owned row.  Until an admin saves one, the configured defaults
apply (version 0).  Every save bumps the version; nothing is recomputed.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.models import AuditLog, BlacklistThresholds
from app.services.errors import ValidationError

logger = logging.getLogger("fraudguard.thresholds")

SINGLETON_ID = 1


@dataclass(frozen=True)
class ThresholdSnapshot:
    min_complaints: int
    min_reported_amount: Decimal
    min_confirmed_fraud: int
    version: int = 0

    @classmethod
    def defaults(cls) -> "ThresholdSnapshot":
        return cls(
            min_complaints=settings.BLACKLIST_MIN_COMPLAINTS,
            min_reported_amount=Decimal(settings.BLACKLIST_MIN_REPORTED_AMOUNT),
            min_confirmed_fraud=settings.BLACKLIST_MIN_CONFIRMED_FRAUD,
            version=0,
        )

    @classmethod
    def from_row(cls, row: BlacklistThresholds) -> "ThresholdSnapshot":
        return cls(
            min_complaints=row.min_complaints,
            min_reported_amount=Decimal(str(row.min_reported_amount)),
            min_confirmed_fraud=row.min_confirmed_fraud,
            version=row.version,
        )


def _validate(snapshot: ThresholdSnapshot) -> None:
    if snapshot.min_complaints < 1:
        raise ValidationError("min_complaints must be >= 1")
    if snapshot.min_reported_amount <= 0:
        raise ValidationError("min_reported_amount must be > 0")
    if snapshot.min_confirmed_fraud < 1:
        raise ValidationError("min_confirmed_fraud must be >= 1")


async def get_thresholds(db: AsyncSession) -> ThresholdSnapshot:
    row = await db.get(BlacklistThresholds, SINGLETON_ID)
    if row is None:
        return ThresholdSnapshot.defaults()
    return ThresholdSnapshot.from_row(row)


async def update_thresholds(
    db: AsyncSession,
    changes: Dict[str, Any],
    actor: str,
) -> ThresholdSnapshot:
    """Apply a partial update; unspecified fields keep their current value."""
    current = await get_thresholds(db)
    merged = ThresholdSnapshot(
        min_complaints=changes.get("min_complaints", current.min_complaints),
        min_reported_amount=Decimal(str(changes.get("min_reported_amount", current.min_reported_amount))),
        min_confirmed_fraud=changes.get("min_confirmed_fraud", current.min_confirmed_fraud),
        version=current.version + 1,
    )
    _validate(merged)

    row = await db.get(BlacklistThresholds, SINGLETON_ID)
    if row is None:
        row = BlacklistThresholds(id=SINGLETON_ID)
        db.add(row)
    row.min_complaints = merged.min_complaints
    row.min_reported_amount = merged.min_reported_amount
    row.min_confirmed_fraud = merged.min_confirmed_fraud
    row.version = merged.version
    row.updated_by = actor

    db.add(AuditLog(
        actor=actor,
        action="THRESHOLDS_UPDATED",
        details={
            "min_complaints": merged.min_complaints,
            "min_reported_amount": str(merged.min_reported_amount),
            "min_confirmed_fraud": merged.min_confirmed_fraud,
            "version": merged.version,
        },
    ))
    await db.flush()

    logger.info("Blacklist thresholds updated to version %d by %s", merged.version, actor)
    return merged
