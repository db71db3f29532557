"""
FraudGuard — Blacklist Registry

Authoritative list of banned recipients.  Presence of a row is the ground
truth the evaluator consults for the blacklist bonus; uniqueness per
recipient is enforced by the table's unique constraint, so of two concurrent
adds for the same recipient exactly one commits and the other sees Conflict.
"""

import logging
from typing import List, Optional, Set

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.models import AuditLog, BlacklistEntry
from app.services.errors import Conflict, NotFound, ValidationError
from app.services.observability import Metrics

logger = logging.getLogger("fraudguard.blacklist")


def normalize_recipient(recipient: Optional[str]) -> str:
    value = (recipient or "").strip()
    if not value:
        raise ValidationError("recipient must be a non-empty string")
    return value


async def contains(db: AsyncSession, recipient: Optional[str]) -> bool:
    if not recipient or not recipient.strip():
        return False
    stmt = select(BlacklistEntry.id).where(BlacklistEntry.recipient_value == recipient.strip())
    result = await db.execute(stmt)
    return result.first() is not None


async def blacklisted_set(db: AsyncSession) -> Set[str]:
    result = await db.execute(select(BlacklistEntry.recipient_value))
    return set(result.scalars())


async def get_entry_for(db: AsyncSession, recipient: str) -> Optional[BlacklistEntry]:
    stmt = select(BlacklistEntry).where(BlacklistEntry.recipient_value == normalize_recipient(recipient))
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def list_entries(db: AsyncSession, search: Optional[str] = None) -> List[BlacklistEntry]:
    """Entries newest first; *search* matches recipient or reason (case-insensitive)."""
    stmt = select(BlacklistEntry)
    if search:
        pattern = f"%{search.strip().lower()}%"
        stmt = stmt.where(or_(
            BlacklistEntry.recipient_value.ilike(pattern),
            BlacklistEntry.reason.ilike(pattern),
        ))
    stmt = stmt.order_by(BlacklistEntry.created_at.desc(), BlacklistEntry.id.asc())
    result = await db.execute(stmt)
    return list(result.scalars())


async def add_entry(
    db: AsyncSession,
    recipient: str,
    reason: Optional[str],
    actor: str,
) -> BlacklistEntry:
    """Blacklist *recipient*; raises Conflict if it already has an entry."""
    recipient = normalize_recipient(recipient)
    if await contains(db, recipient):
        Metrics.blacklist_operations_total.labels(operation="add", result="conflict").inc()
        raise Conflict(f"recipient {recipient} is already blacklisted")

    entry = BlacklistEntry(
        recipient_value=recipient,
        reason=(reason or "").strip() or None,
        created_by=actor,
    )
    db.add(entry)
    try:
        await db.flush()
    except IntegrityError as exc:
        # lost the race against a concurrent add for the same recipient
        Metrics.blacklist_operations_total.labels(operation="add", result="conflict").inc()
        raise Conflict(f"recipient {recipient} is already blacklisted") from exc

    db.add(AuditLog(
        actor=actor,
        action="BLACKLIST_ADDED",
        details={"entry_id": entry.id, "recipient": recipient, "reason": entry.reason},
    ))
    await db.flush()

    Metrics.blacklist_operations_total.labels(operation="add", result="success").inc()
    logger.info("Recipient blacklisted: recipient=%s actor=%s", recipient, actor)
    return entry


async def remove_entry(db: AsyncSession, entry_id: str, actor: str) -> BlacklistEntry:
    """Delete an entry by id; raises NotFound for an unknown id."""
    result = await db.execute(select(BlacklistEntry).where(BlacklistEntry.id == entry_id))
    entry = result.scalar_one_or_none()
    if entry is None:
        Metrics.blacklist_operations_total.labels(operation="remove", result="not_found").inc()
        raise NotFound(f"blacklist entry {entry_id} not found")

    await db.delete(entry)
    db.add(AuditLog(
        actor=actor,
        action="BLACKLIST_REMOVED",
        details={"entry_id": entry_id, "recipient": entry.recipient_value},
    ))
    await db.flush()

    Metrics.blacklist_operations_total.labels(operation="remove", result="success").inc()
    logger.info("Recipient removed from blacklist: recipient=%s actor=%s", entry.recipient_value, actor)
    return entry


async def remove_by_recipient(db: AsyncSession, recipient: str, actor: str) -> BlacklistEntry:
    entry = await get_entry_for(db, recipient)
    if entry is None:
        raise NotFound(f"recipient {recipient.strip()} is not blacklisted")
    return await remove_entry(db, entry.id, actor)
