"""
FraudGuard — Blacklist Recommendation Engine

Advisory only: a recommendation is recomputed on every query from current
aggregates, thresholds and registry contents, and never written anywhere.
Turning one into a blacklist entry is a separate, human-authorised call to
the registry (see ``promote``).
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Container, List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.models import BlacklistEntry
from app.services import blacklist
from app.services.aggregator import RecipientAggregates, aggregate_all_recipients, aggregate_recipient
from app.services.db import bounded
from app.services.observability import Metrics
from app.services.thresholds import ThresholdSnapshot, get_thresholds

logger = logging.getLogger("fraudguard.recommendations")


@dataclass(frozen=True)
class Recommendation:
    recipient_account: str
    is_already_blacklisted: bool
    meets_criteria: bool
    complaint_count: int
    total_reported_amount: Decimal
    confirmed_fraud_count: int
    reasons: Tuple[str, ...] = field(default_factory=tuple)
    thresholds_version: int = 0


def _plural(count: int, singular: str, plural: str) -> str:
    return singular if count == 1 else plural


def _triggered_criteria(aggregates: RecipientAggregates, thresholds: ThresholdSnapshot) -> List[str]:
    # a zero aggregate never triggers, whatever the threshold
    reasons: List[str] = []
    complaints = aggregates.complaint_count
    if complaints > 0 and complaints >= thresholds.min_complaints:
        reasons.append(f"{complaints} {_plural(complaints, 'complaint', 'complaints')} filed")
    amount = aggregates.total_reported_amount
    if amount > 0 and amount >= thresholds.min_reported_amount:
        reasons.append(f"total reported amount ≥ {thresholds.min_reported_amount:,}")
    confirmed = aggregates.confirmed_fraud_count
    if confirmed > 0 and confirmed >= thresholds.min_confirmed_fraud:
        reasons.append(
            f"{confirmed} confirmed fraud {_plural(confirmed, 'case', 'cases')}"
        )
    return reasons


def recommend(
    recipient: str,
    aggregates: RecipientAggregates,
    thresholds: ThresholdSnapshot,
    blacklisted: Container[str],
) -> Recommendation:
    """
    Decide whether *recipient* should be proposed for blacklisting.

    Each threshold is an independent trigger.  Reasons are only reported for
    recipients that are not blacklisted yet; ``meets_criteria`` still tells
    the review surface whether a blacklisted recipient would qualify today.
    """
    already = recipient in blacklisted
    triggered = _triggered_criteria(aggregates, thresholds)
    return Recommendation(
        recipient_account=recipient,
        is_already_blacklisted=already,
        meets_criteria=bool(triggered),
        complaint_count=aggregates.complaint_count,
        total_reported_amount=aggregates.total_reported_amount,
        confirmed_fraud_count=aggregates.confirmed_fraud_count,
        reasons=() if already else tuple(triggered),
        thresholds_version=thresholds.version,
    )


def _outcome(rec: Recommendation) -> str:
    if rec.is_already_blacklisted:
        return "blacklisted"
    return "recommended" if rec.reasons else "clear"


def _sort_key(rec: Recommendation):
    # strongest signal first: number of triggered criteria, then money at stake
    criteria = len(rec.reasons) if rec.reasons else int(rec.meets_criteria)
    return (-criteria, -rec.total_reported_amount, rec.recipient_account)


# ===========================================================================
# Orchestration
# ===========================================================================
async def get_recommendation(db: AsyncSession, recipient: str) -> Recommendation:
    recipient = blacklist.normalize_recipient(recipient)
    aggregates = await aggregate_recipient(db, recipient)
    thresholds = await bounded(get_thresholds(db), operation="load thresholds")
    is_listed = await bounded(blacklist.contains(db, recipient), operation="registry lookup")

    rec = recommend(recipient, aggregates, thresholds, {recipient} if is_listed else set())
    Metrics.recommendations_computed_total.labels(outcome=_outcome(rec)).inc()
    return rec


async def list_recommendations(
    db: AsyncSession,
    include_blacklisted: bool = False,
) -> List[Recommendation]:
    """
    Recommendations for every recipient with assessment history.

    Only actionable ones (non-empty reasons) are returned, plus, when
    *include_blacklisted* is set, blacklisted recipients that still meet
    the criteria.
    """
    aggregates = await aggregate_all_recipients(db)
    thresholds = await bounded(get_thresholds(db), operation="load thresholds")
    listed = await bounded(blacklist.blacklisted_set(db), operation="registry snapshot")

    results: List[Recommendation] = []
    for recipient, agg in aggregates.items():
        rec = recommend(recipient, agg, thresholds, listed)
        Metrics.recommendations_computed_total.labels(outcome=_outcome(rec)).inc()
        if rec.reasons or (include_blacklisted and rec.is_already_blacklisted and rec.meets_criteria):
            results.append(rec)

    results.sort(key=_sort_key)
    logger.info(
        "Computed %d recommendations from %d recipients (thresholds v%d)",
        len(results), len(aggregates), thresholds.version,
    )
    return results


async def promote(
    db: AsyncSession,
    recipient: str,
    actor: str,
    reason: Optional[str] = None,
) -> BlacklistEntry:
    """
    Human-authorised promotion of a recommendation into the registry.

    The default reason records the criteria that were met at promotion time.
    Raises Conflict when the recipient is already blacklisted.
    """
    rec = await get_recommendation(db, recipient)
    if not reason and rec.reasons:
        reason = "Recommended: " + "; ".join(rec.reasons)
    return await blacklist.add_entry(db, rec.recipient_account, reason, actor)
