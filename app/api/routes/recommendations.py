"""
FraudGuard — Blacklist Recommendations API
GET  /api/v1/recommendations                        → actionable recommendations
GET  /api/v1/recommendations/{recipient}            → one recipient, always returned
POST /api/v1/recommendations/{recipient}/promote    → human-approved blacklisting

Recommendations are computed on every request and never stored.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.schemas import BlacklistEntryResponse, PromoteRequest, RecommendationResponse
from app.services import recommendations
from app.services.db import get_db
from app.services.security import actor_of, get_current_operator, get_current_user

logger = logging.getLogger("fraudguard.api.recommendations")
router = APIRouter()


@router.get(
    "/",
    response_model=list[RecommendationResponse],
    summary="List Blacklist Recommendations",
    description=(
        "Recipients whose aggregated history meets at least one threshold, "
        "strongest first.  Set include_blacklisted to also see recipients "
        "that are already in the registry."
    ),
)
async def list_recommendations(
    include_blacklisted: bool = False,
    db: AsyncSession = Depends(get_db),
    current_user: Dict[str, Any] = Depends(get_current_user),
):
    recs = await recommendations.list_recommendations(db, include_blacklisted=include_blacklisted)
    return [RecommendationResponse.model_validate(r) for r in recs]


@router.get(
    "/{recipient}",
    response_model=RecommendationResponse,
    summary="Recommendation for One Recipient",
)
async def get_recommendation(
    recipient: str,
    db: AsyncSession = Depends(get_db),
    current_user: Dict[str, Any] = Depends(get_current_user),
):
    rec = await recommendations.get_recommendation(db, recipient)
    return RecommendationResponse.model_validate(rec)


@router.post(
    "/{recipient}/promote",
    status_code=status.HTTP_201_CREATED,
    response_model=BlacklistEntryResponse,
    summary="Promote a Recommendation to the Blacklist",
)
async def promote(
    recipient: str,
    body: Optional[PromoteRequest] = None,
    db: AsyncSession = Depends(get_db),
    current_user: Dict[str, Any] = Depends(get_current_operator),
):
    reason = body.reason if body else None
    entry = await recommendations.promote(db, recipient, actor_of(current_user), reason=reason)
    await db.commit()
    logger.info("Recommendation promoted: recipient=%s actor=%s", entry.recipient_value, entry.created_by)
    return BlacklistEntryResponse.model_validate(entry)
