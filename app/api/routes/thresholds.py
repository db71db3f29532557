"""
FraudGuard — Blacklist Thresholds API
GET  /api/v1/thresholds   → current thresholds (defaults until first save)
PUT  /api/v1/thresholds   → partial update, admin only; bumps the version
"""

import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.schemas import ThresholdsResponse, ThresholdsUpdate
from app.services import thresholds
from app.services.db import bounded, get_db
from app.services.security import actor_of, get_current_admin, get_current_user

logger = logging.getLogger("fraudguard.api.thresholds")
router = APIRouter()


@router.get("/", response_model=ThresholdsResponse, summary="Get Blacklist Thresholds")
async def get_thresholds(
    db: AsyncSession = Depends(get_db),
    current_user: Dict[str, Any] = Depends(get_current_user),
):
    snapshot = await bounded(thresholds.get_thresholds(db), operation="load thresholds")
    return ThresholdsResponse.model_validate(snapshot)


@router.put("/", response_model=ThresholdsResponse, summary="Update Blacklist Thresholds")
async def update_thresholds(
    body: ThresholdsUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: Dict[str, Any] = Depends(get_current_admin),
):
    changes = body.model_dump(exclude_unset=True, exclude_none=True)
    snapshot = await thresholds.update_thresholds(db, changes, actor_of(current_user))
    await db.commit()
    return ThresholdsResponse.model_validate(snapshot)
