"""
FraudGuard — Blacklist Registry API
GET    /api/v1/blacklist                      → list entries (optional search)
GET    /api/v1/blacklist/check/{recipient}    → is this recipient blacklisted?
POST   /api/v1/blacklist                      → add an entry (409 if present)
DELETE /api/v1/blacklist/{entry_id}           → remove an entry
DELETE /api/v1/blacklist/recipient/{recipient} → un-blacklist by recipient value

Registry changes do not touch stored assessments; use
POST /api/v1/transactions/re-evaluate to refresh them.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.schemas import BlacklistCheckResponse, BlacklistEntryCreate, BlacklistEntryResponse
from app.services import blacklist
from app.services.db import bounded, get_db
from app.services.security import actor_of, get_current_operator, get_current_user

logger = logging.getLogger("fraudguard.api.blacklist")
router = APIRouter()


@router.get(
    "/",
    response_model=list[BlacklistEntryResponse],
    summary="List Blacklisted Recipients",
)
async def list_entries(
    search: Optional[str] = Query(default=None, max_length=128),
    db: AsyncSession = Depends(get_db),
    current_user: Dict[str, Any] = Depends(get_current_user),
):
    entries = await bounded(blacklist.list_entries(db, search), operation="list blacklist")
    return [BlacklistEntryResponse.model_validate(e) for e in entries]


@router.get(
    "/check/{recipient}",
    response_model=BlacklistCheckResponse,
    summary="Check a Recipient",
)
async def check_recipient(
    recipient: str,
    db: AsyncSession = Depends(get_db),
    current_user: Dict[str, Any] = Depends(get_current_user),
):
    entry = await bounded(blacklist.get_entry_for(db, recipient), operation="registry lookup")
    return BlacklistCheckResponse(
        recipient_value=recipient.strip(),
        is_blacklisted=entry is not None,
        entry=BlacklistEntryResponse.model_validate(entry) if entry else None,
    )


@router.post(
    "/",
    status_code=status.HTTP_201_CREATED,
    response_model=BlacklistEntryResponse,
    summary="Blacklist a Recipient",
)
async def add_entry(
    body: BlacklistEntryCreate,
    db: AsyncSession = Depends(get_db),
    current_user: Dict[str, Any] = Depends(get_current_operator),
):
    entry = await blacklist.add_entry(db, body.recipient_value, body.reason, actor_of(current_user))
    await db.commit()
    return BlacklistEntryResponse.model_validate(entry)


@router.delete(
    "/{entry_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Remove a Blacklist Entry",
)
async def remove_entry(
    entry_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: Dict[str, Any] = Depends(get_current_operator),
):
    await blacklist.remove_entry(db, entry_id, actor_of(current_user))
    await db.commit()


@router.delete(
    "/recipient/{recipient}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Un-blacklist a Recipient",
)
async def remove_recipient(
    recipient: str,
    db: AsyncSession = Depends(get_db),
    current_user: Dict[str, Any] = Depends(get_current_operator),
):
    await blacklist.remove_by_recipient(db, recipient, actor_of(current_user))
    await db.commit()
