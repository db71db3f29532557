"""
FraudGuard — Transactions API

POST /api/v1/transactions                       → record + evaluate in one call
GET  /api/v1/transactions/{txn_id}              → transaction + current assessment
POST /api/v1/transactions/{txn_id}/evaluate     → explicit re-evaluation
POST /api/v1/transactions/re-evaluate?recipient → re-score a recipient's history
"""

import logging
from datetime import datetime, timezone
from typing import Dict, Any

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.models import AuditLog, Transaction
from app.models.schemas import (
    AssessmentResponse,
    ReevaluationResponse,
    TransactionCreate,
    TransactionResponse,
)
from app.services import scorer
from app.services.db import bounded, get_db
from app.services.kafka_producer import publish_assessment
from app.services.security import actor_of, get_current_operator, get_current_user

logger = logging.getLogger("fraudguard.api.transactions")
router = APIRouter()


def _producer(request: Request):
    return getattr(request.app.state, "kafka_producer", None)


# ===========================================================================
# POST  /api/v1/transactions
# ===========================================================================
@router.post(
    "/",
    status_code=status.HTTP_201_CREATED,
    response_model=TransactionResponse,
    summary="Record & Evaluate a Transaction",
    description=(
        "Persists the transaction, evaluates it against the active rules and "
        "the blacklist registry, stores the assessment, and returns both."
    ),
)
async def create_transaction(
    payload: TransactionCreate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: Dict[str, Any] = Depends(get_current_user),
):
    actor = actor_of(current_user)

    # ── persist ────────────────────────────────────────────────────────────
    txn = Transaction(
        account_id=payload.account_id,
        amount=payload.amount,
        channel=payload.channel.value,
        recipient_account=payload.recipient_account,
        location=payload.location,
        occurred_at=payload.occurred_at or datetime.now(timezone.utc),
    )
    db.add(txn)
    await db.flush()  # get txn.id

    db.add(AuditLog(
        transaction_id=txn.id,
        actor=actor,
        action="TRANSACTION_RECORDED",
        details={
            "account_id": txn.account_id,
            "amount": str(txn.amount),
            "channel": txn.channel,
            "recipient_account": txn.recipient_account,
        },
    ))

    # ── evaluate ───────────────────────────────────────────────────────────
    assessment = await bounded(
        scorer.score_transaction(db, txn.id, actor=actor),
        operation=f"evaluate transaction {txn.id}",
    )
    await db.commit()

    await publish_assessment(_producer(request), assessment)

    txn = await scorer.get_transaction(db, txn.id)
    return TransactionResponse.model_validate(txn)


# ===========================================================================
# POST  /api/v1/transactions/re-evaluate?recipient=...
# ===========================================================================
@router.post(
    "/re-evaluate",
    response_model=ReevaluationResponse,
    summary="Re-evaluate a Recipient's Transactions",
    description="Typically used after the recipient was added to or removed from the blacklist.",
)
async def reevaluate_recipient(
    request: Request,
    recipient: str = Query(..., min_length=1, max_length=128),
    db: AsyncSession = Depends(get_db),
    current_user: Dict[str, Any] = Depends(get_current_operator),
):
    assessments = await scorer.reevaluate_recipient(db, recipient, actor=actor_of(current_user))
    await db.commit()

    for assessment in assessments:
        await publish_assessment(_producer(request), assessment)

    return ReevaluationResponse(
        recipient_account=recipient.strip(),
        evaluated=len(assessments),
        assessments=[AssessmentResponse.model_validate(a) for a in assessments],
    )


# ===========================================================================
# GET  /api/v1/transactions/{txn_id}
# ===========================================================================
@router.get(
    "/{txn_id}",
    response_model=TransactionResponse,
    summary="Get Transaction Details",
)
async def get_transaction(
    txn_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: Dict[str, Any] = Depends(get_current_user),
):
    txn = await scorer.get_transaction(db, txn_id)
    return TransactionResponse.model_validate(txn)


# ===========================================================================
# POST  /api/v1/transactions/{txn_id}/evaluate
# ===========================================================================
@router.post(
    "/{txn_id}/evaluate",
    response_model=AssessmentResponse,
    summary="Re-evaluate a Transaction",
    description="Recomputes and overwrites the assessment using current rules and registry.",
)
async def evaluate_transaction(
    txn_id: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: Dict[str, Any] = Depends(get_current_user),
):
    assessment = await bounded(
        scorer.score_transaction(db, txn_id, actor=actor_of(current_user)),
        operation=f"evaluate transaction {txn_id}",
    )
    await db.commit()

    await publish_assessment(_producer(request), assessment)
    return AssessmentResponse.model_validate(assessment)
