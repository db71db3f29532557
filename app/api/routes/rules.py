"""
FraudGuard — Fraud Rules API  (CRUD)
POST   /api/v1/rules            → create a rule
GET    /api/v1/rules            → list all rules (with active/inactive filter)
GET    /api/v1/rules/{rule_id}  → single rule
PUT    /api/v1/rules/{rule_id}  → full replace
PATCH  /api/v1/rules/{rule_id}  → partial update (toggle active, adjust points …)
DELETE /api/v1/rules/{rule_id}  → soft-delete (sets is_active = False)

Rule changes affect future evaluations only; stored assessments are not
recomputed.
"""

import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.models import AuditLog, FraudRule
from app.models.schemas import FraudRuleCreate, FraudRuleResponse, FraudRuleUpdate
from app.rules.engine import RuleDefinition, parse_rule
from app.services.db import get_db
from app.services.errors import Conflict, NotFound
from app.services.security import actor_of, get_current_admin, get_current_user

logger = logging.getLogger("fraudguard.api.rules")
router = APIRouter()


# ===========================================================================
# POST  /api/v1/rules
# ===========================================================================
@router.post(
    "/",
    status_code=status.HTTP_201_CREATED,
    response_model=FraudRuleResponse,
    summary="Create a Fraud Rule",
)
async def create_rule(
    body: FraudRuleCreate,
    db: AsyncSession = Depends(get_db),
    current_user: Dict[str, Any] = Depends(get_current_admin),
):
    # duplicate code check
    existing = await db.execute(select(FraudRule.id).where(FraudRule.code == body.code))
    if existing.first() is not None:
        raise Conflict(f"rule code '{body.code}' already exists")

    rule = FraudRule(
        code=body.code,
        description=body.description,
        kind=body.kind.value,
        amount_threshold=body.amount_threshold,
        freq_count_limit=body.freq_count_limit,
        freq_window_min=body.freq_window_min,
        risk_points=body.risk_points,
        is_active=body.is_active,
    )
    _check_rule(rule)
    db.add(rule)
    try:
        await db.flush()
    except IntegrityError as exc:
        raise Conflict(f"rule code '{body.code}' already exists") from exc

    _audit(db, current_user, "RULE_CREATED", rule)
    await db.commit()
    await db.refresh(rule)
    logger.info("Rule created: code=%s kind=%s points=%d", rule.code, rule.kind, rule.risk_points)
    return FraudRuleResponse.model_validate(rule)


# ===========================================================================
# GET  /api/v1/rules
# ===========================================================================
@router.get(
    "/",
    response_model=list[FraudRuleResponse],
    summary="List All Fraud Rules",
)
async def list_rules(
    active_only: bool = False,
    db: AsyncSession = Depends(get_db),
    current_user: Dict[str, Any] = Depends(get_current_user),
):
    stmt = select(FraudRule)
    if active_only:
        stmt = stmt.where(FraudRule.is_active.is_(True))
    stmt = stmt.order_by(FraudRule.kind.asc(), FraudRule.code.asc())
    result = await db.execute(stmt)
    return [FraudRuleResponse.model_validate(r) for r in result.scalars()]


# ===========================================================================
# GET  /api/v1/rules/{rule_id}
# ===========================================================================
@router.get(
    "/{rule_id}",
    response_model=FraudRuleResponse,
    summary="Get a Fraud Rule",
)
async def get_rule(
    rule_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: Dict[str, Any] = Depends(get_current_user),
):
    rule = await _fetch_rule(db, rule_id)
    return FraudRuleResponse.model_validate(rule)


# ===========================================================================
# PUT  /api/v1/rules/{rule_id}: full replace
# ===========================================================================
@router.put(
    "/{rule_id}",
    response_model=FraudRuleResponse,
    summary="Replace a Fraud Rule",
)
async def replace_rule(
    rule_id: str,
    body: FraudRuleCreate,
    db: AsyncSession = Depends(get_db),
    current_user: Dict[str, Any] = Depends(get_current_admin),
):
    rule = await _fetch_rule(db, rule_id)
    if body.code != rule.code:
        clash = await db.execute(select(FraudRule.id).where(FraudRule.code == body.code))
        if clash.first() is not None:
            raise Conflict(f"rule code '{body.code}' already exists")

    rule.code = body.code
    rule.description = body.description
    rule.kind = body.kind.value
    rule.amount_threshold = body.amount_threshold
    rule.freq_count_limit = body.freq_count_limit
    rule.freq_window_min = body.freq_window_min
    rule.risk_points = body.risk_points
    rule.is_active = body.is_active
    _check_rule(rule)

    _audit(db, current_user, "RULE_REPLACED", rule)
    await db.commit()
    await db.refresh(rule)
    logger.info("Rule replaced: id=%s code=%s", rule_id, rule.code)
    return FraudRuleResponse.model_validate(rule)


# ===========================================================================
# PATCH /api/v1/rules/{rule_id}: partial update
# ===========================================================================
@router.patch(
    "/{rule_id}",
    response_model=FraudRuleResponse,
    summary="Partial-Update a Fraud Rule",
)
async def patch_rule(
    rule_id: str,
    body: FraudRuleUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: Dict[str, Any] = Depends(get_current_admin),
):
    rule = await _fetch_rule(db, rule_id)

    changes = body.model_dump(exclude_unset=True)
    for field, value in changes.items():
        if field == "kind" and value is not None:
            value = value.value
        setattr(rule, field, value)
    _check_rule(rule)

    _audit(db, current_user, "RULE_UPDATED", rule, changed=sorted(changes))
    await db.commit()
    await db.refresh(rule)
    logger.info("Rule patched: id=%s code=%s is_active=%s", rule_id, rule.code, rule.is_active)
    return FraudRuleResponse.model_validate(rule)


# ===========================================================================
# DELETE /api/v1/rules/{rule_id}: soft delete
# ===========================================================================
@router.delete(
    "/{rule_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Deactivate (Soft-Delete) a Fraud Rule",
)
async def delete_rule(
    rule_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: Dict[str, Any] = Depends(get_current_admin),
):
    rule = await _fetch_rule(db, rule_id)
    rule.is_active = False
    _audit(db, current_user, "RULE_DEACTIVATED", rule)
    await db.commit()
    logger.info("Rule soft-deleted: id=%s code=%s", rule_id, rule.code)


# ===========================================================================
# Helpers
# ===========================================================================
async def _fetch_rule(db: AsyncSession, rule_id: str) -> FraudRule:
    result = await db.execute(select(FraudRule).where(FraudRule.id == rule_id))
    rule = result.scalar_one_or_none()
    if rule is None:
        raise NotFound(f"rule {rule_id} not found")
    return rule


def _check_rule(rule: FraudRule) -> None:
    """Reject a rule the engine would have to skip (raises InvalidRule)."""
    parse_rule(RuleDefinition.from_row(rule))


def _audit(db: AsyncSession, current_user: Dict[str, Any], action: str, rule: FraudRule, **extra) -> None:
    db.add(AuditLog(
        actor=actor_of(current_user),
        action=action,
        details={"rule_id": rule.id, "code": rule.code, "kind": rule.kind, **extra},
    ))
