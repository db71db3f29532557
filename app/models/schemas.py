"""
FraudGuard — Pydantic Schemas (Request / Response DTOs)

All schemas include:
- Input validation with constraints
- Type hints and descriptions
- Configuration for ORM serialization
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator, ConfigDict

from app.config import settings
from app.models.models import RiskLevel, RuleKind, TransactionChannel


def _strip_required(v: str) -> str:
    v = v.strip()
    if not v:
        raise ValueError("must not be blank")
    return v


# ===========================================================================
# Transaction
# ===========================================================================
class TransactionCreate(BaseModel):
    """Inbound payload from the payment rails or a test harness."""
    account_id: str = Field(
        ...,
        min_length=1,
        max_length=128,
        description="Originating account identifier"
    )
    amount: Decimal = Field(
        ...,
        ge=0,
        le=settings.MAX_TRANSACTION_AMOUNT,
        max_digits=14,
        decimal_places=2,
        description="Transaction amount in BDT"
    )
    channel: TransactionChannel = Field(
        default=TransactionChannel.OTHER,
        description="BKASH | NAGAD | CARD | BANK | CASH | OTHER"
    )
    recipient_account: Optional[str] = Field(
        default=None,
        max_length=128,
        description="Receiving account, wallet number or card reference"
    )
    location: Optional[str] = Field(default=None, max_length=255)
    occurred_at: Optional[datetime] = Field(
        default=None,
        description="When the transaction happened; defaults to receipt time"
    )

    @field_validator("account_id")
    @classmethod
    def account_must_not_be_blank(cls, v: str) -> str:
        return _strip_required(v)

    @field_validator("recipient_account")
    @classmethod
    def blank_recipient_is_none(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return v.strip() or None

    @field_validator("occurred_at")
    @classmethod
    def normalise_to_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        """Naive timestamps are taken as UTC; aware ones are converted."""
        if v is None:
            return None
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)


class TransactionResponse(BaseModel):
    """Outbound transaction, with its assessment when one exists."""
    id: str
    account_id: str
    amount: Decimal
    channel: str
    recipient_account: Optional[str]
    location: Optional[str]
    occurred_at: datetime
    created_at: datetime
    assessment: Optional["AssessmentResponse"] = None

    model_config = ConfigDict(from_attributes=True)


class AssessmentResponse(BaseModel):
    """Persisted risk assessment for one transaction."""
    transaction_id: str
    risk_score: int = Field(..., ge=0)
    risk_level: RiskLevel
    reasons: str
    triggered_rules: List[str] = Field(default_factory=list)
    rule_set_version: Optional[str] = None
    flagged_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ReevaluationResponse(BaseModel):
    """Result of re-scoring every transaction routed to a recipient."""
    recipient_account: str
    evaluated: int
    assessments: List[AssessmentResponse]


TransactionResponse.model_rebuild()


# ===========================================================================
# Fraud Rule
# ===========================================================================
class FraudRuleCreate(BaseModel):
    """Create a new fraud rule.  Kind-specific fields are checked on save."""
    code: str = Field(
        ...,
        min_length=1,
        max_length=64,
        pattern=r'^[A-Z0-9_]+$',
        description="Unique rule code (uppercase + underscores)"
    )
    description: str = Field(default="", max_length=500)
    kind: RuleKind
    amount_threshold: Optional[Decimal] = Field(default=None, ge=0, max_digits=14, decimal_places=2)
    freq_count_limit: Optional[int] = Field(default=None, ge=1)
    freq_window_min: Optional[int] = Field(default=None, ge=1)
    risk_points: int = Field(..., ge=0, le=1000)
    is_active: bool = True


class FraudRuleUpdate(BaseModel):
    """Partial update of an existing fraud rule."""
    description: Optional[str] = Field(default=None, max_length=500)
    kind: Optional[RuleKind] = None
    amount_threshold: Optional[Decimal] = Field(default=None, ge=0, max_digits=14, decimal_places=2)
    freq_count_limit: Optional[int] = Field(default=None, ge=1)
    freq_window_min: Optional[int] = Field(default=None, ge=1)
    risk_points: Optional[int] = Field(default=None, ge=0, le=1000)
    is_active: Optional[bool] = None

    @field_validator("description", "kind", "risk_points", "is_active", mode="before")
    @classmethod
    def reject_null(cls, v):
        # omit the field to leave it unchanged; only thresholds may be cleared
        if v is None:
            raise ValueError("must not be null")
        return v


class FraudRuleResponse(BaseModel):
    """Fraud rule response."""
    id: str
    code: str
    description: str
    kind: str
    amount_threshold: Optional[Decimal]
    freq_count_limit: Optional[int]
    freq_window_min: Optional[int]
    risk_points: int
    is_active: bool
    created_at: datetime
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


# ===========================================================================
# Blacklist
# ===========================================================================
class BlacklistEntryCreate(BaseModel):
    recipient_value: str = Field(..., min_length=1, max_length=128)
    reason: Optional[str] = Field(default=None, max_length=1000)

    @field_validator("recipient_value")
    @classmethod
    def recipient_must_not_be_blank(cls, v: str) -> str:
        return _strip_required(v)


class BlacklistEntryResponse(BaseModel):
    id: str
    recipient_value: str
    reason: Optional[str]
    created_by: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class BlacklistCheckResponse(BaseModel):
    recipient_value: str
    is_blacklisted: bool
    entry: Optional[BlacklistEntryResponse] = None


# ===========================================================================
# Recommendations
# ===========================================================================
class RecommendationResponse(BaseModel):
    """Advisory blacklist recommendation; never persisted."""
    recipient_account: str
    is_already_blacklisted: bool
    meets_criteria: bool
    reasons: List[str]
    complaint_count: int
    total_reported_amount: Decimal
    confirmed_fraud_count: int
    thresholds_version: int

    model_config = ConfigDict(from_attributes=True)


class PromoteRequest(BaseModel):
    reason: Optional[str] = Field(
        default=None,
        max_length=1000,
        description="Defaults to the criteria met at promotion time"
    )


# ===========================================================================
# Thresholds
# ===========================================================================
class ThresholdsResponse(BaseModel):
    min_complaints: int
    min_reported_amount: Decimal
    min_confirmed_fraud: int
    version: int

    model_config = ConfigDict(from_attributes=True)


class ThresholdsUpdate(BaseModel):
    """Partial update; omitted fields keep their current value."""
    min_complaints: Optional[int] = Field(default=None, ge=1)
    min_reported_amount: Optional[Decimal] = Field(default=None, gt=0, max_digits=14, decimal_places=2)
    min_confirmed_fraud: Optional[int] = Field(default=None, ge=1)


# ===========================================================================
# Health
# ===========================================================================
class HealthCheck(BaseModel):
    """Health check response."""
    status: str  # healthy | degraded
    db: str
    kafka: str
    uptime_seconds: float
    version: str
