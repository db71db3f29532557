"""
FraudGuard — Transaction Risk Rules Engine

Scores one transaction against a snapshot of the configured rules.  Rules
come in a closed set of kinds (amount threshold, frequency in a window); each
kind is parsed into its own frozen variant and evaluated by the function
registered for it in EVALUATORS.  The engine is pure: no I/O, no clock, no
globals, so identical inputs always yield an identical Assessment.
"""

import hashlib
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Container, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from app.models.models import RiskLevel, RuleKind
from app.services.errors import InvalidRule, ValidationError

logger = logging.getLogger("fraudguard.rules")

BLACKLIST_REASON = "BLACKLISTED_RECIPIENT"
REASON_SEPARATOR = "; "


# ===========================================================================
# Rule variants
# ===========================================================================
@dataclass(frozen=True)
class AmountThresholdRule:
    code: str
    risk_points: int
    threshold: Decimal


@dataclass(frozen=True)
class FrequencyRule:
    code: str
    risk_points: int
    count_limit: int
    window_minutes: int


ParsedRule = Union[AmountThresholdRule, FrequencyRule]


@dataclass(frozen=True)
class RuleDefinition:
    """Detached copy of a stored rule row, as seen by one evaluation."""
    code: str
    kind: str
    risk_points: Optional[int]
    amount_threshold: Optional[Decimal] = None
    freq_count_limit: Optional[int] = None
    freq_window_min: Optional[int] = None
    is_active: bool = True

    @classmethod
    def from_row(cls, row: Any) -> "RuleDefinition":
        return cls(
            code=row.code,
            kind=row.kind,
            risk_points=row.risk_points,
            amount_threshold=row.amount_threshold,
            freq_count_limit=row.freq_count_limit,
            freq_window_min=row.freq_window_min,
            is_active=bool(row.is_active),
        )

    def canonical(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "kind": self.kind,
            "risk_points": self.risk_points,
            "amount_threshold": None if self.amount_threshold is None else str(self.amount_threshold),
            "freq_count_limit": self.freq_count_limit,
            "freq_window_min": self.freq_window_min,
        }


@dataclass(frozen=True)
class RuleSet:
    """Versioned snapshot of the active rules injected into an evaluation."""
    rules: Tuple[RuleDefinition, ...]
    version: str

    @classmethod
    def from_rows(cls, rows: Iterable[Any]) -> "RuleSet":
        definitions = [
            r if isinstance(r, RuleDefinition) else RuleDefinition.from_row(r)
            for r in rows
        ]
        definitions = [d for d in definitions if d.is_active]
        # amount rules first, then frequency rules, each ordered by code
        definitions.sort(key=lambda d: (_KIND_ORDER.get(d.kind, len(_KIND_ORDER)), d.code))
        payload = json.dumps([d.canonical() for d in definitions], sort_keys=True)
        version = hashlib.sha256(payload.encode("utf-8")).hexdigest()[:16]
        return cls(rules=tuple(definitions), version=version)

    def max_window_minutes(self) -> int:
        windows = [
            d.freq_window_min for d in self.rules
            if d.kind == RuleKind.FREQUENCY_WINDOW.value and d.freq_window_min
        ]
        return max(windows, default=0)


_KIND_ORDER = {
    RuleKind.AMOUNT_THRESHOLD.value: 0,
    RuleKind.FREQUENCY_WINDOW.value: 1,
}


@dataclass(frozen=True)
class RiskPolicy:
    medium_threshold: int = 40
    high_threshold: int = 70
    blacklist_bonus: int = 50


@dataclass(frozen=True)
class Assessment:
    transaction_id: str
    score: int
    level: RiskLevel
    reasons: Tuple[str, ...]
    rule_set_version: str
    skipped_rules: Tuple[str, ...] = ()

    @property
    def reasons_text(self) -> str:
        return REASON_SEPARATOR.join(self.reasons)


# ===========================================================================
# Parsing  (stored definition → variant)
# ===========================================================================
def _parse_points(defn: RuleDefinition) -> int:
    if defn.risk_points is None:
        raise InvalidRule(defn.code, "risk_points is required")
    if int(defn.risk_points) < 0:
        raise InvalidRule(defn.code, "risk_points must be >= 0")
    return int(defn.risk_points)


def _parse_amount(defn: RuleDefinition) -> AmountThresholdRule:
    if defn.amount_threshold is None:
        raise InvalidRule(defn.code, "amount rule has no amount_threshold")
    try:
        threshold = Decimal(str(defn.amount_threshold))
    except InvalidOperation as exc:
        raise InvalidRule(defn.code, f"amount_threshold {defn.amount_threshold!r} is not numeric") from exc
    if threshold < 0:
        raise InvalidRule(defn.code, "amount_threshold must be >= 0")
    return AmountThresholdRule(code=defn.code, risk_points=_parse_points(defn), threshold=threshold)


def _parse_frequency(defn: RuleDefinition) -> FrequencyRule:
    if defn.freq_count_limit is None or defn.freq_window_min is None:
        raise InvalidRule(defn.code, "frequency rule needs freq_count_limit and freq_window_min")
    if int(defn.freq_count_limit) < 1 or int(defn.freq_window_min) < 1:
        raise InvalidRule(defn.code, "freq_count_limit and freq_window_min must be >= 1")
    return FrequencyRule(
        code=defn.code,
        risk_points=_parse_points(defn),
        count_limit=int(defn.freq_count_limit),
        window_minutes=int(defn.freq_window_min),
    )


PARSERS: Dict[str, Callable[[RuleDefinition], ParsedRule]] = {
    RuleKind.AMOUNT_THRESHOLD.value: _parse_amount,
    RuleKind.FREQUENCY_WINDOW.value:  _parse_frequency,
}


def parse_rule(defn: RuleDefinition) -> ParsedRule:
    """Turn a stored definition into its variant; raises InvalidRule."""
    parser = PARSERS.get(defn.kind)
    if parser is None:
        raise InvalidRule(defn.code, f"unknown rule kind {defn.kind!r}")
    return parser(defn)


# ===========================================================================
# Evaluation
# ===========================================================================
def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored in UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _eval_amount(rule: AmountThresholdRule, txn: Any, history: Sequence[Any]) -> bool:
    return Decimal(str(txn.amount)) >= rule.threshold


def _eval_frequency(rule: FrequencyRule, txn: Any, history: Sequence[Any]) -> bool:
    window_end = _as_utc(txn.occurred_at)
    window_start = window_end - timedelta(minutes=rule.window_minutes)
    others = {
        h.id for h in history
        if h.id != txn.id
        and h.account_id == txn.account_id
        and window_start <= _as_utc(h.occurred_at) <= window_end
    }
    # the transaction itself always counts once
    return len(others) + 1 >= rule.count_limit


EVALUATORS: Dict[type, Callable[[Any, Any, Sequence[Any]], bool]] = {
    AmountThresholdRule: _eval_amount,
    FrequencyRule:       _eval_frequency,
}


def classify_risk(score: int, policy: RiskPolicy = RiskPolicy()) -> RiskLevel:
    if score >= policy.high_threshold:
        return RiskLevel.HIGH
    if score >= policy.medium_threshold:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def evaluate_transaction(
    transaction: Any,
    history: Sequence[Any],
    rule_set: RuleSet,
    blacklisted: Container[str],
    policy: RiskPolicy = RiskPolicy(),
) -> Assessment:
    """
    Score *transaction* against every rule in *rule_set*.

    Parameters
    ----------
    transaction : object with id, account_id, amount, occurred_at, recipient_account
    history     : the account's transactions inside the lookback window
    rule_set    : active rules snapshot
    blacklisted : registry view; ``recipient in blacklisted`` decides the bonus
    policy      : band cutoffs and blacklist bonus

    Malformed rules are skipped with a warning; they never abort the
    evaluation of the remaining rules.
    """
    if transaction.amount is None or Decimal(str(transaction.amount)) < 0:
        raise ValidationError(f"transaction {transaction.id} has a negative or missing amount")

    score = 0
    reasons: List[str] = []
    skipped: List[str] = []

    for defn in rule_set.rules:
        try:
            rule = parse_rule(defn)
        except InvalidRule as exc:
            logger.warning("Skipping malformed rule: %s", exc)
            skipped.append(defn.code)
            continue

        if EVALUATORS[type(rule)](rule, transaction, history):
            score += rule.risk_points
            reasons.append(rule.code)
            logger.debug(
                "Rule '%s' TRIGGERED for txn=%s (+%d)",
                rule.code, transaction.id, rule.risk_points,
            )

    recipient = transaction.recipient_account
    if recipient and recipient in blacklisted:
        score += policy.blacklist_bonus
        reasons.append(BLACKLIST_REASON)

    return Assessment(
        transaction_id=transaction.id,
        score=score,
        level=classify_risk(score, policy),
        reasons=tuple(reasons),
        rule_set_version=rule_set.version,
        skipped_rules=tuple(skipped),
    )
