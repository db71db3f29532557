"""
FraudGuard — unit tests for the pure rules engine and recommendation logic
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from app.models.models import RiskLevel
from app.rules.default_rules import DEFAULT_RULES
from app.rules.engine import (
    BLACKLIST_REASON,
    AmountThresholdRule,
    FrequencyRule,
    RiskPolicy,
    RuleDefinition,
    RuleSet,
    classify_risk,
    evaluate_transaction,
    parse_rule,
)
from app.services.aggregator import RecipientAggregates
from app.services.errors import InvalidRule, ValidationError
from app.services.recommendations import recommend
from app.services.thresholds import ThresholdSnapshot

from conftest import make_amount_rule, make_frequency_rule, make_transaction


def _burst(txn, count, spacing_minutes=1, **kwargs):
    """*count* earlier transactions from the same account, newest first."""
    return [
        make_transaction(
            account_id=txn.account_id,
            occurred_at=txn.occurred_at - timedelta(minutes=spacing_minutes * (i + 1)),
            **kwargs,
        )
        for i in range(count)
    ]


# ===========================================================================
# ── Parsing ────────────────────────────────────────────────────────────────
# ===========================================================================

class TestParseRule:
    def test_amount_rule(self):
        rule = parse_rule(RuleDefinition.from_row(make_amount_rule(threshold="2500")))
        assert isinstance(rule, AmountThresholdRule)
        assert rule.threshold == Decimal("2500")
        assert rule.risk_points == 30

    def test_frequency_rule(self):
        rule = parse_rule(RuleDefinition.from_row(make_frequency_rule(count=3, window=5)))
        assert isinstance(rule, FrequencyRule)
        assert (rule.count_limit, rule.window_minutes) == (3, 5)

    def test_amount_rule_without_threshold_is_invalid(self):
        defn = RuleDefinition(code="BROKEN", kind="AMOUNT_THRESHOLD", risk_points=10)
        with pytest.raises(InvalidRule) as exc_info:
            parse_rule(defn)
        assert exc_info.value.code == "BROKEN"

    def test_frequency_rule_without_window_is_invalid(self):
        defn = RuleDefinition(code="BROKEN", kind="FREQUENCY_WINDOW", risk_points=10, freq_count_limit=3)
        with pytest.raises(InvalidRule):
            parse_rule(defn)

    def test_zero_count_limit_is_invalid(self):
        defn = RuleDefinition(
            code="ZERO", kind="FREQUENCY_WINDOW", risk_points=10, freq_count_limit=0, freq_window_min=5,
        )
        with pytest.raises(InvalidRule):
            parse_rule(defn)

    def test_unknown_kind_is_invalid(self):
        defn = RuleDefinition(code="GEO", kind="GEO_FENCE", risk_points=10)
        with pytest.raises(InvalidRule):
            parse_rule(defn)

    def test_negative_points_are_invalid(self):
        defn = RuleDefinition(code="NEG", kind="AMOUNT_THRESHOLD", risk_points=-5, amount_threshold=Decimal("1"))
        with pytest.raises(InvalidRule):
            parse_rule(defn)


class TestDefaultRules:
    @pytest.mark.parametrize("rule_data", DEFAULT_RULES, ids=lambda r: r["code"])
    def test_all_default_rules_are_valid(self, rule_data):
        defn = RuleDefinition(
            code=rule_data["code"],
            kind=rule_data["kind"],
            risk_points=rule_data["risk_points"],
            amount_threshold=rule_data.get("amount_threshold"),
            freq_count_limit=rule_data.get("freq_count_limit"),
            freq_window_min=rule_data.get("freq_window_min"),
        )
        parse_rule(defn)

    def test_codes_are_unique(self):
        codes = [r["code"] for r in DEFAULT_RULES]
        assert len(codes) == len(set(codes))


# ===========================================================================
# ── RuleSet snapshot ───────────────────────────────────────────────────────
# ===========================================================================

class TestRuleSet:
    def test_inactive_rules_excluded(self):
        rule_set = RuleSet.from_rows([make_amount_rule(), make_amount_rule(code="OFF", is_active=False)])
        assert [d.code for d in rule_set.rules] == ["HIGH_AMOUNT"]

    def test_amount_rules_ordered_before_frequency_rules(self):
        rule_set = RuleSet.from_rows([
            make_frequency_rule(code="A_VELOCITY"),
            make_amount_rule(code="Z_AMOUNT"),
            make_amount_rule(code="B_AMOUNT"),
        ])
        assert [d.code for d in rule_set.rules] == ["B_AMOUNT", "Z_AMOUNT", "A_VELOCITY"]

    def test_version_depends_on_content_not_row_order(self):
        a = RuleSet.from_rows([make_amount_rule(), make_frequency_rule()])
        b = RuleSet.from_rows([make_frequency_rule(), make_amount_rule()])
        c = RuleSet.from_rows([make_amount_rule(points=31), make_frequency_rule()])
        assert a.version == b.version
        assert a.version != c.version

    def test_max_window(self):
        rule_set = RuleSet.from_rows([
            make_frequency_rule(code="SHORT", window=5),
            make_frequency_rule(code="LONG", window=60),
            make_amount_rule(),
        ])
        assert rule_set.max_window_minutes() == 60
        assert RuleSet.from_rows([make_amount_rule()]).max_window_minutes() == 0


# ===========================================================================
# ── Evaluation ─────────────────────────────────────────────────────────────
# ===========================================================================

class TestEvaluateTransaction:
    def test_amount_and_velocity_scenario(self):
        rule_set = RuleSet.from_rows([make_amount_rule(), make_frequency_rule()])
        txn = make_transaction(amount=Decimal("15000"))
        history = _burst(txn, 5) + [txn]               # 6 in the trailing 10 minutes

        result = evaluate_transaction(txn, history, rule_set, set())

        assert result.score == 70
        assert result.level == RiskLevel.HIGH
        assert result.reasons == ("HIGH_AMOUNT", "VELOCITY")
        assert result.reasons_text == "HIGH_AMOUNT; VELOCITY"
        assert result.rule_set_version == rule_set.version

    def test_amount_threshold_is_inclusive(self):
        rule_set = RuleSet.from_rows([make_amount_rule(threshold="10000")])
        assert evaluate_transaction(make_transaction(amount=Decimal("10000")), [], rule_set, set()).score == 30
        assert evaluate_transaction(make_transaction(amount=Decimal("9999.99")), [], rule_set, set()).score == 0

    def test_frequency_counts_transaction_itself_once(self):
        rule_set = RuleSet.from_rows([make_frequency_rule(count=3, window=5)])
        txn = make_transaction()
        # txn appears in history (already persisted) and must not be double-counted
        history = _burst(txn, 1) + [txn]
        assert evaluate_transaction(txn, history, rule_set, set()).reasons == ()

        history = _burst(txn, 2) + [txn]
        assert evaluate_transaction(txn, history, rule_set, set()).reasons == ("VELOCITY",)

    def test_frequency_window_ignores_older_and_later_transactions(self):
        rule_set = RuleSet.from_rows([make_frequency_rule(count=2, window=10)])
        txn = make_transaction()
        history = [
            make_transaction(account_id=txn.account_id, occurred_at=txn.occurred_at - timedelta(minutes=11)),
            make_transaction(account_id=txn.account_id, occurred_at=txn.occurred_at + timedelta(minutes=1)),
        ]
        assert evaluate_transaction(txn, history, rule_set, set()).score == 0

        history.append(
            make_transaction(account_id=txn.account_id, occurred_at=txn.occurred_at - timedelta(minutes=10))
        )
        assert evaluate_transaction(txn, history, rule_set, set()).score == 40

    def test_frequency_ignores_other_accounts(self):
        rule_set = RuleSet.from_rows([make_frequency_rule(count=2, window=10)])
        txn = make_transaction()
        history = _burst(txn, 3)
        for h in history:
            h.account_id = "ACC-OTHER"
        assert evaluate_transaction(txn, history, rule_set, set()).score == 0

    def test_blacklisted_recipient_adds_bonus_last(self):
        rule_set = RuleSet.from_rows([make_amount_rule()])
        txn = make_transaction(amount=Decimal("20000"))
        result = evaluate_transaction(txn, [], rule_set, {txn.recipient_account})
        assert result.score == 80
        assert result.reasons == ("HIGH_AMOUNT", BLACKLIST_REASON)
        assert result.level == RiskLevel.HIGH

    def test_blacklist_alone_is_medium(self):
        txn = make_transaction()
        result = evaluate_transaction(txn, [], RuleSet.from_rows([]), {txn.recipient_account})
        assert result.score == 50
        assert result.level == RiskLevel.MEDIUM

    def test_no_recipient_never_gets_bonus(self):
        txn = make_transaction(recipient_account=None)
        result = evaluate_transaction(txn, [], RuleSet.from_rows([]), {"", None})
        assert result.score == 0
        assert result.reasons == ()

    def test_malformed_rule_skipped_others_still_apply(self):
        broken = make_amount_rule(code="BROKEN")
        broken.amount_threshold = None
        rule_set = RuleSet.from_rows([broken, make_amount_rule(code="OK_RULE", threshold="100", points=10)])

        result = evaluate_transaction(make_transaction(), [], rule_set, set())

        assert result.reasons == ("OK_RULE",)
        assert result.skipped_rules == ("BROKEN",)
        assert result.score == 10

    def test_zero_amount_is_valid(self):
        rule_set = RuleSet.from_rows([make_amount_rule(threshold="0", points=5)])
        assert evaluate_transaction(make_transaction(amount=Decimal("0")), [], rule_set, set()).score == 5

    def test_negative_amount_rejected(self):
        with pytest.raises(ValidationError):
            evaluate_transaction(make_transaction(amount=Decimal("-1")), [], RuleSet.from_rows([]), set())

    def test_idempotent(self):
        rule_set = RuleSet.from_rows([make_amount_rule(), make_frequency_rule()])
        txn = make_transaction(amount=Decimal("15000"))
        history = _burst(txn, 6)
        first = evaluate_transaction(txn, history, rule_set, {txn.recipient_account})
        second = evaluate_transaction(txn, history, rule_set, {txn.recipient_account})
        assert first == second


class TestRiskLevelClassification:
    @pytest.mark.parametrize("score,level", [
        (0, RiskLevel.LOW),
        (39, RiskLevel.LOW),
        (40, RiskLevel.MEDIUM),
        (69, RiskLevel.MEDIUM),
        (70, RiskLevel.HIGH),
        (500, RiskLevel.HIGH),
    ])
    def test_default_bands(self, score, level):
        assert classify_risk(score) == level

    def test_custom_policy(self):
        policy = RiskPolicy(medium_threshold=10, high_threshold=20)
        assert classify_risk(15, policy) == RiskLevel.MEDIUM
        assert classify_risk(20, policy) == RiskLevel.HIGH


# ===========================================================================
# ── Recommendation (pure) ──────────────────────────────────────────────────
# ===========================================================================

THRESHOLDS = ThresholdSnapshot(min_complaints=3, min_reported_amount=Decimal("50000"), min_confirmed_fraud=1)


class TestRecommend:
    def test_only_amount_criterion_triggers(self):
        agg = RecipientAggregates(
            complaint_count=2, total_reported_amount=Decimal("60000"), confirmed_fraud_count=0,
        )
        rec = recommend("01711111111", agg, THRESHOLDS, set())
        assert rec.meets_criteria is True
        assert rec.is_already_blacklisted is False
        assert len(rec.reasons) == 1
        assert rec.reasons[0].startswith("total reported amount")

    def test_all_criteria(self):
        agg = RecipientAggregates(
            complaint_count=4, total_reported_amount=Decimal("50000"), confirmed_fraud_count=2,
        )
        rec = recommend("R", agg, THRESHOLDS, set())
        assert rec.reasons == (
            "4 complaints filed",
            "total reported amount ≥ 50,000",
            "2 confirmed fraud cases",
        )

    def test_zero_aggregates_never_trigger(self):
        permissive = ThresholdSnapshot(min_complaints=1, min_reported_amount=Decimal("0.01"), min_confirmed_fraud=1)
        rec = recommend("R", RecipientAggregates(), permissive, set())
        assert rec.reasons == ()
        assert rec.meets_criteria is False

    def test_blacklisted_recipient_has_no_reasons(self):
        agg = RecipientAggregates(complaint_count=10, total_reported_amount=Decimal("1"), confirmed_fraud_count=0)
        rec = recommend("R", agg, THRESHOLDS, {"R"})
        assert rec.is_already_blacklisted is True
        assert rec.reasons == ()
        assert rec.meets_criteria is True
