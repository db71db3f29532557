"""
FraudGuard — HTTP API integration tests
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.exc import OperationalError

from conftest import auth_headers, make_amount_rule, make_frequency_rule


def _txn_payload(**kwargs):
    payload = {
        "account_id": "ACC-API-1",
        "amount": "15000.00",
        "channel": "BKASH",
        "recipient_account": "01755555555",
        "occurred_at": "2024-05-01T12:00:00Z",
    }
    payload.update(kwargs)
    return payload


# ===========================================================================
# ── Transactions ───────────────────────────────────────────────────────────
# ===========================================================================

@pytest.mark.asyncio
class TestTransactionsAPI:
    async def test_record_and_evaluate(self, client, db_session, kafka_producer):
        db_session.add(make_amount_rule())
        await db_session.commit()

        resp = await client.post("/api/v1/transactions/", json=_txn_payload())

        assert resp.status_code == 201
        body = resp.json()
        assert body["account_id"] == "ACC-API-1"
        assert Decimal(body["amount"]) == Decimal("15000")
        assert body["assessment"]["risk_score"] == 30
        assert body["assessment"]["risk_level"] == "LOW"
        assert body["assessment"]["reasons"] == "HIGH_AMOUNT"
        kafka_producer.send.assert_awaited_once()

    async def test_velocity_scenario_over_http(self, client, db_session):
        db_session.add_all([make_amount_rule(), make_frequency_rule()])
        await db_session.commit()

        start = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
        for minute in range(5):
            ts = (start + timedelta(minutes=minute)).isoformat()
            await client.post("/api/v1/transactions/", json=_txn_payload(amount="100", occurred_at=ts))

        ts = (start + timedelta(minutes=5)).isoformat()
        resp = await client.post("/api/v1/transactions/", json=_txn_payload(occurred_at=ts))

        assessment = resp.json()["assessment"]
        assert assessment["risk_score"] == 70
        assert assessment["risk_level"] == "HIGH"
        assert assessment["triggered_rules"] == ["HIGH_AMOUNT", "VELOCITY"]

    async def test_negative_amount_rejected(self, client, db_session):
        resp = await client.post("/api/v1/transactions/", json=_txn_payload(amount="-5"))
        assert resp.status_code == 422
        body = resp.json()
        assert body["error"]["code"] == "VALIDATION_ERROR"
        assert body["error"]["retryable"] is False

    async def test_get_nonexistent_transaction(self, client, db_session):
        resp = await client.get("/api/v1/transactions/nonexistent-id")
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "NOT_FOUND"
        assert resp.headers["X-Request-Id"] == resp.json()["error"]["request_id"]

    async def test_explicit_reevaluation_after_blacklisting(self, client, db_session):
        created = (await client.post("/api/v1/transactions/", json=_txn_payload(amount="10"))).json()
        assert created["assessment"]["risk_score"] == 0

        await client.post("/api/v1/blacklist/", json={"recipient_value": "01755555555"})
        # stored assessment is untouched until re-evaluated
        stored = (await client.get(f"/api/v1/transactions/{created['id']}")).json()
        assert stored["assessment"]["risk_score"] == 0

        resp = await client.post(f"/api/v1/transactions/{created['id']}/evaluate")
        assert resp.status_code == 200
        assert resp.json()["risk_score"] == 50
        assert resp.json()["reasons"] == "BLACKLISTED_RECIPIENT"

    async def test_reevaluate_recipient_requires_operator(self, client, db_session):
        await client.post("/api/v1/transactions/", json=_txn_payload())
        resp = await client.post(
            "/api/v1/transactions/re-evaluate",
            params={"recipient": "01755555555"},
            headers=auth_headers("transactions:read"),
        )
        assert resp.status_code == 403

        resp = await client.post(
            "/api/v1/transactions/re-evaluate",
            params={"recipient": "01755555555"},
            headers=auth_headers("investigator"),
        )
        assert resp.status_code == 200
        assert resp.json()["evaluated"] == 1

    async def test_requires_authentication(self, client, db_session):
        resp = await client.get("/api/v1/transactions/whatever", headers={"Authorization": ""})
        assert resp.status_code == 401


# ===========================================================================
# ── Rules ──────────────────────────────────────────────────────────────────
# ===========================================================================

@pytest.mark.asyncio
class TestRulesAPI:
    async def test_create_and_list_rules(self, client, db_session):
        payload = {
            "code": "API_TEST_RULE",
            "description": "API created rule",
            "kind": "AMOUNT_THRESHOLD",
            "amount_threshold": "5000",
            "risk_points": 15,
        }
        create_resp = await client.post("/api/v1/rules/", json=payload)
        assert create_resp.status_code == 201
        assert create_resp.json()["code"] == "API_TEST_RULE"

        list_resp = await client.get("/api/v1/rules/")
        assert list_resp.status_code == 200
        assert [r["code"] for r in list_resp.json()] == ["API_TEST_RULE"]

    async def test_duplicate_rule_code_rejected(self, client, db_session):
        payload = {"code": "DUP_RULE", "kind": "FREQUENCY_WINDOW", "freq_count_limit": 3,
                   "freq_window_min": 5, "risk_points": 10}
        await client.post("/api/v1/rules/", json=payload)
        resp = await client.post("/api/v1/rules/", json=payload)
        assert resp.status_code == 409

    async def test_missing_kind_fields_rejected(self, client, db_session):
        payload = {"code": "NO_WINDOW", "kind": "FREQUENCY_WINDOW", "freq_count_limit": 3, "risk_points": 10}
        resp = await client.post("/api/v1/rules/", json=payload)
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "INVALID_RULE"

    async def test_writes_require_admin(self, client, db_session):
        payload = {"code": "NOPE", "kind": "AMOUNT_THRESHOLD", "amount_threshold": "1", "risk_points": 1}
        resp = await client.post("/api/v1/rules/", json=payload, headers=auth_headers("investigator"))
        assert resp.status_code == 403

    async def test_patch_and_soft_delete(self, client, db_session):
        payload = {"code": "PATCH_ME", "kind": "AMOUNT_THRESHOLD", "amount_threshold": "100", "risk_points": 5}
        rule_id = (await client.post("/api/v1/rules/", json=payload)).json()["id"]

        patch_resp = await client.patch(f"/api/v1/rules/{rule_id}", json={"risk_points": 12})
        assert patch_resp.status_code == 200
        assert patch_resp.json()["risk_points"] == 12

        del_resp = await client.delete(f"/api/v1/rules/{rule_id}")
        assert del_resp.status_code == 204

        get_resp = await client.get(f"/api/v1/rules/{rule_id}")
        assert get_resp.json()["is_active"] is False

    async def test_patch_rejects_null_for_required_fields(self, client, db_session):
        payload = {"code": "NULL_PATCH", "kind": "AMOUNT_THRESHOLD", "amount_threshold": "100", "risk_points": 5}
        rule_id = (await client.post("/api/v1/rules/", json=payload)).json()["id"]

        for field in ("is_active", "description"):
            resp = await client.patch(f"/api/v1/rules/{rule_id}", json={field: None})
            assert resp.status_code == 422
            assert resp.json()["error"]["code"] == "VALIDATION_ERROR"

        rule = (await client.get(f"/api/v1/rules/{rule_id}")).json()
        assert rule["is_active"] is True
        assert rule["description"] == ""

    async def test_patch_may_clear_threshold_when_switching_kind(self, client, db_session):
        payload = {"code": "SWITCH_KIND", "kind": "AMOUNT_THRESHOLD", "amount_threshold": "100", "risk_points": 5}
        rule_id = (await client.post("/api/v1/rules/", json=payload)).json()["id"]

        resp = await client.patch(f"/api/v1/rules/{rule_id}", json={
            "kind": "FREQUENCY_WINDOW",
            "amount_threshold": None,
            "freq_count_limit": 3,
            "freq_window_min": 5,
        })
        assert resp.status_code == 200
        assert resp.json()["amount_threshold"] is None
        assert resp.json()["kind"] == "FREQUENCY_WINDOW"


# ===========================================================================
# ── Blacklist ──────────────────────────────────────────────────────────────
# ===========================================================================

@pytest.mark.asyncio
class TestBlacklistAPI:
    async def test_add_check_remove(self, client, db_session):
        add_resp = await client.post(
            "/api/v1/blacklist/",
            json={"recipient_value": "01766666666", "reason": "mule account"},
            headers=auth_headers("investigator", sub="inv-7"),
        )
        assert add_resp.status_code == 201
        entry = add_resp.json()
        assert entry["created_by"] == "inv-7"

        check = (await client.get("/api/v1/blacklist/check/01766666666")).json()
        assert check["is_blacklisted"] is True
        assert check["entry"]["id"] == entry["id"]

        dup = await client.post("/api/v1/blacklist/", json={"recipient_value": "01766666666"})
        assert dup.status_code == 409

        assert (await client.delete(f"/api/v1/blacklist/{entry['id']}")).status_code == 204
        assert (await client.delete(f"/api/v1/blacklist/{entry['id']}")).status_code == 404

        check = (await client.get("/api/v1/blacklist/check/01766666666")).json()
        assert check["is_blacklisted"] is False

    async def test_search(self, client, db_session):
        await client.post("/api/v1/blacklist/", json={"recipient_value": "A-1", "reason": "refund scam"})
        await client.post("/api/v1/blacklist/", json={"recipient_value": "B-2", "reason": "sim swap"})
        resp = await client.get("/api/v1/blacklist/", params={"search": "SCAM"})
        assert [e["recipient_value"] for e in resp.json()] == ["A-1"]

    async def test_readers_cannot_write(self, client, db_session):
        resp = await client.post(
            "/api/v1/blacklist/",
            json={"recipient_value": "X"},
            headers=auth_headers("transactions:read"),
        )
        assert resp.status_code == 403

    async def test_remove_by_recipient(self, client, db_session):
        await client.post("/api/v1/blacklist/", json={"recipient_value": "01788888888"})

        resp = await client.delete("/api/v1/blacklist/recipient/01788888888")
        assert resp.status_code == 204
        check = (await client.get("/api/v1/blacklist/check/01788888888")).json()
        assert check["is_blacklisted"] is False

        again = await client.delete("/api/v1/blacklist/recipient/01788888888")
        assert again.status_code == 404

    async def test_store_failure_on_add_is_retryable(self, client, db_session, monkeypatch):
        monkeypatch.setattr(
            "sqlalchemy.ext.asyncio.AsyncSession.execute",
            AsyncMock(side_effect=OperationalError("SELECT 1", {}, Exception("connection refused"))),
        )
        resp = await client.post("/api/v1/blacklist/", json={"recipient_value": "01799999990"})

        assert resp.status_code == 503
        assert resp.headers["Retry-After"] == "1"
        body = resp.json()
        assert body["error"]["code"] == "STORE_UNAVAILABLE"
        assert body["error"]["retryable"] is True


# ===========================================================================
# ── Recommendations & thresholds ───────────────────────────────────────────
# ===========================================================================

@pytest.mark.asyncio
class TestRecommendationsAPI:
    async def test_recommend_then_promote(self, client, db_session):
        db_session.add(make_amount_rule(threshold="100", points=45))
        await db_session.commit()
        await client.put("/api/v1/thresholds/", json={"min_complaints": 2})
        for _ in range(2):
            await client.post("/api/v1/transactions/", json=_txn_payload(recipient_account="R-MULE"))

        listing = (await client.get("/api/v1/recommendations/")).json()
        assert [r["recipient_account"] for r in listing] == ["R-MULE"]
        assert listing[0]["reasons"] == ["2 complaints filed"]

        promote = await client.post("/api/v1/recommendations/R-MULE/promote")
        assert promote.status_code == 201
        assert promote.json()["reason"] == "Recommended: 2 complaints filed"

        single = (await client.get("/api/v1/recommendations/R-MULE")).json()
        assert single["is_already_blacklisted"] is True
        assert single["reasons"] == []
        assert single["meets_criteria"] is True

        assert (await client.get("/api/v1/recommendations/")).json() == []
        again = await client.post("/api/v1/recommendations/R-MULE/promote")
        assert again.status_code == 409

    async def test_unknown_recipient_is_all_zero(self, client, db_session):
        body = (await client.get("/api/v1/recommendations/ghost")).json()
        assert body["complaint_count"] == 0
        assert Decimal(body["total_reported_amount"]) == Decimal("0")
        assert body["reasons"] == []


@pytest.mark.asyncio
class TestThresholdsAPI:
    async def test_get_update_validate(self, client, db_session):
        initial = (await client.get("/api/v1/thresholds/")).json()
        assert initial["version"] == 0

        updated = await client.put("/api/v1/thresholds/", json={"min_reported_amount": "75000"})
        assert updated.status_code == 200
        assert updated.json()["version"] == 1
        assert Decimal(updated.json()["min_reported_amount"]) == Decimal("75000")
        assert updated.json()["min_complaints"] == initial["min_complaints"]

        bad = await client.put("/api/v1/thresholds/", json={"min_complaints": 0})
        assert bad.status_code == 422

        forbidden = await client.put(
            "/api/v1/thresholds/", json={"min_complaints": 4}, headers=auth_headers("investigator"),
        )
        assert forbidden.status_code == 403


@pytest.mark.asyncio
class TestHealthAPI:
    async def test_health_returns_200(self, client, db_session):
        resp = await client.get("/api/v1/health/")
        assert resp.status_code == 200
        body = resp.json()
        assert body["db"] == "healthy"
        assert "version" in body
        assert "uptime_seconds" in body
