import uuid

from app import models
from conftest import admin_headers, auth_headers, make_appointment, make_partner


def test_missing_token_is_rejected(client):
    res = client.get("/premium/features")
    assert res.status_code == 401
    body = res.json()
    assert body["success"] is False
    assert body["error"] == "auth_required"


def test_tampered_token_is_rejected(client):
    headers = {"Authorization": auth_headers("user-1")["Authorization"] + "x"}
    res = client.get("/premium/features", headers=headers)
    assert res.status_code == 401


def test_health_echoes_request_id(client):
    res = client.get("/health", headers={"X-Request-Id": "req-123"})
    assert res.json() == {"ok": True}
    assert res.headers["X-Request-Id"] == "req-123"


def test_feature_dashboard_and_usage(client):
    headers = auth_headers(str(uuid.uuid4()))

    res = client.get("/premium/features", headers=headers)
    assert res.status_code == 200
    body = res.json()
    assert body["user_status"]["tier"] == "free"
    assert body["user_status"]["trial_available"] is True
    assert len(body["features"]) == 7

    res = client.post("/premium/features", json={"feature": "export_reports"}, headers=headers)
    assert res.status_code == 200
    assert res.json()["usage_tracked"] is True
    assert res.json()["remaining_uses"] == 0

    res = client.post("/premium/features", json={"feature": "export_reports"}, headers=headers)
    assert res.status_code == 403
    body = res.json()
    assert body["error"] == "feature_access_denied"
    assert body["upgrade_required"] is True

    res = client.get(
        "/premium/features",
        params={"feature": "export_reports", "check_access": "true"},
        headers=headers,
    )
    assert res.json()["has_access"] is False
    assert res.json()["used"] == 1


def test_unknown_feature_and_bad_action(client):
    headers = auth_headers(str(uuid.uuid4()))
    res = client.post("/premium/features", json={"feature": "time_travel"}, headers=headers)
    assert res.status_code == 400
    assert res.json()["error"] == "unknown_feature"

    res = client.post("/premium/features", json={"feature": "export_reports", "action": "steal"}, headers=headers)
    assert res.status_code == 400
    assert res.json()["error"] == "validation_error"


def test_credits_require_paid_plan(client):
    headers = auth_headers(str(uuid.uuid4()))
    res = client.get("/premium/consultation-credits", headers=headers)
    assert res.status_code == 403
    assert res.json()["trial_available"] is True

    res = client.post("/premium/subscriptions/activate", json={"tier": "premium"}, headers=headers)
    assert res.status_code == 200
    assert res.json()["effective_tier"] == "premium"

    res = client.get("/premium/consultation-credits", headers=headers)
    assert res.status_code == 200
    balance = res.json()["credit_balance"]
    assert balance["available_credits"] == 5.0
    assert balance["emergency_credits"] == 2.0

    res = client.post(
        "/premium/consultation-credits",
        json={
            "action": "use_credits",
            "consultation_type": "video_consultation",
            "expert_id": "expert-1",
            "consultation_id": "consult-1",
        },
        headers=headers,
    )
    assert res.status_code == 200
    assert res.json()["remaining_credits"] == 3.0

    purchase = {"action": "purchase_credits", "credit_count": 2, "payment_id": "pay_api_1"}
    res = client.post("/premium/consultation-credits", json=purchase, headers=headers)
    assert res.status_code == 200
    assert res.json()["credit_balance"]["available_credits"] == 5.0
    res = client.post("/premium/consultation-credits", json=purchase, headers=headers)
    assert res.status_code == 409
    assert res.json()["already_recorded"] is True

    res = client.get("/premium/consultation-credits", params={"action": "history"}, headers=headers)
    assert res.json()["pagination"]["total"] == 2


def test_use_credits_needs_all_fields(client):
    headers = auth_headers(str(uuid.uuid4()), tier="premium")
    res = client.post(
        "/premium/consultation-credits",
        json={"action": "use_credits", "consultation_type": "text"},
        headers=headers,
    )
    assert res.status_code == 400


def test_subscription_lifecycle_routes(client):
    headers = auth_headers(str(uuid.uuid4()))
    assert client.post("/premium/subscriptions/trial", headers=headers).json()["status"] == "trial"
    assert client.post("/premium/subscriptions/trial", headers=headers).status_code == 409
    assert client.post("/premium/subscriptions/pause", headers=headers).status_code == 409
    assert client.post("/premium/subscriptions/cancel", headers=headers).json()["status"] == "cancelled"
    res = client.post("/premium/subscriptions/resume", headers=headers)
    assert res.status_code == 409
    assert res.json()["error"] == "invalid_transition"


def test_commission_generation_for_partner(client, db):
    partner = make_partner(db, models.PartnershipTier.premium)
    appointment = make_appointment(db, partner)
    headers = auth_headers(partner_id=partner.id)
    payload = {"action": "generate_appointment_commission", "appointment_id": appointment.id}

    res = client.post("/revenue/commission-tracking", json=payload, headers=headers)
    assert res.status_code == 200
    commission = res.json()["data"]["commission"]
    assert commission["commission_amount"] == "150.00"
    assert commission["commission_rate_percent"] == 15

    res = client.post("/revenue/commission-tracking", json=payload, headers=headers)
    assert res.status_code == 409
    assert res.json()["already_recorded"] is True


def test_commission_permissions(client, db):
    partner = make_partner(db)
    other = make_partner(db)
    user_only = auth_headers(str(uuid.uuid4()))

    res = client.post("/revenue/commission-tracking", json={"action": "bulk_process"}, headers=user_only)
    assert res.status_code == 403
    res = client.get("/revenue/commission-tracking", headers=user_only)
    assert res.status_code == 403

    referral = {
        "action": "create_referral_commission",
        "referral_data": {
            "referrer_partner_id": other.id,
            "referred_user_id": "user-9",
            "referral_value": "1000",
        },
    }
    res = client.post("/revenue/commission-tracking", json=referral, headers=auth_headers(partner_id=partner.id))
    assert res.status_code == 403


def test_admin_bulk_and_listing(client, db):
    partner = make_partner(db, models.PartnershipTier.premium)
    make_appointment(db, partner, fee="1000.00")
    make_appointment(db, partner, fee="200.00")

    res = client.post("/revenue/commission-tracking", json={"action": "bulk_process"}, headers=admin_headers())
    assert res.status_code == 200
    data = res.json()["data"]
    assert data["processed_count"] == 2
    assert data["total_commission_amount"] == "180.00"

    res = client.get("/revenue/commission-tracking", headers=auth_headers(partner_id=partner.id))
    assert res.status_code == 200
    data = res.json()["data"]
    assert data["pagination"]["total"] == 2
    assert data["analytics"]["totals"]["total_commissions"] == "180.00"

    ids = [row["id"] for row in data["commissions"]]
    res = client.post(
        "/revenue/commission-tracking",
        json={"action": "approve_commission", "commission_ids": ids},
        headers=admin_headers(),
    )
    assert res.json()["data"]["approved_count"] == 2


def test_invoice_routes(client):
    user_id = str(uuid.uuid4())
    payload = {
        "user_id": user_id,
        "category": "consultation",
        "line_items": [{"description": "Expert consultation", "unit_price": "1000.00"}],
    }
    assert client.post("/billing/invoices/service", json=payload, headers=auth_headers(user_id)).status_code == 403

    res = client.post("/billing/invoices/service", json=payload, headers=admin_headers())
    assert res.status_code == 200
    invoice = res.json()
    assert invoice["total_amount"] == "1180.00"
    assert invoice["gst_amount"] == "180.00"
    assert invoice["status"] == "sent"

    res = client.get(f"/billing/invoices/{invoice['id']}", headers=auth_headers(user_id))
    assert res.status_code == 200
    res = client.get(f"/billing/invoices/{invoice['id']}", headers=auth_headers(str(uuid.uuid4())))
    assert res.status_code == 403

    res = client.get("/billing/invoices", headers=auth_headers(user_id))
    assert res.json()["total"] == 1
    assert res.json()["total_amount_due"] == "1180.00"

    res = client.post(
        f"/billing/invoices/{invoice['id']}/pay",
        json={"payment_id": "pay_inv_1"},
        headers=admin_headers(),
    )
    assert res.json()["status"] == "paid"
    res = client.post(
        f"/billing/invoices/{invoice['id']}/pay",
        json={"payment_id": "pay_inv_2"},
        headers=admin_headers(),
    )
    assert res.status_code == 409
    assert res.json()["error"] == "already_paid"


def test_missing_invoice(client):
    res = client.get("/billing/invoices/does-not-exist", headers=admin_headers())
    assert res.status_code == 404
    assert res.json()["error"] == "not_found"


def test_partner_token_cannot_meter_features(client, db):
    partner = make_partner(db)
    res = client.get("/premium/features", headers=auth_headers(partner_id=partner.id))
    assert res.status_code == 401


def test_admin_user_type_claim_grants_admin(client):
    headers = auth_headers(str(uuid.uuid4()), user_type="admin")
    res = client.post("/revenue/commission-tracking", json={"action": "bulk_process"}, headers=headers)
    assert res.status_code == 200
    assert res.json()["data"]["processed_count"] == 0


def test_unlimited_feature_reports_unlimited(client):
    headers = auth_headers(str(uuid.uuid4()), tier="premium")
    res = client.get(
        "/premium/features",
        params={"feature": "health_analytics", "check_access": "true"},
        headers=headers,
    )
    assert res.status_code == 200
    assert res.json()["remaining"] == "unlimited"
    assert res.json()["limit"] is None

    res = client.post("/premium/features", json={"feature": "health_analytics", "action": "use"}, headers=headers)
    assert res.status_code == 200
    assert res.json()["remaining_uses"] == "unlimited"
    assert res.json()["used"] == 1

    res = client.get("/premium/features", headers=headers)
    by_key = {f["feature"]: f for f in res.json()["features"]}
    assert by_key["health_analytics"]["remaining"] == "unlimited"
    assert by_key["export_reports"]["remaining"] == "unlimited"


def test_cancelled_subscriber_can_reactivate(client):
    headers = auth_headers(str(uuid.uuid4()))
    assert client.post("/premium/subscriptions/activate", json={"tier": "premium"}, headers=headers).status_code == 200
    assert client.post("/premium/subscriptions/cancel", headers=headers).json()["effective_tier"] == "free"

    res = client.post("/premium/subscriptions/reactivate", json={}, headers=headers)
    assert res.status_code == 200
    body = res.json()
    assert body["status"] == "active"
    assert body["effective_tier"] == "premium"
    assert body["auto_renew"] is True
    assert body["cancelled_at"] is None

    res = client.post("/premium/subscriptions/reactivate", json={}, headers=headers)
    assert res.status_code == 409
