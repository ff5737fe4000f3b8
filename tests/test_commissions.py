from decimal import Decimal

import pytest

from app import models
from app.db import SessionLocal
from app.errors import CommissionConflict, NotFound, ValidationError
from app.services import commissions
from app.services.commissions import CommissionFilters
from conftest import make_appointment, make_partner, run_concurrently


def test_appointment_commission_uses_partner_tier(db):
    partner = make_partner(db, models.PartnershipTier.premium)
    appointment = make_appointment(db, partner, fee="1000.00")

    commission = commissions.record_appointment_commission(db, appointment.id)
    assert commission.commission_amount == Decimal("150.00")
    assert commission.commission_rate == Decimal("0.15")
    assert commission.status == models.CommissionStatus.pending
    assert commission.reference.startswith("COM-")


def test_second_commission_for_appointment_conflicts(db):
    partner = make_partner(db)
    appointment = make_appointment(db, partner)
    first = commissions.record_appointment_commission(db, appointment.id)

    with pytest.raises(CommissionConflict) as excinfo:
        commissions.record_appointment_commission(db, appointment.id)
    assert excinfo.value.meta["already_recorded"] is True
    assert excinfo.value.meta["commission_id"] == first.id
    assert db.query(models.CommissionEarning).count() == 1


def test_only_completed_paid_appointments_earn(db):
    partner = make_partner(db)
    scheduled = make_appointment(db, partner, status=models.AppointmentStatus.scheduled)
    free = make_appointment(db, partner, fee="0.00")
    with pytest.raises(ValidationError):
        commissions.record_appointment_commission(db, scheduled.id)
    with pytest.raises(ValidationError):
        commissions.record_appointment_commission(db, free.id)
    with pytest.raises(NotFound):
        commissions.record_appointment_commission(db, "missing")


def test_premium_referral_commission(db):
    partner = make_partner(db, models.PartnershipTier.premium)
    commission = commissions.record_referral_commission(db, partner.id, "referred-user", "1000")
    assert commission.commission_amount == Decimal("225.00")
    assert commission.commission_rate == Decimal("0.2250")


def test_manual_commission_rate_bounds(db):
    partner = make_partner(db)
    commission = commissions.record_manual_commission(db, partner.id, "400", commission_rate="0.25")
    assert commission.commission_amount == Decimal("100.00")
    assert commission.commission_type == "manual"
    with pytest.raises(ValidationError):
        commissions.record_manual_commission(db, partner.id, "400", commission_rate="0.75")
    with pytest.raises(NotFound):
        commissions.record_manual_commission(db, "missing", "400")


def test_bulk_reconcile_backfills_in_batches(db):
    partner = make_partner(db, models.PartnershipTier.enterprise)
    appointments = [make_appointment(db, partner, fee="500.00") for _ in range(3)]
    make_appointment(db, partner, status=models.AppointmentStatus.cancelled)
    commissions.record_appointment_commission(db, appointments[0].id)

    first = commissions.bulk_reconcile(db, batch_size=1)
    assert first == {"processed_count": 1, "total_amount": Decimal("100.00")}
    second = commissions.bulk_reconcile(db, batch_size=10)
    assert second["processed_count"] == 1
    assert commissions.bulk_reconcile(db)["processed_count"] == 0
    assert db.query(models.CommissionEarning).count() == 3


def test_approve_then_mark_paid(db):
    partner = make_partner(db)
    pending = commissions.record_appointment_commission(db, make_appointment(db, partner).id)
    other = commissions.record_appointment_commission(db, make_appointment(db, partner).id)

    assert commissions.mark_commissions_paid(db, [pending.id]) == 0
    assert commissions.approve_commissions(db, [pending.id, other.id]) == 2
    assert commissions.approve_commissions(db, [pending.id]) == 0
    assert commissions.mark_commissions_paid(db, [pending.id]) == 1

    db.expire_all()
    assert db.get(models.CommissionEarning, pending.id).status == models.CommissionStatus.paid
    assert db.get(models.CommissionEarning, other.id).status == models.CommissionStatus.approved
    with pytest.raises(ValidationError):
        commissions.approve_commissions(db, [])


def test_listing_and_summary(db):
    partner = make_partner(db, models.PartnershipTier.premium)
    other_partner = make_partner(db)
    commissions.record_appointment_commission(db, make_appointment(db, partner, fee="1000.00").id)
    commissions.record_referral_commission(db, partner.id, "referred-user", "1000")
    commissions.record_appointment_commission(db, make_appointment(db, other_partner, fee="200.00").id)

    rows, total = commissions.list_commissions(db, CommissionFilters(partner_id=partner.id), page=1, limit=1)
    assert total == 2
    assert len(rows) == 1

    summary = commissions.commission_summary(db, CommissionFilters(partner_id=partner.id))
    assert summary["totals"]["total_commissions"] == Decimal("375.00")
    assert summary["totals"]["total_base_amount"] == Decimal("2000.00")
    assert summary["totals"]["total_count"] == 2
    assert summary["totals"]["average_commission_rate"] == Decimal("18.75")
    assert summary["by_type"]["referral"]["count"] == 1
    assert summary["by_status"]["pending"]["count"] == 2


def test_storage_constraint_catches_racing_duplicate(db, monkeypatch):
    partner = make_partner(db)
    appointment = make_appointment(db, partner)
    commissions.record_appointment_commission(db, appointment.id)

    # a second writer that read "no commission yet" before the first committed
    monkeypatch.setattr(commissions, "_existing_for_appointment", lambda *args, **kwargs: None)
    other = SessionLocal()
    try:
        with pytest.raises(CommissionConflict) as excinfo:
            commissions.record_appointment_commission(other, appointment.id)
    finally:
        other.close()
    assert excinfo.value.meta["already_recorded"] is True
    assert db.query(models.CommissionEarning).filter_by(appointment_id=appointment.id).count() == 1


def test_concurrent_generation_stores_one_commission(db):
    partner = make_partner(db)
    appointment_id = make_appointment(db, partner).id

    results, errors = run_concurrently(
        lambda session: commissions.record_appointment_commission(session, appointment_id).id, 6
    )
    assert len(results) == 1
    assert len(errors) == 5
    assert all(isinstance(exc, CommissionConflict) for exc in errors)
    assert db.query(models.CommissionEarning).count() == 1


def test_bulk_reconcile_rejects_zero_batch(db):
    with pytest.raises(ValidationError):
        commissions.bulk_reconcile(db, batch_size=0)
