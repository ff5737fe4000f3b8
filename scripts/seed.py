import os
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy.orm import Session

from app import models
from app.db import SessionLocal

# fixed ids so repeated runs update instead of duplicating
PARTNERS = [
    ("11111111-0000-4000-8000-000000000001", "Dr. Ananya Rao", "Happy Paws Clinic", models.PartnershipTier.basic),
    ("11111111-0000-4000-8000-000000000002", "Vikram Mehta", "Good Boy Training", models.PartnershipTier.premium),
    ("11111111-0000-4000-8000-000000000003", "Dr. Farah Khan", "CityVet Hospitals", models.PartnershipTier.enterprise),
]

APPOINTMENTS = [
    # id, partner index, service type, fee, status
    ("22222222-0000-4000-8000-000000000001", 0, "consultation", Decimal("500.00"), models.AppointmentStatus.completed),
    ("22222222-0000-4000-8000-000000000002", 0, "vaccination", Decimal("800.00"), models.AppointmentStatus.completed),
    ("22222222-0000-4000-8000-000000000003", 1, "training", Decimal("1500.00"), models.AppointmentStatus.completed),
    ("22222222-0000-4000-8000-000000000004", 1, "training", Decimal("1500.00"), models.AppointmentStatus.scheduled),
    ("22222222-0000-4000-8000-000000000005", 2, "surgery", Decimal("12000.00"), models.AppointmentStatus.completed),
    ("22222222-0000-4000-8000-000000000006", 2, "consultation", Decimal("0.00"), models.AppointmentStatus.completed),
]


def ensure_partner(db: Session, partner_id: str, name: str, business_name: str, tier: models.PartnershipTier) -> models.Partner:
    partner = db.query(models.Partner).filter(models.Partner.id == partner_id).first()
    if partner:
        partner.name = name
        partner.business_name = business_name
        partner.partnership_tier = tier
        partner.is_active = True
        return partner
    partner = models.Partner(
        id=partner_id,
        name=name,
        business_name=business_name,
        partnership_tier=tier,
        is_active=True,
    )
    db.add(partner)
    db.flush()
    return partner


def ensure_appointment(
    db: Session,
    appointment_id: str,
    partner_id: str,
    user_id: str,
    service_type: str,
    fee: Decimal,
    status: models.AppointmentStatus,
    when: datetime,
) -> models.Appointment:
    appointment = db.query(models.Appointment).filter(models.Appointment.id == appointment_id).first()
    if appointment:
        appointment.consultation_fee = fee
        appointment.status = status
        return appointment
    appointment = models.Appointment(
        id=appointment_id,
        partner_id=partner_id,
        user_id=user_id,
        service_type=service_type,
        consultation_fee=fee,
        status=status,
        appointment_date=when,
    )
    db.add(appointment)
    return appointment


def main() -> None:
    user_id = os.getenv("SEED_USER_ID", "33333333-0000-4000-8000-000000000001")
    db: Session = SessionLocal()
    try:
        partners = [ensure_partner(db, *row) for row in PARTNERS]
        start = datetime.now(timezone.utc) - timedelta(days=len(APPOINTMENTS))
        for offset, (appointment_id, partner_index, service_type, fee, status) in enumerate(APPOINTMENTS):
            ensure_appointment(
                db,
                appointment_id,
                partners[partner_index].id,
                user_id,
                service_type,
                fee,
                status,
                start + timedelta(days=offset),
            )
        db.commit()
        print("Seed OK")
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()

if __name__ == "__main__":
    main()
