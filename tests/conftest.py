import os
import shutil
import tempfile
import threading
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path

import pytest

_DB_DIR = tempfile.mkdtemp(prefix="metering-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{Path(_DB_DIR) / 'metering.db'}"
os.environ["AUTH_SECRET"] = "metering-test-secret-0123456789abcdef"
os.environ["ADMIN_EMAILS"] = "admin@woofadaar.com"
os.environ["TRIAL_DAYS"] = "14"

from fastapi.testclient import TestClient  # noqa: E402

from app import models  # noqa: E402
from app.db import Base, SessionLocal, engine  # noqa: E402
from app.main import app  # noqa: E402
from app.security import issue_principal_token  # noqa: E402


@pytest.fixture(scope="session", autouse=True)
def _schema():
    Base.metadata.create_all(engine)
    yield
    Base.metadata.drop_all(engine)
    engine.dispose()
    shutil.rmtree(_DB_DIR, ignore_errors=True)


@pytest.fixture(autouse=True)
def _clean_tables():
    yield
    with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client():
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def now():
    """A fixed mid-month instant so month keys and invoice numbers are predictable."""
    return datetime(2026, 3, 15, 10, 30, tzinfo=timezone.utc)


def auth_headers(
    user_id: str | None = None,
    *,
    partner_id: str | None = None,
    email: str | None = None,
    user_type: str | None = None,
    tier: str | None = None,
) -> dict:
    token = issue_principal_token(user_id=user_id, partner_id=partner_id, email=email, user_type=user_type, tier=tier)
    return {"Authorization": f"Bearer {token}"}


def admin_headers() -> dict:
    return auth_headers(str(uuid.uuid4()), email="admin@woofadaar.com")


def make_partner(db, tier: models.PartnershipTier = models.PartnershipTier.basic) -> models.Partner:
    partner = models.Partner(id=str(uuid.uuid4()), name="Test Partner", business_name="Test Clinic", partnership_tier=tier)
    db.add(partner)
    db.commit()
    return partner


def make_appointment(
    db,
    partner: models.Partner,
    fee: str = "1000.00",
    status: models.AppointmentStatus = models.AppointmentStatus.completed,
    user_id: str | None = None,
) -> models.Appointment:
    appointment = models.Appointment(
        id=str(uuid.uuid4()),
        partner_id=partner.id,
        user_id=user_id or str(uuid.uuid4()),
        service_type="consultation",
        consultation_fee=Decimal(fee),
        status=status,
        appointment_date=datetime.now(timezone.utc),
    )
    db.add(appointment)
    db.commit()
    return appointment


def run_concurrently(work, count: int):
    """Run ``work(session)`` in ``count`` threads, each with its own session.

    Returns ``(results, errors)``; a thread that raised contributes its
    exception to ``errors`` instead of a result.
    """
    results, errors = [], []
    lock = threading.Lock()
    barrier = threading.Barrier(count)

    def runner():
        session = SessionLocal()
        try:
            barrier.wait()
            outcome = work(session)
        except Exception as exc:  # collected for the caller's assertions
            with lock:
                errors.append(exc)
        else:
            with lock:
                results.append(outcome)
        finally:
            session.close()

    threads = [threading.Thread(target=runner) for _ in range(count)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    return results, errors
