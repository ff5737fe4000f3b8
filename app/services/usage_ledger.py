from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from app import models
from app.clock import as_utc, month_key, utc_now
from app.errors import InternalError

logger = logging.getLogger(__name__)

_UPSERT_DIALECTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def upsert_insert(db: Session):
    """Dialect ``insert`` that supports ``ON CONFLICT`` clauses."""
    dialect = db.get_bind().dialect.name
    insert = _UPSERT_DIALECTS.get(dialect)
    if insert is None:
        raise InternalError(f"Atomic upsert is not supported on {dialect}")
    return insert


def increment_usage(
    db: Session,
    subscription_id: str,
    feature_key: str,
    *,
    ceiling: int | None = None,
    now: datetime | None = None,
    auto_commit: bool = True,
) -> int | None:
    """Add one use of ``feature_key`` to the current month's counter.

    Runs as a single ``INSERT .. ON CONFLICT DO UPDATE`` so concurrent calls
    never lose increments. With ``ceiling`` set, the update only applies while
    ``usage_count < ceiling``; ``None`` is returned when the ceiling held the
    counter back.
    """
    moment = as_utc(now) or utc_now()
    month = month_key(moment)
    usage = models.FeatureUsage
    insert = upsert_insert(db)

    stmt = insert(usage).values(
        subscription_id=subscription_id,
        feature_name=feature_key,
        usage_month=month,
        usage_count=1,
        monthly_limit=ceiling,
        last_used_at=moment,
    )
    update_kwargs = {
        "index_elements": ["subscription_id", "feature_name", "usage_month"],
        "set_": {
            "usage_count": usage.usage_count + 1,
            "monthly_limit": ceiling,
            "last_used_at": moment,
        },
    }
    if ceiling is not None:
        update_kwargs["where"] = usage.usage_count < ceiling
    stmt = stmt.on_conflict_do_update(**update_kwargs)

    result = db.execute(stmt)
    if result.rowcount == 0:
        if auto_commit:
            db.rollback()
        return None

    new_count = get_usage(db, subscription_id, feature_key, month)
    if auto_commit:
        db.commit()
    logger.info(
        "Usage recorded subscription=%s feature=%s month=%s count=%s",
        subscription_id,
        feature_key,
        month,
        new_count,
    )
    return new_count


def get_usage(db: Session, subscription_id: str, feature_key: str, month: str) -> int:
    count = (
        db.query(models.FeatureUsage.usage_count)
        .filter(
            models.FeatureUsage.subscription_id == subscription_id,
            models.FeatureUsage.feature_name == feature_key,
            models.FeatureUsage.usage_month == month,
        )
        .scalar()
    )
    return int(count or 0)


def usage_for_month(db: Session, subscription_id: str, month: str) -> dict[str, models.FeatureUsage]:
    rows = (
        db.query(models.FeatureUsage)
        .filter(
            models.FeatureUsage.subscription_id == subscription_id,
            models.FeatureUsage.usage_month == month,
        )
        .all()
    )
    return {row.feature_name: row for row in rows}
