import logging
import math
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.auth.dependencies import Principal, get_principal
from app.db import get_db
from app.domain.partner.enums import CommissionStatus
from app.errors import Forbidden, ValidationError
from app.schemas import CommissionActionIn, CommissionAnalyticsOut, CommissionOut, PaginationOut
from app.services import commissions
from app.services.commissions import CommissionFilters

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/revenue/commission-tracking", tags=["revenue"])

ADMIN_ACTIONS = {"manual_commission", "bulk_process", "approve_commission", "mark_paid"}


def _commission_out(row) -> dict:
    return CommissionOut.model_validate(row).model_dump(mode="json")


@router.post("")
def commission_action(
    payload: CommissionActionIn,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    action = payload.action
    if action in ADMIN_ACTIONS and not principal.is_admin:
        raise Forbidden(f"Admin privileges required for {action.replace('_', ' ')}")
    if not principal.is_admin and not principal.partner_id:
        raise Forbidden("Partner or admin privileges required")

    if action == "generate_appointment_commission":
        if not payload.appointment_id:
            raise ValidationError("Appointment ID is required")
        commission = commissions.record_appointment_commission(db, payload.appointment_id)
        result = {
            "commission": _commission_out(commission),
            "message": f"Commission of ₹{commission.commission_amount:.2f} created for appointment",
        }

    elif action == "create_referral_commission":
        referral = payload.referral_data
        if referral is None:
            raise ValidationError("Referral data is required")
        if not principal.is_admin and referral.referrer_partner_id != principal.partner_id:
            raise Forbidden("Partners can only record their own referrals")
        commission = commissions.record_referral_commission(
            db,
            referral.referrer_partner_id,
            referral.referred_user_id,
            referral.referral_value,
            description=referral.description,
        )
        result = {
            "commission": _commission_out(commission),
            "message": f"Referral commission of ₹{commission.commission_amount:.2f} created",
        }

    elif action == "manual_commission":
        manual = payload.manual_commission
        if manual is None:
            raise ValidationError("Manual commission data is required")
        commission = commissions.record_manual_commission(
            db,
            manual.partner_id,
            manual.base_amount,
            commission_rate=manual.commission_rate,
            commission_type=manual.commission_type,
            user_id=manual.user_id,
            description=manual.description,
        )
        result = {"commission": _commission_out(commission), "message": "Manual commission created successfully"}

    elif action == "bulk_process":
        summary = commissions.bulk_reconcile(db, payload.batch_size)
        result = {
            "processed_count": summary["processed_count"],
            "total_commission_amount": f"{summary['total_amount']:.2f}",
            "message": f"Bulk processed {summary['processed_count']} commission records",
        }

    elif action == "approve_commission":
        count = commissions.approve_commissions(db, payload.commission_ids or [])
        result = {"approved_count": count, "message": f"Approved {count} commission records"}

    else:
        count = commissions.mark_commissions_paid(db, payload.commission_ids or [])
        result = {"paid_count": count, "message": f"Marked {count} commission records as paid"}

    logger.info("Commission action=%s by=%s", action, principal.subject_id)
    return {"success": True, "data": result}


@router.get("")
def list_commissions(
    partner_id: Optional[str] = Query(default=None),
    status: Optional[CommissionStatus] = Query(default=None),
    commission_type: Optional[str] = Query(default=None),
    start_date: Optional[datetime] = Query(default=None),
    end_date: Optional[datetime] = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    if not principal.is_admin:
        if not principal.partner_id:
            raise Forbidden("Partner or admin privileges required")
        # partners only ever see their own earnings
        partner_id = principal.partner_id

    filters = CommissionFilters(
        partner_id=partner_id,
        status=status,
        commission_type=commission_type,
        start_date=start_date,
        end_date=end_date,
    )
    rows, total = commissions.list_commissions(db, filters, page=page, limit=limit)
    analytics = CommissionAnalyticsOut(**commissions.commission_summary(db, filters))
    return {
        "success": True,
        "data": {
            "commissions": [_commission_out(row) for row in rows],
            "analytics": analytics.model_dump(mode="json"),
            "pagination": PaginationOut(
                page=page,
                limit=limit,
                total=total,
                pages=math.ceil(total / limit) if total else 0,
            ).model_dump(),
        },
    }
