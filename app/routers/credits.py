from typing import Literal

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.auth.dependencies import Principal, get_user_principal
from app.db import get_db
from app.domain.billing.enums import ConsultationType
from app.domain.entitlements.limits import CONSULTATION_DESCRIPTIONS, consultation_cost, consultation_pool
from app.errors import ValidationError
from app.schemas import ConsultationTypeOut, CreditActionIn, CreditBalanceOut, CreditTransactionOut
from app.services import credits
from app.services.credits import BalanceView
from app.services.subscriptions import get_or_create_subscription

router = APIRouter(prefix="/premium/consultation-credits", tags=["premium"])


def _balance_out(balance: BalanceView) -> dict:
    return CreditBalanceOut(
        tier=balance.tier.value,
        available_credits=balance.available,
        emergency_credits=balance.emergency,
        purchased_credits_total=balance.purchased_total,
        last_refresh_date=balance.last_refresh,
        next_refresh_date=balance.next_refresh,
    ).model_dump(mode="json")


def _consultation_types() -> dict:
    return {
        kind.value: ConsultationTypeOut(
            cost=consultation_cost(kind),
            pool=consultation_pool(kind).value,
            description=CONSULTATION_DESCRIPTIONS[kind],
        ).model_dump(mode="json")
        for kind in ConsultationType
    }


@router.get("")
def get_credits(
    action: Literal["balance", "history"] = Query(default="balance"),
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_user_principal),
):
    subscription = get_or_create_subscription(db, principal.user_id)
    if action == "history":
        # the balance read refreshes the pools and enforces the premium gate
        credits.get_balance(db, subscription)
        rows, total = credits.credit_history(db, subscription.id, limit=limit, offset=offset)
        return {
            "success": True,
            "transactions": [CreditTransactionOut.model_validate(row).model_dump(mode="json") for row in rows],
            "pagination": {
                "total": total,
                "limit": limit,
                "offset": offset,
                "has_more": offset + limit < total,
            },
        }

    balance = credits.get_balance(db, subscription)
    return {
        "success": True,
        "credit_balance": _balance_out(balance),
        "premium_feature": True,
        "consultation_types": _consultation_types(),
    }


@router.post("")
def post_credits(
    payload: CreditActionIn,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_user_principal),
):
    subscription = get_or_create_subscription(db, principal.user_id)

    if payload.action == "use_credits":
        if not payload.consultation_type or not payload.expert_id or not payload.consultation_id:
            raise ValidationError("Missing required fields: consultation_type, expert_id, consultation_id")
        result = credits.debit(
            db,
            subscription,
            payload.consultation_type,
            expert_id=payload.expert_id,
            consultation_id=payload.consultation_id,
        )
        return {
            "success": True,
            "message": f"Used {result.credits_used} credits for {result.consultation_type.value} consultation",
            "remaining_credits": float(result.remaining),
            "consultation_type": result.consultation_type.value,
            "expert_id": payload.expert_id,
            "credit_balance": _balance_out(result.balance),
        }

    if not payload.credit_count or not payload.payment_id:
        raise ValidationError("Invalid credit count or missing payment ID")
    balance = credits.credit(db, subscription, payload.credit_count, payment_id=payload.payment_id)
    return {
        "success": True,
        "message": f"Successfully purchased {payload.credit_count} consultation credits",
        "credits_purchased": float(payload.credit_count),
        "payment_id": payload.payment_id,
        "credit_balance": _balance_out(balance),
    }
