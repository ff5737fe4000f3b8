from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app import models
from app.auth.dependencies import Principal, get_user_principal
from app.db import get_db
from app.schemas import (
    SubscriptionActivateIn,
    SubscriptionChangePlanIn,
    SubscriptionOut,
    SubscriptionReactivateIn,
)
from app.services import subscriptions

router = APIRouter(prefix="/premium/subscriptions", tags=["premium"])


def _out(subscription: models.Subscription) -> SubscriptionOut:
    out = SubscriptionOut.model_validate(subscription)
    out.effective_tier = subscriptions.effective_tier(subscription)
    return out


def _own_subscription(db: Session, principal: Principal) -> models.Subscription:
    return subscriptions.get_or_create_subscription(db, principal.user_id)


@router.get("", response_model=SubscriptionOut)
def get_my_subscription(
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_user_principal),
):
    return _out(_own_subscription(db, principal))


@router.post("/trial", response_model=SubscriptionOut)
def start_trial(
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_user_principal),
):
    return _out(subscriptions.start_trial(db, principal.user_id))


@router.post("/activate", response_model=SubscriptionOut)
def activate(
    payload: SubscriptionActivateIn,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_user_principal),
):
    subscription = _own_subscription(db, principal)
    return _out(
        subscriptions.activate(
            db,
            subscription.id,
            payload.tier,
            billing_cycle=payload.billing_cycle,
            payment_id=payload.payment_id,
        )
    )


@router.post("/change-plan", response_model=SubscriptionOut)
def change_plan(
    payload: SubscriptionChangePlanIn,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_user_principal),
):
    subscription = _own_subscription(db, principal)
    return _out(subscriptions.change_plan(db, subscription.id, payload.tier))


@router.post("/pause", response_model=SubscriptionOut)
def pause(
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_user_principal),
):
    subscription = _own_subscription(db, principal)
    return _out(subscriptions.pause(db, subscription.id))


@router.post("/resume", response_model=SubscriptionOut)
def resume(
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_user_principal),
):
    subscription = _own_subscription(db, principal)
    return _out(subscriptions.resume(db, subscription.id))


@router.post("/cancel", response_model=SubscriptionOut)
def cancel(
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_user_principal),
):
    subscription = _own_subscription(db, principal)
    return _out(subscriptions.cancel(db, subscription.id))


@router.post("/reactivate", response_model=SubscriptionOut)
def reactivate(
    payload: SubscriptionReactivateIn | None = None,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_user_principal),
):
    payload = payload or SubscriptionReactivateIn()
    subscription = _own_subscription(db, principal)
    return _out(
        subscriptions.reactivate(
            db,
            subscription.id,
            tier=payload.tier,
            billing_cycle=payload.billing_cycle,
            payment_id=payload.payment_id,
        )
    )
