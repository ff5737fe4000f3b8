from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.auth.dependencies import Principal, get_user_principal
from app.db import get_db
from app.domain.entitlements.limits import FEATURES, LIMITS_VERSION
from app.schemas import FeatureAccessOut, FeatureActionIn, FeatureInfoOut
from app.services import entitlements
from app.services.subscriptions import find_subscription_for_owner

router = APIRouter(prefix="/premium/features", tags=["premium"])


@router.get("")
def get_features(
    feature: Optional[str] = Query(default=None),
    check_access: bool = Query(default=False),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_user_principal),
):
    if feature and check_access:
        access = entitlements.check_access(db, principal.user_id, feature, tier=principal.tier)
        return {"success": True, **FeatureAccessOut(**access.as_dict()).model_dump()}

    tier, rows = entitlements.list_feature_availability(db, principal.user_id, tier=principal.tier)
    subscription = find_subscription_for_owner(db, principal.user_id)
    features = [
        FeatureInfoOut(
            **row.as_dict(),
            name=FEATURES[row.feature].name,
            description=FEATURES[row.feature].description,
        ).model_dump()
        for row in rows
    ]
    return {
        "success": True,
        "user_status": {
            "tier": tier.value,
            "is_premium": tier.value in ("premium", "enterprise"),
            "subscription_status": subscription.status.value if subscription else None,
            "trial_available": subscription is None or subscription.trial_end is None,
        },
        "features": features,
        "limits_version": LIMITS_VERSION,
    }


@router.post("")
def use_feature(
    payload: FeatureActionIn,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_user_principal),
):
    if payload.action == "check":
        access = entitlements.check_access(db, principal.user_id, payload.feature, tier=principal.tier)
        return {"success": True, "usage_tracked": False, **FeatureAccessOut(**access.as_dict()).model_dump()}

    access = entitlements.consume(db, principal.user_id, payload.feature, tier=principal.tier)
    return {
        "success": True,
        "message": f"{FEATURES[payload.feature].name} access granted",
        "usage_tracked": True,
        "remaining_uses": access.remaining,
        "used": access.used,
        "limit": access.limit,
    }
