from datetime import datetime, timedelta, timezone
from typing import Any, Dict

from jose import jwt

from app.db import settings


def create_access_token(data: Dict[str, Any], expires_minutes: int | None = None) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + timedelta(
        minutes=expires_minutes or settings.access_token_expire_minutes
    )
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.auth_secret, algorithm=settings.auth_algorithm)


def issue_principal_token(
    *,
    user_id: str | None = None,
    partner_id: str | None = None,
    email: str | None = None,
    user_type: str | None = None,
    tier: str | None = None,
    expires_minutes: int | None = None,
) -> str:
    """Token carrying the claims read by ``principal_from_token``.

    Tokens are normally issued by the identity service; this is used by local
    tooling and tests.
    """
    if not user_id and not partner_id:
        raise ValueError("a user_id or partner_id claim is required")
    claims = {
        "userId": user_id,
        "partnerId": partner_id,
        "email": email,
        "userType": user_type,
        "tier": tier,
    }
    return create_access_token({k: v for k, v in claims.items() if v}, expires_minutes)
