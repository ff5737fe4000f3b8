from dataclasses import dataclass
from typing import Callable

from fastapi import Depends, Header, Request
from jose import JWTError, jwt

from app.db import settings
from app.domain.billing.enums import SubscriptionTier
from app.errors import AuthRequired, Forbidden


@dataclass(frozen=True, slots=True)
class Principal:
    user_id: str | None
    partner_id: str | None
    email: str | None
    is_admin: bool
    tier: SubscriptionTier | None = None

    @property
    def subject_id(self) -> str:
        return self.user_id or self.partner_id or ""


def _decode_token(token: str) -> dict:
    last_error: Exception | None = None
    for secret in settings.AUTH_SECRETS_LIST:
        try:
            return jwt.decode(token, secret, algorithms=[settings.auth_algorithm])
        except JWTError as exc:
            last_error = exc
            continue
    raise AuthRequired("Invalid token") from last_error


def _claimed_tier(value) -> SubscriptionTier | None:
    if not value:
        return None
    try:
        return SubscriptionTier(str(value).strip().lower())
    except ValueError:
        return None


def principal_from_token(token: str) -> Principal:
    payload = _decode_token(token)
    user_id = payload.get("userId") or payload.get("sub")
    partner_id = payload.get("partnerId")
    if not user_id and not partner_id:
        raise AuthRequired("Invalid token payload")
    email = (payload.get("email") or "").strip().lower() or None
    is_admin = payload.get("userType") == "admin" or (email is not None and email in settings.ADMIN_EMAILS_LIST)
    return Principal(
        user_id=str(user_id) if user_id else None,
        partner_id=str(partner_id) if partner_id else None,
        email=email,
        is_admin=is_admin,
        tier=_claimed_tier(payload.get("tier")),
    )


def get_principal(
    request: Request,
    authorization: str | None = Header(default=None, alias="Authorization"),
) -> Principal:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise AuthRequired("Unauthorized")
    token = authorization.split(" ", 1)[1].strip()
    if not token:
        raise AuthRequired("Unauthorized")
    principal = principal_from_token(token)
    request.state.principal_id = principal.subject_id
    return principal


def get_user_principal(principal: Principal = Depends(get_principal)) -> Principal:
    if not principal.user_id:
        raise AuthRequired("A user token is required")
    return principal


def require_admin(message: str = "Admin privileges required") -> Callable[[Principal], Principal]:
    def dependency(principal: Principal = Depends(get_principal)) -> Principal:
        if not principal.is_admin:
            raise Forbidden(message)
        return principal

    return dependency
