from __future__ import annotations

from typing import Any


class MeteringError(Exception):
    status_code = 500
    code = "internal_error"

    def __init__(self, message: str, **meta: Any) -> None:
        super().__init__(message)
        self.message = message
        self.meta = meta

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"success": False, "error": self.code, "message": self.message}
        payload.update(self.meta)
        return payload


class AuthRequired(MeteringError):
    status_code = 401
    code = "auth_required"


class Forbidden(MeteringError):
    status_code = 403
    code = "forbidden"


class NotFound(MeteringError):
    status_code = 404
    code = "not_found"


class Conflict(MeteringError):
    status_code = 409
    code = "conflict"


class CommissionConflict(Conflict):
    """Raised when the billable event already has its commission row.

    Callers retrying a request should read this as "already recorded".
    """

    code = "commission_exists"

    def __init__(self, message: str, **meta: Any) -> None:
        meta.setdefault("already_recorded", True)
        super().__init__(message, **meta)


class AlreadyPaid(Conflict):
    code = "already_paid"


class InvalidTransition(Conflict):
    code = "invalid_transition"


class QuotaExceeded(MeteringError):
    status_code = 403
    code = "quota_exceeded"


class FeatureQuotaExceeded(QuotaExceeded):
    code = "feature_access_denied"


class InsufficientCreditsError(QuotaExceeded):
    status_code = 400
    code = "insufficient_credits"


class ValidationError(MeteringError):
    status_code = 400
    code = "validation_error"


class UnknownFeatureError(ValidationError):
    code = "unknown_feature"


class InternalError(MeteringError):
    status_code = 500
    code = "internal_error"
