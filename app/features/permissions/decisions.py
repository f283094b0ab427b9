"""
Access decision values and engine errors.

Evaluators never raise for a denial; they return an AccessDecision. The FastAPI
layer turns a denied decision into an AccessDeniedError (an HTTPException).
"""
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional
import enum

from fastapi import HTTPException, status


class DenialCode(str, enum.Enum):
    """Machine-readable reason attached to every denial."""
    AUTHENTICATION_REQUIRED = "AUTHENTICATION_REQUIRED"
    INVALID_FEATURE_CONFIG = "INVALID_FEATURE_CONFIG"
    ORGANIZATION_NOT_FOUND = "ORGANIZATION_NOT_FOUND"
    NO_SUBSCRIPTION_PLAN = "NO_SUBSCRIPTION_PLAN"
    SUBSCRIPTION_EXPIRED = "SUBSCRIPTION_EXPIRED"
    MODULE_NOT_IN_PLAN = "MODULE_NOT_IN_PLAN"
    FEATURE_NOT_IN_PLAN = "FEATURE_NOT_IN_PLAN"
    FEATURE_ACCESS_DENIED = "FEATURE_ACCESS_DENIED"
    CHANNEL_ACCESS_DENIED = "CHANNEL_ACCESS_DENIED"
    NO_ACCESS = "NO_ACCESS"
    PLAN_CHECK_ERROR = "PLAN_CHECK_ERROR"


class DenialSide(str, enum.Enum):
    """Which gate produced the denial."""
    PLAN = "PLAN"
    ROLE = "ROLE"


_STATUS_BY_CODE = {
    DenialCode.AUTHENTICATION_REQUIRED: status.HTTP_401_UNAUTHORIZED,
    DenialCode.INVALID_FEATURE_CONFIG: status.HTTP_500_INTERNAL_SERVER_ERROR,
    DenialCode.PLAN_CHECK_ERROR: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


@dataclass(frozen=True)
class AccessDecision:
    """
    Outcome of an access check.

    ``context`` carries denial details for clients, e.g. ``current_plan`` for an
    upgrade prompt or ``user_role``/``has_custom_role`` for a permission request.
    """
    allowed: bool
    code: Optional[DenialCode] = None
    reason: Optional[DenialSide] = None
    message: Optional[str] = None
    context: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def allow(cls) -> "AccessDecision":
        return cls(allowed=True)

    @classmethod
    def deny(
        cls,
        code: DenialCode,
        message: str,
        reason: Optional[DenialSide] = None,
        **context: Any
    ) -> "AccessDecision":
        return cls(allowed=False, code=code, reason=reason, message=message, context=context)

    def with_reason(self, reason: DenialSide) -> "AccessDecision":
        return AccessDecision(
            allowed=self.allowed, code=self.code, reason=reason, message=self.message, context=self.context
        )

    @property
    def is_engine_failure(self) -> bool:
        """True for configuration or data-layer failures (as opposed to permission denials)."""
        return self.code in (DenialCode.INVALID_FEATURE_CONFIG, DenialCode.PLAN_CHECK_ERROR)

    @property
    def status_code(self) -> int:
        if self.allowed:
            return status.HTTP_200_OK
        return _STATUS_BY_CODE.get(self.code, status.HTTP_403_FORBIDDEN)

    def to_dict(self) -> dict[str, Any]:
        if self.allowed:
            return {"allowed": True}
        body: dict[str, Any] = {
            "allowed": False,
            "status": "error",
            "code": self.code.value if self.code else None,
            "message": self.message,
        }
        if self.reason is not None:
            body["reason"] = self.reason.value
        body.update(self.context)
        return body

    def __bool__(self) -> bool:
        return self.allowed


class AccessDeniedError(HTTPException):
    """HTTP error raised by route guards for a denied decision."""

    def __init__(self, decision: AccessDecision):
        self.decision = decision
        super().__init__(status_code=decision.status_code, detail=decision.to_dict())


class AccessEngineError(Exception):
    """
    Raised by resolvers that return a filter or a boolean rather than a decision,
    when the underlying check failed for configuration or data-layer reasons.
    """

    def __init__(self, decision: AccessDecision):
        self.decision = decision
        super().__init__(decision.message or (decision.code.value if decision.code else "access engine error"))
