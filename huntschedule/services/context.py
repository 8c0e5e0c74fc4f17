"""
Caller identity passed explicitly into every core operation.
"""

from dataclasses import dataclass

from huntschedule.services.errors import ErrorCode, ValidationError


@dataclass(frozen=True)
class CallerContext:
    """Who is calling. Supplied by the auth layer, never looked up by the core."""

    user_id: int
    is_admin: bool = False

    def require_admin(self, action: str = "perform this action") -> None:
        if not self.is_admin:
            raise ValidationError(
                ErrorCode.NOT_AUTHORIZED,
                f"Admin role required to {action}",
                {"user_id": self.user_id},
            )
