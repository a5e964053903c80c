"""
Domain error taxonomy.

Services raise these instead of ``HTTPException`` so the core can be
driven without a web layer.  ``netgate.main`` renders every
``AccessError`` as ``{"detail": ..., "code": ..., **extra}`` using the
class's ``status_code``.
"""

from typing import Any


class AccessError(Exception):
    """Base error for the access control core."""

    status_code: int = 400
    code: str = "ACCESS_ERROR"
    message: str = "Request failed"

    def __init__(self, message: str | None = None, **extra: Any) -> None:
        self.message = message or self.message
        self.extra = extra
        super().__init__(self.message)


# ── Authentication ───────────────────────────────────────────────────
class InvalidCredentials(AccessError):
    status_code = 401
    code = "INVALID_CREDENTIALS"
    # Never says which of identifier / secret was wrong.
    message = "Invalid credentials"


class AccountInactive(AccessError):
    status_code = 403
    code = "ACCOUNT_INACTIVE"
    message = "Account is inactive"


# ── Tokens ───────────────────────────────────────────────────────────
class TokenError(AccessError):
    status_code = 401
    code = "TOKEN_ERROR"


class TokenExpired(TokenError):
    code = "TOKEN_EXPIRED"
    message = "Token expired"


class TokenInvalid(TokenError):
    code = "TOKEN_INVALID"
    message = "Invalid token"


class TokenRevoked(TokenError):
    code = "TOKEN_REVOKED"
    message = "Token has been revoked"


# ── Devices ──────────────────────────────────────────────────────────
class QuotaExceeded(AccessError):
    status_code = 403
    code = "QUOTA_EXCEEDED"

    def __init__(self, active: int, maximum: int) -> None:
        super().__init__(
            f"Device limit reached. Maximum {maximum} devices allowed per user.",
            active=active,
            max=maximum,
        )
        self.active = active
        self.maximum = maximum


class DeviceNotFound(AccessError):
    status_code = 404
    code = "DEVICE_NOT_FOUND"
    message = "Device not found"


class UserNotFound(AccessError):
    status_code = 404
    code = "USER_NOT_FOUND"
    message = "User not found"


class AdmissionConflict(AccessError):
    """Storage kept conflicting during quota admission; not a quota verdict."""

    status_code = 409
    code = "ADMISSION_CONFLICT"
    message = "Device admission could not be completed, please retry"


class ValidationError(AccessError):
    status_code = 400
    code = "VALIDATION_ERROR"
    message = "Validation failed"


# ── Firewall ─────────────────────────────────────────────────────────
class FirewallError(AccessError):
    status_code = 502
    code = "FIREWALL_ERROR"
    message = "Firewall operation failed"


class FirewallCommandFailed(FirewallError):
    code = "FIREWALL_COMMAND_FAILED"

    def __init__(self, message: str | None = None, returncode: int | None = None) -> None:
        super().__init__(message, returncode=returncode)
        self.returncode = returncode


class FirewallTimeout(FirewallError):
    status_code = 504
    code = "FIREWALL_TIMEOUT"
    message = "Firewall operation timed out"


# ── Authorization ────────────────────────────────────────────────────
class AdminRequired(AccessError):
    status_code = 403
    code = "ADMIN_REQUIRED"
    # No hint about what the caller would need.
    message = "Forbidden"
