"""
Password hashing & JWT helpers.

- Passwords are hashed with bcrypt directly at a fixed work factor
  (passlib is unmaintained and broken with bcrypt>=4.1).
- Access tokens carry the user id only; they are structurally
  self-verifying but the session manager still checks the user is
  active on every validation.
- Refresh tokens carry the session id plus a random ``jti`` so two
  tokens for the same session are never equal, and are signed with a
  separate key.  Only their SHA-256 hash is stored server-side.
"""

import hashlib
import uuid
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Any

import bcrypt
from jose import ExpiredSignatureError, JWTError, jwt

from netgate.core.config import Settings
from netgate.core.errors import TokenExpired, TokenInvalid

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"
# bcrypt only looks at this many bytes and newer releases refuse longer input.
MAX_PASSWORD_BYTES = 72


# ── Password hashing ────────────────────────────────────────────────


def hash_password(plain: str, rounds: int = 12) -> str:
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed stored hash.
        return False


@lru_cache
def _dummy_hash(rounds: int) -> str:
    return hash_password(uuid.uuid4().hex, rounds)


def burn_password_check(plain: str, rounds: int = 12) -> None:
    """Spend one bcrypt verification so unknown identifiers cost the same."""
    verify_password(plain, _dummy_hash(rounds))


# ── Token hashing (for refresh tokens) ──────────────────────────────


def hash_token(token: str) -> str:
    """SHA-256 hash — suitable for high-entropy tokens like JWTs."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


# ── JWT ──────────────────────────────────────────────────────────────


def create_access_token(
    user_id: uuid.UUID,
    settings: Settings,
    expires_delta: timedelta | None = None,
) -> str:
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode = {"sub": str(user_id), "type": ACCESS_TOKEN_TYPE, "exp": expire}
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def create_refresh_token(
    user_id: uuid.UUID,
    session_id: uuid.UUID,
    expires_at: datetime,
    settings: Settings,
) -> str:
    to_encode = {
        "sub": str(user_id),
        "sid": str(session_id),
        "jti": uuid.uuid4().hex,
        "type": REFRESH_TOKEN_TYPE,
        "exp": expires_at,
    }
    return jwt.encode(to_encode, settings.REFRESH_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def _decode(
    token: str,
    key: str,
    algorithm: str,
    expected_type: str,
    verify_exp: bool = True,
) -> dict[str, Any]:
    try:
        payload = jwt.decode(token, key, algorithms=[algorithm], options={"verify_exp": verify_exp})
    except ExpiredSignatureError:
        raise TokenExpired()
    except JWTError:
        raise TokenInvalid()

    if payload.get("type") != expected_type:
        raise TokenInvalid("Invalid token type")
    if not payload.get("sub"):
        raise TokenInvalid("Invalid token payload")
    return payload


def decode_access_token(token: str, settings: Settings) -> dict[str, Any]:
    """Decode & validate an access JWT.  Raises TokenExpired / TokenInvalid."""
    return _decode(token, settings.SECRET_KEY, settings.JWT_ALGORITHM, ACCESS_TOKEN_TYPE)


def decode_refresh_token(token: str, settings: Settings, verify_exp: bool = True) -> dict[str, Any]:
    """``verify_exp=False`` is for logout, where an expired value may still name a live session."""
    payload = _decode(
        token, settings.REFRESH_SECRET_KEY, settings.JWT_ALGORITHM, REFRESH_TOKEN_TYPE, verify_exp,
    )
    if not payload.get("sid"):
        raise TokenInvalid("Invalid refresh token payload")
    return payload


def parse_uuid(value: Any) -> uuid.UUID:
    """Parse a UUID claim, mapping garbage to TokenInvalid."""
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        raise TokenInvalid("Invalid token payload")
