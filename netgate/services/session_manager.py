"""
Session manager — credentials and sessions.

Handles:
- Password authentication (bcrypt, constant work whether or not the
  identifier exists; never says which field was wrong)
- Issuing access + refresh credential pairs, one session per device
- Refresh-token rotation
- Revoking one session, a device's sessions, or all of a user's
- Validating access credentials (signature + expiry + user liveness)

Rotation is a single conditional UPDATE:

    UPDATE user_sessions SET refresh_token_hash = :new, ...
    WHERE id = :sid AND user_id = :uid
      AND refresh_token_hash = :old AND is_active

It runs first in its transaction, so of two concurrent rotations with
the same refresh value the second one blocks on the row, then matches
nothing and fails with TokenRevoked.  A rotated value is never valid
again, even before it expires.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from netgate.core.config import Settings
from netgate.core.database import Database
from netgate.core.errors import (
    AccountInactive,
    InvalidCredentials,
    TokenInvalid,
    TokenRevoked,
    UserNotFound,
)
from netgate.core.security import (
    burn_password_check,
    create_access_token,
    create_refresh_token,
    decode_access_token,
    decode_refresh_token,
    hash_token,
    parse_uuid,
    verify_password,
)
from netgate.models.base import utcnow
from netgate.models.session import UserSession
from netgate.models.user import User
from netgate.services.runtime_config import RuntimeConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UserIdentity:
    id: uuid.UUID
    email: str
    username: str
    is_admin: bool
    is_active: bool

    @classmethod
    def from_user(cls, user: User) -> "UserIdentity":
        return cls(
            id=user.id,
            email=user.email,
            username=user.username,
            is_admin=user.is_admin,
            is_active=user.is_active,
        )


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    session_id: uuid.UUID
    refresh_expires_at: datetime
    token_type: str = "bearer"


@dataclass(frozen=True)
class SessionInfo:
    session_id: uuid.UUID
    user_id: uuid.UUID
    device_id: uuid.UUID | None


class SessionManager:
    def __init__(self, database: Database, settings: Settings, runtime_config: RuntimeConfig) -> None:
        self.database = database
        self.settings = settings
        self.runtime_config = runtime_config

    # ── Authentication ───────────────────────────────────────────────
    async def authenticate(self, identifier: str, secret: str) -> UserIdentity:
        """Accepts email (case-insensitive) or username."""
        login = (identifier or "").strip()
        async with self.database.session() as session:
            user = (
                await session.execute(
                    select(User).where(
                        or_(func.lower(User.email) == login.lower(), User.username == login)
                    )
                )
            ).scalars().first()

        rounds = self.settings.BCRYPT_ROUNDS
        if user is None:
            await asyncio.to_thread(burn_password_check, secret, rounds)
            raise InvalidCredentials()
        if not await asyncio.to_thread(verify_password, secret, user.password_hash):
            raise InvalidCredentials()
        # Only someone holding the right secret learns the account is inactive.
        if not user.is_active:
            raise AccountInactive()
        return UserIdentity.from_user(user)

    # ── Issue ────────────────────────────────────────────────────────
    async def issue(self, user_id: uuid.UUID, device_id: uuid.UUID | None = None) -> TokenPair:
        """
        Create a credential pair.  A still-active session for the same
        device is reused and its previous refresh value retired.
        """
        access_ttl = await self.runtime_config.access_token_ttl()
        refresh_ttl = await self.runtime_config.refresh_token_ttl()
        now = utcnow()
        expires_at = now + refresh_ttl

        async with self.database.transaction() as session:
            user = await session.get(User, user_id)
            if user is None:
                raise UserNotFound()
            if not user.is_active:
                raise AccountInactive()

            existing: UserSession | None = None
            if device_id is not None:
                existing = (
                    await session.execute(
                        select(UserSession)
                        .where(
                            UserSession.user_id == user_id,
                            UserSession.device_id == device_id,
                            UserSession.is_active == True,  # noqa: E712
                        )
                        .with_for_update()
                    )
                ).scalars().first()

            session_id = existing.id if existing else uuid.uuid4()
            refresh_token = create_refresh_token(user_id, session_id, expires_at, self.settings)
            refresh_hash = hash_token(refresh_token)

            if existing:
                existing.refresh_token_hash = refresh_hash
                existing.expires_at = expires_at
                existing.last_seen_at = now
                existing.generation += 1
            else:
                session.add(
                    UserSession(
                        id=session_id,
                        user_id=user_id,
                        device_id=device_id,
                        refresh_token_hash=refresh_hash,
                        expires_at=expires_at,
                    )
                )

        access_token = create_access_token(user_id, self.settings, access_ttl)
        return TokenPair(access_token, refresh_token, session_id, expires_at)

    # ── Rotate ───────────────────────────────────────────────────────
    async def rotate(self, refresh_token: str) -> TokenPair:
        payload = decode_refresh_token(refresh_token, self.settings)
        session_id = parse_uuid(payload["sid"])
        user_id = parse_uuid(payload["sub"])

        access_ttl = await self.runtime_config.access_token_ttl()
        refresh_ttl = await self.runtime_config.refresh_token_ttl()
        now = utcnow()
        expires_at = now + refresh_ttl
        new_refresh = create_refresh_token(user_id, session_id, expires_at, self.settings)

        async with self.database.transaction() as session:
            result = await session.execute(
                update(UserSession)
                .where(
                    UserSession.id == session_id,
                    UserSession.user_id == user_id,
                    UserSession.refresh_token_hash == hash_token(refresh_token),
                    UserSession.is_active == True,  # noqa: E712
                )
                .values(
                    refresh_token_hash=hash_token(new_refresh),
                    expires_at=expires_at,
                    last_seen_at=now,
                    generation=UserSession.generation + 1,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                logger.warning("Rejected stale or revoked refresh token for session %s", session_id)
                raise TokenRevoked()

            user = await session.get(User, user_id)
            if user is None or not user.is_active:
                raise AccountInactive()

        access_token = create_access_token(user_id, self.settings, access_ttl)
        return TokenPair(access_token, new_refresh, session_id, expires_at)

    # ── Revoke ───────────────────────────────────────────────────────
    async def describe(self, refresh_token: str) -> SessionInfo | None:
        """Return the live session a refresh value belongs to, if any."""
        try:
            payload = decode_refresh_token(refresh_token, self.settings, verify_exp=False)
            session_id = parse_uuid(payload["sid"])
        except TokenInvalid:
            return None
        async with self.database.session() as session:
            record = await self._current(session, session_id, refresh_token)
        if record is None:
            return None
        return SessionInfo(record.id, record.user_id, record.device_id)

    async def revoke(self, refresh_token: str) -> bool:
        """Revoke the session holding this refresh value; expired values are accepted."""
        try:
            payload = decode_refresh_token(refresh_token, self.settings, verify_exp=False)
            session_id = parse_uuid(payload["sid"])
        except TokenInvalid:
            return False
        return await self._deactivate(
            UserSession.id == session_id,
            UserSession.refresh_token_hash == hash_token(refresh_token),
        ) == 1

    async def revoke_all(self, user_id: uuid.UUID) -> int:
        """Password change / deactivation: every session of the user."""
        return await self._deactivate(UserSession.user_id == user_id)

    async def revoke_device(self, device_id: uuid.UUID) -> int:
        return await self._deactivate(UserSession.device_id == device_id)

    async def _deactivate(self, *criteria) -> int:
        async with self.database.transaction() as session:
            result = await session.execute(
                update(UserSession)
                .where(UserSession.is_active == True, *criteria)  # noqa: E712
                .values(is_active=False)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount

    @staticmethod
    async def _current(session: AsyncSession, session_id: uuid.UUID, refresh_token: str) -> UserSession | None:
        return (
            await session.execute(
                select(UserSession).where(
                    UserSession.id == session_id,
                    UserSession.refresh_token_hash == hash_token(refresh_token),
                    UserSession.is_active == True,  # noqa: E712
                )
            )
        ).scalar_one_or_none()

    # ── Validate ─────────────────────────────────────────────────────
    async def validate(self, access_token: str) -> UserIdentity:
        payload = decode_access_token(access_token, self.settings)
        user_id = parse_uuid(payload["sub"])
        async with self.database.session() as session:
            user = await session.get(User, user_id)
        if user is None:
            raise TokenInvalid()
        if not user.is_active:
            raise AccountInactive()
        return UserIdentity.from_user(user)
