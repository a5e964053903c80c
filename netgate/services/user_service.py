"""
User service — account records.

Handles:
- Lookup by id
- Account creation (bootstrap script, tests)
- Profile updates from an explicit field set
- Password change, which retires every session of the user
- Active-flag changes and the hard delete used by admin purge
"""

import asyncio
import logging
import uuid
from typing import Any

from sqlalchemy import delete, func, or_, select

from netgate.core.config import Settings
from netgate.core.database import Database
from netgate.core.errors import InvalidCredentials, UserNotFound, ValidationError
from netgate.core.security import MAX_PASSWORD_BYTES, hash_password, verify_password
from netgate.models.user import User

logger = logging.getLogger(__name__)

# Columns a user may change on their own record.
PROFILE_FIELDS = frozenset({"email", "first_name", "last_name"})
MIN_PASSWORD_LENGTH = 8


def check_password_strength(password: str, field: str = "password") -> None:
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters", field=field)
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValidationError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes", field=field)


class UserService:
    def __init__(self, database: Database, settings: Settings) -> None:
        self.database = database
        self.settings = settings

    async def get(self, user_id: uuid.UUID) -> User:
        async with self.database.session() as session:
            user = await session.get(User, user_id)
        if user is None:
            raise UserNotFound()
        return user

    async def create_user(
        self,
        *,
        email: str,
        username: str,
        password: str,
        first_name: str | None = None,
        last_name: str | None = None,
        is_admin: bool = False,
    ) -> User:
        check_password_strength(password)
        password_hash = await asyncio.to_thread(hash_password, password, self.settings.BCRYPT_ROUNDS)
        async with self.database.transaction() as session:
            taken = (
                await session.execute(
                    select(User.id).where(
                        or_(func.lower(User.email) == email.lower(), User.username == username)
                    )
                )
            ).first()
            if taken is not None:
                raise ValidationError("Email or username already registered")
            user = User(
                email=email.lower(),
                username=username,
                password_hash=password_hash,
                first_name=first_name,
                last_name=last_name,
                is_admin=is_admin,
            )
            session.add(user)
        logger.info("Created user %s (admin=%s)", user.username, is_admin)
        return user

    async def update_profile(self, user_id: uuid.UUID, changes: dict[str, Any]) -> User:
        """
        Apply only the fields present in ``changes``.

        Callers pass ``model.model_dump(exclude_unset=True)`` so a field
        that was not sent is never written; an explicit ``None`` clears
        the optional name fields.
        """
        unknown = set(changes) - PROFILE_FIELDS
        if unknown:
            raise ValidationError("Unknown profile fields", fields=sorted(unknown))
        if "email" in changes and not changes["email"]:
            raise ValidationError("Email cannot be empty", field="email")

        async with self.database.transaction() as session:
            user = await session.get(User, user_id)
            if user is None:
                raise UserNotFound()
            if "email" in changes:
                email = str(changes["email"]).lower()
                clash = (
                    await session.execute(
                        select(User.id).where(func.lower(User.email) == email, User.id != user_id)
                    )
                ).first()
                if clash is not None:
                    raise ValidationError("Email already registered", field="email")
                user.email = email
            for name in ("first_name", "last_name"):
                if name in changes:
                    setattr(user, name, changes[name])
        return user

    async def change_password(self, user_id: uuid.UUID, current: str, new: str) -> None:
        """Verify the current secret and store the new hash; sessions are the caller's concern."""
        check_password_strength(new, field="new_password")
        user = await self.get(user_id)
        if not await asyncio.to_thread(verify_password, current, user.password_hash):
            raise InvalidCredentials()
        password_hash = await asyncio.to_thread(hash_password, new, self.settings.BCRYPT_ROUNDS)
        async with self.database.transaction() as session:
            record = await session.get(User, user_id)
            if record is None:
                raise UserNotFound()
            record.password_hash = password_hash

    async def set_active(self, user_id: uuid.UUID, active: bool) -> User:
        async with self.database.transaction() as session:
            user = await session.get(User, user_id)
            if user is None:
                raise UserNotFound()
            user.is_active = active
        return user

    async def purge(self, user_id: uuid.UUID) -> None:
        """Hard delete; devices, sessions and connections go with it (FK cascade)."""
        async with self.database.transaction() as session:
            result = await session.execute(delete(User).where(User.id == user_id))
            if result.rowcount == 0:
                raise UserNotFound()
