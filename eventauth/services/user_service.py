"""User persistence and refresh-token bookkeeping."""

from datetime import datetime, timezone
from typing import Optional

import asyncpg
import structlog

from eventauth.database import get_pool
from eventauth.errors import ConflictError
from eventauth.models.user import User
from eventauth.services.auth_service import hash_token

logger = structlog.get_logger(__name__)

_USER_COLUMNS = "id, email, name, phone_number, created_at, updated_at"


def _row_to_user(row) -> User:
    return User(
        id=row["id"],
        email=row["email"],
        name=row["name"],
        phone_number=row["phone_number"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class UserService:
    """Service for user rows and the single active refresh token per user.

    Refresh tokens are stored as SHA-256 digests; callers always pass the raw
    token and the digest is computed here.
    """

    async def create_user(
        self,
        email: str,
        name: str,
        phone_number: str,
        password_hash: str,
    ) -> User:
        """Insert a new user.

        Args:
            email: Unique, already lower-cased email
            name: Display name
            phone_number: Unique phone number
            password_hash: Bcrypt hash of the password

        Returns:
            Created User model

        Raises:
            ConflictError: If the email or phone number is already taken
        """
        now = datetime.now(timezone.utc)
        pool = await get_pool()

        try:
            async with pool.acquire() as conn:
                row = await conn.fetchrow(
                    f"""
                    INSERT INTO users (email, password_hash, name, phone_number, created_at, updated_at)
                    VALUES ($1, $2, $3, $4, $5, $6)
                    RETURNING {_USER_COLUMNS}
                    """,
                    email,
                    password_hash,
                    name,
                    phone_number,
                    now,
                    now,
                )
        except asyncpg.UniqueViolationError as e:
            if "phone" in (e.constraint_name or ""):
                raise ConflictError("User with this phone number already exists")
            raise ConflictError("User with this email already exists")

        user = _row_to_user(row)
        logger.info("user_created", user_id=user.id, email=user.email)
        return user

    async def get_by_email(self, email: str) -> Optional[tuple[User, str]]:
        """Get a user by email (case-insensitive).

        Returns:
            Tuple of (User, password_hash) or None if not found
        """
        pool = await get_pool()

        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                SELECT {_USER_COLUMNS}, password_hash
                FROM users
                WHERE LOWER(email) = LOWER($1)
                """,
                email,
            )

        if row is None:
            return None
        return _row_to_user(row), row["password_hash"]

    async def get_by_phone_number(self, phone_number: str) -> Optional[User]:
        pool = await get_pool()

        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {_USER_COLUMNS} FROM users WHERE phone_number = $1",
                phone_number,
            )

        return _row_to_user(row) if row is not None else None

    async def get_by_id(self, user_id: int) -> Optional[User]:
        pool = await get_pool()

        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {_USER_COLUMNS} FROM users WHERE id = $1",
                user_id,
            )

        return _row_to_user(row) if row is not None else None

    async def get_by_refresh_token(self, refresh_token: str) -> Optional[User]:
        """Get the user currently holding this exact refresh token."""
        pool = await get_pool()

        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {_USER_COLUMNS} FROM users WHERE refresh_token = $1",
                hash_token(refresh_token),
            )

        return _row_to_user(row) if row is not None else None

    async def set_refresh_token(self, user_id: int, refresh_token: Optional[str]) -> None:
        """Unconditionally store (or clear, with None) the user's refresh token."""
        token_hash = hash_token(refresh_token) if refresh_token is not None else None
        pool = await get_pool()

        async with pool.acquire() as conn:
            await conn.execute(
                """
                UPDATE users
                SET refresh_token = $1, updated_at = $2
                WHERE id = $3
                """,
                token_hash,
                datetime.now(timezone.utc),
                user_id,
            )

        logger.info(
            "refresh_token_stored" if refresh_token is not None else "refresh_token_cleared",
            user_id=user_id,
        )

    async def swap_refresh_token(
        self, user_id: int, expected_token: str, new_token: str
    ) -> bool:
        """Replace the stored refresh token only if it still equals ``expected_token``.

        Returns:
            True if this call performed the rotation, False if another
            rotation or a logout got there first
        """
        pool = await get_pool()

        async with pool.acquire() as conn:
            result = await conn.execute(
                """
                UPDATE users
                SET refresh_token = $1, updated_at = $2
                WHERE id = $3 AND refresh_token = $4
                """,
                hash_token(new_token),
                datetime.now(timezone.utc),
                user_id,
                hash_token(expected_token),
            )

        swapped = result == "UPDATE 1"
        if swapped:
            logger.info("refresh_token_rotated", user_id=user_id)
        else:
            logger.warning("refresh_token_rotation_lost", user_id=user_id)
        return swapped
