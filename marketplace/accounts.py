"""
Marketplace service: accounts

Registration and credential checks. Self-registration always yields a buyer;
seller accounts are created server-side (see `schema.SEED_USERS`).
"""

import asyncio
import logging

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from .errors import EmailTaken, InvalidCredentials
from .identity import BUYER, Actor
from .store import guard

logger = logging.getLogger(__name__)

_hasher = PasswordHasher()


def hash_password(password: str) -> str:
    return _hasher.hash(password)


def verify_password(password_hash: str, password: str) -> bool:
    try:
        return _hasher.verify(password_hash, password)
    except (VerificationError, InvalidHashError):
        return False


async def create_user(
    session: AsyncSession,
    email: str,
    password: str,
    role: str = BUYER,
    timeout: float = 5.0,
) -> int:
    """Insert a user and return its id. Raises EmailTaken on a duplicate email."""
    password_hash = await asyncio.to_thread(hash_password, password)
    async with guard(session, timeout, "create_user"):
        try:
            result = await session.execute(
                text("""
                    INSERT INTO users (email, password_hash, role)
                    VALUES (:email, :password_hash, :role)
                    RETURNING id
                """),
                {"email": email, "password_hash": password_hash, "role": role},
            )
            user_id = result.scalar_one()
            await session.commit()
        except IntegrityError as e:
            await session.rollback()
            raise EmailTaken(email) from e

    logger.info("Registered user %s as %s", user_id, role)
    return user_id


async def authenticate(
    session: AsyncSession,
    email: str,
    password: str,
    timeout: float = 5.0,
) -> Actor:
    async with guard(session, timeout, "authenticate"):
        result = await session.execute(
            text("SELECT id, email, password_hash, role FROM users WHERE email = :email"),
            {"email": email},
        )
        row = result.fetchone()

    if row is None:
        raise InvalidCredentials()
    if not await asyncio.to_thread(verify_password, row.password_hash, password):
        raise InvalidCredentials()
    return Actor(id=row.id, email=row.email, role=row.role)
