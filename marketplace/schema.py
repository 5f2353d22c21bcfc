"""
Marketplace service: schema bootstrap and seed data

Tables are declared with SQLAlchemy Core so that `create_all` works on any
backend; the services themselves talk to them with `text()` SQL.
"""

import logging

from sqlalchemy import (
    Column,
    Float,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    func,
    insert,
    select,
)
from sqlalchemy.ext.asyncio import AsyncEngine

from .accounts import hash_password

logger = logging.getLogger(__name__)

metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("password_hash", String(255), nullable=False),
    Column("role", String(16), nullable=False, server_default="buyer"),
)

packages = Table(
    "packages",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("name", String(255), nullable=False),
    Column("price", Float, nullable=False),
    Column("currency_amount", Integer, nullable=False),
    Column("description", Text),
)

orders = Table(
    "orders",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("buyer_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("package_id", Integer, ForeignKey("packages.id"), nullable=False),
    Column("price", Float, nullable=False),
    Column("status", String(64), nullable=False, server_default="pending"),
    Column("payment_reference", String(64), nullable=False, unique=True),
    Column("created_at", String(32), nullable=False, index=True),
)

messages = Table(
    "messages",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("order_id", Integer, nullable=False, index=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="SET NULL")),
    Column("content", Text, nullable=False),
    Column("created_at", String(32), nullable=False),
)

SEED_PACKAGES = [
    ("400 Robux", 8, 400, "Pacote 400 Robux"),
    ("1700 Robux", 15, 1700, "Pacote 1700 Robux"),
    ("2000 Robux", 23, 2000, "Pacote 2k Robux"),
    ("4500 Robux", 40, 4500, "Pacote 4.5k Robux"),
    ("10000 Robux", 50, 10000, "Pacote 10k Robux"),
    ("22500 Robux", 80, 22500, "Pacote 22.5k Robux"),
]

SEED_USERS = [
    ("seller@store.test", "sellerpass", "seller"),
    ("buyer@store.test", "buyerpass", "buyer"),
]


async def init_db(engine: AsyncEngine, seed: bool = True) -> None:
    """Create missing tables; seed the catalog and demo accounts on an empty database."""
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)
        if not seed:
            return
        existing = (await conn.execute(select(func.count()).select_from(packages))).scalar_one()
        if existing:
            return
        await conn.execute(
            insert(packages),
            [
                {"name": n, "price": p, "currency_amount": c, "description": d}
                for n, p, c, d in SEED_PACKAGES
            ],
        )
        await conn.execute(
            insert(users),
            [
                {"email": e, "password_hash": hash_password(pw), "role": r}
                for e, pw, r in SEED_USERS
            ],
        )
        logger.info("Seeded %d packages and %d users", len(SEED_PACKAGES), len(SEED_USERS))
