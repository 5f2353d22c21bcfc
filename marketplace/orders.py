"""
Marketplace service: Order Service

Write side:
  purchase    insert a pending order, commit, then announce it to the admin group
  set_status  seller-only free-form status overwrite (no event is published)

Read side:
  list_orders role-scoped order list, newest first

The publish always follows a successful commit inside the same coroutine, so
a failed write can never produce a notification.
"""

import logging
import secrets
from datetime import datetime

from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from . import catalog
from .errors import Forbidden, InvalidPackage, NotFound
from .events import NewOrder
from .hub import ADMIN_GROUP, NotificationHub
from .identity import Actor
from .store import guard, stamp, utcnow

logger = logging.getLogger(__name__)

PENDING = "pending"


class Order(BaseModel):
    id: int
    buyer_id: int
    package_id: int
    price: float
    status: str
    payment_reference: str
    created_at: str


def new_payment_reference(now: datetime) -> str:
    return f"PIX_{int(now.timestamp() * 1000)}_{secrets.token_hex(6)}"


async def purchase(
    session: AsyncSession,
    hub: NotificationHub,
    buyer: Actor,
    package_id: int,
    timeout: float = 5.0,
) -> Order:
    """
    Create an order for `package_id` on behalf of `buyer`.

    1. Resolve the package (InvalidPackage if absent)
    2. Insert the order with the package price snapshotted
    3. Commit
    4. Publish NewOrder to the admin group
    """
    async with guard(session, timeout, "purchase"):
        package = await catalog.get_package(session, package_id)
        if package is None:
            raise InvalidPackage(str(package_id))

        now = utcnow()
        order = {
            "buyer_id": buyer.id,
            "package_id": package["id"],
            "price": package["price"],
            "status": PENDING,
            "payment_reference": new_payment_reference(now),
            "created_at": stamp(now),
        }
        result = await session.execute(
            text("""
                INSERT INTO orders
                    (buyer_id, package_id, price, status, payment_reference, created_at)
                VALUES
                    (:buyer_id, :package_id, :price, :status, :payment_reference, :created_at)
                RETURNING id
            """),
            order,
        )
        order_id = result.scalar_one()
        await session.commit()

    logger.info("Order %s created by user %s for package %s", order_id, buyer.id, package_id)
    await hub.publish(
        ADMIN_GROUP,
        NewOrder(order_id=order_id, package=package["name"], price=package["price"]),
    )
    return Order(id=order_id, **order)


def _order_row(row, with_buyer: bool) -> dict:
    data = {
        "id": row.id,
        "buyer_id": row.buyer_id,
        "package_id": row.package_id,
        "price": float(row.price),
        "status": row.status,
        "payment_reference": row.payment_reference,
        "created_at": row.created_at,
        "package_name": row.package_name,
    }
    if with_buyer:
        data["buyer_email"] = row.buyer_email
    return data


async def list_orders(session: AsyncSession, actor: Actor, timeout: float = 5.0) -> list[dict]:
    """Sellers see every order with the buyer's email; buyers only their own."""
    async with guard(session, timeout, "list_orders"):
        if actor.is_seller:
            result = await session.execute(
                text("""
                    SELECT o.*, p.name AS package_name, u.email AS buyer_email
                    FROM orders o
                    JOIN packages p ON p.id = o.package_id
                    JOIN users u ON u.id = o.buyer_id
                    ORDER BY o.created_at DESC, o.id DESC
                """),
            )
        else:
            result = await session.execute(
                text("""
                    SELECT o.*, p.name AS package_name
                    FROM orders o
                    JOIN packages p ON p.id = o.package_id
                    WHERE o.buyer_id = :buyer_id
                    ORDER BY o.created_at DESC, o.id DESC
                """),
                {"buyer_id": actor.id},
            )
        rows = result.fetchall()
    return [_order_row(row, actor.is_seller) for row in rows]


async def get_order(session: AsyncSession, order_id: int) -> dict | None:
    result = await session.execute(
        text("SELECT id, buyer_id, status FROM orders WHERE id = :id"),
        {"id": order_id},
    )
    row = result.fetchone()
    if not row:
        return None
    return {"id": row.id, "buyer_id": row.buyer_id, "status": row.status}


async def set_status(
    session: AsyncSession,
    actor: Actor,
    order_id: int,
    status: str,
    timeout: float = 5.0,
) -> None:
    """Overwrite an order's status. Sellers only; no transition table is enforced."""
    if not actor.is_seller:
        raise Forbidden("set_status")

    async with guard(session, timeout, "set_status"):
        result = await session.execute(
            text("UPDATE orders SET status = :status WHERE id = :id"),
            {"status": status, "id": order_id},
        )
        if result.rowcount == 0:
            await session.rollback()
            raise NotFound(f"order {order_id}")
        await session.commit()

    logger.info("Order %s marked %s by seller %s", order_id, status, actor.id)


async def ensure_participant(
    session: AsyncSession,
    actor: Actor | None,
    order_id: int,
    timeout: float = 5.0,
) -> None:
    """
    The order must exist and `actor` must be its buyer or a seller.
    Used only when participant checks are enabled.
    """
    async with guard(session, timeout, "ensure_participant"):
        order = await get_order(session, order_id)
    if order is None:
        raise NotFound(f"order {order_id}")
    if actor is None:
        raise Forbidden(f"order {order_id}")
    if not actor.is_seller and order["buyer_id"] != actor.id:
        raise Forbidden(f"order {order_id}")
