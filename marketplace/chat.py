"""
Marketplace service: Chat Service

Append-only, order-scoped message threads. A posted message is committed
first and only then pushed to the `order:<id>` group.

Unless participant checks are switched on, any authenticated user may read
or write any order's thread and the order id is not validated.
"""

import logging

from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from . import orders
from .errors import Unauthenticated
from .events import ChatMessage
from .hub import NotificationHub, order_group
from .identity import Actor
from .store import guard, stamp, utcnow

logger = logging.getLogger(__name__)


class Message(BaseModel):
    id: int
    order_id: int
    user_id: int | None
    content: str
    created_at: str


async def post_message(
    session: AsyncSession,
    hub: NotificationHub,
    actor: Actor | None,
    order_id: int,
    content: str,
    timeout: float = 5.0,
    check_participant: bool = False,
) -> Message:
    if actor is None:
        raise Unauthenticated()
    if check_participant:
        await orders.ensure_participant(session, actor, order_id, timeout)

    created_at = stamp(utcnow())
    async with guard(session, timeout, "post_message"):
        result = await session.execute(
            text("""
                INSERT INTO messages (order_id, user_id, content, created_at)
                VALUES (:order_id, :user_id, :content, :created_at)
                RETURNING id
            """),
            {
                "order_id": order_id,
                "user_id": actor.id,
                "content": content,
                "created_at": created_at,
            },
        )
        message_id = result.scalar_one()
        await session.commit()

    logger.info("Message %s appended to order %s by user %s", message_id, order_id, actor.id)
    await hub.publish(
        order_group(order_id),
        ChatMessage(order_id=order_id, author=actor.email, content=content, created_at=created_at),
    )
    return Message(
        id=message_id,
        order_id=order_id,
        user_id=actor.id,
        content=content,
        created_at=created_at,
    )


async def list_messages(
    session: AsyncSession,
    actor: Actor | None,
    order_id: int,
    timeout: float = 5.0,
    check_participant: bool = False,
) -> list[dict]:
    """Every message of the order, oldest first, with the author's email."""
    if actor is None:
        raise Unauthenticated()
    if check_participant:
        await orders.ensure_participant(session, actor, order_id, timeout)

    async with guard(session, timeout, "list_messages"):
        result = await session.execute(
            text("""
                SELECT m.*, u.email AS author
                FROM messages m
                LEFT JOIN users u ON u.id = m.user_id
                WHERE m.order_id = :order_id
                ORDER BY m.created_at ASC, m.id ASC
            """),
            {"order_id": order_id},
        )
        rows = result.fetchall()
    return [
        {
            "id": row.id,
            "order_id": row.order_id,
            "user_id": row.user_id,
            "content": row.content,
            "created_at": row.created_at,
            "author": row.author,
        }
        for row in rows
    ]
