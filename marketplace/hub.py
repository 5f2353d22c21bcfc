"""
Marketplace service: Notification Hub

Two kinds of subscription groups are kept in process:

    admin           every seller watching the new-order feed
    order:<id>      participants of one order's chat thread

  Order / Chat Service ──▶ commit ──▶ Hub.publish(group, event)
                                          │ send_json
                                          ▼
                              websockets in the target group

Delivery is fire-and-forget: nothing is queued for connections that join
later, and a publish to an empty group is dropped. Each event is also
mirrored to a Redis Pub/Sub channel for downstream consumers when one is
configured.
"""

import asyncio
import json
import logging
from collections import defaultdict
from typing import Protocol

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from .events import HubEvent

logger = logging.getLogger(__name__)

ADMIN_GROUP = "admin"


def order_group(order_id: int) -> str:
    return f"order:{order_id}"


class Connection(Protocol):
    async def send_json(self, data: dict) -> None: ...


class SubscriptionRegistry:
    """
    group key → set of connections, plus the reverse index used on disconnect.

    All methods are synchronous: no membership change ever spans an await.
    """

    def __init__(self) -> None:
        self._members: dict[str, set[Connection]] = defaultdict(set)
        self._groups: dict[Connection, set[str]] = defaultdict(set)

    def join(self, connection: Connection, group: str) -> bool:
        """Add a membership. Returns False if it was already held."""
        if group in self._groups[connection]:
            return False
        self._members[group].add(connection)
        self._groups[connection].add(group)
        return True

    def disconnect(self, connection: Connection) -> set[str]:
        """Drop every membership of `connection` and return the groups it left."""
        groups = self._groups.pop(connection, set())
        for group in groups:
            members = self._members.get(group)
            if members is None:
                continue
            members.discard(connection)
            if not members:
                del self._members[group]
        return groups

    def members(self, group: str) -> list[Connection]:
        # snapshot: sends await, and connections may leave meanwhile
        return list(self._members.get(group, ()))


class NotificationHub:
    def __init__(
        self,
        registry: SubscriptionRegistry | None = None,
        redis: aioredis.Redis | None = None,
        channel: str = "",
        send_timeout: float = 2.0,
    ):
        self.registry = registry or SubscriptionRegistry()
        self.redis = redis
        self.channel = channel
        self.send_timeout = send_timeout

    def join(self, connection: Connection, group: str) -> None:
        if self.registry.join(connection, group):
            logger.info("Connection %s joined %s", id(connection), group)

    def disconnect(self, connection: Connection) -> None:
        groups = self.registry.disconnect(connection)
        logger.info("Connection %s disconnected from %d group(s)", id(connection), len(groups))

    async def publish(self, group: str, event: HubEvent) -> int:
        """
        Deliver `event` to the current members of `group`.

        Sends run concurrently, each bounded by `send_timeout`, so a slow
        subscriber holds up neither its peers nor the publisher for longer
        than that. Returns how many connections it reached. Never raises: a
        connection whose send fails or times out is removed from the registry.
        """
        frame = event.to_frame()
        members = self.registry.members(group)
        results = await asyncio.gather(
            *(self._send(connection, frame) for connection in members),
            return_exceptions=True,
        )

        delivered = 0
        for connection, result in zip(members, results):
            if isinstance(result, BaseException):
                if isinstance(result, TimeoutError):
                    logger.warning("Delivery of %s to %s timed out; dropping connection", event.name, group)
                else:
                    logger.error(
                        "Failed to deliver %s to %s; dropping connection",
                        event.name,
                        group,
                        exc_info=result,
                    )
                self.registry.disconnect(connection)
            else:
                delivered += 1

        logger.info("Published %s to %s (%d recipient(s))", event.name, group, delivered)
        await self._mirror(group, frame)
        return delivered

    async def _send(self, connection: Connection, frame: dict) -> None:
        async with asyncio.timeout(self.send_timeout):
            await connection.send_json(frame)

    async def _mirror(self, group: str, frame: dict) -> None:
        """Forward the event to Redis Pub/Sub (best effort, bounded)."""
        if self.redis is None or not self.channel:
            return
        try:
            async with asyncio.timeout(self.send_timeout):
                await self.redis.publish(
                    self.channel,
                    json.dumps({"group": group, **frame}, default=str),
                )
        except TimeoutError:
            logger.warning("Mirroring event to %s timed out", self.channel)
        except RedisError:
            logger.exception("Failed to mirror event to %s", self.channel)
