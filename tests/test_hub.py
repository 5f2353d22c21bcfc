import asyncio
import json
import pytest

from marketplace.events import ChatMessage, NewOrder
from marketplace.hub import ADMIN_GROUP, NotificationHub, SubscriptionRegistry, order_group

from .conftest import BrokenConnection, FakeRedis, RecordingConnection, StalledConnection


def new_order(order_id: int = 1) -> NewOrder:
    return NewOrder(order_id=order_id, package="400 Robux", price=8)


class TestSubscriptionRegistry:
    def test_join_is_idempotent(self):
        registry = SubscriptionRegistry()
        conn = RecordingConnection()

        assert registry.join(conn, ADMIN_GROUP) is True
        assert registry.join(conn, ADMIN_GROUP) is False
        assert registry.members(ADMIN_GROUP) == [conn]

    def test_connection_can_hold_several_groups(self):
        registry = SubscriptionRegistry()
        conn = RecordingConnection()
        registry.join(conn, ADMIN_GROUP)
        registry.join(conn, order_group(7))

        assert registry.members(ADMIN_GROUP) == [conn]
        assert registry.members(order_group(7)) == [conn]

    def test_disconnect_clears_every_membership(self):
        registry = SubscriptionRegistry()
        conn, other = RecordingConnection(), RecordingConnection()
        registry.join(conn, ADMIN_GROUP)
        registry.join(conn, order_group(7))
        registry.join(other, order_group(7))

        left = registry.disconnect(conn)

        assert left == {"admin", "order:7"}
        assert registry.members(ADMIN_GROUP) == []
        assert registry.members(order_group(7)) == [other]

    def test_disconnect_unknown_connection_is_harmless(self):
        assert SubscriptionRegistry().disconnect(RecordingConnection()) == set()


@pytest.mark.asyncio
async def test_publish_reaches_only_group_members():
    hub = NotificationHub()
    admin, watcher = RecordingConnection(), RecordingConnection()
    hub.join(admin, ADMIN_GROUP)
    hub.join(watcher, order_group(3))

    delivered = await hub.publish(ADMIN_GROUP, new_order())

    assert delivered == 1
    assert admin.frames == [
        {"event": "new_order", "data": {"orderId": 1, "package": "400 Robux", "price": 8.0}}
    ]
    assert watcher.frames == []


@pytest.mark.asyncio
async def test_publish_to_empty_group_is_dropped():
    hub = NotificationHub()
    assert await hub.publish(order_group(99), new_order()) == 0


@pytest.mark.asyncio
async def test_late_joiner_gets_no_backlog():
    hub = NotificationHub()
    early, late = RecordingConnection(), RecordingConnection()
    hub.join(early, order_group(7))

    sent_at = "2024-01-01T00:00:00.000000+00:00"
    await hub.publish(order_group(7), ChatMessage(order_id=7, author="b@x.test", content="hi", created_at=sent_at))
    hub.join(late, order_group(7))

    assert len(early.frames) == 1
    assert early.frames[0]["data"]["created_at"] == sent_at
    assert late.frames == []


@pytest.mark.asyncio
async def test_disconnected_connection_receives_nothing():
    hub = NotificationHub()
    conn = RecordingConnection()
    hub.join(conn, ADMIN_GROUP)
    hub.disconnect(conn)

    assert await hub.publish(ADMIN_GROUP, new_order()) == 0
    assert conn.frames == []


@pytest.mark.asyncio
async def test_failed_delivery_drops_connection_and_continues():
    hub = NotificationHub()
    broken, healthy = BrokenConnection(), RecordingConnection()
    hub.join(broken, ADMIN_GROUP)
    hub.join(healthy, ADMIN_GROUP)

    delivered = await hub.publish(ADMIN_GROUP, new_order())

    assert delivered == 1
    assert len(healthy.frames) == 1
    assert hub.registry.members(ADMIN_GROUP) == [healthy]


@pytest.mark.asyncio
async def test_events_are_mirrored_to_redis():
    redis = FakeRedis()
    hub = NotificationHub(redis=redis, channel="market_events")

    await hub.publish(ADMIN_GROUP, new_order(5))

    [(channel, message)] = redis.published
    assert channel == "market_events"
    assert json.loads(message) == {
        "group": "admin",
        "event": "new_order",
        "data": {"orderId": 5, "package": "400 Robux", "price": 8.0},
    }


@pytest.mark.asyncio
async def test_mirror_failure_does_not_reach_publisher():
    hub = NotificationHub(redis=FakeRedis(fail_publish=True), channel="market_events")
    conn = RecordingConnection()
    hub.join(conn, ADMIN_GROUP)

    assert await hub.publish(ADMIN_GROUP, new_order()) == 1


@pytest.mark.asyncio
async def test_stalled_subscriber_is_dropped_without_blocking_others():
    hub = NotificationHub(send_timeout=0.05)
    stalled, healthy = StalledConnection(), RecordingConnection()
    hub.join(stalled, ADMIN_GROUP)
    hub.join(healthy, ADMIN_GROUP)

    delivered = await asyncio.wait_for(hub.publish(ADMIN_GROUP, new_order()), 1.0)

    assert delivered == 1
    assert len(healthy.frames) == 1
    assert hub.registry.members(ADMIN_GROUP) == [healthy]


@pytest.mark.asyncio
async def test_hung_redis_mirror_does_not_block_publisher():
    hub = NotificationHub(redis=FakeRedis(stall_publish=True), channel="market_events", send_timeout=0.05)
    conn = RecordingConnection()
    hub.join(conn, ADMIN_GROUP)

    assert await asyncio.wait_for(hub.publish(ADMIN_GROUP, new_order()), 1.0) == 1
    assert len(conn.frames) == 1
