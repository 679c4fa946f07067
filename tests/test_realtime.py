import asyncio
import json
from decimal import Decimal

import pytest

from qrmenu.core.security import owner_token
from qrmenu.services.realtime import (
    NEW_ORDER,
    ClientConnection,
    EventBroadcaster,
    EventEnvelope,
    GroupRegistry,
    InMemoryBroadcastBackend,
    RedisBroadcastBackend,
    SessionRouter,
)
from qrmenu.services.store import LineItem, OrderDraft


class TestGroupRegistry:

    def test_join_is_idempotent(self, registry):
        conn = ClientConnection()
        registry.join(conn, "R1")
        registry.join(conn, "R1")
        assert registry.group_size("R1") == 1
        assert registry.recipients("R1") == [conn]

    def test_joining_another_room_moves_the_connection(self, registry):
        conn = ClientConnection()
        registry.join(conn, "R1")
        registry.join(conn, "R2")
        assert registry.room_of(conn) == "R2"
        assert registry.recipients("R1") == []
        assert registry.recipients("R2") == [conn]

    def test_leave_prunes_everything(self, registry):
        conn = ClientConnection()
        registry.join(conn, "R1")
        registry.follow(conn, "order-1")

        registry.leave(conn)

        assert registry.room_of(conn) is None
        assert registry.recipients("R1", "order-1") == []
        assert registry.connection_count == 0
        assert registry._rooms == {}
        assert registry._followers == {}

    def test_recipients_lists_each_connection_once(self, registry):
        owner, customer = ClientConnection(), ClientConnection()
        registry.join(owner, "R1")
        registry.follow(owner, "order-1")
        registry.follow(customer, "order-1")

        recipients = registry.recipients("R1", "order-1")
        assert len(recipients) == 2
        assert set(recipients) == {owner, customer}

    def test_followers_only_get_their_order(self, registry):
        customer = ClientConnection()
        registry.follow(customer, "order-1")
        assert registry.recipients("R1") == []
        assert registry.recipients("R1", "order-2") == []
        assert registry.recipients("R1", "order-1") == [customer]


class TestClientConnection:

    async def test_closed_connection_refuses_events(self):
        conn = ClientConnection()
        conn.close()
        assert conn.send("pong") is False

    async def test_full_outbox_drops_events(self):
        conn = ClientConnection(max_pending=1)
        assert conn.send("a") is True
        assert conn.send("b") is False

    async def test_pump_writes_until_closed(self):
        conn = ClientConnection()
        sent = []

        async def send_json(message):
            sent.append(message)

        conn.send("joined", {"restaurantId": "R1"})
        conn.send("pong")
        conn.close()
        await asyncio.wait_for(conn.pump(send_json), timeout=1)

        assert sent == [
            {"event": "joined", "data": {"restaurantId": "R1"}},
            {"event": "pong", "data": {}},
        ]


class TestEventBroadcaster:

    async def test_rooms_are_isolated(self, broadcaster, connect, drain):
        r1, r2 = connect("R1"), connect("R2")

        assert await broadcaster.emit("R1", NEW_ORDER, {"id": "a"}) is True

        assert [e.data for e in drain(r1)] == [{"id": "a"}]
        assert drain(r2) == []

    async def test_empty_room_is_not_an_error(self, broadcaster):
        assert await broadcaster.emit("nobody", NEW_ORDER, {"id": "a"}) is True

    async def test_fifo_per_room(self, broadcaster, connect, drain):
        conn = connect("R1")

        await asyncio.gather(*(broadcaster.emit("R1", NEW_ORDER, {"n": n}) for n in range(20)))

        assert [e.data["n"] for e in drain(conn)] == list(range(20))

    async def test_disconnected_connection_is_skipped(self, broadcaster, registry, store, connect, drain):
        router = SessionRouter(registry, store)
        gone, stays = connect("R1"), connect("R1")

        router.disconnect(gone)
        await broadcaster.emit("R1", NEW_ORDER, {"id": "a"})

        assert gone.closed
        assert drain(gone) == []
        assert len(drain(stays)) == 1

    async def test_backend_failure_is_contained(self, registry, caplog):
        # Redis backend that was never started
        backend = RedisBroadcastBackend(registry, redis_url="redis://localhost:1/0")
        broadcaster = EventBroadcaster(backend)

        assert await broadcaster.emit("R1", NEW_ORDER, {"id": "a"}) is False
        assert "Failed to emit new_order to room R1" in caplog.text
        assert await broadcaster.health_check() is False


class TestRedisBackend:

    def test_channel_per_restaurant(self, registry):
        backend = RedisBroadcastBackend(registry, redis_url="redis://localhost:6379/0", channel_prefix="qr")
        assert backend.channel_for("R1") == "qr:R1"

    async def test_incoming_message_is_dispatched_locally(self, registry, connect, drain):
        backend = RedisBroadcastBackend(registry, redis_url="redis://localhost:6379/0")
        owner, customer = connect("R1"), connect()
        registry.follow(customer, "order-1")

        envelope = EventEnvelope(
            restaurant_id="R1", event="order_updated", data={"status": "ready"}, order_id="order-1"
        )
        backend._handle(envelope.to_json())

        for conn in (owner, customer):
            events = drain(conn)
            assert [(e.event, e.data) for e in events] == [("order_updated", {"status": "ready"})]

    async def test_malformed_message_is_ignored(self, registry, connect, drain):
        backend = RedisBroadcastBackend(registry, redis_url="redis://localhost:6379/0")
        owner = connect("R1")

        backend._handle("not json")
        backend._handle(json.dumps({"event": "new_order"}))

        assert drain(owner) == []


class TestSessionRouter:

    @pytest.fixture
    def router(self, registry, store):
        return SessionRouter(registry, store)

    async def test_join(self, router, registry, drain):
        conn = ClientConnection()
        await router.handle(conn, json.dumps({"type": "join", "restaurantId": "R1"}))

        assert registry.room_of(conn) == "R1"
        assert [(e.event, e.data) for e in drain(conn)] == [("joined", {"restaurantId": "R1"})]

    @pytest.mark.parametrize(
        "raw",
        ["not json", json.dumps({"type": "dance"}), json.dumps({"type": "join"}), json.dumps([1, 2])],
    )
    async def test_bad_message(self, router, registry, drain, raw):
        conn = ClientConnection()
        await router.handle(conn, raw)

        assert registry.room_of(conn) is None
        assert [(e.event, e.data) for e in drain(conn)] == [("error", {"message": "Invalid message"})]

    async def test_join_requires_owner_token_when_configured(self, router, registry, drain, owner_secret):
        intruder, owner = ClientConnection(), ClientConnection()

        await router.handle(intruder, {"type": "join", "restaurantId": "R1", "token": "guess"})
        await router.handle(
            owner, {"type": "join", "restaurantId": "R1", "token": owner_token("R1", owner_secret)}
        )

        assert registry.room_of(intruder) is None
        assert drain(intruder)[0].event == "error"
        assert registry.room_of(owner) == "R1"

    async def test_follow_existing_order(self, router, registry, store, drain):
        order = await store.create(
            OrderDraft(
                restaurant_id="R1",
                items=[LineItem(name="Pizza", price=Decimal("299"), quantity=1)],
                table_number="5",
            )
        )
        conn = ClientConnection()

        await router.handle(conn, {"type": "follow", "orderId": order.id})

        assert registry.recipients("R9", order.id) == [conn]
        assert [(e.event, e.data) for e in drain(conn)] == [
            ("following", {"orderId": order.id, "status": "pending"})
        ]

    async def test_follow_unknown_order(self, router, registry, drain):
        conn = ClientConnection()
        await router.handle(conn, {"type": "follow", "orderId": "missing"})

        assert registry.recipients("R1", "missing") == []
        assert drain(conn)[0].event == "error"

    async def test_leave_and_ping(self, router, registry, drain):
        conn = ClientConnection()
        await router.handle(conn, {"type": "join", "restaurantId": "R1"})
        await router.handle(conn, {"type": "leave"})
        await router.handle(conn, {"type": "ping"})

        assert registry.room_of(conn) is None
        assert [e.event for e in drain(conn)] == ["joined", "left", "pong"]
