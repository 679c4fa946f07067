import uuid

import pytest
from fastapi.testclient import TestClient

from qrmenu.core.security import owner_token
from qrmenu.main import app


@pytest.fixture
def client():
    with TestClient(app) as client:
        yield client


@pytest.fixture
def secured_client(owner_secret):
    with TestClient(app) as client:
        yield client


@pytest.fixture
def restaurant_id():
    # The application database outlives a single test
    return f"R-{uuid.uuid4().hex[:8]}"


def cart(restaurant_id, **overrides):
    body = {
        "items": [{"name": "Pizza", "price": 299, "quantity": 2}],
        "tableNumber": 5,
        "customerName": "Asha",
        "restaurantId": restaurant_id,
    }
    body.update(overrides)
    return body


def place(client, restaurant_id, **overrides):
    response = client.post("/api/orders", json=cart(restaurant_id, **overrides))
    assert response.status_code == 201, response.text
    return response.json()


class TestRootAndHealth:

    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["health"] == "/health"

    def test_health(self, client):
        body = client.get("/health").json()
        assert body["status"] == "operational"
        assert body["database"] == "healthy"
        assert body["broadcast"] == "healthy"


class TestPlaceOrder:

    def test_created(self, client, restaurant_id):
        order = place(client, restaurant_id)

        assert order["status"] == "pending"
        assert order["totalAmount"] == 598.0
        assert order["tableNumber"] == "5"
        assert order["customerName"] == "Asha"
        assert order["restaurantId"] == restaurant_id
        assert order["items"] == [{"name": "Pizza", "price": 299.0, "quantity": 2, "note": None}]

    def test_missing_restaurant(self, client):
        response = client.post("/api/orders", json=cart(None))
        assert response.status_code == 400
        assert response.json() == {"success": False, "error": "restaurantId is required", "detail": None}

    def test_empty_cart(self, client, restaurant_id):
        response = client.post("/api/orders", json=cart(restaurant_id, items=[]))
        assert response.status_code == 400

    def test_malformed_item(self, client, restaurant_id):
        response = client.post(
            "/api/orders",
            json=cart(restaurant_id, items=[{"name": "Pizza", "price": 299, "quantity": 0}]),
        )
        assert response.status_code == 400
        assert response.json()["success"] is False
        assert "quantity" in response.json()["error"]

    def test_total_too_large_for_storage(self, client, restaurant_id):
        response = client.post(
            "/api/orders",
            json=cart(restaurant_id, items=[{"name": "Caviar", "price": 99999999.99, "quantity": 999}]),
        )
        assert response.status_code == 400
        assert "exceeds" in response.json()["error"]

    def test_idempotent_replay(self, client, restaurant_id):
        first = client.post("/api/orders", json=cart(restaurant_id, idempotencyKey="cart-1"))
        again = client.post("/api/orders", json=cart(restaurant_id, idempotencyKey="cart-1"))

        assert first.status_code == 201
        assert again.status_code == 200
        assert again.json()["id"] == first.json()["id"]


class TestReadOrders:

    def test_get_by_id(self, client, restaurant_id):
        order = place(client, restaurant_id)
        response = client.get(f"/api/orders/{order['id']}")
        assert response.status_code == 200
        assert response.json() == order

    def test_get_unknown(self, client):
        response = client.get("/api/orders/nope")
        assert response.status_code == 404
        assert response.json()["error"] == "Order nope not found"

    def test_list_requires_restaurant(self, client):
        response = client.get("/api/orders")
        assert response.status_code == 400
        assert response.json()["error"] == "restaurantId is required"

    def test_list_newest_first(self, client, restaurant_id):
        first = place(client, restaurant_id)
        second = place(client, restaurant_id, tableNumber=6)
        place(client, f"{restaurant_id}-other")

        response = client.get("/api/orders", params={"restaurantId": restaurant_id})
        assert [o["id"] for o in response.json()] == [second["id"], first["id"]]

    def test_list_by_status(self, client, restaurant_id):
        order = place(client, restaurant_id)
        place(client, restaurant_id)
        client.put(f"/api/orders/{order['id']}", json={"status": "process"})

        response = client.get("/api/orders", params={"restaurantId": restaurant_id, "status": "process"})
        assert [o["id"] for o in response.json()] == [order["id"]]

        bogus = client.get("/api/orders", params={"restaurantId": restaurant_id, "status": "bogus"})
        assert bogus.status_code == 400

    def test_summary(self, client, restaurant_id):
        order = place(client, restaurant_id)
        place(client, restaurant_id)
        client.put(f"/api/orders/{order['id']}", json={"status": "complete"})

        body = client.get("/api/orders/summary", params={"restaurantId": restaurant_id}).json()
        assert body["pending"] == 1
        assert body["complete"] == 1
        assert body["liveOrders"] == 1
        assert body["todayRevenue"] == 598.0


class TestUpdateStatus:

    def test_lifecycle(self, client, restaurant_id):
        order = place(client, restaurant_id)

        response = client.put(f"/api/orders/{order['id']}", json={"status": "process"})
        assert response.status_code == 200
        assert response.json()["status"] == "process"
        assert response.json()["updatedAt"] is not None

        response = client.put(f"/api/orders/{order['id']}", json={"status": "bogus"})
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid status"
        assert client.get(f"/api/orders/{order['id']}").json()["status"] == "process"

    def test_missing_status(self, client, restaurant_id):
        order = place(client, restaurant_id)
        response = client.put(f"/api/orders/{order['id']}", json={})
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid status"

    def test_terminal(self, client, restaurant_id):
        order = place(client, restaurant_id)
        client.put(f"/api/orders/{order['id']}", json={"status": "cancelled"})

        response = client.put(f"/api/orders/{order['id']}", json={"status": "process"})
        assert response.status_code == 400
        assert client.get(f"/api/orders/{order['id']}").json()["status"] == "cancelled"

    def test_unknown_order(self, client):
        response = client.put("/api/orders/nope", json={"status": "process"})
        assert response.status_code == 404


class TestRealtime:

    def test_owner_sees_new_and_updated_orders(self, client, restaurant_id):
        with client.websocket_connect("/ws") as owner, client.websocket_connect("/ws") as customer:
            owner.send_json({"type": "join", "restaurantId": restaurant_id})
            assert owner.receive_json() == {"event": "joined", "data": {"restaurantId": restaurant_id}}

            order = place(client, restaurant_id)
            message = owner.receive_json()
            assert message["event"] == "new_order"
            assert message["data"] == order

            customer.send_json({"type": "follow", "orderId": order["id"]})
            assert customer.receive_json() == {
                "event": "following",
                "data": {"orderId": order["id"], "status": "pending"},
            }

            client.put(f"/api/orders/{order['id']}", json={"status": "ready"})
            for conn in (owner, customer):
                message = conn.receive_json()
                assert message["event"] == "order_updated"
                assert message["data"]["status"] == "ready"

    def test_other_restaurants_hear_nothing(self, client, restaurant_id):
        with client.websocket_connect("/ws") as other:
            other.send_json({"type": "join", "restaurantId": f"{restaurant_id}-other"})
            assert other.receive_json()["event"] == "joined"

            place(client, restaurant_id)

            # The outbox is FIFO, so a leaked event would arrive before the pong
            other.send_json({"type": "ping"})
            assert other.receive_json()["event"] == "pong"

    def test_invalid_control_message(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.send_text("hello")
            assert ws.receive_json() == {"event": "error", "data": {"message": "Invalid message"}}

    def test_binary_frames(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.send_bytes(b'{"type": "ping"}')
            assert ws.receive_json()["event"] == "pong"

            ws.send_bytes(b"\xff\x00")
            assert ws.receive_json() == {"event": "error", "data": {"message": "Invalid message"}}

            ws.send_json({"type": "ping"})
            assert ws.receive_json()["event"] == "pong"


class TestOwnerAuth:

    def test_owner_endpoints_need_token(self, secured_client, restaurant_id, owner_secret):
        order = place(secured_client, restaurant_id)
        headers = {"Authorization": f"Bearer {owner_token(restaurant_id, owner_secret)}"}

        assert secured_client.get("/api/orders", params={"restaurantId": restaurant_id}).status_code == 401
        assert secured_client.put(f"/api/orders/{order['id']}", json={"status": "process"}).status_code == 401

        listed = secured_client.get("/api/orders", params={"restaurantId": restaurant_id}, headers=headers)
        assert listed.status_code == 200
        updated = secured_client.put(
            f"/api/orders/{order['id']}", json={"status": "process"}, headers=headers
        )
        assert updated.status_code == 200

    def test_customer_pages_stay_open(self, secured_client, restaurant_id):
        order = place(secured_client, restaurant_id)
        assert secured_client.get(f"/api/orders/{order['id']}").status_code == 200

    def test_join_needs_token(self, secured_client, restaurant_id, owner_secret):
        with secured_client.websocket_connect("/ws") as ws:
            ws.send_json({"type": "join", "restaurantId": restaurant_id})
            assert ws.receive_json()["event"] == "error"

            ws.send_json({
                "type": "join",
                "restaurantId": restaurant_id,
                "token": owner_token(restaurant_id, owner_secret),
            })
            assert ws.receive_json()["event"] == "joined"
