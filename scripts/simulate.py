"""
Rush Hour Simulation Script

Fires concurrent table orders at several restaurants, then races owner
status changes against each other, and checks that every order ends in one
consistent state.
Run from project root: python scripts/simulate.py

Version: 1.0.0
"""

import argparse
import asyncio
import os
import random
import sys
import time
from datetime import datetime
from typing import Any, Optional

import httpx

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from qrmenu.core.security import owner_token  # noqa: E402

# Windows event loop fix
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

# Configuration
API_BASE_URL = "http://localhost:5000"
TOTAL_ORDERS = 50
RESTAURANTS = ["R1", "R2", "R3"]

CUSTOMER_NAMES = ["Asha", "Ravi", "Meera", "Kabir", "Zoya", "Arjun", "Isha", "Dev", "", "Noor"]
MENU_ITEMS = [
    {"name": "Margherita Pizza", "price": 299},
    {"name": "Paneer Tikka", "price": 249},
    {"name": "Veg Biryani", "price": 219},
    {"name": "Masala Dosa", "price": 129},
    {"name": "Garlic Naan", "price": 59},
    {"name": "Gulab Jamun", "price": 89},
    {"name": "Masala Chai", "price": 39},
    {"name": "Fresh Lime Soda", "price": 69},
]
OWNER_MOVES = ["process", "ready", "billed", "complete", "cancelled"]


def generate_random_items() -> list[dict[str, Any]]:
    """A cart of one to four menu lines."""
    items = []
    for item in random.sample(MENU_ITEMS, random.randint(1, 4)):
        items.append({**item, "quantity": random.randint(1, 3)})
    return items


def generate_order_payload(restaurant_id: str) -> dict[str, Any]:
    items = generate_random_items()
    return {
        "items": items,
        "tableNumber": random.randint(1, 20),
        "customerName": random.choice(CUSTOMER_NAMES),
        "restaurantId": restaurant_id,
        "totalAmount": sum(i["price"] * i["quantity"] for i in items),
    }


def owner_headers(restaurant_id: str, secret: Optional[str]) -> dict[str, str]:
    if not secret:
        return {}
    return {"Authorization": f"Bearer {owner_token(restaurant_id, secret)}"}


# =============================================================================
# ORDER PLACEMENT
# =============================================================================

async def place_order(client: httpx.AsyncClient, order_num: int) -> dict[str, Any]:
    """Place one order from a random table."""
    restaurant_id = random.choice(RESTAURANTS)
    payload = generate_order_payload(restaurant_id)
    start_time = time.time()

    try:
        response = await client.post(f"{API_BASE_URL}/api/orders", json=payload, timeout=30.0)
        elapsed = round(time.time() - start_time, 3)

        if response.status_code == 201:
            data = response.json()
            return {
                "order_num": order_num,
                "success": True,
                "order_id": data["id"],
                "restaurant_id": restaurant_id,
                "total": data["totalAmount"],
                "time": elapsed,
            }
        return {
            "order_num": order_num,
            "success": False,
            "error": response.text[:100],
            "time": elapsed,
        }
    except httpx.HTTPError as e:
        return {
            "order_num": order_num,
            "success": False,
            "error": str(e)[:100],
            "time": round(time.time() - start_time, 3),
        }


# =============================================================================
# STATUS RACES
# =============================================================================

async def change_status(
    client: httpx.AsyncClient,
    order: dict[str, Any],
    status: str,
    secret: Optional[str],
) -> int:
    response = await client.put(
        f"{API_BASE_URL}/api/orders/{order['order_id']}",
        json={"status": status},
        headers=owner_headers(order["restaurant_id"], secret),
        timeout=30.0,
    )
    return response.status_code


async def race_order(
    client: httpx.AsyncClient,
    order: dict[str, Any],
    secret: Optional[str],
) -> dict[str, Any]:
    """Several owners click different buttons on the same order at once."""
    moves = random.sample(OWNER_MOVES, random.randint(2, 4))
    codes = await asyncio.gather(*(change_status(client, order, m, secret) for m in moves))

    final = (await client.get(f"{API_BASE_URL}/api/orders/{order['order_id']}")).json()["status"]
    accepted = [m for m, code in zip(moves, codes) if code == 200]
    rejected = [m for m, code in zip(moves, codes) if code == 400]

    # At most one terminal move can win, and once it has, nothing else may follow it
    terminal_wins = [m for m in accepted if m in ("complete", "cancelled")]
    consistent = len(terminal_wins) <= 1 and (not terminal_wins or final == terminal_wins[0])

    return {
        "order_id": order["order_id"],
        "moves": moves,
        "accepted": accepted,
        "rejected": rejected,
        "final": final,
        "consistent": consistent,
    }


# =============================================================================
# MAIN SIMULATION RUNNER
# =============================================================================

async def run_simulation(num_orders: int = TOTAL_ORDERS, secret: Optional[str] = None) -> dict[str, Any]:
    print("=" * 70)
    print("🔥 RUSH HOUR SIMULATION")
    print("=" * 70)
    print(f"📋 Total Orders: {num_orders}")
    print(f"🏪 Restaurants: {', '.join(RESTAURANTS)}")
    print(f"🎯 Target: {API_BASE_URL}")
    print(f"⏰ Started: {datetime.now().strftime('%H:%M:%S')}")
    print("=" * 70)

    start_time = time.time()

    async with httpx.AsyncClient() as client:
        print("\n🚀 Placing orders...\n")
        results = await asyncio.gather(*(place_order(client, i + 1) for i in range(num_orders)))
        placed = [r for r in results if r["success"]]
        failed = [r for r in results if not r["success"]]

        print("⚔️  Racing status changes...\n")
        races = await asyncio.gather(*(race_order(client, order, secret) for order in placed))

        print("📋 Reloading dashboards...\n")
        listed = {}
        for restaurant_id in RESTAURANTS:
            response = await client.get(
                f"{API_BASE_URL}/api/orders",
                params={"restaurantId": restaurant_id},
                headers=owner_headers(restaurant_id, secret),
            )
            listed.update({o["id"]: o["status"] for o in response.json()})

    total_time = round(time.time() - start_time, 2)

    inconsistent = [r for r in races if not r["consistent"]]
    mismatched = [r for r in races if listed.get(r["order_id"]) != r["final"]]

    print("=" * 70)
    print("📊 SIMULATION RESULTS")
    print("=" * 70)
    print(f"\n✅ Orders Placed: {len(placed)}/{num_orders}")
    print(f"❌ Orders Failed: {len(failed)}/{num_orders}")
    print(f"⏱️  Total Time: {total_time}s")

    if placed:
        avg_time = round(sum(r["time"] for r in placed) / len(placed), 3)
        print(f"\n📈 Average Placement: {avg_time}s")
        print(f"   💰 Total Order Value: ₹{sum(r['total'] for r in placed):.2f}")

    accepted = sum(len(r["accepted"]) for r in races)
    rejected = sum(len(r["rejected"]) for r in races)
    print(f"\n🔁 Status Changes: {accepted} accepted, {rejected} rejected")
    print(f"🧮 Inconsistent Orders: {len(inconsistent)}")
    print(f"🪞 Dashboard Mismatches: {len(mismatched)}")

    if failed:
        print("\n⚠️  Failed Order Details (showing first 5):")
        for f in failed[:5]:
            print(f"   Order #{f['order_num']}: {f.get('error', 'Unknown error')}")

    for r in inconsistent[:5]:
        print(f"   ❗ {r['order_id']}: moves={r['moves']} accepted={r['accepted']} final={r['final']}")

    print("\n" + "=" * 70)
    print("🔍 VERIFICATION STEPS")
    print("=" * 70)
    print("1. With LEDGER_EXPORT_ENABLED=true, check the Celery terminal")
    print("2. Run: python scripts/verify.py")
    print("=" * 70)

    return {
        "total": num_orders,
        "placed": len(placed),
        "failed": len(failed),
        "inconsistent": len(inconsistent),
        "mismatched": len(mismatched),
        "total_time": total_time,
    }


async def preflight() -> bool:
    """Check the service is up before the rush."""
    print("\n🧪 Health Check...")
    async with httpx.AsyncClient() as client:
        try:
            response = await client.get(f"{API_BASE_URL}/health")
        except httpx.HTTPError as e:
            print(f"   ❌ Unreachable: {e}")
            return False
    if response.status_code != 200:
        print(f"   ❌ Failed: {response.text}")
        return False
    data = response.json()
    print(f"   ✅ Status: {data.get('status')}")
    print(f"   Database: {data.get('database')}")
    print(f"   Broadcast: {data.get('broadcast')}")
    return data.get("status") == "operational"


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Rush Hour Simulation Script")
    parser.add_argument("--orders", type=int, default=TOTAL_ORDERS, help="Number of orders")
    parser.add_argument("--url", default=API_BASE_URL, help="API base URL")
    parser.add_argument("--secret", default=os.getenv("OWNER_TOKEN_SECRET"), help="Owner token secret")
    parser.add_argument("--skip-checks", action="store_true", help="Skip the health check")
    args = parser.parse_args()

    API_BASE_URL = args.url.rstrip("/")

    if not args.skip_checks and not asyncio.run(preflight()):
        print("\n❌ Pre-flight check failed. Start the API first: uvicorn qrmenu.main:app --port 5000")
        sys.exit(1)

    summary = asyncio.run(run_simulation(num_orders=args.orders, secret=args.secret))
    sys.exit(1 if summary["inconsistent"] or summary["mismatched"] else 0)
