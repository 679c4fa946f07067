"""
Ledger Verification Script

Verifies data integrity of the order history ledger.
Run from project root: python scripts/verify.py

Version: 1.0.0
"""

import os
import sys
from datetime import datetime

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from qrmenu.services.excel_manager import LedgerManager  # noqa: E402

TERMINAL = {"complete", "cancelled"}


def verify_ledger() -> bool:
    """Verify the ledger after a simulation run."""
    ledger = LedgerManager()

    print("=" * 60)
    print("🔍 LEDGER VERIFICATION REPORT")
    print("=" * 60)
    print(f"⏰ Timestamp: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print(f"📄 File: {ledger.ledger_file}")
    print("=" * 60)

    if not ledger.ledger_file.exists():
        print("\n❌ Ledger file not found!")
        print("   Run the API with LEDGER_EXPORT_ENABLED=true and a Celery worker,")
        print("   then: python scripts/simulate.py")
        return False

    try:
        rows = ledger.get_all_orders()
    except (OSError, ValueError) as e:
        print(f"\n❌ Could not read ledger: {e}")
        return False
    print("\n✅ File loaded successfully!")

    ok = True
    print("\n📊 STATISTICS:")
    print(f"   Total Orders: {len(rows)}")

    missing = [c for c in LedgerManager.COLUMNS if rows and c not in rows[0]]
    if missing:
        print(f"\n⚠️ Missing Columns: {missing}")
        ok = False
    else:
        print("\n✅ All columns present")

    ids = [r["order_id"] for r in rows]
    duplicates = len(ids) - len(set(ids))
    if duplicates:
        print(f"⚠️ {duplicates} duplicate order IDs found!")
        ok = False
    else:
        print("✅ No duplicate order IDs")

    live = [r["order_id"] for r in rows if r["order_status"] not in TERMINAL]
    if live:
        print(f"⚠️ {len(live)} rows for orders that are not finished: {live[:5]}")
        ok = False
    else:
        print("✅ Every row is a complete or cancelled order")

    by_restaurant: dict[str, float] = {}
    for r in rows:
        if r["order_status"] == "complete":
            by_restaurant[r["restaurant_id"]] = by_restaurant.get(r["restaurant_id"], 0) + r["total_amount"]
    if by_restaurant:
        print("\n💰 COMPLETED REVENUE:")
        for restaurant_id, total in sorted(by_restaurant.items()):
            print(f"   {restaurant_id}: ₹{total:.2f}")

    print("\n📋 RECENT ORDERS:")
    print("-" * 60)
    for r in rows[-5:]:
        print(f"   {r['order_id']}  {r['restaurant_id']:<6} {r['order_status']:<10} ₹{r['total_amount']:.2f}")

    print("\n" + "=" * 60)
    print("✅ VERIFICATION COMPLETE" if ok else "⚠️ VERIFICATION FOUND PROBLEMS")
    print("=" * 60)

    return ok


if __name__ == "__main__":
    sys.exit(0 if verify_ledger() else 1)
