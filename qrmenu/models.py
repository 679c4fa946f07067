"""
SQLAlchemy Database Models

Orders placed from table-side QR menus. An order keeps a snapshot of the
items, prices and total it was placed with; only its status moves after
creation, and it is never deleted.
"""

import enum
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    DateTime,
    Enum,
    Index,
    JSON,
    Numeric,
    String,
    TypeDecorator,
    UniqueConstraint,
)

from qrmenu.database import Base


class OrderStatus(str, enum.Enum):
    """Order status workflow."""
    PENDING = "pending"
    PROCESS = "process"
    READY = "ready"
    BILLED = "billed"
    COMPLETE = "complete"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({OrderStatus.COMPLETE, OrderStatus.CANCELLED})


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC datetimes on every backend (SQLite drops tzinfo)."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Order(Base):
    """
    Main Order table.

    ``items`` holds the line-item snapshot as a JSON list of
    ``{"name", "price", "quantity", "note"}`` with prices as decimal strings.
    """
    __tablename__ = "orders"
    __table_args__ = (
        UniqueConstraint("restaurant_id", "idempotency_key", name="uq_orders_restaurant_idempotency"),
        Index("ix_orders_restaurant_created", "restaurant_id", "created_at"),
    )

    id = Column(String(32), primary_key=True)

    # =========================================================================
    # OWNERSHIP
    # =========================================================================
    restaurant_id = Column(String(64), nullable=False, index=True)
    table_number = Column(String(32), nullable=True)
    customer_name = Column(String(100), nullable=False)

    # =========================================================================
    # ORDER DETAILS
    # =========================================================================
    items = Column(JSON, nullable=False)
    total_amount = Column(Numeric(10, 2), nullable=False)

    # =========================================================================
    # ORDER STATUS
    # =========================================================================
    status = Column(
        Enum(OrderStatus, values_callable=lambda e: [m.value for m in e]),
        default=OrderStatus.PENDING,
        nullable=False,
        index=True
    )

    idempotency_key = Column(String(100), nullable=True)

    # =========================================================================
    # TIMESTAMPS
    # =========================================================================
    created_at = Column(UTCDateTime(), nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime(), nullable=True)

    def __repr__(self):
        return f"<Order {self.id} - {self.restaurant_id} - table {self.table_number} - {self.status.value}>"
