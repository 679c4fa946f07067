"""
Order Store

Single source of truth for orders and their status. Every public method
opens its own session, so the store can be shared across requests and
background tasks.

Status writes are linearised per order: ``update_status`` holds an
in-process lock keyed by order id and re-reads the row with
``SELECT ... FOR UPDATE`` before validating, so a second writer always
validates against the first writer's committed result.
"""

import asyncio
import logging
import uuid
from collections import defaultdict
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from functools import lru_cache
from datetime import datetime, time, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, AsyncIterator, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from qrmenu.core.config import get_settings
from qrmenu.exceptions import OrderNotFound, PersistenceFailure, ValidationError
from qrmenu.models import Order, OrderStatus, utcnow
from qrmenu.services.lifecycle import apply_transition, parse_status

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
# Largest value Numeric(10, 2) holds
MAX_TOTAL = Decimal("99999999.99")


@dataclass
class LineItem:
    """Snapshot of one cart line at order time."""
    name: str
    price: Decimal
    quantity: int = 1
    note: Optional[str] = None

    @property
    def line_total(self) -> Decimal:
        return self.price * self.quantity

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "price": str(Decimal(self.price).quantize(CENT)),
            "quantity": self.quantity,
            "note": self.note,
        }


@dataclass
class OrderDraft:
    """Everything needed to persist a new order."""
    restaurant_id: Optional[str]
    items: list[LineItem] = field(default_factory=list)
    table_number: Optional[str] = None
    customer_name: Optional[str] = None
    idempotency_key: Optional[str] = None


def compute_total(items: list[LineItem]) -> Decimal:
    """
    Sum of price x quantity, rounded to cents.

    Raises:
        ValidationError: no items, an item without a usable price/quantity,
            or a total too large to store
    """
    if not items:
        raise ValidationError("Order must contain at least one item")

    total = Decimal("0")
    for item in items:
        try:
            price = Decimal(item.price)
        except (InvalidOperation, TypeError, ValueError):
            raise ValidationError(f"Invalid price for {item.name!r}") from None
        if not price.is_finite() or price < 0:
            raise ValidationError(f"Invalid price for {item.name!r}")
        if isinstance(item.quantity, bool) or not isinstance(item.quantity, int) or item.quantity < 1:
            raise ValidationError(f"Invalid quantity for {item.name!r}")
        total += price * item.quantity
    total = total.quantize(CENT)
    if total > MAX_TOTAL:
        raise ValidationError(f"Order total {total} exceeds {MAX_TOTAL}")
    return total


class KeyedLock:
    """asyncio mutex per key; locks are dropped once nobody holds or awaits them."""

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: defaultdict[str, int] = defaultdict(int)

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] += 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


class OrderStore:
    """Async persistence for ``Order`` rows."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        default_customer_name: Optional[str] = None,
    ):
        self._session_maker = session_maker
        self._default_customer_name = (
            default_customer_name or get_settings().default_customer_name
        )
        self._locks = KeyedLock()

    # =========================================================================
    # CREATE
    # =========================================================================

    async def create(self, draft: OrderDraft) -> Order:
        order, _ = await self.create_or_get(draft)
        return order

    async def create_or_get(self, draft: OrderDraft) -> tuple[Order, bool]:
        """
        Persist a new pending order.

        When the draft carries an idempotency key already used for its
        restaurant, the existing order is returned instead.

        Returns:
            (order, created)
        """
        if not draft.restaurant_id:
            raise ValidationError("restaurantId is required")
        total = compute_total(draft.items)

        if draft.idempotency_key:
            existing = await self._find_by_idempotency_key(
                draft.restaurant_id, draft.idempotency_key
            )
            if existing is not None:
                logger.info(
                    f"Idempotent replay for key {draft.idempotency_key!r}, "
                    f"returning order {existing.id}"
                )
                return existing, False

        order = Order(
            id=uuid.uuid4().hex,
            restaurant_id=draft.restaurant_id,
            table_number=draft.table_number,
            customer_name=(draft.customer_name or "").strip() or self._default_customer_name,
            items=[item.to_dict() for item in draft.items],
            total_amount=total,
            status=OrderStatus.PENDING,
            idempotency_key=draft.idempotency_key,
            created_at=utcnow(),
        )

        try:
            async with self._session_maker() as session:
                session.add(order)
                await session.commit()
                await session.refresh(order)
        except IntegrityError:
            # Lost a race against a concurrent submission with the same key
            if draft.idempotency_key:
                existing = await self._find_by_idempotency_key(
                    draft.restaurant_id, draft.idempotency_key
                )
                if existing is not None:
                    return existing, False
            logger.exception("Integrity error while creating order")
            raise PersistenceFailure("Failed to persist order")
        except SQLAlchemyError as e:
            logger.exception("Database error while creating order")
            raise PersistenceFailure("Failed to persist order", detail=str(e)) from e

        logger.info(
            f"Order {order.id} created for restaurant {order.restaurant_id} "
            f"(table {order.table_number}, total {order.total_amount})"
        )
        return order, True

    async def _find_by_idempotency_key(self, restaurant_id: str, key: str) -> Optional[Order]:
        try:
            async with self._session_maker() as session:
                result = await session.execute(
                    select(Order).where(
                        Order.restaurant_id == restaurant_id,
                        Order.idempotency_key == key,
                    )
                )
                return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise PersistenceFailure("Failed to read orders", detail=str(e)) from e

    # =========================================================================
    # READ
    # =========================================================================

    async def get_by_id(self, order_id: str) -> Order:
        try:
            async with self._session_maker() as session:
                order = await session.get(Order, order_id)
        except SQLAlchemyError as e:
            raise PersistenceFailure("Failed to read order", detail=str(e)) from e
        if order is None:
            raise OrderNotFound(order_id)
        return order

    async def list_by_restaurant(
        self,
        restaurant_id: str,
        status: Optional[Any] = None,
        created_from: Optional[datetime] = None,
        created_to: Optional[datetime] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[Order]:
        """Orders of one restaurant, newest first."""
        query = (
            select(Order)
            .where(Order.restaurant_id == restaurant_id)
            .order_by(Order.created_at.desc())
        )
        if status is not None:
            query = query.where(Order.status == parse_status(status))
        if created_from is not None:
            query = query.where(Order.created_at >= created_from)
        if created_to is not None:
            query = query.where(Order.created_at <= created_to)
        if offset:
            query = query.offset(offset)
        if limit is not None:
            query = query.limit(limit)

        try:
            async with self._session_maker() as session:
                result = await session.execute(query)
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise PersistenceFailure("Failed to list orders", detail=str(e)) from e

    async def summary(self, restaurant_id: str) -> dict[str, Any]:
        """
        Dashboard counters: one kanban column per live status group, plus the
        revenue of orders completed (not placed) today.
        """
        today_start = datetime.combine(datetime.now(timezone.utc).date(), time.min, tzinfo=timezone.utc)
        try:
            async with self._session_maker() as session:
                counts_result = await session.execute(
                    select(Order.status, func.count(Order.id))
                    .where(Order.restaurant_id == restaurant_id)
                    .group_by(Order.status)
                )
                counts = {status: count for status, count in counts_result.all()}

                revenue_result = await session.execute(
                    select(func.coalesce(func.sum(Order.total_amount), 0)).where(
                        Order.restaurant_id == restaurant_id,
                        Order.status == OrderStatus.COMPLETE,
                        Order.updated_at >= today_start,
                    )
                )
                revenue = revenue_result.scalar() or 0
        except SQLAlchemyError as e:
            raise PersistenceFailure("Failed to summarise orders", detail=str(e)) from e

        pending = counts.get(OrderStatus.PENDING, 0)
        process = counts.get(OrderStatus.PROCESS, 0)
        ready = counts.get(OrderStatus.READY, 0) + counts.get(OrderStatus.BILLED, 0)
        return {
            "restaurant_id": restaurant_id,
            "pending": pending,
            "process": process,
            "ready": ready,
            "complete": counts.get(OrderStatus.COMPLETE, 0),
            "cancelled": counts.get(OrderStatus.CANCELLED, 0),
            "live_orders": pending + process + ready,
            "today_revenue": Decimal(str(revenue)).quantize(CENT),
        }

    # =========================================================================
    # STATUS
    # =========================================================================

    async def update_status(self, order_id: str, requested: Any) -> Order:
        """
        Validate and persist a status change as one operation.

        Raises:
            InvalidStatus: requested status is unknown (nothing read or written)
            OrderNotFound: no such order
            TerminalStateViolation: order is complete or cancelled
            PersistenceFailure: database error
        """
        target = parse_status(requested)

        async with self._locks.hold(order_id):
            try:
                async with self._session_maker() as session:
                    async with session.begin():
                        result = await session.execute(
                            select(Order).where(Order.id == order_id).with_for_update()
                        )
                        order = result.scalar_one_or_none()
                        if order is None:
                            raise OrderNotFound(order_id)
                        previous = order.status
                        apply_transition(order, target)
                        order.updated_at = utcnow()
            except SQLAlchemyError as e:
                logger.exception(f"Database error while updating order {order_id}")
                raise PersistenceFailure("Failed to update order", detail=str(e)) from e

        logger.info(f"Order {order_id}: {previous.value} -> {order.status.value}")
        return order

    async def ping(self) -> None:
        async with self._session_maker() as session:
            await session.execute(select(1))


@lru_cache()
def get_order_store() -> OrderStore:
    """Store bound to the application's session factory."""
    from qrmenu.database import async_session_maker

    return OrderStore(async_session_maker)


def reset_order_store() -> None:
    get_order_store.cache_clear()
