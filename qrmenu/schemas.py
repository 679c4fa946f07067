"""
Pydantic Schemas for Request/Response Validation

The wire format is camelCase to match the menu and dashboard clients
(``tableNumber``, ``customerName``, ``restaurantId`` ...); Python code uses
the snake_case field names.
"""

from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any, List, Literal, Optional, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    PlainSerializer,
    TypeAdapter,
    field_validator,
)
from pydantic.alias_generators import to_camel


# Money travels as a JSON number; Python code keeps Decimal
Money = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# =============================================================================
# REQUEST SCHEMAS
# =============================================================================

class OrderItemCreate(CamelModel):
    """Single cart line. Older menu clients send ``menuItemName``."""
    name: str = Field(
        ...,
        min_length=1,
        max_length=100,
        validation_alias=AliasChoices("name", "menuItemName"),
        examples=["Pizza"],
    )
    price: Decimal = Field(..., ge=0, max_digits=10, decimal_places=2, examples=[299])
    quantity: int = Field(default=1, ge=1, le=999, examples=[2])
    note: Optional[str] = Field(None, max_length=200, examples=["No onions"])

    @field_validator("note")
    @classmethod
    def blank_note_is_none(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            return None
        return v.strip()


class OrderCreate(CamelModel):
    """
    Request schema for placing an order from a table.

    ``totalAmount`` is accepted for compatibility but recomputed server-side.
    Any ``status`` sent by the client is ignored.
    """
    items: List[OrderItemCreate] = Field(default_factory=list)
    table_number: Optional[Union[int, str]] = Field(None, examples=[5])
    customer_name: Optional[str] = Field(None, max_length=100, examples=["Asha"])
    total_amount: Optional[Decimal] = Field(None, examples=[598])
    restaurant_id: Optional[str] = Field(None, max_length=64, examples=["R1"])
    idempotency_key: Optional[str] = Field(None, max_length=100)

    @field_validator("table_number")
    @classmethod
    def normalise_table(cls, v: Optional[Union[int, str]]) -> Optional[str]:
        if v is None:
            return None
        v = str(v).strip()
        return v or None

    @field_validator("restaurant_id", "customer_name", "idempotency_key")
    @classmethod
    def strip_text(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return v.strip() or None


class OrderStatusUpdate(BaseModel):
    """Owner status change. Validated against the lifecycle, not here."""
    status: Any = None


# =============================================================================
# RESPONSE SCHEMAS
# =============================================================================

class OrderItemResponse(CamelModel):
    name: str
    price: Money
    quantity: int
    note: Optional[str] = None


class OrderResponse(CamelModel):
    """Full order representation, used by the API and by real-time events."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )

    id: str
    items: List[OrderItemResponse]
    table_number: Optional[str]
    customer_name: str
    total_amount: Money
    restaurant_id: str
    status: str
    created_at: datetime
    updated_at: Optional[datetime] = None

    @field_validator("status", mode="before")
    @classmethod
    def status_value(cls, v: Any) -> str:
        return getattr(v, "value", v)


def order_payload(order: Any) -> dict[str, Any]:
    """JSON-ready dict of an order, as pushed over the real-time channel."""
    return OrderResponse.model_validate(order).model_dump(mode="json", by_alias=True)


class OrderSummaryResponse(CamelModel):
    """Dashboard counters for one restaurant."""
    restaurant_id: str
    pending: int
    process: int
    ready: int
    complete: int
    cancelled: int
    live_orders: int
    today_revenue: Money


class ErrorResponse(BaseModel):
    """Standard error response."""
    success: bool = False
    error: str
    detail: Optional[str] = None


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    database: str
    broadcast: str
    connections: int
    timestamp: datetime


# =============================================================================
# REAL-TIME CONTROL MESSAGES
# =============================================================================

class JoinMessage(CamelModel):
    type: Literal["join"]
    restaurant_id: str = Field(..., min_length=1, max_length=64)
    token: Optional[str] = None


class FollowMessage(CamelModel):
    type: Literal["follow"]
    order_id: str = Field(..., min_length=1, max_length=32)


class LeaveMessage(CamelModel):
    type: Literal["leave"]


class PingMessage(CamelModel):
    type: Literal["ping"]


ControlMessage = Annotated[
    Union[JoinMessage, FollowMessage, LeaveMessage, PingMessage],
    Field(discriminator="type"),
]

control_message_adapter = TypeAdapter(ControlMessage)


class OutboundEvent(BaseModel):
    """Message pushed to a client: ``{"event": ..., "data": ...}``."""
    event: str
    data: dict[str, Any] = Field(default_factory=dict)
