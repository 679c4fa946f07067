"""
FastAPI Application Entry Point

QR Menu Orders: customers order from their table, owners follow orders on a
live dashboard.

Endpoints:
    - POST /api/orders: Place an order from a table
    - GET /api/orders: List a restaurant's orders (owner)
    - GET /api/orders/summary: Dashboard counters (owner)
    - GET /api/orders/{id}: Order detail (customer confirmation page)
    - PUT /api/orders/{id}: Change order status (owner)
    - WS /ws: Real-time order events
    - GET /health: System health check

Run with: uvicorn qrmenu.main:app --port 5000  (or: python -m qrmenu.main)
"""

import asyncio
import logging
from contextlib import asynccontextmanager, suppress
from datetime import datetime, timezone
from typing import Optional

from fastapi import Depends, FastAPI, Header, Query, Request, Response, WebSocket
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from qrmenu.core.config import get_settings, setup_logging
from qrmenu.core.security import bearer_token, verify_owner_token
from qrmenu.database import engine, init_db
from qrmenu.exceptions import MissingRestaurant, NotAuthorized, OrderServiceError
from qrmenu.schemas import (
    ErrorResponse,
    HealthResponse,
    OrderCreate,
    OrderResponse,
    OrderStatusUpdate,
    OrderSummaryResponse,
)
from qrmenu.services.gateways import (
    OrderIntakeGateway,
    StatusUpdateGateway,
    get_intake_gateway,
    get_status_gateway,
)
from qrmenu.services.realtime import (
    ClientConnection,
    get_broadcaster,
    get_group_registry,
    get_session_router,
)
from qrmenu.services.store import OrderStore, get_order_store

# Initialize configuration and logging
settings = get_settings()
setup_logging()
logger = logging.getLogger(__name__)


# =============================================================================
# APPLICATION LIFECYCLE
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application startup and shutdown events.
    """
    logger.info("=" * 60)
    logger.info(f"🚀 Starting {settings.app_name}")
    logger.info(f"   Version: {settings.app_version}")
    logger.info(f"   Environment: {settings.env_mode.value}")
    logger.info(f"   Debug: {settings.debug}")
    logger.info("=" * 60)

    await init_db()
    logger.info("✅ Database initialized")

    broadcaster = get_broadcaster()
    await broadcaster.start()
    logger.info(f"✅ Broadcast backend: {broadcaster.backend.provider_name}")

    if not settings.auth_enabled:
        logger.warning(
            "⚠️ OWNER_TOKEN_SECRET not set: any client can join any restaurant's "
            "order stream and change order status"
        )
    if settings.use_real_services:
        missing = settings.validate_production_config()
        if missing:
            logger.warning(f"⚠️ Missing production config: {missing}")

    logger.info("✅ Application ready!")

    yield  # Application runs

    logger.info("Shutting down...")
    await broadcaster.stop()
    await engine.dispose()
    logger.info("✅ Cleanup complete")


# =============================================================================
# APPLICATION INSTANCE
# =============================================================================

app = FastAPI(
    title=settings.app_name,
    description=(
        "Table-side QR menu ordering with a live owner dashboard. "
        "Orders move pending → process → ready/billed → complete, or cancelled."
    ),
    version=settings.app_version,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Menu pages are opened from QR codes on any device
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def require_owner(restaurant_id: str, authorization: Optional[str]) -> None:
    """Reject owner-only requests without the restaurant's token."""
    if not verify_owner_token(restaurant_id, bearer_token(authorization)):
        raise NotAuthorized()


# =============================================================================
# ROOT & HEALTH ENDPOINTS
# =============================================================================

@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    """API root with navigation links."""
    return {
        "message": f"🍽️ {settings.app_name}",
        "version": settings.app_version,
        "environment": settings.env_mode.value,
        "documentation": "/docs",
        "health": "/health",
    }


@app.get(
    "/health",
    response_model=HealthResponse,
    tags=["Health"],
    summary="System Health Check",
)
async def health_check(store: OrderStore = Depends(get_order_store)) -> HealthResponse:
    """Verify the database and broadcast backend are reachable."""
    db_status = "healthy"
    try:
        await store.ping()
    except Exception as e:
        db_status = f"unhealthy: {str(e)}"
        logger.error(f"Database health check failed: {e}")

    broadcast_status = "healthy" if await get_broadcaster().health_check() else "unhealthy"

    overall = "operational" if db_status == broadcast_status == "healthy" else "degraded"

    return HealthResponse(
        status=overall,
        database=db_status,
        broadcast=broadcast_status,
        connections=get_group_registry().connection_count,
        timestamp=datetime.now(timezone.utc),
    )


# =============================================================================
# ORDER API ENDPOINTS
# =============================================================================

@app.post(
    "/api/orders",
    response_model=OrderResponse,
    status_code=201,
    responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
    tags=["Orders"],
    summary="Place Order",
)
async def create_order(
    order_data: OrderCreate,
    response: Response,
    gateway: OrderIntakeGateway = Depends(get_intake_gateway),
) -> OrderResponse:
    """
    Place an order from a table's menu page.

    The order always starts ``pending`` and is pushed to the restaurant's
    dashboards as ``new_order``. Resending the same ``idempotencyKey``
    returns the original order with 200.
    """
    logger.info(
        f"Order submitted for restaurant {order_data.restaurant_id} "
        f"table {order_data.table_number}"
    )
    result = await gateway.submit_order(order_data)
    if not result.created:
        response.status_code = 200
    return OrderResponse.model_validate(result.order)


@app.get(
    "/api/orders",
    response_model=list[OrderResponse],
    responses={400: {"model": ErrorResponse}, 401: {"model": ErrorResponse}},
    tags=["Orders"],
    summary="List Orders",
)
async def list_orders(
    restaurant_id: Optional[str] = Query(None, alias="restaurantId"),
    status: Optional[str] = Query(None),
    created_from: Optional[datetime] = Query(None, alias="createdFrom"),
    created_to: Optional[datetime] = Query(None, alias="createdTo"),
    skip: int = Query(0, ge=0),
    limit: Optional[int] = Query(None, ge=1, le=500),
    authorization: Optional[str] = Header(None),
    store: OrderStore = Depends(get_order_store),
) -> list[OrderResponse]:
    """A restaurant's orders, newest first. Dashboards reload this on connect."""
    if not restaurant_id or not restaurant_id.strip():
        raise MissingRestaurant()
    require_owner(restaurant_id, authorization)

    orders = await store.list_by_restaurant(
        restaurant_id,
        status=status,
        created_from=created_from,
        created_to=created_to,
        limit=limit,
        offset=skip,
    )
    return [OrderResponse.model_validate(order) for order in orders]


@app.get(
    "/api/orders/summary",
    response_model=OrderSummaryResponse,
    tags=["Dashboard"],
    summary="Dashboard Counters",
)
async def order_summary(
    restaurant_id: Optional[str] = Query(None, alias="restaurantId"),
    authorization: Optional[str] = Header(None),
    store: OrderStore = Depends(get_order_store),
) -> OrderSummaryResponse:
    """Live order counts per kanban column and today's completed revenue."""
    if not restaurant_id or not restaurant_id.strip():
        raise MissingRestaurant()
    require_owner(restaurant_id, authorization)
    return OrderSummaryResponse(**await store.summary(restaurant_id))


@app.get(
    "/api/orders/{order_id}",
    response_model=OrderResponse,
    responses={404: {"model": ErrorResponse}},
    tags=["Orders"],
)
async def get_order(
    order_id: str,
    store: OrderStore = Depends(get_order_store),
) -> OrderResponse:
    """Get a specific order by ID."""
    return OrderResponse.model_validate(await store.get_by_id(order_id))


@app.put(
    "/api/orders/{order_id}",
    response_model=OrderResponse,
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
    },
    tags=["Orders"],
    summary="Update Order Status",
)
async def update_order_status(
    order_id: str,
    update: OrderStatusUpdate,
    authorization: Optional[str] = Header(None),
    gateway: StatusUpdateGateway = Depends(get_status_gateway),
) -> OrderResponse:
    """Move an order to another status and push ``order_updated``."""
    order = await gateway.change_status(order_id, update.status, token=bearer_token(authorization))
    return OrderResponse.model_validate(order)


# =============================================================================
# REAL-TIME CHANNEL
# =============================================================================

@app.websocket("/ws")
async def realtime_socket(websocket: WebSocket) -> None:
    """
    Persistent order-event channel.

    Clients send ``join`` / ``follow`` / ``leave`` / ``ping`` control
    messages and receive ``{"event": ..., "data": ...}`` pushes.
    """
    await websocket.accept()
    router = get_session_router()
    conn = ClientConnection()
    writer = asyncio.create_task(conn.pump(websocket.send_json))
    logger.debug(f"Connection {conn.id} opened")

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            raw = message.get("text")
            if raw is None:
                raw = (message.get("bytes") or b"").decode("utf-8", errors="replace")
            await router.handle(conn, raw)
    finally:
        router.disconnect(conn)
        writer.cancel()
        with suppress(asyncio.CancelledError):
            await writer


# =============================================================================
# ERROR HANDLERS
# =============================================================================

@app.exception_handler(OrderServiceError)
async def order_error_handler(request: Request, exc: OrderServiceError) -> JSONResponse:
    """Map order core errors to their HTTP status."""
    if exc.status_code >= 500:
        logger.error(f"{exc.message}: {exc.detail}")
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=exc.message,
            detail=exc.detail if exc.status_code < 500 or settings.debug else None,
        ).model_dump(),
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed bodies are client errors: 400, not FastAPI's default 422."""
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "Invalid request")
    return JSONResponse(
        status_code=400,
        content=ErrorResponse(
            error=f"{location}: {message}" if location else message,
            detail=f"{len(errors)} validation errors" if len(errors) > 1 else None,
        ).model_dump(),
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all exception handler."""
    logger.exception(f"Unhandled exception: {exc}")

    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": "Internal Server Error",
            "detail": str(exc) if settings.debug else "An unexpected error occurred",
        },
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("qrmenu.main:app", host=settings.api_host, port=settings.api_port, reload=settings.debug)
