from fastapi import FastAPI, Depends, HTTPException, status, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from datetime import datetime
from typing import Optional, List

from nutrastore.shared.utils import (
    get_db_client, settings, SuccessResponse, HealthResponse,
    InvalidInputException, NotFoundException, parse_object_id,
    get_customer_id, setup_exception_handlers
)
from nutrastore.shared.logging_config import setup_logging, RequestLoggingMiddleware
from nutrastore.shared.security_config import setup_rate_limiting, SecurityHeadersMiddleware, limiter, customer_key
from nutrastore.shared.shipping import ShiprocketClient

from nutrastore.orders_service.schemas import (
    CartItemAdd, CartItemRef, CartMerge, CartLineResponse,
    WishlistMerge, WishlistItemResponse, OrderCreate, OrderResponse
)
from nutrastore.orders_service import carts, wishlists, workflow

# Setup Logging
logger = setup_logging("orders-service")

app = FastAPI(title="Orders Service")

# Security Setup
setup_rate_limiting(app)
setup_exception_handlers(app)
app.add_middleware(SecurityHeadersMiddleware)

# Middleware
app.add_middleware(RequestLoggingMiddleware, service_name="orders-service")

# CORS Configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.on_event("startup")
async def startup_db_client():
    app.mongodb_client = get_db_client()
    app.mongodb = app.mongodb_client[settings.DATABASE_NAME]
    app.state.shipping = ShiprocketClient()
    # Indexes
    await app.mongodb.carts.create_index("customer_id", unique=True)
    await app.mongodb.wishlists.create_index("customer_id", unique=True)
    await app.mongodb.orders.create_index("customer_id")
    await app.mongodb.orders.create_index("reference", unique=True)

@app.on_event("shutdown")
async def shutdown_db_client():
    await app.state.shipping.aclose()
    app.mongodb_client.close()

# --- Dependencies ---
def get_shipping() -> ShiprocketClient:
    return app.state.shipping

# --- Helper ---
def valid_product_id(product_id: str) -> str:
    if parse_object_id(product_id) is None:
        raise InvalidInputException("Invalid product id.")
    return product_id

async def ensure_product_exists(product_id: str):
    if not await app.mongodb.products.find_one({"_id": parse_object_id(product_id)}, {"_id": 1}):
        raise NotFoundException("Product not found.")

# --- Endpoints ---

# Cart
@app.get("/cart", response_model=SuccessResponse[List[CartLineResponse]])
@limiter.limit("120/minute")
async def get_cart(request: Request, customer_id: str = Depends(get_customer_id)):
    return SuccessResponse(result=await carts.load_cart(app.mongodb, customer_id))

@app.post("/cart", response_model=SuccessResponse[List[CartLineResponse]], status_code=status.HTTP_201_CREATED)
async def add_to_cart(item: CartItemAdd, customer_id: str = Depends(get_customer_id)):
    product_id = valid_product_id(item.productId)
    await ensure_product_exists(product_id)
    await carts.add_line(app.mongodb.carts, customer_id, product_id, item.quantity)
    return SuccessResponse(statusCode=201, result=await carts.load_cart(app.mongodb, customer_id))

@app.post("/cart/items", response_model=SuccessResponse[str])
async def merge_guest_cart(merge: CartMerge, customer_id: str = Depends(get_customer_id)):
    lines = [(valid_product_id(item.productId), item.quantity) for item in merge.products]
    merged = await carts.merge_lines(app.mongodb.carts, customer_id, lines)
    logger.info("Guest cart merged", extra={"customer_id": customer_id, "count": merged})
    return SuccessResponse(result="Cart merged successfully.")

@app.put("/cart/items", response_model=SuccessResponse[List[CartLineResponse]])
async def decrement_cart_item(item: CartItemRef, customer_id: str = Depends(get_customer_id)):
    await carts.decrement_line(app.mongodb.carts, customer_id, valid_product_id(item.productId))
    return SuccessResponse(result=await carts.load_cart(app.mongodb, customer_id))

@app.delete("/cart/items", response_model=SuccessResponse[str])
async def delete_cart_item(productId: str = Query(..., min_length=1), customer_id: str = Depends(get_customer_id)):
    await carts.delete_line(app.mongodb.carts, customer_id, valid_product_id(productId))
    return SuccessResponse(result="Product removed from cart.")

@app.delete("/cart", response_model=SuccessResponse[str])
async def clear_cart(customer_id: str = Depends(get_customer_id)):
    await carts.reset(app.mongodb.carts, customer_id)
    return SuccessResponse(result="Cart cleared.")

# Wishlist
@app.get("/wishlist", response_model=SuccessResponse[List[WishlistItemResponse]])
@limiter.limit("120/minute")
async def get_wishlist(request: Request, customer_id: str = Depends(get_customer_id)):
    return SuccessResponse(result=await wishlists.load_wishlist(app.mongodb, customer_id))

@app.post("/wishlist", response_model=SuccessResponse[List[WishlistItemResponse]], status_code=status.HTTP_201_CREATED)
async def add_to_wishlist(item: CartItemRef, customer_id: str = Depends(get_customer_id)):
    product_id = valid_product_id(item.productId)
    await ensure_product_exists(product_id)
    await wishlists.add_product(app.mongodb.wishlists, customer_id, product_id)
    return SuccessResponse(statusCode=201, result=await wishlists.load_wishlist(app.mongodb, customer_id))

@app.put("/wishlist", response_model=SuccessResponse[List[WishlistItemResponse]])
async def remove_from_wishlist(item: CartItemRef, customer_id: str = Depends(get_customer_id)):
    await wishlists.remove_product(app.mongodb.wishlists, customer_id, valid_product_id(item.productId))
    return SuccessResponse(result=await wishlists.load_wishlist(app.mongodb, customer_id))

@app.post("/wishlist/mergeGuestWishlist", response_model=SuccessResponse[str])
async def merge_guest_wishlist(merge: WishlistMerge, customer_id: str = Depends(get_customer_id)):
    product_ids = [valid_product_id(item.productId) for item in merge.products]
    added = await wishlists.merge_products(app.mongodb.wishlists, customer_id, product_ids)
    if not added:
        return SuccessResponse(result="Nothing to merge.")
    logger.info("Guest wishlist merged", extra={"customer_id": customer_id, "count": added})
    return SuccessResponse(result="Wishlist merged successfully.")

# Orders
@app.post("/orders", response_model=SuccessResponse[str], status_code=status.HTTP_201_CREATED)
@limiter.limit("10/minute", key_func=customer_key)
async def create_order(
    order: OrderCreate,
    request: Request,
    customer_id: str = Depends(get_customer_id),
    shipping: ShiprocketClient = Depends(get_shipping),
):
    await workflow.place_order(app.mongodb, shipping, customer_id, order.cart, order.paymentMethod)
    return SuccessResponse(statusCode=201, result="Ordered successfully.")

@app.get("/orders", response_model=SuccessResponse[List[OrderResponse]])
async def list_orders(
    customer_id: str = Depends(get_customer_id),
    shipping: ShiprocketClient = Depends(get_shipping),
):
    return SuccessResponse(result=await workflow.list_orders(app.mongodb, shipping, customer_id))

@app.get("/orders/{order_id}", response_model=SuccessResponse[OrderResponse])
async def get_order(order_id: str, customer_id: str = Depends(get_customer_id)):
    return SuccessResponse(result=await workflow.get_order(app.mongodb, customer_id, order_id))

@app.put("/orders", response_model=SuccessResponse[str])
async def cancel_order(
    id: Optional[str] = None,
    customer_id: str = Depends(get_customer_id),
    shipping: ShiprocketClient = Depends(get_shipping),
):
    status_code, message = await workflow.cancel_order(app.mongodb, shipping, customer_id, id)
    return SuccessResponse(statusCode=status_code, result=message)

@app.get("/health", response_model=HealthResponse)
async def health_check():
    try:
        await app.mongodb_client.admin.command('ping')
        db_status = "connected"
    except Exception:
        db_status = "disconnected"

    if db_status != "connected":
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service Unhealthy"
        )

    return HealthResponse(
        service="orders-service",
        status="healthy",
        timestamp=datetime.utcnow(),
        version="1.0.0",
        database=db_status,
    )
