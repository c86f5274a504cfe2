"""Checkout and cancellation.

Placing an order prices the cart against the current catalog, creates the
shipment with the carrier and only then stores the order. The carrier is given
a fresh merchant reference per attempt; if storing the order fails after the
shipment exists, the shipment is cancelled again so no orphan is left behind.
"""
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional
import asyncio
import logging
import uuid

from nutrastore.shared.utils import (
    settings, parse_object_id, InvalidInputException, NotFoundException,
    InvalidStateException, NoDefaultAddressException, ShippingProviderError,
    UnexpectedException,
)
from nutrastore.shared.shipping import ShiprocketClient
from nutrastore.orders_service.models import (
    AddressDB, OrderDB, OrderLineDB, OrderStatus,
)
from nutrastore.orders_service.schemas import OrderLineIn, OrderLineResponse, OrderResponse

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")
MIN_DIMENSION_CM = 0.5
MIN_WEIGHT_KG = 0.1
CARRIER_STATUS_UNAVAILABLE = "Unavailable"


def line_total(price, quantity: int, discount) -> Decimal:
    """price x quantity x (1 - discount/100), rounded to cents."""
    price = Decimal(str(price))
    discount = Decimal(str(discount or 0))
    total = price * quantity * (1 - discount / 100)
    return total.quantize(CENTS, rounding=ROUND_HALF_UP)


def new_reference() -> str:
    return f"NS-{uuid.uuid4().hex[:16].upper()}"


async def resolve_lines(products, cart: List[OrderLineIn]):
    """Price every cart line, stopping at the first product that does not exist."""
    if not cart:
        raise InvalidInputException("Cart is empty.")

    priced = []
    for item in cart:
        if not item.id or not item.quantity:
            raise InvalidInputException("Every cart item needs a product id and a quantity.")

        oid = parse_object_id(item.id)
        product = await products.find_one({"_id": oid}) if oid else None
        if not product:
            raise NotFoundException(f"Product '{item.name or item.id}' not found.")

        priced.append((product, OrderLineDB(
            product_id=item.id,
            name=product["name"],
            sku=product.get("sku"),
            quantity=item.quantity,
            unit_price=Decimal(str(product["price"])),
            discount=Decimal(str(product.get("discount", 0))),
            total_amount=line_total(product["price"], item.quantity, product.get("discount", 0)),
        )))
    return priced


async def default_address(users, customer_id: str) -> AddressDB:
    oid = parse_object_id(customer_id)
    user = await users.find_one({"_id": oid if oid else customer_id}, {"addresses": 1, "email": 1})
    addresses = (user or {}).get("addresses") or []
    for address in addresses:
        if address.get("is_default"):
            data = dict(address)
            if not data.get("email"):
                data["email"] = user.get("email")
            return AddressDB(**data)
    raise NoDefaultAddressException()


def package_dimensions(priced) -> dict:
    """One parcel: largest footprint, stacked height, summed weight."""
    length = breadth = height = weight = 0.0
    for product, line in priced:
        length = max(length, float(product.get("length") or 0))
        breadth = max(breadth, float(product.get("breadth") or 0))
        height += float(product.get("height") or 0) * line.quantity
        weight += float(product.get("weight") or 0) * line.quantity
    return {
        "length": max(length, MIN_DIMENSION_CM),
        "breadth": max(breadth, MIN_DIMENSION_CM),
        "height": max(height, MIN_DIMENSION_CM),
        "weight": round(max(weight, MIN_WEIGHT_KG), 3),
    }


def build_shipment_payload(
    reference: str,
    address: AddressDB,
    priced,
    sub_total: Decimal,
    payment_method: str,
    ordered_at: datetime,
    pickup_location: str = settings.SHIPROCKET_PICKUP_LOCATION,
) -> dict:
    first_name, _, last_name = address.full_name.partition(" ")
    street = address.street_address_house_no
    if address.landmark:
        street = f"{street}, {address.landmark}"

    return {
        "order_id": reference,
        "order_date": ordered_at.strftime("%Y-%m-%d %H:%M"),
        "pickup_location": pickup_location,
        "billing_customer_name": first_name,
        "billing_last_name": last_name,
        "billing_address": street,
        "billing_address_2": address.street_address_2 or "",
        "billing_city": address.city_town,
        "billing_pincode": address.pin_code,
        "billing_state": address.state,
        "billing_country": address.country,
        "billing_email": address.email or "",
        "billing_phone": address.phone,
        "shipping_is_billing": True,
        "order_items": [
            {
                "name": line.name,
                "sku": line.sku or line.product_id,
                "units": line.quantity,
                "selling_price": float(line.unit_price),
                "discount": float(line.unit_price * line.discount / 100),
            }
            for _, line in priced
        ],
        "payment_method": payment_method,
        "sub_total": float(sub_total),
        **package_dimensions(priced),
    }


async def place_order(db, shipping: ShiprocketClient, customer_id: str, cart: List[OrderLineIn], payment_method: str = "Prepaid") -> dict:
    priced = await resolve_lines(db.products, cart)
    sub_total = sum((line.total_amount for _, line in priced), Decimal(0))
    address = await default_address(db.users, customer_id)

    reference = new_reference()
    ordered_at = datetime.utcnow()
    payload = build_shipment_payload(reference, address, priced, sub_total, payment_method, ordered_at)

    try:
        shipment = await shipping.create_order(payload)
    except ShippingProviderError as e:
        logger.error("Shipment creation failed", extra={
            "customer_id": customer_id,
            "order_id": reference,
            "provider_status": e.provider_status,
        })
        raise

    try:
        order = OrderDB(
            customer_id=customer_id,
            reference=reference,
            shipment_order_id=shipment["order_id"],
            shipment_id=shipment.get("shipment_id"),
            shipping_address=address,
            products=[line for _, line in priced],
            sub_total=sub_total,
            payment_method=payment_method,
            created_at=ordered_at,
        )
        result = await db.orders.insert_one(order.to_document())
    except Exception:
        logger.error("Order could not be stored, cancelling shipment", exc_info=True, extra={
            "customer_id": customer_id,
            "order_id": reference,
            "shipment_id": shipment.get("shipment_id"),
        })
        await compensate(shipping, shipment["order_id"], reference)
        raise UnexpectedException("Order could not be placed. Please try again.")

    logger.info("Order placed", extra={
        "customer_id": customer_id,
        "order_id": str(result.inserted_id),
        "shipment_id": shipment.get("shipment_id"),
    })
    return await db.orders.find_one({"_id": result.inserted_id})


async def compensate(shipping: ShiprocketClient, shipment_order_id, reference: str):
    try:
        await shipping.cancel_orders([shipment_order_id])
    except ShippingProviderError:
        # left for manual reconciliation, the reference identifies it on the carrier side
        logger.error("Orphaned shipment could not be cancelled", extra={
            "order_id": reference,
            "shipment_id": shipment_order_id,
        })


async def cancel_order(db, shipping: ShiprocketClient, customer_id: str, order_id: Optional[str]):
    """Cancel an order with the carrier. Returns the carrier's (status_code, message)."""
    oid = parse_object_id(order_id)
    order = await db.orders.find_one({"_id": oid, "customer_id": customer_id}) if oid else None
    if not order:
        raise NotFoundException("No such order found.")

    if not order.get("shipment_order_id"):
        raise InvalidStateException("Order has no shipment to cancel.")
    if order.get("order_status") == OrderStatus.CANCELED.value:
        raise InvalidStateException("Order is already canceled.")

    response = await shipping.cancel_orders([order["shipment_order_id"]])

    await db.orders.update_one(
        {"_id": oid},
        {"$set": {"order_status": OrderStatus.CANCELED.value, "updated_at": datetime.utcnow()}},
    )
    logger.info("Order canceled", extra={"customer_id": customer_id, "order_id": order_id})

    return response.get("status_code", 200), response.get("message", "Order canceled.")


async def carrier_status(shipping: ShiprocketClient, order: dict) -> dict:
    try:
        data = (await shipping.show_order(order["shipment_order_id"])).get("data") or {}
    except ShippingProviderError:
        logger.warning("Carrier status unavailable", extra={"order_id": str(order["_id"])})
        return {"shipmentStatus": CARRIER_STATUS_UNAVAILABLE}

    shipments = data.get("shipments") or {}
    if isinstance(shipments, list):
        shipments = shipments[0] if shipments else {}
    return {
        "shipmentStatus": shipments.get("status") or "Unknown",
        "paymentStatus": data.get("payment_status"),
        "paymentMethod": data.get("payment_method"),
    }


def to_order_response(order: dict, catalog: dict, status: dict) -> OrderResponse:
    lines = []
    for line in order["products"]:
        product = catalog.get(line["product_id"], {})
        lines.append(OrderLineResponse(
            id=line["product_id"],
            name=line["name"],
            imgUrl=product.get("image_url"),
            about=product.get("about"),
            price=Decimal(str(line["unit_price"])),
            discount=Decimal(str(line["discount"])),
            quantity=line["quantity"],
            totalAmount=Decimal(str(line["total_amount"])),
        ))

    return OrderResponse(
        id=str(order["_id"]),
        customerId=order["customer_id"],
        orderId=order.get("shipment_order_id"),
        orderStatus=order["order_status"],
        shipmentStatus=status.get("shipmentStatus"),
        paymentStatus=status.get("paymentStatus") or order.get("payment_status"),
        paymentMethod=status.get("paymentMethod") or order.get("payment_method"),
        subTotal=Decimal(str(order["sub_total"])),
        orderDate=order["created_at"],
        products=lines,
    )


async def _catalog_for(products, orders: List[dict]) -> dict:
    ids = {line["product_id"] for order in orders for line in order["products"]}
    oids = [oid for oid in (parse_object_id(pid) for pid in ids) if oid]
    return {str(doc["_id"]): doc async for doc in products.find({"_id": {"$in": oids}})}


async def list_orders(db, shipping: ShiprocketClient, customer_id: str) -> List[OrderResponse]:
    orders = await db.orders.find({"customer_id": customer_id}).sort("created_at", -1).to_list(length=None)
    if not orders:
        return []

    catalog = await _catalog_for(db.products, orders)
    statuses = await asyncio.gather(*(
        carrier_status(shipping, order) if order.get("shipment_order_id") else _no_status()
        for order in orders
    ))
    return [to_order_response(order, catalog, status) for order, status in zip(orders, statuses)]


async def _no_status() -> dict:
    return {}


async def get_order(db, customer_id: str, order_id: str) -> OrderResponse:
    oid = parse_object_id(order_id)
    order = await db.orders.find_one({"_id": oid, "customer_id": customer_id}) if oid else None
    if not order:
        raise NotFoundException("Order not found.")
    catalog = await _catalog_for(db.products, [order])
    return to_order_response(order, catalog, {})
