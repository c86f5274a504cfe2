"""Persisted cart operations.

Every mutation is a single atomic update on the customer's cart document
(``$inc`` on the matched line, ``$push`` guarded by ``$ne``, ``$pull``), so
concurrent requests from several tabs or devices never lose an update.
"""
from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Tuple
import logging

from pymongo.errors import DuplicateKeyError

from nutrastore.shared.utils import NotFoundException, UnexpectedException, parse_object_id
from nutrastore.orders_service.models import CartDB
from nutrastore.orders_service.schemas import CartLineResponse

logger = logging.getLogger(__name__)

UPSERT_ATTEMPTS = 3


async def add_line(carts, customer_id: str, product_id: str, quantity: int = 1):
    """Add ``quantity`` of a product, creating the line or the cart as needed."""
    for _ in range(UPSERT_ATTEMPTS):
        now = datetime.utcnow()
        result = await carts.update_one(
            {"customer_id": customer_id, "products.product_id": product_id},
            {"$inc": {"products.$.quantity": quantity}, "$set": {"updated_at": now}},
        )
        if result.matched_count:
            return

        try:
            await carts.update_one(
                {"customer_id": customer_id, "products.product_id": {"$ne": product_id}},
                {
                    "$push": {"products": {"product_id": product_id, "quantity": quantity}},
                    "$set": {"updated_at": now},
                },
                upsert=True,
            )
            return
        except DuplicateKeyError:
            # a concurrent request created the cart or the line first
            continue

    raise UnexpectedException("Could not update the cart. Please try again.")


def combine_lines(lines: Iterable[Tuple[str, int]]) -> Dict[str, int]:
    combined: Dict[str, int] = {}
    for product_id, quantity in lines:
        combined[product_id] = combined.get(product_id, 0) + quantity
    return combined


async def merge_lines(carts, customer_id: str, lines: Iterable[Tuple[str, int]]) -> int:
    """Merge guest lines into the persisted cart, adding quantities per product."""
    combined = combine_lines(lines)
    for product_id, quantity in combined.items():
        await add_line(carts, customer_id, product_id, quantity)
    return len(combined)


async def _raise_missing(carts, customer_id: str):
    if not await carts.find_one({"customer_id": customer_id}, {"_id": 1}):
        raise NotFoundException("Cart not found.")
    raise NotFoundException("Product not found in cart.")


async def decrement_line(carts, customer_id: str, product_id: str):
    result = await carts.update_one(
        {"customer_id": customer_id, "products.product_id": product_id},
        {"$inc": {"products.$.quantity": -1}, "$set": {"updated_at": datetime.utcnow()}},
    )
    if not result.matched_count:
        await _raise_missing(carts, customer_id)

    await carts.update_one(
        {"customer_id": customer_id},
        {"$pull": {"products": {"product_id": product_id, "quantity": {"$lte": 0}}}},
    )


async def delete_line(carts, customer_id: str, product_id: str):
    result = await carts.update_one(
        {"customer_id": customer_id, "products.product_id": product_id},
        {"$pull": {"products": {"product_id": product_id}}, "$set": {"updated_at": datetime.utcnow()}},
    )
    if not result.matched_count:
        await _raise_missing(carts, customer_id)


async def reset(carts, customer_id: str):
    await carts.update_one(
        {"customer_id": customer_id},
        {"$set": {"products": [], "updated_at": datetime.utcnow()}},
    )


async def load_cart(db, customer_id: str) -> List[CartLineResponse]:
    doc = await db.carts.find_one({"customer_id": customer_id})
    if not doc:
        return []

    # a line can sit at zero between a decrement and its $pull
    lines = [line for line in CartDB(**doc).products if line.quantity > 0]
    oids = [oid for oid in (parse_object_id(line.product_id) for line in lines) if oid]
    catalog = {
        str(product["_id"]): product
        async for product in db.products.find({"_id": {"$in": oids}})
    }

    response = []
    for line in lines:
        product = catalog.get(line.product_id)
        if product is None:
            logger.warning("Cart references a missing product", extra={
                "customer_id": customer_id,
                "product_id": line.product_id,
            })
            continue
        response.append(CartLineResponse(
            id=line.product_id,
            name=product["name"],
            imageUrl=product.get("image_url"),
            price=Decimal(str(product["price"])),
            discount=Decimal(str(product.get("discount", 0))),
            about=product.get("about"),
            quantity=line.quantity,
        ))
    return response
