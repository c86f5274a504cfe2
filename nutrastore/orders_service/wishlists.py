from datetime import datetime
from decimal import Decimal
from typing import Iterable, List

from pymongo.errors import DuplicateKeyError

from nutrastore.shared.utils import NotFoundException, parse_object_id
from nutrastore.orders_service.models import WishlistDB
from nutrastore.orders_service.schemas import WishlistItemResponse


async def _add_to_set(wishlists, customer_id: str, product_ids: List[str]):
    update = {
        "$addToSet": {"products": {"$each": product_ids}},
        "$set": {"updated_at": datetime.utcnow()},
    }
    try:
        await wishlists.update_one({"customer_id": customer_id}, update, upsert=True)
    except DuplicateKeyError:
        # lost the race to create the wishlist, it exists now
        await wishlists.update_one({"customer_id": customer_id}, update)


async def add_product(wishlists, customer_id: str, product_id: str):
    await _add_to_set(wishlists, customer_id, [product_id])


async def merge_products(wishlists, customer_id: str, product_ids: Iterable[str]) -> int:
    """Merge a guest wishlist. Returns how many products were new to the wishlist."""
    incoming = list(dict.fromkeys(product_ids))
    if not incoming:
        return 0

    existing = await wishlists.find_one({"customer_id": customer_id}, {"products": 1})
    known = set(existing.get("products", [])) if existing else set()
    new_ids = [pid for pid in incoming if pid not in known]
    if not new_ids:
        return 0

    await _add_to_set(wishlists, customer_id, new_ids)
    return len(new_ids)


async def remove_product(wishlists, customer_id: str, product_id: str):
    wishlist = await wishlists.find_one({"customer_id": customer_id})
    if not wishlist:
        raise NotFoundException("Wishlist not found.")

    # removing a product that is not listed leaves the wishlist unchanged
    if product_id in wishlist.get("products", []):
        await wishlists.update_one(
            {"customer_id": customer_id},
            {"$pull": {"products": product_id}, "$set": {"updated_at": datetime.utcnow()}},
        )


async def load_wishlist(db, customer_id: str) -> List[WishlistItemResponse]:
    doc = await db.wishlists.find_one({"customer_id": customer_id})
    if not doc:
        return []

    product_ids = WishlistDB(**doc).products
    oids = [oid for oid in (parse_object_id(pid) for pid in product_ids) if oid]
    catalog = {
        str(product["_id"]): product
        async for product in db.products.find({"_id": {"$in": oids}})
    }

    return [
        WishlistItemResponse(
            id=pid,
            name=catalog[pid]["name"],
            imageUrl=catalog[pid].get("image_url"),
            price=Decimal(str(catalog[pid]["price"])),
            discount=Decimal(str(catalog[pid].get("discount", 0))),
        )
        for pid in product_ids
        if pid in catalog
    ]
