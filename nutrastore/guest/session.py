"""Storefront session: the cart and wishlist as seen from the browser side.

A session starts as a guest. Guest mutations only touch local state. On
``login`` the guest cart and wishlist are sent once to the server to be merged
into the customer's persisted ones (skipped when empty), local guest state is
cleared, and from then on every mutation goes to the server and the local
lists are refreshed from its answers. ``logout`` drops back to an empty guest
session; the server cart is never copied into guest state.
"""
from enum import Enum
from typing import Any, List, Optional
from decimal import Decimal
import httpx
from pydantic import BaseModel

from nutrastore.guest.events import NotificationChannel


class SessionState(str, Enum):
    GUEST = "guest"
    AUTHENTICATED_UNMERGED = "authenticated_unmerged"
    AUTHENTICATED = "authenticated"


class CartItem(BaseModel):
    id: str
    quantity: int = 1
    name: Optional[str] = None
    price: Optional[Decimal] = None
    discount: Optional[Decimal] = None
    imageUrl: Optional[str] = None


class WishlistItem(BaseModel):
    id: str
    name: Optional[str] = None
    price: Optional[Decimal] = None
    discount: Optional[Decimal] = None
    imageUrl: Optional[str] = None


class SessionError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class StorefrontSession:
    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        notifications: Optional[NotificationChannel] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 10.0,
    ):
        self.notifications = notifications or NotificationChannel()
        self.state = SessionState.GUEST
        self.cart: List[CartItem] = []
        self.wishlist: List[WishlistItem] = []
        self._access_token: Optional[str] = None
        self._client = httpx.AsyncClient(base_url=base_url, transport=transport, timeout=timeout)

    async def aclose(self):
        await self._client.aclose()

    @property
    def is_guest(self) -> bool:
        return self.state == SessionState.GUEST

    # --- transport ---

    async def _call(self, method: str, path: str, json: Optional[dict] = None, params: Optional[dict] = None) -> Any:
        headers = {"Authorization": f"Bearer {self._access_token}"} if self._access_token else {}
        try:
            response = await self._client.request(method, path, json=json, params=params, headers=headers)
            body = response.json()
        except httpx.HTTPError:
            raise self._fail("Unable to reach the store. Please try again.")
        except ValueError:
            raise self._fail("Something went wrong.", response.status_code)

        if response.is_error or body.get("status") == "error":
            raise self._fail(body.get("result") or "Something went wrong.", response.status_code)
        return body.get("result")

    def _fail(self, message: str, status_code: Optional[int] = None) -> SessionError:
        self.notifications.error(message)
        return SessionError(message, status_code)

    # --- authentication transitions ---

    async def login(self, access_token: str):
        self._access_token = access_token
        self.state = SessionState.AUTHENTICATED_UNMERGED
        await self.merge_guest_state()
        self.state = SessionState.AUTHENTICATED
        await self.refresh()

    async def merge_guest_state(self):
        """Send guest lines to the server once. Guest state is kept if the merge fails."""
        if self.cart:
            await self._call("POST", "/api/cart/items", json={
                "products": [{"productId": item.id, "quantity": item.quantity} for item in self.cart],
            })
            self.cart = []

        if self.wishlist:
            await self._call("POST", "/api/wishlist/mergeGuestWishlist", json={
                "products": [{"productId": item.id} for item in self.wishlist],
            })
            self.wishlist = []

    def logout(self):
        self._access_token = None
        self.state = SessionState.GUEST
        self.cart = []
        self.wishlist = []

    async def refresh(self):
        if self.is_guest:
            return
        await self.refresh_cart()
        self.wishlist = [WishlistItem(**item) for item in await self._call("GET", "/api/wishlist") or []]

    async def refresh_cart(self):
        self.cart = [CartItem(**item) for item in await self._call("GET", "/api/cart") or []]

    # --- cart ---

    def _cart_index(self, product_id: str) -> int:
        for index, item in enumerate(self.cart):
            if item.id == product_id:
                return index
        return -1

    async def add_to_cart(self, product_id: str, quantity: int = 1, **details) -> List[CartItem]:
        if quantity < 1:
            raise self._fail("Quantity must be at least 1.", 400)

        if self.is_guest:
            index = self._cart_index(product_id)
            if index == -1:
                self.cart.append(CartItem(id=product_id, quantity=quantity, **details))
            else:
                self.cart[index].quantity += quantity
            return self.cart

        result = await self._call("POST", "/api/cart", json={"productId": product_id, "quantity": quantity})
        self.cart = [CartItem(**item) for item in result or []]
        return self.cart

    async def remove_from_cart(self, product_id: str) -> List[CartItem]:
        """Decrement by one; the line disappears when it reaches zero."""
        if self.is_guest:
            index = self._cart_index(product_id)
            if index == -1:
                return self.cart
            if self.cart[index].quantity <= 1:
                del self.cart[index]
            else:
                self.cart[index].quantity -= 1
            return self.cart

        result = await self._call("PUT", "/api/cart/items", json={"productId": product_id})
        self.cart = [CartItem(**item) for item in result or []]
        return self.cart

    async def delete_from_cart(self, product_id: str) -> List[CartItem]:
        if self.is_guest:
            self.cart = [item for item in self.cart if item.id != product_id]
            return self.cart

        await self._call("DELETE", "/api/cart/items", params={"productId": product_id})
        await self.refresh_cart()
        return self.cart

    # --- wishlist ---

    async def add_to_wishlist(self, product_id: str, **details) -> List[WishlistItem]:
        if self.is_guest:
            if not any(item.id == product_id for item in self.wishlist):
                self.wishlist.append(WishlistItem(id=product_id, **details))
            return self.wishlist

        result = await self._call("POST", "/api/wishlist", json={"productId": product_id})
        self.wishlist = [WishlistItem(**item) for item in result or []]
        return self.wishlist

    async def remove_from_wishlist(self, product_id: str) -> List[WishlistItem]:
        if self.is_guest:
            self.wishlist = [item for item in self.wishlist if item.id != product_id]
            return self.wishlist

        result = await self._call("PUT", "/api/wishlist", json={"productId": product_id})
        self.wishlist = [WishlistItem(**item) for item in result or []]
        return self.wishlist

    # --- checkout ---

    async def place_order(self, payment_method: str = "Prepaid") -> str:
        if self.is_guest:
            raise self._fail("Please log in to place an order.", 401)

        message = await self._call("POST", "/api/orders", json={
            "cart": [{"_id": item.id, "quantity": item.quantity, "name": item.name} for item in self.cart],
            "paymentMethod": payment_method,
        })
        self.notifications.success(message)
        return message

    async def similar_products(self, product_id: Optional[str] = None, limit: Optional[int] = None, **filters) -> list:
        """"Others also buy" rail. Extra filters: category, productTypes, benefits, exclude."""
        params = {key: value for key, value in filters.items() if value}
        if product_id:
            params["productId"] = product_id
        if limit:
            params["limit"] = limit
        return await self._call("GET", "/api/products/similarProducts", params=params) or []
