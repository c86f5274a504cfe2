from pydantic import BaseModel, Field, field_validator
from typing import Optional, List
from decimal import Decimal
from datetime import datetime
from nutrastore.shared.security_config import sanitize_input

# Cart

class CartItemAdd(BaseModel):
    productId: str = Field(..., min_length=1)
    quantity: int = Field(1, gt=0)

class CartItemRef(BaseModel):
    productId: str = Field(..., min_length=1)

class CartMerge(BaseModel):
    products: List[CartItemAdd]

class CartLineResponse(BaseModel):
    id: str
    name: str
    imageUrl: Optional[str] = None
    price: Decimal
    discount: Decimal = Decimal(0)
    about: Optional[str] = None
    quantity: int

# Wishlist

class WishlistMerge(BaseModel):
    products: List[CartItemRef]

class WishlistItemResponse(BaseModel):
    id: str
    name: str
    imageUrl: Optional[str] = None
    price: Decimal
    discount: Decimal = Decimal(0)

# Orders

class OrderLineIn(BaseModel):
    id: str = Field(..., alias="_id", min_length=1)
    quantity: int = Field(..., gt=0)
    name: Optional[str] = None

    class Config:
        populate_by_name = True

    @field_validator('name')
    def sanitize_name(cls, v):
        return sanitize_input(v)

class OrderCreate(BaseModel):
    cart: List[OrderLineIn]
    paymentMethod: str = Field("Prepaid", pattern="^(Prepaid|COD)$")

class OrderLineResponse(BaseModel):
    id: str
    name: str
    imgUrl: Optional[str] = None
    about: Optional[str] = None
    price: Decimal
    discount: Decimal
    quantity: int
    totalAmount: Decimal

class OrderResponse(BaseModel):
    id: str
    customerId: str
    orderId: Optional[int] = None
    orderStatus: str
    shipmentStatus: Optional[str] = None
    paymentStatus: Optional[str] = None
    paymentMethod: Optional[str] = None
    subTotal: Decimal
    orderDate: datetime
    products: List[OrderLineResponse]
