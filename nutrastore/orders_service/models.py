from datetime import datetime
from enum import Enum
from typing import Optional, List
from decimal import Decimal
from pydantic import BaseModel, Field
from bson import ObjectId

class CartLineDB(BaseModel):
    product_id: str
    quantity: int = 1

class CartDB(BaseModel):
    id: Optional[ObjectId] = Field(None, alias="_id")
    customer_id: str
    products: List[CartLineDB] = []
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        populate_by_name = True
        arbitrary_types_allowed = True

class WishlistDB(BaseModel):
    id: Optional[ObjectId] = Field(None, alias="_id")
    customer_id: str
    products: List[str] = [] # product ids, no duplicates
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        populate_by_name = True
        arbitrary_types_allowed = True

class AddressDB(BaseModel):
    """Entry of ``users.addresses``; maintained by the account pages."""
    full_name: str
    phone: str
    email: Optional[str] = None
    street_address_house_no: str
    street_address_2: Optional[str] = None
    landmark: Optional[str] = None
    address_type: Optional[str] = None
    city_town: str
    state: str
    pin_code: str
    country: str = "India"
    is_default: bool = False

class OrderStatus(str, Enum):
    PLACED = "Placed"
    PACKED = "Packed"
    SHIPPED = "Shipped"
    OUT_FOR_DELIVERY = "Out for delivery"
    DELIVERED = "Delivered"
    CANCELED = "Canceled"
    RETURNED = "Returned"

class PaymentStatus(str, Enum):
    PENDING = "Pending"
    COMPLETED = "Completed"
    FAILED = "Failed"

class OrderLineDB(BaseModel):
    product_id: str
    name: str
    sku: Optional[str] = None
    quantity: int
    unit_price: Decimal # catalog price at order time
    discount: Decimal
    total_amount: Decimal

class OrderDB(BaseModel):
    id: Optional[str] = Field(None, alias="_id")
    customer_id: str
    reference: str # merchant order id sent to the carrier
    shipment_order_id: Optional[int] = None # carrier order id
    shipment_id: Optional[int] = None
    shipping_address: AddressDB
    products: List[OrderLineDB]
    sub_total: Decimal
    order_status: OrderStatus = OrderStatus.PLACED
    payment_status: PaymentStatus = PaymentStatus.PENDING
    payment_method: str = "Prepaid"
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: Optional[datetime] = None

    class Config:
        populate_by_name = True

    def to_document(self) -> dict:
        doc = self.dict(by_alias=True, exclude={"id"})
        doc["order_status"] = self.order_status.value
        doc["payment_status"] = self.payment_status.value
        doc["sub_total"] = float(doc["sub_total"])
        for line in doc["products"]:
            line["unit_price"] = float(line["unit_price"])
            line["discount"] = float(line["discount"])
            line["total_amount"] = float(line["total_amount"])
        return doc
