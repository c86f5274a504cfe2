from pydantic import BaseModel
from typing import Optional, List
from decimal import Decimal
from datetime import datetime

class ProductResponse(BaseModel):
    id: str
    name: str
    about: str = ""
    price: Decimal
    discount: Decimal = Decimal(0)
    category: Optional[str] = None
    productTypes: List[str] = []
    benefits: List[str] = []
    imageUrl: Optional[str] = None
    stock: int = 0
    sku: Optional[str] = None
    relevance: Optional[int] = None
    createdAt: Optional[datetime] = None

class ProductListResponse(BaseModel):
    products: List[ProductResponse]
    total: int
    page: int
    limit: int

def to_product_response(doc: dict) -> ProductResponse:
    return ProductResponse(
        id=str(doc["_id"]),
        name=doc["name"],
        about=doc.get("about", ""),
        price=Decimal(str(doc["price"])),
        discount=Decimal(str(doc.get("discount", 0))),
        category=str(doc["category"]) if doc.get("category") is not None else None,
        productTypes=[str(i) for i in doc.get("product_types", [])],
        benefits=[str(i) for i in doc.get("benefits", [])],
        imageUrl=doc.get("image_url"),
        stock=doc.get("stock", 0),
        sku=doc.get("sku"),
        relevance=doc.get("relevance"),
        createdAt=doc.get("created_at"),
    )
