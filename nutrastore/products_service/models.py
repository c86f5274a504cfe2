from datetime import datetime
from typing import Optional, List
from decimal import Decimal
from pydantic import BaseModel, Field
from bson import ObjectId

class ProductDB(BaseModel):
    """Catalog document as written by the catalog administration side."""
    id: Optional[ObjectId] = Field(None, alias="_id")
    name: str
    about: str = ""
    price: Decimal = Field(..., gt=0)
    discount: Decimal = Field(Decimal(0), ge=0, le=100)
    category: ObjectId
    product_types: List[ObjectId] = []
    benefits: List[ObjectId] = []
    image_url: Optional[str] = None
    stock: int = 0
    sku: str = ""
    length: float = 0.5
    breadth: float = 0.5
    height: float = 0.5
    weight: float = 0.1
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: Optional[datetime] = None

    class Config:
        populate_by_name = True
        arbitrary_types_allowed = True

    def to_document(self) -> dict:
        doc = self.dict(by_alias=True, exclude={"id"} if self.id is None else set())
        # stored as double, like every other amount in the database
        doc["price"] = float(doc["price"])
        doc["discount"] = float(doc["discount"])
        return doc
