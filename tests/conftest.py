import asyncio
import os

os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("SECRET_KEY", "test-secret")

import httpx
import pytest
from bson import ObjectId
from mongomock_motor import AsyncMongoMockClient

from nutrastore.shared.utils import create_access_token
from nutrastore.shared.shipping import ShiprocketClient
from nutrastore.products_service.models import ProductDB

# needs the full stack running behind the gateway
collect_ignore = ["integration_test.py"]

CARRIER_URL = "https://carrier.test/v1/external"

IMMUNITY = ObjectId()
DIGESTION = ObjectId()
TABLET = ObjectId()
POWDER = ObjectId()
ENERGY = ObjectId()
SLEEP = ObjectId()


@pytest.fixture
def db():
    return AsyncMongoMockClient()["nutrastore_test"]


@pytest.fixture
def customer_id():
    return str(ObjectId())


@pytest.fixture
def auth_headers(customer_id):
    return {"Authorization": f"Bearer {create_access_token({'sub': customer_id})}"}


def make_product(name, category=IMMUNITY, product_types=(), benefits=(), price=100.0, discount=0.0, **extra):
    product = ProductDB(
        _id=extra.pop("_id", None) or ObjectId(),
        name=name,
        about=f"About {name}",
        price=price,
        discount=discount,
        category=category,
        product_types=list(product_types),
        benefits=list(benefits),
        image_url=f"https://img.test/{name.lower()}.png",
        stock=10,
        sku=f"SKU-{name.upper()}",
        length=10.0,
        breadth=5.0,
        height=2.0,
        weight=0.25,
        **extra,
    )
    return product.to_document()


def seed(collection, docs):
    asyncio.run(collection.insert_many(docs))
    return docs


def make_address(**overrides):
    address = {
        "full_name": "Asha Rao",
        "phone": "9876543210",
        "street_address_house_no": "12 MG Road",
        "landmark": "Near Metro",
        "city_town": "Bengaluru",
        "state": "Karnataka",
        "pin_code": "560001",
        "country": "India",
        "is_default": True,
    }
    address.update(overrides)
    return address


class YieldingCollection:
    """Gives the event loop a turn before every call so gathered writers interleave."""

    def __init__(self, collection):
        self._collection = collection

    def __getattr__(self, name):
        method = getattr(self._collection, name)

        async def call(*args, **kwargs):
            await asyncio.sleep(0)
            return await method(*args, **kwargs)
        return call


class FakeCarrier:
    """Scripted Shiprocket: records every request and answers per path."""

    def __init__(self):
        self.requests = []
        self.responses = {
            "/auth/login": httpx.Response(200, json={"token": "carrier-token"}),
            "/orders/create/adhoc": httpx.Response(200, json={"order_id": 111, "shipment_id": 222, "status": "NEW"}),
            "/orders/cancel": httpx.Response(200, json={"status_code": 200, "message": "Order cancelled successfully."}),
        }
        self.errors = {}

    def calls(self, suffix):
        return [r for r in self.requests if r.url.path.endswith(suffix)]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path[len("/v1/external"):]
        if path in self.errors:
            raise self.errors[path](request)
        if path.startswith("/orders/show/") and path not in self.responses:
            return httpx.Response(200, json={
                "data": {"shipments": {"status": "NEW"}, "payment_status": "Pending", "payment_method": "Prepaid"},
            })
        response = self.responses[path]
        if isinstance(response, list):
            # scripted sequence, the last answer repeats
            response = response.pop(0) if len(response) > 1 else response[0]
        # fresh copy, a Response is consumed once it has been sent
        return httpx.Response(response.status_code, content=response.content, headers=response.headers)

    def client(self) -> ShiprocketClient:
        return ShiprocketClient(
            base_url=CARRIER_URL,
            email="ops@nutrastore.test",
            password="hunter2",
            transport=httpx.MockTransport(self.handler),
        )


@pytest.fixture
def carrier():
    return FakeCarrier()
