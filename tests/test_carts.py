import asyncio
from types import SimpleNamespace

from bson import ObjectId
from fastapi.testclient import TestClient
import pytest
from pymongo.errors import DuplicateKeyError

from nutrastore.shared.utils import UnexpectedException
from nutrastore.orders_service.main import app
from nutrastore.orders_service import carts
from tests.conftest import make_product, seed, YieldingCollection


@pytest.fixture
def client(db, carrier):
    app.mongodb = db
    app.state.shipping = carrier.client()
    return TestClient(app)


@pytest.fixture
def products(db):
    return seed(db.products, [make_product("Ashwagandha", price=450.0), make_product("Triphala", price=300.0)])


def quantities(db, customer_id):
    cart = asyncio.run(db.carts.find_one({"customer_id": customer_id}))
    return {line["product_id"]: line["quantity"] for line in cart["products"]}


def test_merge_adds_to_existing_quantity(db, customer_id):
    asyncio.run(carts.add_line(db.carts, customer_id, "x", 3))
    asyncio.run(carts.merge_lines(db.carts, customer_id, [("x", 2)]))
    assert quantities(db, customer_id) == {"x": 5}


def test_merge_into_empty_cart(db, customer_id):
    merged = asyncio.run(carts.merge_lines(db.carts, customer_id, [("x", 2), ("y", 1), ("x", 1)]))
    assert merged == 2
    assert quantities(db, customer_id) == {"x": 3, "y": 1}


def test_add_same_product_increments_single_line(db, customer_id):
    for _ in range(3):
        asyncio.run(carts.add_line(db.carts, customer_id, "x"))
    cart = asyncio.run(db.carts.find_one({"customer_id": customer_id}))
    assert cart["products"] == [{"product_id": "x", "quantity": 3}]


def test_concurrent_adds_create_one_cart(db, customer_id):
    async def run():
        await db.carts.create_index("customer_id", unique=True)
        shared = YieldingCollection(db.carts)
        await asyncio.gather(*(carts.add_line(shared, customer_id, "x") for _ in range(3)))
        await asyncio.gather(carts.add_line(shared, customer_id, "y", 2), carts.add_line(shared, customer_id, "x"))

    asyncio.run(run())

    assert asyncio.run(db.carts.count_documents({"customer_id": customer_id})) == 1
    assert quantities(db, customer_id) == {"x": 4, "y": 2}


class RacingCarts:
    """Every upsert loses the race and nothing ever matches."""

    def __init__(self):
        self.upserts = 0

    async def update_one(self, query, update, upsert=False):
        if upsert:
            self.upserts += 1
            raise DuplicateKeyError("E11000 duplicate key error collection: carts index: customer_id_1")
        return SimpleNamespace(matched_count=0)


def test_add_gives_up_after_three_lost_races(customer_id):
    racing = RacingCarts()
    with pytest.raises(UnexpectedException):
        asyncio.run(carts.add_line(racing, customer_id, "x"))
    assert racing.upserts == carts.UPSERT_ATTEMPTS == 3


def test_decrement_removes_line_at_zero(db, customer_id):
    asyncio.run(carts.add_line(db.carts, customer_id, "x", 2))
    asyncio.run(carts.add_line(db.carts, customer_id, "y", 1))

    asyncio.run(carts.decrement_line(db.carts, customer_id, "x"))
    assert quantities(db, customer_id) == {"x": 1, "y": 1}

    asyncio.run(carts.decrement_line(db.carts, customer_id, "y"))
    assert quantities(db, customer_id) == {"x": 1}


def test_api_add_and_get_cart(client, products, auth_headers):
    pid = str(products[0]["_id"])
    res = client.post("/cart", json={"productId": pid}, headers=auth_headers)
    assert res.status_code == 201
    assert res.json()["statusCode"] == 201

    res = client.post("/cart", json={"productId": pid, "quantity": 2}, headers=auth_headers)
    lines = res.json()["result"]
    assert len(lines) == 1
    assert lines[0]["quantity"] == 3
    assert lines[0]["name"] == "Ashwagandha"

    res = client.get("/cart", headers=auth_headers)
    assert res.json()["result"][0]["id"] == pid


def test_api_empty_cart_is_empty_list(client, auth_headers):
    res = client.get("/cart", headers=auth_headers)
    assert res.status_code == 200
    assert res.json()["result"] == []


def test_api_requires_token(client):
    res = client.get("/cart")
    assert res.status_code == 401
    assert res.json()["status"] == "error"


def test_api_merge_guest_cart(client, db, products, customer_id, auth_headers):
    pid = str(products[0]["_id"])
    asyncio.run(carts.add_line(db.carts, customer_id, pid, 3))

    res = client.post("/cart/items", json={"products": [
        {"productId": pid, "quantity": 2},
        {"productId": str(products[1]["_id"]), "quantity": 1},
    ]}, headers=auth_headers)

    assert res.json()["result"] == "Cart merged successfully."
    assert quantities(db, customer_id) == {pid: 5, str(products[1]["_id"]): 1}


def test_api_decrement_and_delete(client, products, auth_headers):
    pid = str(products[0]["_id"])
    client.post("/cart", json={"productId": pid, "quantity": 2}, headers=auth_headers)

    res = client.put("/cart/items", json={"productId": pid}, headers=auth_headers)
    assert res.json()["result"][0]["quantity"] == 1

    res = client.delete("/cart/items", params={"productId": pid}, headers=auth_headers)
    assert res.json()["result"] == "Product removed from cart."
    assert client.get("/cart", headers=auth_headers).json()["result"] == []


def test_api_missing_cart_vs_missing_line(client, products, auth_headers):
    pid = str(products[0]["_id"])
    res = client.put("/cart/items", json={"productId": pid}, headers=auth_headers)
    assert res.status_code == 404
    assert res.json()["result"] == "Cart not found."

    client.post("/cart", json={"productId": pid}, headers=auth_headers)
    res = client.delete("/cart/items", params={"productId": str(products[1]["_id"])}, headers=auth_headers)
    assert res.status_code == 404
    assert res.json()["result"] == "Product not found in cart."


def test_api_rejects_invalid_product_id(client, auth_headers):
    res = client.post("/cart", json={"productId": "not-an-id"}, headers=auth_headers)
    assert res.status_code == 400
    assert res.json()["result"] == "Invalid product id."


def test_api_rejects_unknown_product(client, auth_headers):
    res = client.post("/cart", json={"productId": str(ObjectId())}, headers=auth_headers)
    assert res.status_code == 404


def test_api_rejects_non_positive_quantity(client, products, auth_headers):
    res = client.post("/cart", json={"productId": str(products[0]["_id"]), "quantity": 0}, headers=auth_headers)
    assert res.status_code == 400


def test_api_clear_cart(client, products, auth_headers):
    client.post("/cart", json={"productId": str(products[0]["_id"])}, headers=auth_headers)
    res = client.delete("/cart", headers=auth_headers)
    assert res.json()["result"] == "Cart cleared."
    assert client.get("/cart", headers=auth_headers).json()["result"] == []
