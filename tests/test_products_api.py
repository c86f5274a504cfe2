from bson import ObjectId
from fastapi.testclient import TestClient
import pytest

from nutrastore.products_service.main import app
from tests.conftest import make_product, seed, IMMUNITY, DIGESTION, TABLET, POWDER, ENERGY


@pytest.fixture
def client(db):
    app.mongodb = db
    return TestClient(app)


@pytest.fixture
def catalog(db):
    return seed(db.products, [
        make_product("Reference", IMMUNITY, [TABLET], [ENERGY]),
        make_product("SameCategory", IMMUNITY, []),
        make_product("SameType", DIGESTION, [TABLET]),
        make_product("SameBenefit", DIGESTION, [POWDER], [ENERGY]),
        make_product("Unrelated", DIGESTION, [POWDER]),
    ])


def test_reference_mode_ranks_and_excludes_reference(client, catalog):
    reference = catalog[0]
    res = client.get("/products/similarProducts", params={"productId": str(reference["_id"])})

    assert res.status_code == 200
    body = res.json()
    assert body["status"] == "ok"
    names = [p["name"] for p in body["result"]]
    assert names == ["SameCategory", "SameType", "SameBenefit"]
    assert [p["relevance"] for p in body["result"]] == [3, 2, 1]


def test_reference_mode_limit(client, catalog):
    res = client.get("/products/similarProducts", params={"productId": str(catalog[0]["_id"]), "limit": "2"})
    assert [p["name"] for p in res.json()["result"]] == ["SameCategory", "SameType"]


def test_reference_mode_unknown_product(client, catalog):
    res = client.get("/products/similarProducts", params={"productId": str(ObjectId())})
    assert res.status_code == 404
    assert res.json() == {"status": "error", "statusCode": 404, "result": "Product not found."}


def test_filter_mode_respects_exclude(client, catalog):
    excluded = [str(catalog[1]["_id"]), str(catalog[0]["_id"])]
    for _ in range(5):
        res = client.get("/products/similarProducts", params={
            "category": str(IMMUNITY),
            "productTypes": str(TABLET),
            "exclude": excluded,
        })
        assert res.status_code == 200
        ids = [p["id"] for p in res.json()["result"]]
        assert ids == [str(catalog[2]["_id"])]


def test_filter_mode_ignores_malformed_ids(client, catalog):
    res = client.get("/products/similarProducts", params={
        "category": ["not-an-id", str(DIGESTION)],
        "limit": "garbage",
    })
    assert res.status_code == 200
    assert {p["name"] for p in res.json()["result"]} == {"SameType", "SameBenefit", "Unrelated"}


def test_malformed_product_id_falls_back_to_filters(client, catalog):
    res = client.get("/products/similarProducts", params={"productId": "xyz", "category": str(IMMUNITY), "limit": "1"})
    assert res.status_code == 200
    result = res.json()["result"]
    assert len(result) == 1
    assert result[0]["relevance"] is None


def test_get_product(client, catalog):
    res = client.get(f"/products/{catalog[0]['_id']}")
    assert res.status_code == 200
    product = res.json()["result"]
    assert product["name"] == "Reference"
    assert product["category"] == str(IMMUNITY)
    assert product["productTypes"] == [str(TABLET)]


def test_get_product_malformed_id(client, catalog):
    res = client.get("/products/nope")
    assert res.status_code == 404


def test_list_products_by_category(client, catalog):
    res = client.get("/products", params={"category": str(DIGESTION), "limit": 2})
    result = res.json()["result"]
    assert result["total"] == 3
    assert len(result["products"]) == 2
