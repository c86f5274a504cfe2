import asyncio

from bson import ObjectId
import pytest

from nutrastore.shared.utils import NotFoundException
from nutrastore.products_service import relevance
from tests.conftest import make_product, seed, IMMUNITY, DIGESTION, TABLET, POWDER, ENERGY, SLEEP


def test_scores_category_above_type_above_benefit():
    reference = make_product("Ref", IMMUNITY, [TABLET], [ENERGY])
    same_category = make_product("A", IMMUNITY)
    same_type = make_product("B", DIGESTION, [TABLET])
    same_benefit = make_product("C", DIGESTION, [POWDER], [ENERGY])

    assert relevance.relevance_score(reference, same_category) == 3
    assert relevance.relevance_score(reference, same_type) == 2
    assert relevance.relevance_score(reference, same_benefit) == 1
    assert relevance.relevance_score(reference, make_product("D", IMMUNITY, [TABLET], [ENERGY])) == 6


def test_overlap_counts_once_regardless_of_size():
    reference = make_product("Ref", DIGESTION, [TABLET, POWDER], [ENERGY, SLEEP])
    candidate = make_product("A", IMMUNITY, [TABLET, POWDER], [ENERGY, SLEEP])
    assert relevance.relevance_score(reference, candidate) == 3


def test_rank_skips_reference_and_unrelated():
    reference = make_product("Ref", IMMUNITY, [TABLET])
    unrelated = make_product("X", DIGESTION, [POWDER])
    related = make_product("A", IMMUNITY)

    ranked = relevance.rank_candidates(reference, [reference, unrelated, related], 10)
    assert [doc["name"] for doc in ranked] == ["A"]
    assert ranked[0]["relevance"] == 3


def test_ties_break_by_ascending_id():
    reference = make_product("Ref", IMMUNITY)
    first = make_product("First", IMMUNITY, _id=ObjectId("000000000000000000000001"))
    second = make_product("Second", IMMUNITY, _id=ObjectId("000000000000000000000002"))

    ranked = relevance.rank_candidates(reference, [second, first], 10)
    assert [doc["name"] for doc in ranked] == ["First", "Second"]


def test_candidate_filter_none_without_attributes():
    reference = {"_id": ObjectId(), "category": None, "product_types": [], "benefits": []}
    assert relevance.candidate_filter(reference) is None


@pytest.mark.parametrize("raw, expected", [
    (None, 10), ("", 10), ("abc", 10), ("0", 10), ("-3", 10), ("4", 4), ("1000", 100),
])
def test_parse_limit(raw, expected):
    assert relevance.parse_limit(raw) == expected


def test_parse_ids_drops_malformed_and_duplicates():
    oid = ObjectId()
    assert relevance.parse_ids([str(oid), "nope", str(oid), ""]) == [oid]
    assert relevance.parse_ids(None) == []


def test_similar_to_product_ranks_scenario(db):
    reference, a, b = seed(db.products, [
        make_product("P", IMMUNITY, [TABLET]),
        make_product("A", IMMUNITY, []),
        make_product("B", DIGESTION, [TABLET]),
    ])
    seed(db.products, [make_product("Unrelated", DIGESTION, [POWDER])])

    result = asyncio.run(relevance.similar_to_product(db.products, reference["_id"], 10))

    assert [doc["_id"] for doc in result] == [a["_id"], b["_id"]]
    assert [doc["relevance"] for doc in result] == [3, 2]
    assert [doc["name"] for doc in result] == ["A", "B"]


def test_similar_to_product_respects_limit(db):
    docs = seed(db.products, [make_product(f"N{i}", IMMUNITY) for i in range(6)])
    result = asyncio.run(relevance.similar_to_product(db.products, docs[0]["_id"], 3))
    assert len(result) == 3
    assert docs[0]["_id"] not in [doc["_id"] for doc in result]


def test_similar_to_missing_product(db):
    with pytest.raises(NotFoundException):
        asyncio.run(relevance.similar_to_product(db.products, ObjectId(), 10))


def test_sample_matching_never_returns_excluded(db):
    docs = seed(db.products, [make_product(f"S{i}", IMMUNITY) for i in range(8)])
    excluded = [docs[0]["_id"], docs[1]["_id"]]
    query = relevance.fallback_filter([IMMUNITY], [], [], excluded)

    for _ in range(5):
        result = asyncio.run(relevance.sample_matching(db.products, query, 4))
        assert len(result) == 4
        assert not {doc["_id"] for doc in result} & set(excluded)


def test_sample_matching_returns_fewer_when_short(db):
    seed(db.products, [make_product("Only", SLEEP), make_product("Other", DIGESTION)])
    query = relevance.fallback_filter([SLEEP], [], [], [])
    result = asyncio.run(relevance.sample_matching(db.products, query, 10))
    assert [doc["name"] for doc in result] == ["Only"]


def test_fallback_filter_shape():
    excluded = ObjectId()
    query = relevance.fallback_filter([IMMUNITY], [TABLET], [], [excluded])
    assert query == {
        "$or": [{"category": {"$in": [IMMUNITY]}}, {"product_types": {"$in": [TABLET]}}],
        "_id": {"$nin": [excluded]},
    }
    assert relevance.fallback_filter([], [], [], []) == {}


def test_sample_matching_without_filters_draws_from_whole_catalog(db):
    docs = seed(db.products, [make_product(f"W{i}", IMMUNITY) for i in range(5)])
    result = asyncio.run(relevance.sample_matching(db.products, {}, 3))
    assert len(result) == 3
    assert {doc["_id"] for doc in result} <= {doc["_id"] for doc in docs}
