"""Similar-product lookup.

Two modes:

* reference mode: products sharing the category, a product type or a benefit
  with a reference product, ranked by a relevance score
  (3 for the category, 2 for any product type overlap, 1 for any benefit
  overlap) with ties broken by ascending id;
* filter mode: products matching any of the requested categories, product
  types or benefits, minus the excluded ids, sampled uniformly at random.
"""
from typing import Iterable, List, Optional

from bson import ObjectId

from nutrastore.shared.utils import parse_object_id, NotFoundException

DEFAULT_LIMIT = 10
MAX_LIMIT = 100

CATEGORY_WEIGHT = 3
PRODUCT_TYPE_WEIGHT = 2
BENEFIT_WEIGHT = 1

SCORING_FIELDS = {"category": 1, "product_types": 1, "benefits": 1}


def parse_limit(raw: Optional[str]) -> int:
    try:
        limit = int(raw)
    except (TypeError, ValueError):
        return DEFAULT_LIMIT
    if limit <= 0:
        return DEFAULT_LIMIT
    return min(limit, MAX_LIMIT)


def parse_ids(values: Optional[Iterable[str]]) -> List[ObjectId]:
    """Keep the well-formed ids, silently dropping the rest."""
    ids = []
    for value in values or []:
        oid = parse_object_id(value)
        if oid is not None and oid not in ids:
            ids.append(oid)
    return ids


def relevance_score(reference: dict, candidate: dict) -> int:
    score = 0
    if reference.get("category") is not None and candidate.get("category") == reference.get("category"):
        score += CATEGORY_WEIGHT
    if set(candidate.get("product_types") or []) & set(reference.get("product_types") or []):
        score += PRODUCT_TYPE_WEIGHT
    if set(candidate.get("benefits") or []) & set(reference.get("benefits") or []):
        score += BENEFIT_WEIGHT
    return score


def candidate_filter(reference: dict) -> Optional[dict]:
    conditions = []
    if reference.get("category") is not None:
        conditions.append({"category": reference["category"]})
    if reference.get("product_types"):
        conditions.append({"product_types": {"$in": list(reference["product_types"])}})
    if reference.get("benefits"):
        conditions.append({"benefits": {"$in": list(reference["benefits"])}})
    if not conditions:
        return None
    return {"_id": {"$ne": reference["_id"]}, "$or": conditions}


def rank_candidates(reference: dict, candidates: Iterable[dict], limit: int) -> List[dict]:
    scored = []
    for candidate in candidates:
        if candidate["_id"] == reference["_id"]:
            continue
        score = relevance_score(reference, candidate)
        if score == 0:
            continue
        scored.append({**candidate, "relevance": score})
    scored.sort(key=lambda doc: (-doc["relevance"], str(doc["_id"])))
    return scored[:limit]


def fallback_filter(
    categories: List[ObjectId],
    product_types: List[ObjectId],
    benefits: List[ObjectId],
    exclude: List[ObjectId],
) -> dict:
    conditions = []
    if categories:
        conditions.append({"category": {"$in": categories}})
    if product_types:
        conditions.append({"product_types": {"$in": product_types}})
    if benefits:
        conditions.append({"benefits": {"$in": benefits}})

    query = {}
    if conditions:
        query["$or"] = conditions
    if exclude:
        query["_id"] = {"$nin": exclude}
    return query


async def similar_to_product(products, product_id: ObjectId, limit: int) -> List[dict]:
    reference = await products.find_one({"_id": product_id})
    if not reference:
        raise NotFoundException("Product not found.")

    query = candidate_filter(reference)
    if query is None:
        return []
    # score on the three attributes only, then load the winners
    candidates = await products.find(query, SCORING_FIELDS).to_list(length=None)
    ranked = rank_candidates(reference, candidates, limit)
    if not ranked:
        return []

    docs = {doc["_id"]: doc async for doc in products.find({"_id": {"$in": [doc["_id"] for doc in ranked]}})}
    return [
        {**docs[doc["_id"]], "relevance": doc["relevance"]}
        for doc in ranked
        if doc["_id"] in docs
    ]


async def sample_matching(products, query: dict, limit: int) -> List[dict]:
    pipeline = [{"$sample": {"size": limit}}]
    if query:
        pipeline.insert(0, {"$match": query})
    return await products.aggregate(pipeline).to_list(length=None)
