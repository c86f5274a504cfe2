from fastapi import FastAPI, HTTPException, status, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from datetime import datetime
from typing import Optional, List

from nutrastore.shared.utils import (
    get_db_client, settings, SuccessResponse, NotFoundException,
    HealthResponse, parse_object_id, str_to_oid, setup_exception_handlers
)
from nutrastore.shared.logging_config import setup_logging, RequestLoggingMiddleware
from nutrastore.shared.security_config import setup_rate_limiting, SecurityHeadersMiddleware, limiter

from nutrastore.products_service.schemas import ProductResponse, ProductListResponse, to_product_response
from nutrastore.products_service import relevance

# Setup Logging
logger = setup_logging("products-service")

app = FastAPI(title="Products Service")

# Security Setup
setup_rate_limiting(app)
setup_exception_handlers(app)
app.add_middleware(SecurityHeadersMiddleware)

# Middleware
app.add_middleware(RequestLoggingMiddleware, service_name="products-service")

# CORS Configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.on_event("startup")
async def startup_db_client():
    app.mongodb_client = get_db_client()
    app.mongodb = app.mongodb_client[settings.DATABASE_NAME]
    # Indexes
    await app.mongodb.products.create_index("category")
    await app.mongodb.products.create_index("product_types")
    await app.mongodb.products.create_index("benefits")

@app.on_event("shutdown")
async def shutdown_db_client():
    app.mongodb_client.close()

# --- Endpoints ---

@app.get("/products", response_model=SuccessResponse[ProductListResponse])
@limiter.limit("60/minute")
async def list_products(
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    category: Optional[str] = None,
):
    query = {}
    if category:
        category_id = parse_object_id(category)
        if category_id is None:
            raise NotFoundException("Category not found.")
        query["category"] = category_id

    skip = (page - 1) * limit
    total = await app.mongodb.products.count_documents(query)
    cursor = app.mongodb.products.find(query).sort("created_at", -1).skip(skip).limit(limit)
    docs = await cursor.to_list(length=limit)

    return SuccessResponse(result=ProductListResponse(
        products=[to_product_response(doc) for doc in docs],
        total=total,
        page=page,
        limit=limit
    ))

@app.get("/products/similarProducts", response_model=SuccessResponse[List[ProductResponse]])
@limiter.limit("120/minute")
async def similar_products(
    request: Request,
    productId: Optional[str] = None,
    limit: Optional[str] = None,
    category: List[str] = Query([]),
    productTypes: List[str] = Query([]),
    benefits: List[str] = Query([]),
    exclude: List[str] = Query([]),
):
    """Products to show next to the one being viewed, or around a set of filters.

    A well-formed ``productId`` selects the ranked reference mode; anything else
    falls back to a random sample over the category/productTypes/benefits
    filters minus ``exclude``. Malformed ids in the filters are ignored.
    """
    max_results = relevance.parse_limit(limit)
    reference_id = parse_object_id(productId)

    if reference_id is not None:
        products = await relevance.similar_to_product(app.mongodb.products, reference_id, max_results)
        mode = "reference"
    else:
        query = relevance.fallback_filter(
            relevance.parse_ids(category),
            relevance.parse_ids(productTypes),
            relevance.parse_ids(benefits),
            relevance.parse_ids(exclude),
        )
        products = await relevance.sample_matching(app.mongodb.products, query, max_results)
        mode = "filters"

    logger.info("Similar products resolved", extra={
        "request_id": getattr(request.state, "request_id", None),
        "mode": mode,
        "product_id": productId if reference_id is not None else None,
        "count": len(products),
    })
    return SuccessResponse(result=[to_product_response(doc) for doc in products])

@app.get("/products/{product_id}", response_model=SuccessResponse[ProductResponse])
@limiter.limit("60/minute")
async def get_product(product_id: str, request: Request):
    product = await app.mongodb.products.find_one({"_id": str_to_oid(product_id, "Product not found.")})
    if not product:
        raise NotFoundException("Product not found.")
    return SuccessResponse(result=to_product_response(product))

@app.get("/health", response_model=HealthResponse)
async def health_check():
    try:
        await app.mongodb_client.admin.command('ping')
        db_status = "connected"
    except Exception:
        db_status = "disconnected"

    if db_status != "connected":
        logger.error(f"Health Check Failed: DB={db_status}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Service Unhealthy: DB={db_status}"
        )

    return HealthResponse(
        service="products-service",
        status="healthy",
        timestamp=datetime.utcnow(),
        version="1.0.0",
        database=db_status,
    )
