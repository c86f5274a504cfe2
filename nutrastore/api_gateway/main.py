from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from datetime import datetime
import asyncio
import os
import time
import httpx

from nutrastore.shared.utils import verify_token, UnauthorizedException, setup_exception_handlers, error_response
from nutrastore.shared.logging_config import setup_logging, RequestLoggingMiddleware
from nutrastore.shared.security_config import setup_rate_limiting, SecurityHeadersMiddleware, limiter

# Configuration
PRODUCTS_SERVICE_URL = os.getenv("PRODUCTS_SERVICE_URL", "http://products-service:8002")
ORDERS_SERVICE_URL = os.getenv("ORDERS_SERVICE_URL", "http://orders-service:8003")

# Headers that describe the upstream connection, not the payload
HOP_HEADERS = {"host", "content-length", "content-encoding", "transfer-encoding", "connection"}

# Setup Logging
logger = setup_logging("api-gateway")

app = FastAPI(title="API Gateway")

# Security Setup
setup_rate_limiting(app)
setup_exception_handlers(app)
app.add_middleware(SecurityHeadersMiddleware)

# Middleware
app.add_middleware(RequestLoggingMiddleware, service_name="api-gateway")

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.on_event("startup")
async def startup_http_client():
    app.state.http_client = httpx.AsyncClient(timeout=10.0)

@app.on_event("shutdown")
async def shutdown_http_client():
    await app.state.http_client.aclose()

# Auth Check Helper
def authenticate(request: Request) -> dict:
    auth_header = request.headers.get("Authorization")
    if not auth_header:
        raise UnauthorizedException("Authorization header is required.")
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise UnauthorizedException("Authorization header is required.")
    return verify_token(token)

# --- Proxy Logic ---

async def forward_request(service_url: str, request: Request, path: str, public: bool = False):
    headers = {k: v for k, v in request.headers.items() if k.lower() not in HOP_HEADERS}
    headers.pop("x-customer-id", None)
    headers.pop("x-request-id", None)

    request_id = getattr(request.state, "request_id", None)
    if request_id:
        headers["X-Request-ID"] = request_id

    if not public:
        payload = authenticate(request)
        headers["x-customer-id"] = payload["sub"]

    url = f"{service_url}{path}"
    if request.url.query:
        url += f"?{request.url.query}"

    start_time = time.time()
    logger.info("Calling Downstream Service", extra={
        "target": service_url,
        "path": path,
        "method": request.method,
        "request_id": request_id,
    })

    try:
        resp = await app.state.http_client.request(
            method=request.method,
            url=url,
            headers=headers,
            content=await request.body(),
        )
    except httpx.RequestError:
        logger.error("Downstream Service Unavailable", extra={"target": service_url, "request_id": request_id})
        return error_response(503, "Service Unavailable")

    logger.info("Downstream Call Completed", extra={
        "target": service_url,
        "path": path,
        "status_code": resp.status_code,
        "duration_ms": round((time.time() - start_time) * 1000, 2),
        "request_id": request_id,
    })

    return Response(
        content=resp.content,
        status_code=resp.status_code,
        headers={k: v for k, v in resp.headers.items() if k.lower() not in HOP_HEADERS},
    )

# --- Routes ---

@app.get("/health")
async def health_check():
    async def check_service(url, name):
        start = time.time()
        try:
            res = await app.state.http_client.get(f"{url}/health", timeout=2.0)
            status_val = "healthy" if res.status_code == 200 else "unhealthy"
        except httpx.HTTPError:
            status_val = "unreachable"
        return {"service": name, "status": status_val, "latency": f"{time.time() - start:.4f}s"}

    results = await asyncio.gather(
        check_service(PRODUCTS_SERVICE_URL, "products-service"),
        check_service(ORDERS_SERVICE_URL, "orders-service"),
    )
    overall_status = "healthy" if all(r["status"] == "healthy" for r in results) else "unhealthy"

    response_data = {
        "service": "api-gateway",
        "status": overall_status,
        "timestamp": datetime.utcnow().isoformat(),
        "version": "1.0.0",
        "services": list(results),
    }
    if overall_status == "unhealthy":
        return JSONResponse(content=response_data, status_code=503)
    return response_data

# 1. Products Service (public catalog)
@app.api_route("/api/products{path:path}", methods=["GET"])
@limiter.limit("200/minute")
async def products_proxy(request: Request, path: str):
    # /api/products/similarProducts -> products-service/products/similarProducts
    return await forward_request(PRODUCTS_SERVICE_URL, request, f"/products{path}", public=True)

# 2. Orders Service (authenticated)
@app.api_route("/api/cart{path:path}", methods=["GET", "POST", "PUT", "DELETE"])
@limiter.limit("100/minute")
async def cart_proxy(request: Request, path: str):
    return await forward_request(ORDERS_SERVICE_URL, request, f"/cart{path}")

@app.api_route("/api/wishlist{path:path}", methods=["GET", "POST", "PUT"])
@limiter.limit("100/minute")
async def wishlist_proxy(request: Request, path: str):
    return await forward_request(ORDERS_SERVICE_URL, request, f"/wishlist{path}")

@app.api_route("/api/orders{path:path}", methods=["GET", "POST", "PUT"])
@limiter.limit("100/minute")
async def orders_proxy(request: Request, path: str):
    return await forward_request(ORDERS_SERVICE_URL, request, f"/orders{path}")
