from fastapi import Request, FastAPI
from starlette.middleware.base import BaseHTTPMiddleware
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
import html

from nutrastore.shared.utils import settings, verify_token, UnauthorizedException

# --- Rate Limiting ---
limiter = Limiter(key_func=get_remote_address, enabled=settings.RATE_LIMIT_ENABLED)

def customer_key(request: Request) -> str:
    """Bucket per customer named by a valid bearer token, per client address otherwise."""
    scheme, _, token = request.headers.get("authorization", "").partition(" ")
    if scheme.lower() == "bearer" and token:
        try:
            payload = verify_token(token)
        except UnauthorizedException:
            # the endpoint answers 401 for this one
            return get_remote_address(request)
        return f"customer:{payload['sub']}"
    return get_remote_address(request)

def setup_rate_limiting(app: FastAPI):
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# --- Security Headers Middleware ---
class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)

        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        response.headers["Content-Security-Policy"] = "default-src 'self'; img-src 'self' data: https:; object-src 'none'; frame-ancestors 'none';"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"

        # carts, wishlists and orders are per customer
        if "authorization" in request.headers:
            response.headers["Cache-Control"] = "no-store"

        return response

# --- Input Sanitization ---
def sanitize_input(text):
    """Free text echoed back to the storefront (item names on orders): trimmed, inner
    whitespace collapsed, HTML escaped."""
    if not isinstance(text, str):
        return text
    return html.escape(" ".join(text.split()))
