from datetime import datetime, timedelta
from typing import Optional, Generic, TypeVar, Any
from fastapi import FastAPI, HTTPException, Request, status, Header
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from motor.motor_asyncio import AsyncIOMotorClient
from pydantic import BaseModel
from pydantic_settings import BaseSettings
from jose import JWTError, jwt
from bson import ObjectId
from bson.errors import InvalidId
import logging
import uuid

logger = logging.getLogger(__name__)

# --- Configuration ---
class Settings(BaseSettings):
    MONGO_URL: str = "mongodb://mongodb:27017"
    DATABASE_NAME: str = "nutrastore"
    SECRET_KEY: str = "secret"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 15

    SHIPROCKET_BASE_URL: str = "https://apiv2.shiprocket.in/v1/external"
    SHIPROCKET_EMAIL: str = ""
    SHIPROCKET_PASSWORD: str = ""
    SHIPROCKET_TIMEOUT_SECONDS: float = 10.0
    SHIPROCKET_PICKUP_LOCATION: str = "Primary"

    RATE_LIMIT_ENABLED: bool = True

    class Config:
        env_file = ".env"

settings = Settings()

# --- Database ---
def get_db_client(url: str = settings.MONGO_URL) -> AsyncIOMotorClient:
    return AsyncIOMotorClient(url)

def parse_object_id(value: Optional[str]) -> Optional[ObjectId]:
    """Return the ObjectId for ``value`` or None when it is not a valid id."""
    if not value or not ObjectId.is_valid(value):
        return None
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return None

def str_to_oid(id: str, detail: str = "Invalid ID format") -> ObjectId:
    oid = parse_object_id(id)
    if oid is None:
        raise NotFoundException(detail)
    return oid

# --- Authentication ---
def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.utcnow() + expires_delta
    else:
        expire = datetime.utcnow() + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    if "jti" not in to_encode:
        to_encode.update({"jti": str(uuid.uuid4())})

    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)

def verify_token(token: str) -> dict:
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        raise UnauthorizedException("Invalid user or token expired.")
    if not payload.get("sub"):
        raise UnauthorizedException("Invalid user or token expired.")
    return payload

# --- Response Models ---
T = TypeVar("T")

class SuccessResponse(BaseModel, Generic[T]):
    status: str = "ok"
    statusCode: int = 200
    result: Optional[T] = None

class ErrorResponse(BaseModel):
    status: str = "error"
    statusCode: int
    result: str
    details: Optional[Any] = None

class HealthResponse(BaseModel):
    service: str
    status: str
    timestamp: datetime
    version: str
    database: Optional[str] = None
    dependencies: Optional[dict] = None


# --- Exceptions ---
class AppException(HTTPException):
    def __init__(
        self,
        status_code: int = status.HTTP_400_BAD_REQUEST,
        detail: str = "An error occurred",
        headers: Optional[dict] = None,
        details: Optional[Any] = None,
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.details = details

class InvalidInputException(AppException):
    def __init__(self, detail: str = "Invalid input"):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)

class NotFoundException(AppException):
    def __init__(self, detail: str = "Resource not found"):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)

class UnauthorizedException(AppException):
    def __init__(self, detail: str = "Unauthorized"):
         super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"}
        )

class InvalidStateException(AppException):
    def __init__(self, detail: str = "Operation not allowed in the current state"):
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail)

class NoDefaultAddressException(AppException):
    def __init__(self, detail: str = "No default address found. Please add a default address."):
        super().__init__(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=detail)

class ShippingProviderError(AppException):
    """Carrier API failure. ``provider_status`` is the carrier's own status code, if any."""

    def __init__(self, detail: str = "Shipping provider error", provider_status: Optional[int] = None):
        super().__init__(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=detail,
            details={"providerStatusCode": provider_status} if provider_status else None,
        )
        self.provider_status = provider_status

class ShippingProviderTimeout(ShippingProviderError):
    def __init__(self, detail: str = "Shipping provider timed out"):
        super().__init__(detail=detail)
        self.status_code = status.HTTP_504_GATEWAY_TIMEOUT

class UnexpectedException(AppException):
    def __init__(self, detail: str = "Something went wrong."):
        super().__init__(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=detail)

# --- Exception Handlers ---
def error_response(status_code: int, message: str, details: Optional[Any] = None, headers: Optional[dict] = None) -> JSONResponse:
    body = ErrorResponse(statusCode=status_code, result=message, details=details)
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(exclude_none=True),
        headers=headers,
    )

async def app_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return error_response(
        exc.status_code,
        str(exc.detail),
        details=getattr(exc, "details", None),
        headers=getattr(exc, "headers", None),
    )

async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    field = ".".join(str(p) for p in errors[0]["loc"][1:]) if errors else ""
    message = f"Invalid value for '{field}'." if field else "Invalid request."
    return error_response(status.HTTP_400_BAD_REQUEST, message)

async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "Unhandled error",
        exc_info=exc,
        extra={"request_id": getattr(request.state, "request_id", None)},
    )
    return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Something went wrong.")

def setup_exception_handlers(app: FastAPI):
    app.add_exception_handler(StarletteHTTPException, app_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

# --- Decorators/Dependencies ---
async def require_auth(authorization: Optional[str] = Header(None)) -> dict:
    if not authorization:
        raise UnauthorizedException("Authorization header is required.")
    scheme, _, param = authorization.partition(" ")
    if scheme.lower() != "bearer" or not param:
         raise UnauthorizedException("Authorization header is required.")
    return verify_token(param)

async def get_customer_id(authorization: Optional[str] = Header(None)) -> str:
    payload = await require_auth(authorization)
    return payload["sub"]
