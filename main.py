from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response
from starlette.requests import Request
from helaloans.api.auth_routes import router as auth_router
from helaloans.api.loan_routes import router as loan_router
from helaloans.api.payment_routes import router as payment_router
from helaloans.api.admin_routes import router as admin_router
from helaloans.api.audit_routes import router as audit_router
from helaloans.api.support_routes import router as support_router
from contextlib import asynccontextmanager
from helaloans.database.connection import init_db, close_db
from helaloans.core.config import settings
from helaloans.core.errors import HelaError
from fastapi.exceptions import RequestValidationError
from fastapi import HTTPException
from fastapi.responses import JSONResponse
from typing import Any, Optional
import logging

logger = logging.getLogger("helaloans.api")

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Permissions-Policy": "geolocation=(), microphone=(), camera=()",
}


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Adds security headers to every non-preflight response."""

    async def dispatch(self, request: Request, call_next) -> Response:
        response = await call_next(request)
        if request.method != "OPTIONS":
            response.headers.update(SECURITY_HEADERS)
        return response


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    yield
    close_db()

app = FastAPI(
    title="Hela Loans API",
    description="Micro-loan applications, M-Pesa activation fees and savings deposits",
    version="1.0.0",
    lifespan=lifespan
)


def error_response(status_code: int, code: str, message: Any, details: Optional[Any] = None,
                   headers: Optional[dict] = None) -> JSONResponse:
    body = {"error": {"code": code, "message": message, "status_code": status_code}}
    if details:
        body["error"]["details"] = details
    return JSONResponse(status_code=status_code, content=body, headers=headers)


@app.exception_handler(HelaError)
async def hela_error_handler(request: Request, exc: HelaError):
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(f"{exc.__class__.__name__} on {request.method} {request.url.path}: {exc.message}")
    return error_response(exc.status_code, exc.code, exc.message, exc.details)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    logger.warning(f"HTTP {exc.status_code} on {request.url.path}: {exc.detail}")
    return error_response(
        exc.status_code, "http_error", str(exc.detail) if exc.detail else exc.status_code,
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    details = [
        {"loc": list(err.get("loc", [])), "msg": err.get("msg"), "type": err.get("type")}
        for err in exc.errors()
    ]
    logger.warning(f"Request validation failed on {request.url.path}: {details}")
    return error_response(422, "validation_error", "Request validation failed", details)


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled exception on {request.method} {request.url.path}: {exc}")
    return error_response(500, "internal_server_error", "An unexpected error occurred")


# CLIENT_URL may hold several comma-separated origins
allowed_origins = [o.strip() for o in (settings.CLIENT_URL or "").split(",") if o.strip()]
logger.info(f"CORS allowed origins: {allowed_origins}")

# Middleware runs LIFO: CORSMiddleware is added last so it answers preflights first
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "Accept", "Origin", "X-Requested-With"],
    expose_headers=["Content-Type"],
    max_age=3600,
)

for router in (auth_router, loan_router, payment_router, support_router, admin_router, audit_router):
    app.include_router(router)

@app.get("/")
async def root():
    return {"message": "Hela Loans API is running!"}

@app.get("/health")
async def health_check():
    return {"status": "healthy", "message": "API is running"}

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
