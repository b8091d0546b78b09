"""
Ledgerbook API Application Factory
"""

from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .. import __version__
from ..errors import InternalError, LedgerbookError
from ..logging_config import get_logger, log_action
from .dependencies import BookkeepingSystem
from .accounts import router as accounts_router
from .gst import router as gst_router
from .ledgers import router as ledgers_router
from .tally import router as tally_router
from .tenants import router as tenants_router
from .transactions import router as transactions_router
from .vouchers import router as vouchers_router


logger = get_logger("ledgerbook.api")


def _failure(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "message": message})


def create_app(system: Optional[BookkeepingSystem] = None) -> FastAPI:
    """Create and configure the FastAPI application around a bookkeeping system"""
    system = system or BookkeepingSystem()
    config = system.config

    app = FastAPI(
        title=config.api_title,
        description="Multi-tenant double-entry bookkeeping with GST and Tally Excel interchange",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc"
    )
    app.state.system = system

    origins = [origin.strip() for origin in config.cors_origins.split(",") if origin.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(LedgerbookError)
    async def ledgerbook_error_handler(request: Request, exc: LedgerbookError):
        level = "error" if exc.status_code >= 500 else "warning"
        log_action(logger, level, exc.message, tenant_id=request.headers.get("X-Tenant-ID"),
                   action=f"{request.method} {request.url.path}",
                   extra={"status_code": exc.status_code})
        return _failure(exc.status_code, exc.message)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        if errors:
            first = errors[0]
            location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
            message = f"{location}: {first.get('msg')}" if location else first.get("msg")
        else:
            message = "Invalid request"
        return _failure(400, message)

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        return _failure(exc.status_code, str(exc.detail))

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        log_action(logger, "error", f"Unhandled error: {exc}",
                   tenant_id=request.headers.get("X-Tenant-ID"),
                   action=f"{request.method} {request.url.path}",
                   extra={"status_code": 500, "error_type": type(exc).__name__})
        return _failure(InternalError.status_code, "Internal server error")

    app.include_router(tenants_router, prefix="/tenants", tags=["Tenants"])
    app.include_router(ledgers_router, prefix="/ledgers", tags=["Ledgers"])
    app.include_router(accounts_router, prefix="/accounts", tags=["Accounts"])
    app.include_router(transactions_router, prefix="/transactions", tags=["Transactions"])
    app.include_router(vouchers_router, prefix="/vouchers", tags=["Vouchers"])
    app.include_router(gst_router, prefix="/gst", tags=["GST"])
    app.include_router(tally_router, prefix="/tally", tags=["Tally"])

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "ledgerbook_api",
            "version": __version__
        }

    @app.get("/")
    async def get_api_info():
        """Get API information"""
        return {
            "name": config.api_title,
            "version": __version__,
            "endpoints": {
                "docs": "/docs",
                "health": "/health",
                "tenants": "/tenants",
                "ledgers": "/ledgers",
                "accounts": "/accounts",
                "transactions": "/transactions",
                "vouchers": "/vouchers",
                "gst": "/gst",
                "tally": "/tally",
            }
        }

    return app
