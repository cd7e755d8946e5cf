"""Main FastAPI application."""
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from gymledger.config import settings
from gymledger.accounting import routes as accounting_routes
from gymledger.accounting.errors import AccountingError
from gymledger.middleware import setup_rate_limiting

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title="GymLedger API",
    description="Sync gym payments to QuickBooks Online and Xero",
    version="0.1.0",
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

setup_rate_limiting(app)


@app.exception_handler(AccountingError)
async def accounting_error_handler(request: Request, exc: AccountingError):
    """Render accounting errors as {"error", "message"} with their status code."""
    if exc.status_code >= 500:
        logger.error(f"{exc.error} on {request.method} {request.url.path}: {exc.message}")
        if exc.detail:
            logger.error(f"Provider response: {exc.detail}")
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.error, "message": exc.message},
        headers=headers,
    )


# Include routers
app.include_router(
    accounting_routes.router,
    prefix=f"{settings.API_V1_PREFIX}/accounting",
    tags=["Accounting"],
)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "GymLedger API",
        "version": "0.1.0",
        "docs": "/docs",
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "gymledger.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
