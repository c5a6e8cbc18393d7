"""
Deep Tech Accounts - Main FastAPI Application
Combines modules: auth (DTUsers), admin
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from .core.config import CORS_ORIGINS
from .core.database import engine, Base
from .core.exceptions import AccountError
from .models import Account, VerificationCode  # noqa: F401  registers tables

# Import routers
from .modules.auth import router as auth_router
from .modules.admin import router as admin_router

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events"""
    logger.info("Deep Tech Accounts starting up...")

    # Create database tables
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables created/verified")

    yield

    logger.info("Deep Tech Accounts shutting down...")


# Create FastAPI app
app = FastAPI(
    title="Deep Tech Accounts API",
    description="""
    Deep Tech account lifecycle API

    ## Modules:
    - **Auth**: DTUser registration, email verification, password setup, login, recovery
    - **Admin**: Admin creation with OTP verification, admin login, DTUser review
    """,
    version="1.0.0",
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============ ERROR ENVELOPE ============
@app.exception_handler(AccountError)
async def account_error_handler(request: Request, exc: AccountError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = {}
    for err in exc.errors():
        loc = [str(part) for part in err["loc"] if part != "body"]
        field = ".".join(loc) or "body"
        errors[field] = err["msg"]

    return JSONResponse(
        status_code=400,
        content={
            "success": False,
            "message": "Validation error",
            "errors": errors
        }
    )


@app.exception_handler(SQLAlchemyError)
async def database_exception_handler(request: Request, exc: SQLAlchemyError):
    logger.exception(f"Database error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=500,
        content={"success": False, "message": "Internal server error"}
    )


# Include routers
app.include_router(auth_router, prefix="/auth", tags=["Auth"])
app.include_router(admin_router, prefix="/admin", tags=["Admin"])


# ============ HEALTH CHECK ============
@app.get("/api/health")
def health_check():
    """Health check endpoint"""
    return {
        "status": "ok",
        "message": "Deep Tech Accounts API is running",
        "version": "1.0.0"
    }


@app.get("/")
def root():
    """Root endpoint - API info"""
    return {
        "name": "Deep Tech Accounts API",
        "version": "1.0.0",
        "docs": "/docs",
        "modules": ["auth", "admin"]
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
