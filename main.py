from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from app.database.databse import test_connection
from app.api import api_router
from app.api.errors import register_exception_handlers
from app.database.migration import run_migration
import logging
import os

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

APP_VERSION = "1.0.0"

app = FastAPI(
    title="Expense Approval Workflow API",
    description="Multi-tenant expense submission with rule-based, multi-level approval",
    version=APP_VERSION,
)

# CORS configuration
DEFAULT_ORIGINS = [
    "http://localhost:3000",
    "https://localhost:3000",
    "http://127.0.0.1:3000",
    "https://127.0.0.1:3000",
]
origins = [origin.strip() for origin in os.getenv("CORS_ORIGINS", "").split(",") if origin.strip()] or DEFAULT_ORIGINS

# Allow all origins in production if RENDER environment is detected
if os.getenv("RENDER") or os.getenv("RAILWAY_ENVIRONMENT"):
    origins = ["*"]
    logger.info("Production environment detected, allowing all origins")

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

@app.on_event("startup")
def startup_event():
    """Run startup tasks"""
    logger.info("Starting up Expense Approval Workflow API...")

    if not test_connection():
        logger.error("Database connection failed, skipping migration")
        return

    run_migration()
    logger.info("Startup completed!")

app.include_router(api_router)

@app.get("/")
def read_root():
    return {
        "message": "Welcome to the Expense Approval Workflow API",
        "version": APP_VERSION,
        "status": "running"
    }

@app.get("/health")
def health_check():
    """Health check endpoint for deployment platforms"""
    db_status = test_connection()
    if not db_status:
        raise HTTPException(status_code=503, detail="Database unavailable")
    return {
        "status": "healthy",
        "database": "connected",
        "version": APP_VERSION
    }
