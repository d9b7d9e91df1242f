"""
KasMail Backend API
FastAPI application for wallet-identified messaging with on-chain proof of payment.
"""

import logging
import os
from typing import List

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from kasmail.routers import messages
from kasmail.db import supabase_admin
from kasmail.services.attachments import ATTACHMENTS_BUCKET
from kasmail.services.committer import MESSAGES_TABLE

# Configure logging to output to console
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

logger = logging.getLogger(__name__)

app = FastAPI(
    title="KasMail API",
    description="Wallet-identified messaging with anti-bot proof of payment",
    version="0.1.0",
)


def get_cors_origins() -> List[str]:
    """
    Build the list of allowed CORS origins.

    Always includes the Vite dev server (http://localhost:5173) and its
    preview port (http://localhost:4173). Additional origins are read from the
    CORS_ORIGINS environment variable as a comma-separated list, e.g.:
        CORS_ORIGINS=https://kasmail.com,https://preview.kasmail.com

    Duplicates are removed while preserving order.
    """
    always_included = [
        "http://localhost:5173",
        "http://localhost:4173",
    ]

    extra_origins: List[str] = []
    cors_env = os.getenv("CORS_ORIGINS", "").strip()
    if cors_env:
        extra_origins = [o.strip() for o in cors_env.split(",") if o.strip()]

    seen: set = set()
    origins: List[str] = []
    for origin in always_included + extra_origins:
        if origin not in seen:
            seen.add(origin)
            origins.append(origin)

    return origins


app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(messages.router, prefix="/api/messages", tags=["messages"])


@app.on_event("startup")
async def log_startup_urls() -> None:
    """Log the URL the API is reachable at (HOST_PORT, default 8000)."""
    host_port = os.getenv("HOST_PORT", "8000")
    logger.info("KasMail API running at: http://localhost:%s", host_port)


@app.get("/")
async def root():
    return {"message": "KasMail API", "version": "0.1.0"}


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/health/db")
async def health_db():
    """
    Test the Supabase database connection.

    Selects one row id from the emails table. Returns 503 on failure.
    """
    if supabase_admin is None:
        raise HTTPException(
            status_code=503,
            detail="Database client unavailable: SUPABASE_SERVICE_KEY is not configured",
        )

    try:
        supabase_admin.table(MESSAGES_TABLE).select("id").limit(1).execute()
        return {"status": "ok", "database": "reachable"}
    except Exception as exc:
        logger.error(f"Database health check failed: {exc}")
        raise HTTPException(
            status_code=503,
            detail=f"Database connection failed: {str(exc)}",
        )


@app.get("/health/storage")
async def health_storage():
    """
    Test Supabase Storage access.

    Lists storage buckets and verifies the attachments bucket exists.
    Returns 503 if storage is unreachable or the bucket is missing.
    """
    if supabase_admin is None:
        raise HTTPException(
            status_code=503,
            detail="Storage client unavailable: SUPABASE_SERVICE_KEY is not configured",
        )

    try:
        buckets = supabase_admin.storage.list_buckets()
        bucket_names = [b.name for b in buckets]

        if ATTACHMENTS_BUCKET not in bucket_names:
            raise HTTPException(
                status_code=503,
                detail=f"Storage bucket '{ATTACHMENTS_BUCKET}' not found",
            )

        return {"status": "ok", "storage": "reachable", "bucket": ATTACHMENTS_BUCKET}
    except HTTPException:
        raise
    except Exception as exc:
        logger.error(f"Storage health check failed: {exc}")
        raise HTTPException(
            status_code=503,
            detail=f"Storage check failed: {str(exc)}",
        )
