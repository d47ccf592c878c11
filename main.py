#!/usr/bin/env python3
"""
Secure Document Issuance Service - Backend API
Version: v1.0.0
Issues sealed identity documents (passport, ID card, birth certificate)
and verifies them.
"""

import logging
import sys
from datetime import datetime

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import uvicorn

from securedocs import __version__
from securedocs.config import ANCHOR_URL, ISSUER_NAME, LOG_FILE, SECURITY_DIR
from securedocs.routes import documents_router


# ============================================================================
# Logging
# ============================================================================

def setup_logging():
    """Configure the logging system."""
    handlers = [logging.StreamHandler(sys.stdout)]
    file_error = None

    if LOG_FILE:
        try:
            handlers.append(logging.FileHandler(LOG_FILE, encoding='utf-8'))
        except OSError as e:
            file_error = e

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers
    )
    log = logging.getLogger(__name__)
    if file_error is not None:
        log.warning(f"File logging disabled, cannot open {LOG_FILE}: {file_error}")
    return log

logger = setup_logging()


# ============================================================================
# FastAPI application
# ============================================================================

app = FastAPI(
    title="Secure Document Issuance API",
    version=__version__,
    description="Issuance and verification of sealed identity documents"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(documents_router)


@app.get("/api/health")
async def health_check():
    """Health check"""
    return {
        "status": "healthy",
        "version": __version__,
        "issuer": ISSUER_NAME,
        "timestamp": datetime.now().isoformat(),
    }


# ============================================================================
# Startup
# ============================================================================

if __name__ == "__main__":
    print("=" * 70)
    print(f"Secure Document Issuance Service v{__version__}")
    print("=" * 70)
    print(f"Issuer:        {ISSUER_NAME}")
    print(f"Key custody:   {SECURITY_DIR}")
    print(f"Anchoring:     {ANCHOR_URL or 'offline (anchors stay pending)'}")
    print(f"API docs:      http://localhost:8090/docs")
    print(f"Health check:  http://localhost:8090/api/health")
    print("=" * 70)

    uvicorn.run(
        app,
        host="0.0.0.0",
        port=8090,
        log_level="info",
        access_log=True
    )
