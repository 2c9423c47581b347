"""
main.py — VeriID Entry Point
==============================
Starts the identity ledger service:
    1. Creates the FastAPI app
    2. Prepares the ledger store (creates tables when LEDGER_STORE=sql)
    3. Connects the event anchoring chain
    4. Registers the identity and verification routers

Run with:
    uvicorn main:app --reload --host 0.0.0.0 --port 8000
"""

import logging
import uvicorn
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import settings

from db.session import init_db
from core.blockchain import blockchain
from core.errors import VeriIDError

from api.routes_identity import router as identity_router
from api.routes_verify import router as verify_router


# ── Logging setup ─────────────────────────────────────────────────────────────
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    handlers=[
        logging.StreamHandler(),
        logging.FileHandler(settings.LOG_FILE),
    ],
)
logger = logging.getLogger("veriid.main")


# ── Lifespan: runs on startup and shutdown ────────────────────────────────────
@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    logger.info(f"Environment: {settings.ENVIRONMENT}")

    if settings.LEDGER_STORE.lower() == "sql":
        logger.info("Connecting to database...")
        await init_db()
        logger.info("✓ Database ready")

    logger.info(f"Connecting to chain ({settings.BLOCKCHAIN_BACKEND})...")
    await blockchain.connect()
    logger.info(f"✓ Chain connected — backend: {settings.BLOCKCHAIN_BACKEND}")

    yield

    logger.info("Shutting down — closing connections...")
    await blockchain.disconnect()
    logger.info("✓ Shutdown complete")


# ── Create the FastAPI app ────────────────────────────────────────────────────
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Privacy-preserving identity commitments and code-bound verification",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── Error translation ─────────────────────────────────────────────────────────
@app.exception_handler(VeriIDError)
async def veriid_error_handler(request: Request, exc: VeriIDError):
    logger.warning(f"{request.method} {request.url.path} → {exc.code}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# ── Register all routers ──────────────────────────────────────────────────────
app.include_router(identity_router, prefix="/identity", tags=["Identity"])
app.include_router(verify_router,   prefix="/verify",   tags=["Verification"])


@app.get("/", tags=["Status"])
async def root():
    return {
        "system": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "operational",
        "ledger_store": settings.LEDGER_STORE,
        "blockchain": settings.BLOCKCHAIN_BACKEND,
        "docs": "/docs",
    }


@app.get("/health-check", tags=["Status"])
async def health_check():
    return {
        "api": "ok",
        "blockchain": await blockchain.ping(),
    }


if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower(),
    )
