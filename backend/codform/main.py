import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware

from . import config
from .db import init_db
from .admin_routes import router as admin_router
from .proxy_routes import router as proxy_router
from .shopify_oauth_routes import router as oauth_router

logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

# ---------- FastAPI ----------
app = FastAPI(title="COD Order Form API", version="1.0.0")
app.include_router(proxy_router)
app.include_router(admin_router)
app.include_router(oauth_router)

# Storefront widget and embedded admin are served from Shopify domains
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(GZipMiddleware, minimum_size=500)


@app.get("/api/health")
async def health():
    return {"ok": True}


# Ensure database tables exist on startup
@app.on_event("startup")
async def _init_db_tables():
    await init_db()


# Log routes on startup to verify ordering and presence
@app.on_event("startup")
async def _log_routes():
    logger.info("Registered routes in order:")
    for r in app.router.routes:
        path = getattr(r, "path", "?")
        name = getattr(r, "name", "")
        logger.info(" - %s: %s (%s)", r.__class__.__name__, path, name)
