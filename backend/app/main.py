from dotenv import load_dotenv
import pathlib

# Load .env from backend folder (parent of app)
env_path = pathlib.Path(__file__).parent.parent / '.env'
load_dotenv(env_path)

import asyncio
import logging
import os
import sys
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from selector_cache import CacheConfig, SelectorCache
from selector_cache_api import router as selector_cache_router

# ===== WINDOWS FIX FOR PLAYWRIGHT =====
# Fix for Windows: Playwright needs ProactorEventLoop on Windows
if sys.platform == 'win32':
    asyncio.set_event_loop_policy(asyncio.WindowsProactorEventLoopPolicy())
# ======================================

logger = logging.getLogger(__name__)


def create_app(config: Optional[CacheConfig] = None) -> FastAPI:
    """
    Build the API app.

    Args:
        config: Cache configuration; read from SELECTOR_CACHE_* variables
            when omitted
    """
    config = config or CacheConfig.from_env(env_path if env_path.exists() else None)

    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        cache = SelectorCache(config)
        await cache.init()
        app.state.selector_cache = cache
        logger.info(f"[MAIN] Selector cache ready (db: {config.db_path}, memory-only: {cache.memory_only})")
        try:
            yield
        finally:
            await cache.close()
            app.state.selector_cache = None
            logger.info("[MAIN] Selector cache closed")

    app = FastAPI(title="Selector Cache Service", lifespan=lifespan)

    # CORS Configuration
    # In production, set CORS_ORIGINS environment variable to comma-separated allowed origins
    cors_origins_env = os.getenv("CORS_ORIGINS", "")
    if cors_origins_env:
        allowed_origins = [origin.strip() for origin in cors_origins_env.split(",")]
    else:
        # Development defaults - localhost only
        allowed_origins = [
            "http://localhost:5173",
            "http://localhost:3000",
            "http://127.0.0.1:5173",
            "http://127.0.0.1:3000",
        ]

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "Accept"],
    )

    app.include_router(selector_cache_router)

    @app.get("/health")
    async def health():
        cache = getattr(app.state, "selector_cache", None)
        return {
            "status": "ok" if cache is not None else "starting",
            "memory_only": cache.memory_only if cache is not None else None
        }

    return app


app = create_app()
