import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

# --- FASTAPI IMPORTS ---
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo import monitoring
import uvicorn

# --- LOCAL MODULES ---
from civic_connect.core.config import Settings
from civic_connect.core.database import Database
from civic_connect.services.ai_service import GeminiSummarizer
from civic_connect.services.feed_service import FeedService
from civic_connect.services.geocode_service import ReverseGeocoder
from civic_connect.services.i18n_service import Translator
from civic_connect.services.mongodb_service import MongoStore
from civic_connect.services.storage_service import ImageStorage
from civic_connect.services.upvote_service import UpvoteGuardRegistry
from civic_connect.utils.timing_middleware import CommandLogger, TimingMiddleware

# --- ROUTES ---
from civic_connect.routes.auth import router as auth_router
from civic_connect.routes.feed_socket import router as feed_socket_router
from civic_connect.routes.issues import router as issues_router
from civic_connect.routes.storage import router as storage_router

# --- LOGGING SETUP ---
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S"
)
logger = logging.getLogger(__name__)

monitoring.register(CommandLogger())


# --- LIFESPAN CONTEXT MANAGER ---
@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("🚀 Starting Civic Connect backend...")
    settings: Settings = app.state.settings

    database = Database(settings)
    app.state.database = database
    if await database.connect():
        app.state.store = MongoStore(database.db, list_timeout_ms=settings.list_timeout_ms)
        app.state.storage = ImageStorage(database.fs, settings.public_base_url)
        logger.info("✅ MongoDB service initialized")
    else:
        logger.error("❌ MongoDB unavailable; data endpoints will answer 503")

    storage = getattr(app.state, "storage", None)
    summarizer = GeminiSummarizer(
        settings.gemini_api_key,
        settings.gemini_model,
        url_resolver=storage.public_url if storage else None,
    )
    if getattr(app.state, "store", None) is not None:
        app.state.feed_service = FeedService(
            app.state.store,
            summarizer,
            nearby_threshold_km=settings.nearby_threshold_km,
            ai_max_concurrency=settings.ai_max_concurrency,
            ai_timeout_seconds=settings.ai_timeout_seconds,
        )
        app.state.upvotes = UpvoteGuardRegistry(app.state.store)

    app.state.geocoder = ReverseGeocoder(settings.nominatim_url, timeout=settings.geocode_timeout_seconds)
    logger.info("✅ All services initialized - Server ready!")

    yield

    # Shutdown
    logger.info("🔄 Shutting down...")
    await app.state.geocoder.close()
    await database.close()
    logger.info("✅ All services closed gracefully")


def create_app(settings: Optional[Settings] = None, translator: Optional[Translator] = None) -> FastAPI:
    """
    Build the application. Services that need a running event loop (database,
    storage, feed) are attached in the lifespan; tests may set them on
    app.state directly instead.
    """
    settings = settings or Settings.from_env()
    translator = translator or Translator.from_directory(default_language=settings.default_language)

    app = FastAPI(title="Civic Connect Backend", lifespan=lifespan)
    app.state.settings = settings
    app.state.translator = translator
    app.state.database = None
    app.state.store = None
    app.state.storage = None
    app.state.feed_service = None
    app.state.upvotes = None
    app.state.geocoder = None

    # --- MIDDLEWARE ---
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(TimingMiddleware, slow_ms=settings.slow_request_ms)

    # --- REQUEST LOGGING ---
    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        path = request.url.path
        if not path.startswith("/api/storage"):
            logger.info(f"📥 {request.method} {path}")
        try:
            return await call_next(request)
        except Exception as e:
            logger.error(f"💥 Error causing 500: {path} - {e}", exc_info=True)
            return JSONResponse(status_code=500, content={"detail": "Internal server error"})

    # --- ROUTER MOUNTING ---
    app.include_router(auth_router, prefix="/api/auth", tags=["Auth"])
    app.include_router(issues_router, prefix="/api", tags=["Issues"])
    app.include_router(storage_router, prefix="/api", tags=["Storage"])
    app.include_router(feed_socket_router, tags=["Feed"])

    @app.get("/api/health")
    async def health_check(request: Request):
        database = request.app.state.database
        db_ok = bool(database is not None and await database.ping())
        return {
            "status": "healthy" if db_ok else "degraded",
            "database": "connected" if db_ok else "unavailable",
            "timestamp": datetime.utcnow().isoformat(),
        }

    @app.get("/api/i18n/{lang}")
    async def get_translations(lang: str, request: Request):
        translator: Translator = request.app.state.translator
        if not translator.supports(lang):
            raise HTTPException(status_code=404, detail=translator.t("unsupportedLanguage"))
        return translator.table(lang)

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run("civic_connect.main:app", host="0.0.0.0", port=8000, reload=False)
