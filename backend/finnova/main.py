import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import database
from .ai.gemini_client import GeminiClient
from .auth import router as auth_router
from .chat.registry import SessionRegistry
from .chat.routes import router as chat_router
from .chat.session import ChatSessionManager
from .config import settings
from .dashboard import router as dashboard_router
from .insights import router as insights_router
from .logging_setup import configure_logging
from .records import router as records_router
from .store import RecordStore

logger = logging.getLogger(__name__)


def build_session_registry() -> SessionRegistry:
    provider = GeminiClient(
        api_key=settings.gemini_api_key,
        model=settings.gemini_model,
    )

    def new_manager() -> ChatSessionManager:
        # Without a pool the summary reads fail and fall back to zero totals.
        return ChatSessionManager(RecordStore(database.pool), provider)

    return SessionRegistry(new_manager)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.log_level)
    await database.init_db_pool()
    app.state.chat_sessions = build_session_registry()
    logger.info("%s started", settings.app_name)
    yield
    await app.state.chat_sessions.close_all()
    await database.close_db_pool()


app = FastAPI(title=settings.app_name, lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in settings.cors_allow_origins.split(",") if origin.strip()],
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(auth_router)
app.include_router(records_router)
app.include_router(chat_router)
app.include_router(insights_router)
app.include_router(dashboard_router)


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}
