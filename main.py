import logging
import sys
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from pymongo.database import Database
from pymongo.errors import PyMongoError

from config import Settings, get_settings
from database import connect, ensure_indexes, ping
from errors import ConfigurationError, register_exception_handlers
from logging_config import add_request_logging, setup_logging
from routers import api_router
from security import TokenService
from seed import seed_admin
from storage import ImageStorage, LocalStorage, build_storage

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    client = app.state.mongo_client
    if client is not None:
        try:
            ping(client)
        except PyMongoError as exc:
            logger.critical("MongoDB is unreachable at %s: %s", app.state.settings.MONGO_URI, exc)
            raise ConfigurationError("Database unreachable at startup") from exc
        logger.info("MongoDB connected successfully.")

    ensure_indexes(app.state.db)
    try:
        seed_admin(app.state.db, app.state.settings)
    except (PyMongoError, ValueError):
        logger.exception("Admin seed error")

    yield

    if client is not None:
        client.close()


def create_app(
    settings: Optional[Settings] = None,
    database: Optional[Database] = None,
    storage: Optional[ImageStorage] = None,
) -> FastAPI:
    settings = settings or get_settings()

    client = None
    if database is None:
        client, database = connect(settings)

    app = FastAPI(title="Marketplace API", version="1.0.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.mongo_client = client
    app.state.db = database
    app.state.tokens = TokenService.from_settings(settings)
    app.state.storage = storage or build_storage(settings)

    if settings.CLIENT_URL:
        origins = [settings.CLIENT_URL]
    else:
        logger.warning("CLIENT_URL environment variable not set. Cross-origin requests will be refused.")
        origins = []
    # a concrete origin is required when credentials are allowed
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    add_request_logging(app)
    register_exception_handlers(app)

    if isinstance(app.state.storage, LocalStorage):
        app.mount("/uploads", StaticFiles(directory=str(app.state.storage.root)), name="uploads")

    app.include_router(api_router)

    @app.get("/")
    def read_root():
        return {"message": "Marketplace API", "health": "/api/health", "docs": "/docs"}

    return app


def run() -> None:
    try:
        settings = get_settings()
        setup_logging(settings.LOG_LEVEL)
        app = create_app(settings)
    except (ConfigurationError, PyMongoError) as exc:
        setup_logging()
        logger.critical("Failed to start server: %s", exc)
        sys.exit(1)

    import uvicorn

    uvicorn.run(app, host=settings.HOST, port=settings.PORT, log_config=None)


if __name__ == "__main__":
    run()
