import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from pymongo.errors import PyMongoError

from config import Settings, get_settings
from database import ConnectionManager
from errors import DatabaseUnavailable, install_error_handlers
from routers import auth, cart, posts, profile, review

logger = logging.getLogger(__name__)


def create_app(manager: Optional[ConnectionManager] = None, settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    manager = manager or ConnectionManager(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        # uvicorn runs this on SIGINT/SIGTERM
        app.state.db_manager.shutdown()

    # App and CORS
    app = FastAPI(title="Farm & Store Marketplace API", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.db_manager = manager
    install_error_handlers(app)

    app.include_router(auth.router, prefix="/auth", tags=["auth"])
    app.include_router(cart.router, prefix="/cart", tags=["cart"])
    app.include_router(posts.router, prefix="/posts", tags=["posts"])
    app.include_router(profile.router, prefix="/profile", tags=["profile"])
    app.include_router(review.router, prefix="/review", tags=["review"])

    # Utility endpoints
    @app.get("/")
    def root():
        return {"message": "Farm & Store Marketplace API running"}

    @app.get("/test")
    def test_database(request: Request):
        mgr: ConnectionManager = request.app.state.db_manager
        try:
            db = mgr.ensure_connected()
            collections = db.list_collection_names()
        except (DatabaseUnavailable, PyMongoError) as e:
            return {"backend": "ok", "database": f"error: {e}", "connected": False}
        return {
            "backend": "ok",
            "database": "ok" if mgr.ping() else "unreachable",
            "connected": mgr.is_connected(),
            "collections": collections,
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=get_settings().port)
