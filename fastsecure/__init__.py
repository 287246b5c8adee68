"""fastsecure: guarded file downloads and XSRF tokens over FastAPI."""

from contextlib import asynccontextmanager

from fastapi import FastAPI

from fastsecure.logging import logger
from fastsecure.routes import cleanup_expired_tokens, sec
from fastsecure.sql_db import models
from fastsecure.sql_db.database import engine


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Drop tokens left over from before the restart
    cleanup_expired_tokens()
    yield


def create_app() -> FastAPI:
    """Create the application and its token table."""
    models.base.metadata.create_all(bind=engine)

    app = FastAPI(title="fastsecure", lifespan=lifespan)
    app.include_router(sec)

    @app.get("/health")
    def health_check():
        return {"status": "ok"}

    logger.info("Starting fastsecure server...")
    return app


app = create_app()


def main():
    """Console entry point: serve the app with uvicorn."""
    import uvicorn
    uvicorn.run("fastsecure:app", host="0.0.0.0", port=8000, reload=False)
