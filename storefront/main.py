import logging

from storefront.config import LOG_LEVEL

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

from contextlib import asynccontextmanager  # noqa: E402

from fastapi import FastAPI  # noqa: E402

from storefront.database import Base, engine  # noqa: E402
from storefront.notifications import (  # noqa: E402
    ConnectionDirectory,
    NotificationDispatcher,
    NotificationHub,
)
from storefront.routes import router  # noqa: E402

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    Base.metadata.create_all(bind=engine)
    logger.info("Storefront payment service started")
    yield
    logger.info("Storefront payment service stopped")


def create_app() -> FastAPI:
    app = FastAPI(title="Storefront Payment Service", lifespan=lifespan)

    # Push-channel state lives exactly as long as this app instance
    app.state.connections = ConnectionDirectory()
    app.state.hub = NotificationHub(app.state.connections)
    app.state.dispatcher = NotificationDispatcher(app.state.connections, app.state.hub)

    app.include_router(router)
    return app


app = create_app()
