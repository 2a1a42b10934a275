"""chatgate backend application.

This is the main entry point for the chatgate service: a passcode-gated
group chat with permanent and ephemeral rooms, message edit / unsend /
reactions, presence, typing indicators and WebRTC call signaling.

Modules:
    - chat: WebSocket orchestrator, rooms, presence, session gate, signaling
    - messages: message schemas, DuckDB store, lifecycle manager
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from chatgate.chat.router import router as chat_router
from chatgate.config import get_config
from chatgate.messages.store import MessageStore

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

for _noisy in ("uvicorn.access", "websockets", "websockets.server"):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown events."""
    # Startup
    config = get_config()

    configured_level = getattr(logging, config.logging.level.upper(), None)
    if configured_level is not None:
        logging.getLogger().setLevel(configured_level)
        logger.info("Root logger level set to %s", config.logging.level.upper())

    # A missing or unreachable store is fatal: ConfigError / StoreUnavailable
    # propagate and abort startup.
    store = MessageStore.get_instance(
        config.require_store_url(), config.store.sweep_interval_seconds
    )
    await store.start()
    logger.info(
        "chatgate ready on http://%s:%s",
        config.server.host,
        config.server.port,
    )

    yield  # Application runs here

    # Shutdown
    await store.stop()
    MessageStore.reset_instance()
    logger.info("Application shutdown complete")


app = FastAPI(
    title="chatgate API",
    description="Passcode-gated real-time group chat",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(chat_router)


@app.get("/health")
async def health() -> dict:
    """Health check endpoint.

    Returns:
        dict: Status object indicating the server is running.
    """
    return {"status": "ok"}


def run() -> None:
    """Console entry point: serve the app with uvicorn."""
    import uvicorn

    config = get_config()
    uvicorn.run(
        "chatgate.main:app",
        host=config.server.host,
        port=config.server.port,
        log_level=config.logging.level,
    )


if __name__ == "__main__":
    run()
