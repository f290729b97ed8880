"""Main FastAPI application."""
from contextlib import asynccontextmanager

from fastapi import FastAPI

from voicechat.api import agent, auth, debug, health, sip, token
from voicechat.core.config import get_settings
from voicechat.core.logging import setup_logging
from voicechat.services.logs.buffer import LogBuffer


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    setup_logging()
    yield


def create_app() -> FastAPI:
    """Build the application with its own diagnostic log buffer."""
    app = FastAPI(
        title="Voice Chat Gateway",
        description="Token, agent and SIP proxy for browser voice chat",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.log_buffer = LogBuffer(capacity=get_settings().log_buffer_size)

    app.include_router(health.router, tags=["health"])
    app.include_router(token.router, tags=["token"])
    app.include_router(agent.router, tags=["agent"])
    app.include_router(sip.router, tags=["sip"])
    app.include_router(auth.router, tags=["auth"])
    app.include_router(debug.router, tags=["debug"])
    return app


app = create_app()


def run() -> None:
    """Serve the app with uvicorn on the configured host and port."""
    import uvicorn

    settings = get_settings()
    uvicorn.run("voicechat.main:app", host=settings.host, port=settings.port)


if __name__ == "__main__":
    run()
