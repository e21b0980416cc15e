"""FastAPI application entry point."""

import logging
import os
from contextlib import asynccontextmanager

import structlog
import uvicorn
from fastapi import FastAPI, Request, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .api.routes import router
from .api.websocket import handle_browser_websocket
from .config import Settings, get_settings
from .hub import HubRegistry, create_generation_client, create_profile_store
from .speech.adapter import SpeechAdapter


def configure_logging() -> None:
    """JSON logs in production, console logs otherwise."""
    is_production = os.getenv("ENV", "development").lower() == "production"
    renderer = structlog.processors.JSONRenderer() if is_production else structlog.dev.ConsoleRenderer()
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.INFO if is_production else logging.DEBUG
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def create_registry(settings: Settings) -> HubRegistry:
    generator = create_generation_client(settings)
    speech = SpeechAdapter(
        generator,
        tts_model=settings.tts_model,
        voice=settings.tts_voice,
        transcription_model=settings.transcription_model,
        sample_rate=settings.audio_sample_rate,
        input_device=settings.audio_input_device,
        output_device=settings.audio_output_device,
    )
    return HubRegistry(settings, create_profile_store(settings), generator, speech)


def create_app(settings: Settings | None = None, registry: HubRegistry | None = None) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.registry = registry or create_registry(settings)
        yield
        await app.state.registry.aclose()

    app = FastAPI(title="Adaptive Learning Hub", version="0.1.0", lifespan=lifespan)
    allowed_origins_env = os.getenv(
        "ALLOWED_ORIGINS", "http://localhost:8000,http://127.0.0.1:8000"
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[o.strip() for o in allowed_origins_env.split(",")],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(router)

    @app.middleware("http")
    async def auth_middleware(request: Request, call_next):
        """Optional APP_SECRET check on every API request."""
        if not settings.app_secret or request.url.path == "/api/health":
            return await call_next(request)
        if request.headers.get("X-App-Secret", "") != settings.app_secret:
            return JSONResponse({"error": "Unauthorized"}, status_code=401)
        return await call_next(request)

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket) -> None:
        if settings.app_secret and websocket.headers.get("X-App-Secret", "") != settings.app_secret:
            await websocket.close(code=1008, reason="Unauthorized")
            return
        await handle_browser_websocket(websocket, websocket.app.state.registry)

    return app


def main() -> None:
    """Run the application."""
    configure_logging()
    settings = get_settings()
    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        reload=False,
        log_level="info",
    )


if __name__ == "__main__":
    main()
