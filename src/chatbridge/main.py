import logging
from contextlib import asynccontextmanager
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from .agent import ChatAgentService
from .errors import (
    ConfigurationError,
    ModelAPIError,
    ModelProtocolError,
    ModelTransportError,
)
from .services.conversation_store import get_conversation_store
from .services.model_gateway import ModelGateway
from .settings import get_settings


def setup_server_logging(level: str = "INFO") -> logging.Logger:
    """Configure and return the server logger."""
    logs_dir = Path("logs")
    logs_dir.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger("chatbridge")
    if logger.handlers:
        return logger

    logger.setLevel(level)
    fmt = logging.Formatter("%(asctime)s %(levelname)s %(name)s - %(message)s")

    ch = logging.StreamHandler()
    ch.setFormatter(fmt)
    logger.addHandler(ch)

    fh = RotatingFileHandler(logs_dir / "server.log", maxBytes=5_000_000, backupCount=3)
    fh.setFormatter(fmt)
    logger.addHandler(fh)

    return logger


def _cors_origins_list(origins: str) -> list[str]:
    """Parse CORS_ORIGINS into a list."""
    if not origins or origins.strip() == "*":
        return ["*"]
    return [o.strip() for o in origins.split(",") if o.strip()]


settings = get_settings()
LOGGER = setup_server_logging(settings.log_level)


class ChatRequest(BaseModel):
    chat_id: str = Field(min_length=1)
    message: str = Field(min_length=1)


class ChatResponse(BaseModel):
    chat_id: str
    response: str


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Restore conversations and start the expiry sweep; stop both on shutdown."""
    store = get_conversation_store()
    store.init()
    store.start()
    gateway = ModelGateway(settings)
    app.state.store = store
    app.state.gateway = gateway
    app.state.agent = ChatAgentService(store=store, gateway=gateway)
    LOGGER.info("Chat bridge ready (model=%s)", settings.event_handler_model)

    yield

    LOGGER.info("Shutting down...")
    await store.stop()
    await gateway.aclose()


app = FastAPI(
    title="Chat Bridge",
    version="0.1.0",
    debug=settings.debug,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins_list(settings.cors_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
async def health(request: Request) -> dict[str, Any]:
    """Health check with conversation store stats."""
    return {"status": "ok", "store": request.app.state.store.get_stats()}


@app.post("/chat", response_model=ChatResponse)
async def chat(body: ChatRequest, request: Request) -> ChatResponse:
    """Run one turn for chat_id and return the model's final text."""
    agent: ChatAgentService = request.app.state.agent
    try:
        result = await agent.handle_message(body.chat_id, body.message)
    except ConfigurationError as e:
        LOGGER.error("Configuration error: %s", e)
        raise HTTPException(status_code=500, detail=str(e)) from e
    except (ModelAPIError, ModelProtocolError, ModelTransportError) as e:
        LOGGER.exception("Model call failed for chat %s: %s", body.chat_id, e)
        raise HTTPException(status_code=502, detail=str(e)) from e
    return ChatResponse(chat_id=body.chat_id, response=result.response)


@app.delete("/chat/{chat_id}")
async def clear_chat(chat_id: str, request: Request) -> dict[str, Any]:
    """Forget the stored conversation for chat_id."""
    request.app.state.agent.reset(chat_id)
    return {"status": "cleared", "chat_id": chat_id}
