from __future__ import annotations

import logging
import re
from contextlib import asynccontextmanager
from typing import Any, Optional

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ..config import Settings
from ..errors import ChannelAlreadyAllowed, PersistenceError
from ..memory.factory import build_memory_store
from ..memory.models import ChannelAllowlistEntry

logger = logging.getLogger("copilot_bot.admin")

CHANNEL_ID_PATTERN = re.compile(r"^\d{17,20}$")


class AppState:
    store: Any = None


app_state = AppState()


class InstructionsUpdate(BaseModel):
    instructions: Optional[str] = None


class ChannelCreate(BaseModel):
    channel_id: Optional[str] = None
    channel_name: Optional[str] = None
    server_id: Optional[str] = None
    server_name: Optional[str] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = Settings.from_env()
    settings.validate_storage()
    app_state.store = build_memory_store(settings)
    await app_state.store.init()
    yield
    await app_state.store.close()
    app_state.store = None


app = FastAPI(title="Discord Copilot Admin API", lifespan=lifespan)


def _error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


def _normalize_paging(limit: int, offset: int, *, default_limit: int, max_limit: int) -> tuple[int, int]:
    try:
        safe_limit = int(limit)
    except (TypeError, ValueError):
        safe_limit = default_limit
    try:
        safe_offset = int(offset)
    except (TypeError, ValueError):
        safe_offset = 0
    if safe_limit <= 0:
        safe_limit = default_limit
    safe_limit = min(safe_limit, max_limit)
    safe_offset = max(0, safe_offset)
    return safe_limit, safe_offset


@app.exception_handler(PersistenceError)
async def persistence_error_handler(request: Request, exc: PersistenceError) -> JSONResponse:
    logger.error("Admin API store failure on %s %s: %s", request.method, request.url.path, exc)
    return _error("Storage is unavailable", status.HTTP_500_INTERNAL_SERVER_ERROR)


@app.get("/health")
async def health():
    await app_state.store.ping()
    return {"status": "ok", "backend": app_state.store.backend_name}


@app.get("/api/instructions")
async def get_instructions():
    record = await app_state.store.get_active_instructions()
    if record is None:
        return _error("No active instructions", status.HTTP_404_NOT_FOUND)
    return {"data": record.to_dict()}


@app.post("/api/instructions")
async def update_instructions(body: InstructionsUpdate):
    text = (body.instructions or "").strip()
    if not text:
        return _error("Instructions cannot be empty", status.HTTP_400_BAD_REQUEST)
    record = await app_state.store.set_active_instructions(text)
    return {"data": record.to_dict(), "message": "Instructions updated successfully"}


@app.get("/api/channels")
async def list_channels():
    channels = await app_state.store.list_channels(active_only=True)
    return {"data": [entry.to_dict() for entry in channels]}


@app.post("/api/channels")
async def add_channel(body: ChannelCreate):
    channel_id = (body.channel_id or "").strip()
    if not channel_id:
        return _error("Channel ID is required", status.HTTP_400_BAD_REQUEST)
    if not CHANNEL_ID_PATTERN.match(channel_id):
        return _error("Invalid Discord channel ID format. Must be 17-20 digits.", status.HTTP_400_BAD_REQUEST)
    entry = ChannelAllowlistEntry(
        channel_id=channel_id,
        channel_name=body.channel_name,
        server_id=body.server_id,
        server_name=body.server_name,
    )
    try:
        stored = await app_state.store.add_channel(entry)
    except ChannelAlreadyAllowed:
        return _error("Channel already in allow-list", status.HTTP_409_CONFLICT)
    return JSONResponse(
        {"data": stored.to_dict(), "message": "Channel added to allow-list successfully"},
        status_code=status.HTTP_201_CREATED,
    )


@app.get("/api/channels/{channel_id}")
async def get_channel(channel_id: str):
    entry = await app_state.store.get_channel(channel_id.strip())
    if entry is None:
        return _error("Channel not found", status.HTTP_404_NOT_FOUND)
    return {"data": entry.to_dict()}


@app.delete("/api/channels/{channel_id}")
async def remove_channel(channel_id: str):
    entry = await app_state.store.deactivate_channel(channel_id.strip())
    if entry is None:
        return _error("Channel not found", status.HTTP_404_NOT_FOUND)
    return {"data": entry.to_dict(), "message": "Channel removed from allow-list"}


@app.get("/api/memory")
async def list_memories(limit: int = 50, offset: int = 0):
    limit, offset = _normalize_paging(limit, offset, default_limit=50, max_limit=200)
    memories, total = await app_state.store.list_conversations(limit, offset)
    channels = await app_state.store.list_channels(active_only=False)
    names = {entry.channel_id: entry.channel_name for entry in channels}
    data = []
    for memory in memories:
        item = memory.to_dict()
        item["channel_name"] = names.get(memory.channel_id)
        data.append(item)
    return {
        "data": data,
        "pagination": {
            "total": total,
            "limit": limit,
            "offset": offset,
            "hasMore": offset + limit < total,
        },
    }


# Declared before the per-channel routes so "reset-all" is not read as a channel id.
@app.get("/api/memory/reset-all")
async def reset_all_stats():
    channels, messages = await app_state.store.conversation_stats()
    return {"data": {"total_channels": channels, "total_messages": messages}}


@app.post("/api/memory/reset-all")
async def reset_all_memories():
    count = await app_state.store.reset_all_conversations()
    logger.warning("Admin reset of all conversation memories (%s channels)", count)
    return {"data": {"reset_count": count}, "message": "All memories reset successfully"}


@app.get("/api/memory/{channel_id}")
async def get_memory(channel_id: str):
    memory = await app_state.store.get_conversation(channel_id.strip())
    if memory is None:
        return _error("Memory not found for this channel", status.HTTP_404_NOT_FOUND)
    return {"data": memory.to_dict()}


@app.delete("/api/memory/{channel_id}")
async def reset_memory(channel_id: str):
    existed = await app_state.store.reset_conversation(channel_id.strip())
    return {"data": {"channel_id": channel_id, "reset": existed}, "message": "Conversation memory reset successfully"}


def main() -> None:
    settings = Settings.from_env()
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
    uvicorn.run(app, host=settings.admin_host, port=settings.admin_port)
