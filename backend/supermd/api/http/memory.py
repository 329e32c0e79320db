"""HTTP endpoints for agent memory."""

from __future__ import annotations

from typing import Literal

from fastapi import APIRouter, BackgroundTasks, Depends

from supermd.api.http.dependencies import get_current_user_id
from supermd.memory import (
    AgentMemoryService,
    MemoryEntryInput,
    collect_conversation_context,
    get_memory_service,
)
from supermd.schemas.memory import (
    MemoryAppendRequest,
    MemoryAppendResponse,
    MemoryContextResponse,
)

router = APIRouter(prefix="/api/memory", tags=["memory"])

Mode = Literal["rag", "research"]


@router.get("/{mode}", response_model=MemoryContextResponse)
async def get_memory_context(
    mode: Mode,
    user_id: str = Depends(get_current_user_id),
    service: AgentMemoryService = Depends(get_memory_service),
) -> MemoryContextResponse:
    window = await service.get_context(user_id, mode)
    context = collect_conversation_context(window)
    return MemoryContextResponse.from_window(
        mode,
        window,
        max_tokens=service.max_tokens,
        last_query=context.last_query,
        last_answer=context.last_answer,
        last_sources=context.last_sources,
    )


@router.post("/{mode}", response_model=MemoryAppendResponse, status_code=201)
async def append_memory(
    mode: Mode,
    payload: MemoryAppendRequest,
    background_tasks: BackgroundTasks,
    user_id: str = Depends(get_current_user_id),
    service: AgentMemoryService = Depends(get_memory_service),
) -> MemoryAppendResponse:
    """Record turns; trimming runs after the response is sent."""
    created = await service.append(
        user_id,
        mode,
        [
            MemoryEntryInput(role=entry.role, content=entry.content, metadata=entry.metadata)
            for entry in payload.entries
        ],
        trim=False,
    )
    if created:
        background_tasks.add_task(service.trim, user_id, mode)
    return MemoryAppendResponse(
        mode=mode,
        appended=len(created),
        entry_ids=[entry.id for entry in created],
        trim_scheduled=bool(created),
    )
