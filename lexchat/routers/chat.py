from __future__ import annotations

import asyncio
from typing import AsyncGenerator, List, Literal, Optional

import structlog
from fastapi import APIRouter, HTTPException, Request, status
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ConfigDict, Field

from lexchat.orchestrators.chat_orchestrator import ChatSession
from lexchat.schemas.chat import ChatRequest, HistoryTurn

logger = structlog.get_logger(__name__)
router = APIRouter()

DISCONNECT_POLL_SECONDS = 0.5


class HistoryTurnBody(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class ChatRequestBody(BaseModel):
    """Inbound chat request."""

    model_config = ConfigDict(populate_by_name=True)

    query: str = Field(min_length=1, max_length=20000)
    history: List[HistoryTurnBody] = Field(default_factory=list)
    budget: Literal["quick", "standard", "deep"] = "standard"
    conversation_id: Optional[str] = Field(default=None, alias="conversationId")
    user_id: Optional[str] = Field(default=None, alias="userId")
    request_id: Optional[str] = Field(default=None, alias="requestId")

    def to_request(self) -> ChatRequest:
        data = {
            "query": self.query,
            "history": [HistoryTurn(role=t.role, content=t.content) for t in self.history],
            "budget": self.budget,
            "conversation_id": self.conversation_id,
            "user_id": self.user_id,
        }
        if self.request_id:
            data["request_id"] = self.request_id
        return ChatRequest(**data)


async def _watch_disconnect(http_request: Request, session: ChatSession) -> None:
    while not session.cancelled:
        if await http_request.is_disconnected():
            logger.info("Client disconnected", request_id=session.request.request_id)
            session.cancel()
            return
        await asyncio.sleep(DISCONNECT_POLL_SECONDS)


@router.post("/chat", tags=["Chat"])
async def chat(http_request: Request, body: ChatRequestBody) -> StreamingResponse:
    """Run one chat request and stream its events as Server-Sent Events.

    Events: plan, thinking, tool_result, answer_delta, answer,
    citation_warning, complete, error. The stream ends after complete or error.
    """
    deps = getattr(http_request.app.state, "chat", None)
    if deps is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Chat is not configured")

    try:
        chat_request = body.to_request()
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))

    session = ChatSession(deps.orchestrator, chat_request)
    logger.info(
        "Chat stream opened",
        request_id=chat_request.request_id,
        budget=chat_request.budget,
        history_turns=len(chat_request.history),
    )

    async def generate_sse_stream() -> AsyncGenerator[str, None]:
        watcher = asyncio.create_task(_watch_disconnect(http_request, session))
        try:
            async for event in session:
                yield event.to_sse()
        finally:
            watcher.cancel()
            await session.aclose()

    return StreamingResponse(
        generate_sse_stream(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
            "X-Request-ID": chat_request.request_id,
        },
    )
