"""Wiring of the chat core's collaborators.

``ChatDependencies`` is built once per process and stored on
``app.state.chat``; routers read it from there.
"""

from typing import Optional

import structlog

from lexchat.llm.client import LangChainCompletionService, LLMCompletionService
from lexchat.observability.background import BackgroundTaskQueue
from lexchat.observability.costs import CostRecorder
from lexchat.orchestrators.chat_orchestrator import ChatOrchestrator
from lexchat.services.citations import CitationVerifier
from lexchat.services.collaborators import (
    CitationService,
    ConversationStore,
    CostLedger,
    DocumentPrefetcher,
)
from lexchat.tools.embeddings import EmbeddingService, OpenAIEmbeddingClient
from lexchat.tools.registry import ToolRegistry
from lexlibs.caching.redis_client import close_redis_client, create_redis_client
from lexlibs.caching.tool_result_cache import ToolResultCache
from lexlibs.common.settings import Settings
from lexlibs.memory.history_cache import InMemoryHistorySummaryCache, RedisHistorySummaryCache

logger = structlog.get_logger(__name__)


class ChatDependencies:
    """Process-wide collaborators for the chat endpoint."""

    def __init__(
        self,
        orchestrator: ChatOrchestrator,
        background: Optional[BackgroundTaskQueue] = None,
        redis_client=None,
    ):
        self.orchestrator = orchestrator
        self.background = background
        self.redis_client = redis_client

    @classmethod
    async def from_settings(
        cls,
        settings: Settings,
        registry: ToolRegistry,
        llm: Optional[LLMCompletionService] = None,
        embedder: Optional[EmbeddingService] = None,
        conversation_store: Optional[ConversationStore] = None,
        cost_ledger: Optional[CostLedger] = None,
        citation_service: Optional[CitationService] = None,
        prefetcher: Optional[DocumentPrefetcher] = None,
    ) -> "ChatDependencies":
        """Build the default wiring: OpenAI models, Redis caches when configured."""
        background = BackgroundTaskQueue(settings.background_queue_size, settings.background_workers)
        redis_client = await create_redis_client(settings.redis_url, use_fake=settings.is_test)

        if redis_client is not None:
            history_cache = RedisHistorySummaryCache(redis_client, settings.history_summary_ttl_seconds)
        else:
            history_cache = InMemoryHistorySummaryCache()

        orchestrator = ChatOrchestrator(
            registry=registry,
            llm=llm or LangChainCompletionService(settings),
            embedder=embedder or OpenAIEmbeddingClient(settings.openai_api_key, settings.embedding_model),
            settings=settings,
            history_cache=history_cache,
            tool_cache=ToolResultCache(redis_client, settings.tool_cache_ttl_seconds),
            costs=CostRecorder(cost_ledger, background),
            citations=CitationVerifier(citation_service, settings.citation_timeout_seconds),
            conversation_store=conversation_store,
            prefetcher=prefetcher,
            background=background,
        )
        logger.info(
            "Chat dependencies ready",
            redis=redis_client is not None,
            citations=citation_service is not None,
            persistence=conversation_store is not None,
        )
        return cls(orchestrator, background=background, redis_client=redis_client)

    def start(self) -> None:
        if self.background is not None:
            self.background.start()

    async def close(self) -> None:
        if self.background is not None:
            await self.background.stop()
        await close_redis_client(self.redis_client)
