"""Chat orchestrator: the bounded tool-use loop behind one chat request.

One request flows through:
classify -> plan -> escalate tier -> build context -> iterate
(stream, deduplicate, execute tools, compact, re-rank) -> synthesize ->
verify citations -> complete -> persist.

``ChatOrchestrator.run`` is an async generator of ``ChatEvent``;
``ChatSession`` drives it from a producer task into a queue so a transport
can consume events and cancel at any time.
"""

import asyncio
import json
import time
from typing import Any, AsyncIterator, Dict, List, Optional

import structlog

from lexchat.agents.intent_classifier import IntentClassifier
from lexchat.agents.planner import PlanGenerator
from lexchat.budget import BudgetProfile, escalate_tier, get_budget
from lexchat.composer.context import ContextWindowBuilder
from lexchat.composer.history import HistoryCompressor
from lexchat.composer.prompts import (
    CHAT_SYSTEM_PROMPT,
    DUPLICATE_CALL_NOTICE,
    FORCED_SYNTHESIS_PROMPT,
    SYNTHESIS_NUDGE,
)
from lexchat.errors import (
    BudgetConfigurationError,
    ProviderError,
    RequestCancelled,
    SynthesisError,
    ToolExecutionError,
)
from lexchat.llm.client import Completion, LLMCompletionService
from lexchat.observability.background import BackgroundTaskQueue
from lexchat.observability.costs import CostRecorder
from lexchat.schemas.chat import (
    ChatRequest,
    Classification,
    ExecutionPlan,
    Message,
    ModelSelection,
    ToolCall,
    ToolDefinition,
    ToolOutcome,
)
from lexchat.schemas.events import (
    AnswerDeltaPayload,
    AnswerPayload,
    ChatEvent,
    CompletePayload,
    ErrorPayload,
    PlanPayload,
    ThinkingPayload,
    ToolResultPayload,
)
from lexchat.services.citations import CitationVerifier
from lexchat.services.collaborators import ConversationStore, DocumentPrefetcher
from lexchat.tools.compactor import ResultCompactor
from lexchat.tools.dedup import ToolCallDeduplicator
from lexchat.tools.embeddings import EmbeddingService
from lexchat.tools.registry import ToolRegistry, ValidatingToolRegistry, filter_tools
from lexchat.tools.reranker import RagReranker
from lexlibs.caching.tool_result_cache import ToolResultCache, extract_doc_ids, is_court_search_tool
from lexlibs.common.settings import Settings, get_settings
from lexlibs.memory.history_cache import HistorySummaryCache

logger = structlog.get_logger(__name__)

PROVIDER_ERROR_MESSAGE = "The language model is temporarily unavailable. Please try again."
NO_ANSWER_MESSAGE = "Could not produce an answer within the research budget."


class _RequestRun:
    """Mutable state owned by one request."""

    def __init__(self, request: ChatRequest):
        self.request = request
        self.started = time.perf_counter()
        self.tier = request.budget
        self.budget: BudgetProfile = get_budget(request.budget)
        self.selection: Optional[ModelSelection] = None
        self.classification: Optional[Classification] = None
        self.plan: Optional[ExecutionPlan] = None
        self.tools: List[ToolDefinition] = []
        self.messages: List[Message] = []
        self.dedup = ToolCallDeduplicator()
        self.iterations = 0
        self.step = 0
        self.tools_used: List[str] = []
        self.thinking_steps: List[Dict[str, Any]] = []
        self.tool_succeeded = False
        self.nudged = False

    @property
    def request_id(self) -> str:
        return self.request.request_id

    @property
    def elapsed_ms(self) -> int:
        return int((time.perf_counter() - self.started) * 1000)

    def checkpoint(self) -> None:
        if self.request.cancellation.cancelled:
            raise RequestCancelled(self.request_id)


class _Turn:
    """What one streamed completion produced."""

    def __init__(self) -> None:
        self.parts: List[str] = []
        self.tool_calls: List[ToolCall] = []
        self.finish_reason = "stop"

    @property
    def text(self) -> str:
        return "".join(self.parts)


class ChatOrchestrator:
    """
    Runs chat requests against a tool registry and an LLM.

    Usage:
        orchestrator = ChatOrchestrator(registry, llm, embedder=embedder)
        async for event in orchestrator.run(ChatRequest(query="...")):
            print(event.to_sse())
    """

    def __init__(
        self,
        registry: ToolRegistry,
        llm: LLMCompletionService,
        embedder: Optional[EmbeddingService] = None,
        settings: Optional[Settings] = None,
        history_cache: Optional[HistorySummaryCache] = None,
        tool_cache: Optional[ToolResultCache] = None,
        costs: Optional[CostRecorder] = None,
        citations: Optional[CitationVerifier] = None,
        conversation_store: Optional[ConversationStore] = None,
        prefetcher: Optional[DocumentPrefetcher] = None,
        background: Optional[BackgroundTaskQueue] = None,
    ):
        self.registry = registry if isinstance(registry, ValidatingToolRegistry) else ValidatingToolRegistry(registry)
        self.llm = llm
        self.embedder = embedder
        self.settings = settings or get_settings()
        self.tool_cache = tool_cache
        self.background = background
        self.costs = costs or CostRecorder(ledger=None, queue=background)
        self.citations = citations
        self.conversation_store = conversation_store
        self.prefetcher = prefetcher

        self.classifier = IntentClassifier(llm)
        self.planner = PlanGenerator(llm)
        self.compressor = HistoryCompressor(llm, history_cache)

    # ------------------------------------------------------------------
    # Request lifecycle
    # ------------------------------------------------------------------

    async def run(self, request: ChatRequest) -> AsyncIterator[ChatEvent]:
        """Yield the ordered events for one request, ending in complete or error."""
        run = _RequestRun(request)
        log = logger.bind(request_id=request.request_id, conversation_id=request.conversation_id)

        try:
            run.checkpoint()
            async for event in self._run(run):
                run.checkpoint()
                yield event
        except RequestCancelled:
            log.info("Request cancelled", iterations=run.iterations, elapsed_ms=run.elapsed_ms)
        except ProviderError as e:
            model = run.selection.model if run.selection else "unknown"
            log.error("LLM provider failed", provider=e.provider, model=model, error=str(e))
            self.costs.record_failure(request.request_id, model, "chat_completion")
            if not request.cancellation.cancelled:
                yield ChatEvent.of(ErrorPayload(message=PROVIDER_ERROR_MESSAGE))
        except (SynthesisError, BudgetConfigurationError) as e:
            log.error("Request failed", error_type=type(e).__name__, error=str(e))
            yield ChatEvent.of(ErrorPayload(message=str(e)))
        finally:
            self.costs.release(request.request_id)

    async def _run(self, run: _RequestRun) -> AsyncIterator[ChatEvent]:
        request = run.request
        record = self._usage_recorder(run)

        run.classification = await self.classifier.classify(request.query, on_completion=record)
        run.checkpoint()
        run.tools = filter_tools(
            self.registry.list_definitions(),
            run.classification.domains,
            limit=self.settings.max_tools_per_request,
        )

        if request.budget != "quick":
            run.plan = await self.planner.plan(request.query, run.classification, run.tools, on_completion=record)
            run.checkpoint()
            if run.plan is not None:
                yield ChatEvent.of(PlanPayload.from_plan(run.plan))

        run.tier = escalate_tier(request.budget, request.query, run.classification, run.plan)
        run.budget = get_budget(run.tier)
        run.selection = self.llm.select_model(run.tier)

        window = await ContextWindowBuilder(run.budget, self.compressor).build(
            request.query,
            request.history,
            CHAT_SYSTEM_PROMPT,
            plan=run.plan,
            conversation_id=request.conversation_id,
        )
        run.checkpoint()
        if window.older_history is not None and window.older_history.completion is not None:
            record(window.older_history.completion, "history_summary")
        run.messages = list(window.messages)

        compactor = ResultCompactor(run.budget)
        reranker = RagReranker(self.embedder, run.budget, request.query, self.settings.rag_trigger_ratio)

        logger.info(
            "Chat request started",
            request_id=run.request_id,
            tier=run.tier,
            requested_tier=request.budget,
            model=run.selection.model,
            domains=run.classification.domains,
            tools=len(run.tools),
            planned_steps=len(run.plan.steps) if run.plan else 0,
        )

        answer: Optional[str] = None
        while run.iterations < run.budget.max_tool_calls:
            run.iterations += 1
            turn = _Turn()
            async for event in self._stream_turn(run, run.tools or None, turn):
                yield event

            if not turn.tool_calls:
                answer = turn.text
                break

            unique, duplicates = run.dedup.partition(turn.tool_calls)
            if not unique:
                logger.info(
                    "All requested tool calls are duplicates",
                    request_id=run.request_id,
                    iteration=run.iterations,
                    calls=[c.name for c in duplicates],
                )
                self._append_round(run, turn, {}, compactor)
                run.messages.append(Message(role="user", content=SYNTHESIS_NUDGE))
                continue

            for call in unique:
                run.step += 1
                run.thinking_steps.append({"step": run.step, "tool": call.name, "params": call.arguments})
                yield ChatEvent.of(
                    ThinkingPayload(
                        step=run.step,
                        tool=call.name,
                        params=call.arguments,
                        description=self._step_purpose(run.plan, call.name),
                        cost_usd=round(self.costs.total_for(run.request_id), 6),
                    )
                )

            run.checkpoint()
            outcomes: Dict[str, ToolOutcome] = {}
            for next_outcome in asyncio.as_completed([self._execute_call(call) for call in unique]):
                outcome = await next_outcome
                run.checkpoint()
                outcomes[outcome.call.id] = outcome
                if outcome.call.name not in run.tools_used:
                    run.tools_used.append(outcome.call.name)
                yield ChatEvent.of(
                    ToolResultPayload(tool=outcome.call.name, result=outcome.payload(), cached=outcome.cached)
                )

            self._append_round(run, turn, outcomes, compactor)

            if any(o.succeeded for o in outcomes.values()):
                run.tool_succeeded = True
                if not run.nudged:
                    run.messages.append(Message(role="user", content=SYNTHESIS_NUDGE))
                    run.nudged = True

            if reranker.should_rerank(run.messages):
                run.messages = await reranker.rerank(run.messages)
                run.checkpoint()

        if answer is None:
            await self._forced_answer(run)
            turn = _Turn()
            async for event in self._stream_turn(run, None, turn):
                yield event
            answer = turn.text
            if not answer.strip():
                raise SynthesisError(NO_ANSWER_MESSAGE)

        yield ChatEvent.of(AnswerPayload(text=answer, provider=run.selection.provider, model=run.selection.model))

        if self.citations is not None and self.settings.citation_verification_enabled:
            run.checkpoint()
            warnings = await self.citations.verify(answer)
            run.checkpoint()
            for warning in warnings:
                yield ChatEvent.of(warning)

        total_cost = round(self.costs.total_for(run.request_id), 6)
        logger.info(
            "Chat request completed",
            request_id=run.request_id,
            iterations=run.iterations,
            elapsed_ms=run.elapsed_ms,
            tools_used=run.tools_used,
            total_cost_usd=total_cost,
        )
        yield ChatEvent.of(
            CompletePayload(
                iterations=run.iterations,
                elapsed_ms=run.elapsed_ms,
                tools_used=list(run.tools_used),
                total_cost_usd=total_cost,
            )
        )

        run.checkpoint()
        await self._persist(run, answer)

    # ------------------------------------------------------------------
    # LLM
    # ------------------------------------------------------------------

    def _usage_recorder(self, run: _RequestRun):
        def record(completion: Completion, task: str) -> None:
            self.costs.record_usage(run.request_id, completion.model, completion.usage, task)

        return record

    async def _stream_turn(
        self,
        run: _RequestRun,
        tools: Optional[List[ToolDefinition]],
        turn: _Turn,
    ) -> AsyncIterator[ChatEvent]:
        """Stream one completion, forwarding text fragments as they arrive."""
        run.checkpoint()
        stream = self.llm.stream(
            run.messages,
            tools,
            model=run.selection.model,
            max_tokens=run.budget.max_output_tokens,
        )
        try:
            async for chunk in stream:
                run.checkpoint()
                if chunk.type == "text_delta" and chunk.text:
                    turn.parts.append(chunk.text)
                    yield ChatEvent.of(AnswerDeltaPayload(text=chunk.text))
                elif chunk.type == "usage" and chunk.usage is not None:
                    self.costs.record_usage(run.request_id, run.selection.model, chunk.usage, "chat_completion")
                elif chunk.type == "done":
                    turn.finish_reason = chunk.finish_reason or "stop"
                    turn.tool_calls = list(chunk.tool_calls or []) if tools else []
        except (RequestCancelled, ProviderError):
            raise
        except Exception as e:
            raise ProviderError(str(e) or type(e).__name__, provider=run.selection.provider) from e
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()

    async def _forced_answer(self, run: _RequestRun) -> None:
        """Prepare the no-tools synthesis turn after the loop ran out of budget."""
        if not run.tool_succeeded:
            logger.warning("Loop exhausted with no successful tool", request_id=run.request_id)
            raise SynthesisError(NO_ANSWER_MESSAGE)
        logger.info("Loop exhausted, forcing synthesis", request_id=run.request_id, iterations=run.iterations)
        run.messages.append(Message(role="user", content=FORCED_SYNTHESIS_PROMPT))

    # ------------------------------------------------------------------
    # Tools
    # ------------------------------------------------------------------

    @staticmethod
    def _step_purpose(plan: Optional[ExecutionPlan], tool: str) -> Optional[str]:
        if plan is None:
            return None
        return next((s.purpose for s in plan.steps if s.tool == tool), None)

    async def _execute_call(self, call: ToolCall) -> ToolOutcome:
        """Execute one call; failures become a captured error, never an exception."""
        started = time.perf_counter()
        cacheable = self.tool_cache is not None and is_court_search_tool(call.name)

        if cacheable:
            cached = await self.tool_cache.get(call.name, call.arguments)
            if cached is not None:
                return ToolOutcome(
                    call=call,
                    result=cached,
                    cached=True,
                    duration_ms=(time.perf_counter() - started) * 1000,
                )

        timeout = self.settings.tool_timeout_seconds
        try:
            result = await asyncio.wait_for(self.registry.execute(call.name, call.arguments), timeout=timeout)
        except asyncio.TimeoutError:
            error = f"{call.name} timed out after {timeout:g}s"
        except ToolExecutionError as e:
            error = e.reason
        except Exception as e:
            error = str(e) or type(e).__name__
        else:
            duration_ms = (time.perf_counter() - started) * 1000
            logger.info("Tool executed", tool=call.name, duration_ms=round(duration_ms, 1))
            if cacheable:
                await self.tool_cache.set(call.name, call.arguments, result)
            if is_court_search_tool(call.name):
                self._schedule_prefetch(call.name, result)
            return ToolOutcome(call=call, result=result, duration_ms=duration_ms)

        duration_ms = (time.perf_counter() - started) * 1000
        logger.warning("Tool failed", tool=call.name, error=error, duration_ms=round(duration_ms, 1))
        return ToolOutcome(call=call, error=error, duration_ms=duration_ms)

    def _schedule_prefetch(self, tool: str, result: Any) -> None:
        if self.prefetcher is None or self.background is None:
            return
        doc_ids = extract_doc_ids(result)
        if not doc_ids:
            return
        prefetcher = self.prefetcher

        async def job() -> None:
            await prefetcher.prefetch(doc_ids)

        if self.background.submit(f"prefetch:{tool}", job):
            logger.debug("Document prefetch scheduled", tool=tool, doc_ids=len(doc_ids))

    @staticmethod
    def _append_round(
        run: _RequestRun,
        turn: _Turn,
        outcomes: Dict[str, ToolOutcome],
        compactor: ResultCompactor,
    ) -> None:
        """Append the assistant message with every requested call, then one tool message per call."""
        run.messages.append(Message(role="assistant", content=turn.text, tool_calls=turn.tool_calls))
        duplicate_notice = json.dumps({"duplicate": True, "message": DUPLICATE_CALL_NOTICE}, ensure_ascii=False)
        for call in turn.tool_calls:
            outcome = outcomes.get(call.id)
            content = compactor.compact(outcome.payload()) if outcome is not None else duplicate_notice
            run.messages.append(Message(role="tool", content=content, tool_call_id=call.id))

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def _persist(self, run: _RequestRun, answer: str) -> None:
        request = run.request
        if self.conversation_store is None or not request.conversation_id or not request.user_id:
            return

        store = self.conversation_store
        messages: List[Dict[str, Any]] = [
            {"role": "user", "content": request.query},
            {
                "role": "assistant",
                "content": answer,
                "tool_calls": [{"tool": s["tool"], "params": s["params"]} for s in run.thinking_steps],
                "thinking_steps": run.thinking_steps,
            },
        ]

        async def job() -> None:
            for message in messages:
                await store.append(request.conversation_id, request.user_id, message)

        if self.background is not None:
            self.background.submit("persist_conversation", job)
            return
        try:
            await job()
        except Exception as e:
            logger.error("Conversation persistence failed", conversation_id=request.conversation_id, error=str(e))


_END = object()


class ChatSession:
    """
    One request as a pull-based event channel.

    A producer task runs the orchestrator and writes events into a queue.
    ``next()`` returns the next event, or None once the stream has ended
    or the session was cancelled.

    Usage:
        session = ChatSession(orchestrator, request)
        async for event in session:
            ...
    """

    def __init__(self, orchestrator: ChatOrchestrator, request: ChatRequest):
        self.orchestrator = orchestrator
        self.request = request
        self._queue: asyncio.Queue = asyncio.Queue()
        self._task: Optional[asyncio.Task] = None
        self._finished = False

    @property
    def cancelled(self) -> bool:
        return self.request.cancellation.cancelled

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._produce(), name=f"chat-{self.request.request_id}")

    async def _produce(self) -> None:
        events = self.orchestrator.run(self.request)
        try:
            async for event in events:
                if self.cancelled:
                    break
                await self._queue.put(event)
        except Exception as e:
            logger.error("Chat session failed", request_id=self.request.request_id, error=str(e), exc_info=True)
            if not self.cancelled:
                await self._queue.put(ChatEvent.of(ErrorPayload(message="Internal error")))
        finally:
            await events.aclose()
            await self._queue.put(_END)

    async def next(self) -> Optional[ChatEvent]:
        if self._finished:
            return None
        if self.cancelled:
            self._finished = True
            return None
        self.start()
        item = await self._queue.get()
        if item is _END or self.cancelled:
            self._finished = True
            return None
        return item

    def cancel(self) -> None:
        """Signal cancellation and wake up a waiting consumer."""
        if self.cancelled:
            return
        self.request.cancellation.cancel()
        self._queue.put_nowait(_END)
        logger.info("Chat session cancelled", request_id=self.request.request_id)

    async def aclose(self) -> None:
        """Cancel and wait for the producer to stop."""
        self.cancel()
        if self._task is not None and not self._task.done():
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)

    def __aiter__(self) -> "ChatSession":
        return self

    async def __anext__(self) -> ChatEvent:
        event = await self.next()
        if event is None:
            raise StopAsyncIteration
        return event
