"""
Compression of conversation history older than the recent window.

Small histories are kept verbatim under a marker. Larger ones are
summarized by the LLM, preserving case numbers, statute references and
conclusions, and cached per conversation and covered-message count.
"""

from typing import List, Optional

import structlog
from pydantic import BaseModel

from lexchat.composer.prompts import HISTORY_SUMMARY_PROMPT, OLDER_HISTORY_MARKER, SUMMARY_MARKER
from lexchat.llm.client import Completion, LLMCompletionService
from lexchat.schemas.chat import HistoryTurn
from lexchat.tools.compactor import fit
from lexlibs.memory.history_cache import HistorySummary, HistorySummaryCache

logger = structlog.get_logger(__name__)

MAX_SUMMARY_CHARS = 1200
MAX_TRANSCRIPT_CHARS = 12000


class CompressedHistory(BaseModel):
    """Bounded rendering of older history."""

    text: str
    summarized: bool = False
    cache_hit: bool = False
    completion: Optional[Completion] = None


def render_transcript(turns: List[HistoryTurn]) -> str:
    return "\n".join(f"{turn.role.capitalize()}: {turn.content}" for turn in turns)


class HistoryCompressor:
    """
    Turns older conversation turns into a cached, bounded summary.

    Usage:
        compressor = HistoryCompressor(llm, cache)
        older = await compressor.compress(turns, conversation_id="conv-1", char_limit=8000)
    """

    def __init__(
        self,
        llm: LLMCompletionService,
        cache: Optional[HistorySummaryCache] = None,
        max_summary_chars: int = MAX_SUMMARY_CHARS,
    ):
        self.llm = llm
        self.cache = cache
        self.max_summary_chars = max_summary_chars

    async def compress(
        self,
        turns: List[HistoryTurn],
        conversation_id: Optional[str],
        char_limit: int,
    ) -> Optional[CompressedHistory]:
        """
        Compress older turns into at most ``char_limit`` characters.

        Args:
            turns: Older history turns, oldest first
            conversation_id: Cache scope; None disables caching
            char_limit: Maximum size of the returned text

        Returns:
            Compressed history, or None when there is nothing to compress
        """
        if not turns or char_limit <= 0:
            return None

        transcript = render_transcript(turns)
        verbatim = f"{OLDER_HISTORY_MARKER}\n{transcript}"
        if len(verbatim) <= char_limit:
            return CompressedHistory(text=verbatim)

        covered = len(turns)
        if self.cache is not None and conversation_id:
            cached = await self.cache.get(conversation_id, covered)
            if cached is not None:
                logger.debug("History summary cache hit", conversation_id=conversation_id, covered=covered)
                return CompressedHistory(
                    text=fit(f"{SUMMARY_MARKER}\n{cached.summary_text}", char_limit),
                    summarized=True,
                    cache_hit=True,
                )

        try:
            completion = await self.llm.complete(
                HISTORY_SUMMARY_PROMPT,
                transcript[-MAX_TRANSCRIPT_CHARS:],
                max_tokens=400,
                json_mode=False,
                task="history_summary",
            )
            summary_text = fit(completion.text.strip(), self.max_summary_chars)
            if not summary_text:
                raise ValueError("empty summary")
        except Exception as e:
            logger.warning("History summarization failed, truncating", error=str(e), covered=covered)
            return CompressedHistory(text=fit(verbatim, char_limit))

        if self.cache is not None and conversation_id:
            await self.cache.set(
                HistorySummary(
                    conversation_id=conversation_id,
                    covered_message_count=covered,
                    summary_text=summary_text,
                )
            )

        logger.info(
            "History summarized",
            conversation_id=conversation_id,
            covered=covered,
            original_chars=len(transcript),
            summary_chars=len(summary_text),
        )
        return CompressedHistory(
            text=fit(f"{SUMMARY_MARKER}\n{summary_text}", char_limit),
            summarized=True,
            completion=completion,
        )
