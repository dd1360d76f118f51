"""Embedding service contract and the OpenAI HTTP client."""

from typing import List, Optional, Protocol

import httpx
import structlog
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from lexchat.errors import ProviderError

logger = structlog.get_logger(__name__)

OPENAI_EMBEDDINGS_URL = "https://api.openai.com/v1/embeddings"
MAX_EMBEDDING_INPUT_CHARS = 8000


def _retryable_status(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500


def _is_retryable(error: BaseException) -> bool:
    return isinstance(error, ProviderError) and error.retryable


class EmbeddingService(Protocol):
    async def embed(self, text: str) -> List[float]:
        ...


class OpenAIEmbeddingClient:
    """OpenAI client for generating embeddings."""

    def __init__(self, api_key: Optional[str], model: str = "text-embedding-3-small", timeout: float = 10.0):
        self.api_key = api_key
        self.model = model
        self.timeout = timeout

    @retry(
        retry=retry_if_exception(_is_retryable),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True,
    )
    async def embed(self, text: str) -> List[float]:
        """Get embedding for text using OpenAI API."""
        if not self.api_key:
            raise ProviderError("OpenAI API key not configured", provider="openai")

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    OPENAI_EMBEDDINGS_URL,
                    headers={
                        "Authorization": f"Bearer {self.api_key}",
                        "Content-Type": "application/json",
                    },
                    json={
                        "model": self.model,
                        "input": text[:MAX_EMBEDDING_INPUT_CHARS],
                        "encoding_format": "float",
                    },
                )
                response.raise_for_status()
                embedding = response.json()["data"][0]["embedding"]
        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            logger.warning("OpenAI embedding error", error=str(e), status_code=status_code, model=self.model)
            raise ProviderError(str(e), provider="openai", retryable=_retryable_status(status_code)) from e
        except httpx.TransportError as e:
            logger.warning("OpenAI embedding transport error", error=str(e), model=self.model)
            raise ProviderError(str(e) or type(e).__name__, provider="openai", retryable=True) from e
        except httpx.HTTPError as e:
            logger.warning("OpenAI embedding error", error=str(e), model=self.model)
            raise ProviderError(str(e), provider="openai") from e

        logger.debug(
            "Embedding generated",
            model=self.model,
            input_length=len(text),
            embedding_dim=len(embedding),
        )
        return embedding
