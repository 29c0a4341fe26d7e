"""
Ollama provider for local LLM generation and embeddings.

Talks to a local Ollama server over HTTP (``/api/chat`` and ``/api/embed``).
Transport failures and non-200 responses are raised as CollaboratorError so
callers can decide whether the failure is fatal.
"""

from typing import List, Dict, Any
import asyncio
import aiohttp

from .base import format_messages
from ..error_handler import CollaboratorError
from ..logging_conf import get_logger

logger = get_logger(__name__)

DEFAULT_BASE_URL = "http://localhost:11434"


async def _list_models(session: aiohttp.ClientSession, base_url: str) -> List[str]:
    async with session.get(f"{base_url}/api/tags", timeout=aiohttp.ClientTimeout(total=5)) as response:
        if response.status != 200:
            return []
        data = await response.json()
        return [model["name"] for model in data.get("models", [])]


class OllamaProvider:
    """Chat generation through a local Ollama server."""

    def __init__(
        self,
        model: str = "gpt-oss:20b",
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 600.0
    ):
        self.model_name = model
        self.base_url = base_url.rstrip("/")
        self.chat_url = f"{self.base_url}/api/chat"
        self.timeout = timeout

    def _payload(self, system: str, messages: List[Dict[str, str]], max_tokens: int, temperature: float) -> Dict[str, Any]:
        options: Dict[str, Any] = {"temperature": temperature}
        # gpt-oss truncates badly with very small num_predict values
        if max_tokens and max_tokens > 100:
            options["num_predict"] = max_tokens
        return {
            "model": self.model_name,
            "messages": format_messages(system, messages),
            "stream": False,
            "format": "json",
            "options": options,
        }

    async def generate(
        self,
        system: str,
        messages: List[Dict[str, str]],
        max_tokens: int = 900,
        temperature: float = 0.2
    ) -> str:
        """
        Generate a JSON-mode completion via the Ollama chat API.

        Raises:
            ValueError: No messages given
            CollaboratorError: Server unreachable, timed out, or returned an
                error or an empty message
        """
        if not messages:
            raise ValueError("No messages provided for generation")

        payload = self._payload(system, messages, max_tokens, temperature)
        logger.debug(
            "Sending generation request to Ollama",
            model=self.model_name,
            message_count=len(payload["messages"]),
            max_tokens=max_tokens
        )

        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    self.chat_url,
                    json=payload,
                    timeout=aiohttp.ClientTimeout(total=self.timeout)
                ) as response:
                    if response.status != 200:
                        error_text = await response.text()
                        logger.error(
                            "Ollama generation request failed",
                            status=response.status,
                            error=error_text,
                            model=self.model_name
                        )
                        raise CollaboratorError("ollama", f"HTTP {response.status}: {error_text}")
                    data = await response.json()
        except asyncio.TimeoutError as e:
            raise CollaboratorError("ollama", f"generation exceeded {self.timeout}s", timed_out=True, cause=e) from e
        except aiohttp.ClientError as e:
            raise CollaboratorError("ollama", str(e), cause=e) from e

        content = (data.get("message") or {}).get("content", "")
        logger.debug(
            "Generation completed",
            model=self.model_name,
            response_length=len(content),
            eval_count=data.get("eval_count", 0),
            done_reason=data.get("done_reason", "unknown")
        )
        if not content.strip():
            raise CollaboratorError("ollama", "model returned an empty response")
        return content.strip()

    async def test_connection(self) -> bool:
        """Check the server is up and the model is pulled."""
        try:
            async with aiohttp.ClientSession() as session:
                models = await _list_models(session, self.base_url)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error("Ollama connection test failed", error=str(e))
            return False
        if self.model_name not in models:
            logger.warning("Model not found in Ollama", model=self.model_name, available_models=models)
            return False
        return True


class OllamaEmbeddings:
    """Text embeddings through a local Ollama server."""

    def __init__(
        self,
        model: str = "nomic-embed-text",
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 30.0
    ):
        self.model_name = model
        self.base_url = base_url.rstrip("/")
        self.embed_url = f"{self.base_url}/api/embed"
        self.timeout = timeout

    async def embed(self, texts: List[str]) -> List[List[float]]:
        """
        Embed ``texts`` in one request.

        Raises:
            CollaboratorError: On any transport or response failure; no
                placeholder vectors are returned
        """
        if not texts:
            return []

        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    self.embed_url,
                    json={"model": self.model_name, "input": texts},
                    timeout=aiohttp.ClientTimeout(total=self.timeout)
                ) as response:
                    if response.status != 200:
                        error_text = await response.text()
                        logger.error(
                            "Ollama embedding request failed",
                            status=response.status,
                            error=error_text,
                            model=self.model_name
                        )
                        raise CollaboratorError("embeddings", f"HTTP {response.status}: {error_text}")
                    data = await response.json()
        except asyncio.TimeoutError as e:
            raise CollaboratorError("embeddings", f"embedding exceeded {self.timeout}s", timed_out=True, cause=e) from e
        except aiohttp.ClientError as e:
            raise CollaboratorError("embeddings", str(e), cause=e) from e

        embeddings = data.get("embeddings") or []
        if len(embeddings) != len(texts):
            raise CollaboratorError(
                "embeddings", f"expected {len(texts)} vectors, got {len(embeddings)}"
            )
        logger.debug("Generated embeddings", count=len(embeddings), model=self.model_name)
        return embeddings

    async def embed_single(self, text: str) -> List[float]:
        results = await self.embed([text])
        return results[0]

    async def test_connection(self) -> bool:
        try:
            async with aiohttp.ClientSession() as session:
                models = await _list_models(session, self.base_url)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error("Ollama embeddings connection test failed", error=str(e))
            return False
        # tags carry a version suffix
        return self.model_name in models or f"{self.model_name}:latest" in models
