"""
Provider contracts used by the text structurer and the similarity index.
"""

from typing import Protocol, List, Dict


class LLMProvider(Protocol):
    """Chat-style text generation."""

    async def generate(
        self,
        system: str,
        messages: List[Dict[str, str]],
        max_tokens: int = 900,
        temperature: float = 0.2
    ) -> str:
        """
        Generate a completion for ``messages`` under the ``system`` prompt.

        Args:
            system: System prompt
            messages: List of message dicts with 'role' and 'content'
            max_tokens: Maximum tokens to generate
            temperature: Generation temperature

        Returns:
            Generated text response
        """
        ...

    async def test_connection(self) -> bool:
        ...


class EmbeddingProvider(Protocol):
    """Text to fixed-length vectors."""

    async def embed(self, texts: List[str]) -> List[List[float]]:
        """One embedding vector per input text, in order."""
        ...

    async def embed_single(self, text: str) -> List[float]:
        ...

    async def test_connection(self) -> bool:
        ...


def format_messages(system: str, messages: List[Dict[str, str]]) -> List[Dict[str, str]]:
    """Prepend the system prompt as the first chat message."""
    return [{"role": "system", "content": system}, *messages]
