"""
Shared pytest configuration and fixtures for Quote Studio tests.
"""

import os
import tempfile

# Keep the settings singleton away from the real home directory
os.environ.setdefault("QUOTE_STUDIO_HOME", tempfile.mkdtemp(prefix="quote-studio-test-"))

import hashlib
import math
from datetime import datetime, timezone
from typing import List

import pytest

from quote_studio.models import Quote, LineItem, OptionLine, QuoteNumber
from quote_studio.recompute import recompute
from quote_studio.pricing import PriceBook
from quote_studio.rendering import RenderedDocument, AssetStore
from quote_studio.similarity import InMemoryQuoteIndex
from quote_studio.store import InMemoryQuoteStore
from quote_studio.retry_utils import RetryManager, RetryPolicy, BackoffStrategy
from quote_studio.error_handler import (
    CollaboratorError, ConflictError, NotFoundError, ValidationError, error_handler
)
from quote_studio.quotes import QuoteService

FIXED_NOW = datetime(2025, 3, 14, 9, 30, tzinfo=timezone.utc)


class FakeEmbeddings:
    """Deterministic bag-of-tokens embedder."""

    dimensions = 32

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls: List[str] = []

    def _vector(self, text: str) -> List[float]:
        vector = [0.0] * self.dimensions
        for token in text.replace(":", " ").replace(";", " ").split():
            bucket = int(hashlib.md5(token.encode("utf-8")).hexdigest(), 16) % self.dimensions
            vector[bucket] += 1.0
        norm = math.sqrt(sum(v * v for v in vector)) or 1.0
        return [v / norm for v in vector]

    async def embed(self, texts: List[str]) -> List[List[float]]:
        self.calls.extend(texts)
        if self.fail:
            raise CollaboratorError("embeddings", "embedding service down")
        return [self._vector(text) for text in texts]

    async def embed_single(self, text: str) -> List[float]:
        return (await self.embed([text]))[0]

    async def test_connection(self) -> bool:
        return not self.fail


class FakeRenderer:
    """Renderer returning fixed bytes, optionally failing or hanging."""

    def __init__(self, fail: bool = False, hang: bool = False):
        self.fail = fail
        self.hang = hang
        self.rendered: List[str] = []

    async def render(self, quote: Quote) -> RenderedDocument:
        import asyncio

        self.rendered.append(quote.id)
        if self.hang:
            await asyncio.sleep(3600)
        if self.fail:
            raise CollaboratorError("renderer", "browser crashed")
        return RenderedDocument(document_bytes=b"%PDF-1.4 fake", image_bytes=b"\x89PNG fake")


@pytest.fixture
def clock():
    """Clock frozen at FIXED_NOW."""
    return lambda: FIXED_NOW


@pytest.fixture
def fast_retry():
    """Retry manager whose allocation policy does not sleep."""
    manager = RetryManager()
    manager.set_policy("allocation", RetryPolicy(
        max_attempts=5,
        base_delay=0.0,
        max_delay=0.0,
        backoff_strategy=BackoffStrategy.FIXED,
        retryable_exceptions=[ConflictError],
        non_retryable_exceptions=[NotFoundError, ValidationError]
    ))
    return manager


@pytest.fixture
def memory_store():
    return InMemoryQuoteStore()


@pytest.fixture
def fake_embeddings():
    return FakeEmbeddings()


@pytest.fixture
def fake_renderer():
    return FakeRenderer()


@pytest.fixture
def price_book():
    return PriceBook()


@pytest.fixture
def sample_quote():
    """Two items at 100, one 50 option, VAT 10% (subtotal 250)."""
    quote = Quote(
        id="quote-001",
        title="Sample",
        items=[LineItem(id="a", label="Cart", qty=2, unit_price=100)],
        installed=[OptionLine(description="Rain cover", price=50)],
        vat_rate=0.1,
        quote_number=QuoteNumber(year="25", sequence=672, sub_sequence=1),
    )
    return recompute(quote, now=FIXED_NOW)


@pytest.fixture
def service(memory_store, fake_renderer, fake_embeddings, price_book, clock, fast_retry, tmp_path):
    """QuoteService wired entirely with in-process collaborators."""
    return QuoteService(
        store=memory_store,
        renderer=fake_renderer,
        assets=AssetStore(tmp_path / "exports"),
        index=InMemoryQuoteIndex(fake_embeddings),
        price_book=price_book,
        clock=clock,
        retry=fast_retry,
        render_timeout=1.0,
        embedding_timeout=1.0,
    )


@pytest.fixture(autouse=True)
def reset_error_stats():
    error_handler.clear_stats()
    yield
    error_handler.clear_stats()


@pytest.fixture
def make_service(memory_store, price_book, clock, fast_retry, tmp_path):
    """Factory for services with specific collaborator behaviour."""
    def factory(renderer_fail=False, renderer_hang=False, embeddings_fail=False, render_timeout=1.0):
        embeddings = FakeEmbeddings(fail=embeddings_fail)
        return QuoteService(
            store=memory_store,
            renderer=FakeRenderer(fail=renderer_fail, hang=renderer_hang),
            assets=AssetStore(tmp_path / "exports"),
            index=InMemoryQuoteIndex(embeddings),
            price_book=price_book,
            clock=clock,
            retry=fast_retry,
            render_timeout=render_timeout,
            embedding_timeout=1.0,
        )
    return factory


@pytest.fixture
def now():
    return FIXED_NOW


@pytest.fixture
def failing_embeddings():
    return FakeEmbeddings(fail=True)
