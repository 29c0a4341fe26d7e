"""
Quote lifecycle orchestration.

QuoteService ties the pieces together: catalog parsing and base pricing on
creation, number allocation, patching, text structuring, revisions, export
and similarity search. Store calls run in the default executor. Embedding
happens in background tasks whose failures are logged and dropped.
"""

import asyncio
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Set, Union

from .models import (
    Quote, QuoteStatus, PatchOperation, SimilarQuote, StructureResponse, utcnow
)
from .model_parser import parse_model
from .pricing import PriceBook, build_base_quote
from .patch_engine import apply_patch
from .sequence import SequenceAllocator
from .store import QuoteStore, StoreTransaction, InMemoryQuoteStore, SQLiteQuoteStore
from .structuring import TextStructurer, KeywordStructurer, create_structurer
from .rendering import Renderer, AssetStore, ChromiumRenderer
from .similarity import QuoteIndex, create_quote_index
from .retry_utils import RetryManager, retry_manager as default_retry_manager
from .error_handler import (
    CollaboratorError, ConfigurationError, ConflictError, NotFoundError, handle_error, create_context
)
from .logging_conf import get_logger, bind_quote_context

logger = get_logger(__name__)

Operations = Sequence[Union[PatchOperation, Dict[str, Any]]]

# Fields export itself writes; everything else is what the assets show
_EXPORT_FIELDS = {"status", "pdf_url", "png_url"}


class _StaleRender(Exception):
    """The stored quote no longer matches the rendered snapshot."""


def _rendered_content(quote: Quote) -> Dict[str, Any]:
    return quote.model_dump(exclude=_EXPORT_FIELDS)


class QuoteService:
    """Creates, edits, revises, exports and searches quotes."""

    def __init__(
        self,
        store: QuoteStore,
        allocator: Optional[SequenceAllocator] = None,
        structurer: Optional[TextStructurer] = None,
        renderer: Optional[Renderer] = None,
        assets: Optional[AssetStore] = None,
        index: Optional[QuoteIndex] = None,
        price_book: Optional[PriceBook] = None,
        clock: Callable[[], datetime] = utcnow,
        retry: Optional[RetryManager] = None,
        render_timeout: float = 60.0,
        embedding_timeout: float = 30.0,
        similarity_limit: int = 5
    ):
        self.store = store
        self.clock = clock
        self.retry = retry or default_retry_manager
        self.allocator = allocator or SequenceAllocator(store, clock=clock, retry=self.retry)
        self.structurer = structurer or KeywordStructurer()
        self.renderer = renderer
        self.assets = assets
        self.index = index
        self.price_book = price_book or PriceBook()
        self.render_timeout = render_timeout
        self.embedding_timeout = embedding_timeout
        self.similarity_limit = similarity_limit
        self._embedding_tasks: Set[asyncio.Task] = set()

    @classmethod
    def from_config(cls, config=None) -> 'QuoteService':
        """Wire a service from the global configuration."""
        if config is None:
            from .settings import settings
            config = settings.global_config

        data_root = Path(config.data_root)
        if config.store_backend == "memory":
            store = InMemoryQuoteStore()
        elif config.store_backend == "sqlite":
            store = SQLiteQuoteStore(data_root / "quotes.db", busy_timeout=config.store_busy_timeout)
        else:
            raise ConfigurationError("store", f"unknown backend {config.store_backend!r}")

        retry = RetryManager()
        retry.set_policy(
            "allocation",
            replace(retry.get_policy("allocation"), max_attempts=config.allocation_max_attempts)
        )

        from .llm import create_embedding_provider
        index = create_quote_index(
            create_embedding_provider(config),
            backend=config.similarity_backend,
            data_root=data_root,
        )

        logger.info(
            "Quote service configured",
            store=config.store_backend,
            structurer=config.structurer,
            similarity=config.similarity_backend,
            data_root=str(data_root)
        )
        return cls(
            store=store,
            structurer=create_structurer(config.structurer, config=config),
            renderer=ChromiumRenderer(config.browser_path),
            assets=AssetStore(data_root / "exports"),
            index=index,
            price_book=config.pricing,
            retry=retry,
            render_timeout=config.render_timeout,
            embedding_timeout=config.embedding_timeout,
            similarity_limit=config.similarity_default_limit,
        )

    async def _in_executor(self, fn: Callable, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, fn, *args)

    async def _update_atomically(self, quote_id: str, change: Callable[[Quote], Quote]) -> Quote:
        """Read-modify-write one quote inside a store transaction."""
        def run(tx: StoreTransaction) -> Quote:
            current = tx.get_quote(quote_id)
            if current is None:
                raise NotFoundError("quote", quote_id)
            updated = change(current)
            tx.put_quote(updated)
            return updated

        return await self.retry.execute_with_retry(
            self._in_executor, "allocation", None, {"quote_id": quote_id}, self.store.run_atomic, run
        )

    # Creation and lookup

    async def create_quote(self, model_key: str, client: str = "", owner: str = "") -> Quote:
        """
        Create a numbered draft quote from a catalog key.

        Args:
            model_key: Raw catalog key string
            client: Customer name
            owner: Responsible salesperson

        Returns:
            Stored quote with a fresh QuoteNumber (subSequence 1)
        """
        base = build_base_quote(parse_model(model_key), self.price_book, now=self.clock())
        number = await self.allocator.issue_quote_number()
        quote = base.model_copy(update={
            "quote_number": number,
            "revision_number": number.sub_sequence,
            "status": QuoteStatus.DRAFT,
            "client": client,
            "owner": owner,
        })
        await self._in_executor(self.store.put, quote.id, quote)

        bind_quote_context(logger, quote.id, quote.quote_no).info(
            "Quote created", model=model_key, grand_total=quote.grand_total
        )
        self._schedule_embedding(quote)
        return quote

    async def get_quote(self, quote_id: str) -> Quote:
        return await self._in_executor(self.store.get, quote_id)

    async def list_quotes(self, limit: int = 50) -> List[Quote]:
        return await self._in_executor(self.store.list_quotes, limit)

    # Editing

    async def apply_patch(self, quote_id: str, operations: Operations) -> Quote:
        """
        Apply a patch to a stored quote.

        Raises:
            NotFoundError: No such quote
            PatchError: An operation was rejected; nothing is written
        """
        now = self.clock()
        updated = await self._update_atomically(quote_id, lambda q: apply_patch(q, operations, now=now))
        logger.info("Quote patched", quote_id=quote_id, operations=len(operations), grand_total=updated.grand_total)
        self._schedule_embedding(updated)
        return updated

    async def structure_text(self, quote_id: str, text: str, apply: bool = True) -> StructureResponse:
        """Ask the structurer for operations; optionally apply them."""
        quote = await self.get_quote(quote_id)
        operations = await self.structurer.structure(text, quote)
        applied = False
        if apply and operations:
            quote = await self.apply_patch(quote_id, operations)
            applied = True
        return StructureResponse(operations=operations, quote=quote, applied=applied)

    async def request_revision(self, quote_id: str) -> Quote:
        revised = await self.allocator.issue_revision(quote_id)
        self._schedule_embedding(revised)
        return revised

    # Export

    async def export(self, quote_id: str) -> Quote:
        """
        Render a quote to PDF/PNG, store the assets and mark it ready.

        Raises:
            CollaboratorError: Rendering failed or exceeded ``render_timeout``;
                the stored quote is left unchanged
            ConflictError: The quote was patched or revised while rendering;
                the assets are written but the quote is not marked ready
        """
        if self.renderer is None or self.assets is None:
            raise CollaboratorError("renderer", "no renderer configured")

        quote = await self.get_quote(quote_id)
        try:
            document = await asyncio.wait_for(self.renderer.render(quote), timeout=self.render_timeout)
        except asyncio.TimeoutError as e:
            raise CollaboratorError(
                "renderer",
                f"rendering exceeded {self.render_timeout}s",
                timed_out=True,
                cause=e,
                context=create_context(quote_id=quote_id, quote_no=quote.quote_no, operation="export"),
            ) from e

        pdf_url, png_url = await self._in_executor(self.assets.save, quote, document)

        def mark_ready(current: Quote) -> Quote:
            if _rendered_content(current) != _rendered_content(quote):
                raise _StaleRender()
            return current.model_copy(update={
                "pdf_url": pdf_url,
                "png_url": png_url,
                "status": QuoteStatus.READY,
            })

        try:
            exported = await self._update_atomically(quote_id, mark_ready)
        except _StaleRender:
            logger.warning("Quote changed while rendering", quote_id=quote_id, quote_no=quote.quote_no)
            raise ConflictError(
                "quote",
                "quote changed while it was being rendered",
                context=create_context(quote_id=quote_id, quote_no=quote.quote_no, operation="export"),
            ) from None
        logger.info("Quote exported", quote_id=quote_id, quote_no=exported.quote_no)
        return exported

    # Similarity

    async def find_similar(self, text: str, limit: Optional[int] = None) -> List[SimilarQuote]:
        if not text or not text.strip():
            return []
        if self.index is None:
            raise CollaboratorError("similarity", "no quote index configured")
        return await self.index.search(text, limit or self.similarity_limit)

    def _schedule_embedding(self, quote: Quote) -> None:
        if self.index is None:
            return
        task = asyncio.create_task(self._embed(quote))
        self._embedding_tasks.add(task)
        task.add_done_callback(self._embedding_tasks.discard)

    async def _embed(self, quote: Quote) -> None:
        try:
            await asyncio.wait_for(
                self.retry.execute_with_retry(
                    self.index.index_quote, "embedding", "embeddings", {"quote_id": quote.id}, quote
                ),
                timeout=self.embedding_timeout,
            )
        except Exception as e:
            handle_error(e, create_context(
                quote_id=quote.id, quote_no=quote.quote_no, operation="embed_quote", provider="embeddings"
            ))

    async def drain(self) -> None:
        """Wait for outstanding embedding tasks."""
        if self._embedding_tasks:
            await asyncio.gather(*list(self._embedding_tasks), return_exceptions=True)
