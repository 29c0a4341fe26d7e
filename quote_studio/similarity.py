"""
Similar-quote search.

Quotes are flattened to a deterministic text form, embedded, and ranked by
cosine similarity against an embedded query. ``ChromaQuoteIndex`` persists
vectors in ChromaDB; ``InMemoryQuoteIndex`` keeps them in a dict and ranks
in Python.
"""

import math
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Protocol, Sequence, Tuple

import chromadb
from chromadb.config import Settings as ChromaSettings

from .models import Quote, SimilarQuote
from .llm.base import EmbeddingProvider
from .error_handler import ConfigurationError
from .logging_conf import get_logger

logger = get_logger(__name__)

COLLECTION_NAME = "quotes"
SCORE_DIGITS = 4


def quote_to_text(quote: Quote) -> str:
    """
    Flatten a quote into the text that gets embedded.

    One ``key:value`` line per field; empty option buckets are omitted.
    """
    items = "; ".join(f"{item.qty}x {item.label} @{item.unit_price}" for item in quote.items)
    lines = [
        f"client:{quote.client}",
        f"model:{quote.model.raw or quote.title}",
        f"items:{items}",
    ]
    for bucket in ("installed", "paid", "extra"):
        descriptions = ", ".join(option.description for option in getattr(quote, bucket))
        if descriptions:
            lines.append(f"{bucket}:{descriptions}")
    lines.extend([
        f"payTerms:{quote.pay_terms}",
        f"deliveryTerms:{quote.delivery_terms}",
        f"memo:{quote.notes or ''}",
    ])
    return "\n".join(lines)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine over the common prefix of both vectors; 0.0 for a zero vector."""
    n = min(len(a), len(b))
    dot = sum(a[i] * b[i] for i in range(n))
    norm_a = math.sqrt(sum(a[i] * a[i] for i in range(n)))
    norm_b = math.sqrt(sum(b[i] * b[i] for i in range(n)))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


def _metadata(quote: Quote) -> Dict[str, object]:
    return {
        "quoteNo": quote.quote_no or "",
        "client": quote.client,
        "model": quote.model.raw or quote.title,
        "grandTotal": quote.grand_total,
    }


def _hit(quote_id: str, score: float, metadata: Dict[str, object]) -> SimilarQuote:
    return SimilarQuote(
        quote_id=quote_id,
        score=round(score, SCORE_DIGITS),
        quote_no=metadata.get("quoteNo") or None,
        client=metadata.get("client"),
        model=metadata.get("model"),
        grand_total=metadata.get("grandTotal"),
    )


def rank_by_similarity(
    query: Sequence[float],
    candidates: Iterable[Tuple[str, Sequence[float], Dict[str, object]]],
    top_k: int = 5
) -> List[SimilarQuote]:
    """Score ``(id, vector, metadata)`` candidates and keep the best ``top_k``."""
    scored = [(cosine_similarity(query, vector), quote_id, metadata)
              for quote_id, vector, metadata in candidates]
    scored.sort(key=lambda entry: entry[0], reverse=True)
    return [_hit(quote_id, score, metadata) for score, quote_id, metadata in scored[:top_k]]


class QuoteIndex(Protocol):
    """Embedding index over stored quotes."""

    async def index_quote(self, quote: Quote) -> None:
        ...

    async def search(self, text: str, top_k: int = 5) -> List[SimilarQuote]:
        ...


class InMemoryQuoteIndex:
    """Dict-backed index, bounded to the most recent ``capacity`` quotes."""

    def __init__(self, embedder: EmbeddingProvider, capacity: int = 200):
        self.embedder = embedder
        self.capacity = capacity
        self._entries: Dict[str, Tuple[List[float], Dict[str, object]]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    async def index_quote(self, quote: Quote) -> None:
        vector = await self.embedder.embed_single(quote_to_text(quote))
        # re-insert so the dict order tracks recency
        self._entries.pop(quote.id, None)
        self._entries[quote.id] = (vector, _metadata(quote))
        while len(self._entries) > self.capacity:
            self._entries.pop(next(iter(self._entries)))

    async def search(self, text: str, top_k: int = 5) -> List[SimilarQuote]:
        if not text or not text.strip():
            return []
        query = await self.embedder.embed_single(text.strip())
        candidates = [(quote_id, vector, metadata) for quote_id, (vector, metadata) in self._entries.items()]
        return rank_by_similarity(query, candidates, top_k)


class ChromaQuoteIndex:
    """ChromaDB-backed index using cosine space."""

    def __init__(self, embedder: EmbeddingProvider, path: Path, collection_name: str = COLLECTION_NAME):
        self.embedder = embedder
        self.path = Path(path)
        self.path.mkdir(parents=True, exist_ok=True)

        self.client = chromadb.PersistentClient(
            path=str(self.path),
            settings=ChromaSettings(
                anonymized_telemetry=False,
                allow_reset=False
            )
        )
        self.collection = self.client.get_or_create_collection(
            name=collection_name,
            metadata={"hnsw:space": "cosine"},
        )
        logger.info(
            "Quote index initialized",
            collection=collection_name,
            path=str(self.path),
            existing_count=self.collection.count()
        )

    async def index_quote(self, quote: Quote) -> None:
        text = quote_to_text(quote)
        vector = await self.embedder.embed_single(text)
        self.collection.upsert(
            ids=[quote.id],
            embeddings=[vector],
            documents=[text],
            metadatas=[_metadata(quote)],
        )
        logger.debug("Quote embedded", quote_id=quote.id, dimensions=len(vector))

    async def search(self, text: str, top_k: int = 5) -> List[SimilarQuote]:
        if not text or not text.strip():
            return []
        count = self.collection.count()
        if count == 0:
            return []

        query = await self.embedder.embed_single(text.strip())
        results = self.collection.query(
            query_embeddings=[query],
            n_results=min(top_k, count),
            include=["metadatas", "distances"],
        )
        if not results or not results.get("ids") or not results["ids"][0]:
            return []

        hits = []
        for quote_id, metadata, distance in zip(
            results["ids"][0], results["metadatas"][0], results["distances"][0]
        ):
            # cosine space: distance = 1 - similarity
            hits.append(_hit(quote_id, 1.0 - float(distance), metadata or {}))
        return hits


def create_quote_index(
    embedder: EmbeddingProvider,
    backend: str = "chroma",
    data_root: Optional[Path] = None
) -> QuoteIndex:
    if backend == "memory":
        return InMemoryQuoteIndex(embedder)
    if backend != "chroma":
        raise ConfigurationError("similarity", f"unknown backend {backend!r}")
    if data_root is None:
        from .settings import settings
        data_root = settings.global_config.data_root
    return ChromaQuoteIndex(embedder, Path(data_root) / "vectors" / "chroma")
