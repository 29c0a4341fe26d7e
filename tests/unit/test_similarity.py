"""
Unit tests for similar-quote search.
"""

import pytest

from quote_studio.models import Quote, LineItem, OptionLine
from quote_studio.similarity import (
    quote_to_text, cosine_similarity, rank_by_similarity,
    InMemoryQuoteIndex, ChromaQuoteIndex, create_quote_index
)
from quote_studio.error_handler import CollaboratorError, ConfigurationError


def _quote(quote_id, client, label, **extra):
    return Quote(id=quote_id, client=client, items=[LineItem(label=label, qty=1, unit_price=100)], **extra)


@pytest.mark.unit
class TestQuoteToText:

    def test_layout(self, sample_quote):
        quote = sample_quote.model_copy(update={"client": "ACME", "pay_terms": "30 days", "notes": "rush"})

        assert quote_to_text(quote).splitlines() == [
            "client:ACME",
            "model:Sample",
            "items:2x Cart @100",
            "installed:Rain cover",
            "payTerms:30 days",
            "deliveryTerms:",
            "memo:rush",
        ]

    def test_deterministic(self, sample_quote):
        assert quote_to_text(sample_quote) == quote_to_text(sample_quote.model_copy())

    def test_multiple_items_and_buckets(self):
        quote = Quote(
            items=[LineItem(label="A", qty=1, unit_price=1), LineItem(label="B", qty=2, unit_price=3)],
            paid=[OptionLine(description="LED"), OptionLine(description="Horn")],
        )
        text = quote_to_text(quote)
        assert "items:1x A @1; 2x B @3" in text
        assert "paid:LED, Horn" in text
        assert "installed:" not in text


@pytest.mark.unit
class TestRanking:

    def test_cosine(self):
        assert cosine_similarity([1, 0], [1, 0]) == pytest.approx(1.0)
        assert cosine_similarity([1, 0], [0, 1]) == pytest.approx(0.0)
        assert cosine_similarity([0, 0], [1, 1]) == 0.0

    def test_rank_orders_and_truncates(self):
        hits = rank_by_similarity(
            [1.0, 0.0],
            [
                ("far", [0.0, 1.0], {}),
                ("near", [1.0, 0.1], {"quoteNo": "25-1-1", "client": "ACME", "grandTotal": 10}),
                ("mid", [1.0, 1.0], {}),
            ],
            top_k=2,
        )

        assert [hit.quote_id for hit in hits] == ["near", "mid"]
        assert hits[0].quote_no == "25-1-1"
        assert hits[0].grand_total == 10
        assert hits[1].score == round(1 / 2 ** 0.5, 4)


@pytest.mark.unit
class TestInMemoryIndex:

    @pytest.mark.asyncio
    async def test_most_similar_first(self, fake_embeddings):
        index = InMemoryQuoteIndex(fake_embeddings)
        await index.index_quote(_quote("q1", "Alpha Golf", "lithium cart"))
        await index.index_quote(_quote("q2", "Beta Club", "liquid cart"))

        hits = await index.search("client:Alpha Golf", top_k=5)

        assert hits[0].quote_id == "q1"
        assert hits[0].client == "Alpha Golf"
        assert len(hits) == 2

    @pytest.mark.asyncio
    async def test_reindex_replaces(self, fake_embeddings):
        index = InMemoryQuoteIndex(fake_embeddings)
        await index.index_quote(_quote("q1", "Alpha", "cart"))
        await index.index_quote(_quote("q1", "Gamma", "cart"))

        assert len(index) == 1
        assert (await index.search("Gamma"))[0].client == "Gamma"

    @pytest.mark.asyncio
    async def test_capacity_evicts_oldest(self, fake_embeddings):
        index = InMemoryQuoteIndex(fake_embeddings, capacity=2)
        for n in range(3):
            await index.index_quote(_quote(f"q{n}", f"Client {n}", "cart"))

        ids = {hit.quote_id for hit in await index.search("cart", top_k=10)}
        assert ids == {"q1", "q2"}

    @pytest.mark.asyncio
    async def test_blank_query(self, fake_embeddings):
        index = InMemoryQuoteIndex(fake_embeddings)
        await index.index_quote(_quote("q1", "Alpha", "cart"))

        assert await index.search("   ") == []
        assert len(fake_embeddings.calls) == 1

    @pytest.mark.asyncio
    async def test_embedding_failure_propagates(self, failing_embeddings):
        index = InMemoryQuoteIndex(failing_embeddings)
        with pytest.raises(CollaboratorError):
            await index.index_quote(_quote("q1", "Alpha", "cart"))
        assert len(index) == 0


@pytest.mark.unit
class TestChromaIndex:

    @pytest.mark.asyncio
    async def test_persistent_search(self, fake_embeddings, tmp_path):
        index = ChromaQuoteIndex(fake_embeddings, tmp_path / "chroma")
        assert await index.search("anything") == []

        await index.index_quote(_quote("q1", "Alpha Golf", "lithium cart", title="A"))
        await index.index_quote(_quote("q2", "Beta Club", "liquid cart", title="B"))

        hits = await index.search("client:Alpha Golf", top_k=1)

        assert len(hits) == 1
        assert hits[0].quote_id == "q1"
        assert 0.0 < hits[0].score <= 1.0

    def test_factory(self, fake_embeddings, tmp_path):
        assert isinstance(create_quote_index(fake_embeddings, "memory"), InMemoryQuoteIndex)
        chroma = create_quote_index(fake_embeddings, "chroma", data_root=tmp_path)
        assert chroma.path == tmp_path / "vectors" / "chroma"
        with pytest.raises(ConfigurationError):
            create_quote_index(fake_embeddings, "faiss")
