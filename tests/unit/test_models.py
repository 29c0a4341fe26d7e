"""
Unit tests for the quote data models.
"""

import pytest
from pydantic import ValidationError as PydanticValidationError

from quote_studio.models import (
    Quote, QuoteNumber, QuoteStatus, LineItem, OptionLine, PatchOperation, CreateQuoteRequest
)


@pytest.mark.unit
class TestQuoteNumber:

    def test_string_form(self):
        assert str(QuoteNumber(year="25", sequence=672, sub_sequence=1)) == "25-672-1"

    def test_parse(self):
        number = QuoteNumber.parse("25-672-3")
        assert number.year == "25"
        assert number.sequence == 672
        assert number.sub_sequence == 3

    @pytest.mark.parametrize("value", ["", "2025-1-1", "25-1", "25-a-1"])
    def test_parse_rejects_malformed(self, value):
        with pytest.raises(ValueError):
            QuoteNumber.parse(value)

    def test_next_revision(self):
        number = QuoteNumber(year="25", sequence=672, sub_sequence=1)
        revised = number.next_revision()

        assert revised == QuoteNumber(year="25", sequence=672, sub_sequence=2)
        assert number.sub_sequence == 1

    def test_frozen(self):
        number = QuoteNumber(year="25", sequence=1)
        with pytest.raises(PydanticValidationError):
            number.sequence = 2

    def test_accepts_wire_alias(self):
        number = QuoteNumber.model_validate({"year": "24", "sequence": 9, "subSequence": 4})
        assert number.sub_sequence == 4

    def test_rejects_zero_sequence(self):
        with pytest.raises(PydanticValidationError):
            QuoteNumber(year="25", sequence=0)


@pytest.mark.unit
class TestQuote:

    def test_defaults(self):
        quote = Quote()
        assert quote.status == QuoteStatus.DRAFT
        assert quote.revision_number == 1
        assert quote.quote_number is None
        assert quote.quote_no is None
        assert quote.vat_rate == 0.1

    def test_document_uses_wire_names(self, sample_quote):
        doc = sample_quote.to_document()

        assert doc["grandTotal"] == 275
        assert doc["vatRate"] == 0.1
        assert doc["quoteNumber"] == {"year": "25", "sequence": 672, "subSequence": 1}
        assert doc["items"][0]["unitPrice"] == 100
        assert "lastUpdated" in doc

    def test_document_round_trip_preserves_quote(self, sample_quote):
        assert Quote.model_validate(sample_quote.to_document()) == sample_quote

    def test_vat_rate_bounds(self):
        with pytest.raises(PydanticValidationError):
            Quote(vat_rate=1.5)

    def test_option_price_non_negative(self):
        with pytest.raises(PydanticValidationError):
            OptionLine(description="x", price=-1)

    def test_line_item_accepts_negative_inputs(self):
        item = LineItem(qty=-1, unit_price=100)
        assert item.qty == -1

    def test_option_lines_cover_all_buckets(self):
        quote = Quote(
            installed=[OptionLine(description="a", price=1)],
            paid=[OptionLine(description="b", price=2)],
            extra=[OptionLine(description="c", price=3)],
        )
        assert [o.description for o in quote.option_lines()] == ["a", "b", "c"]

    def test_status_rank_order(self):
        assert QuoteStatus.DRAFT.rank < QuoteStatus.REVISED.rank < QuoteStatus.READY.rank


@pytest.mark.unit
class TestRequests:

    @pytest.mark.parametrize("path", ["items/0", "/", ""])
    def test_patch_path_must_be_rooted(self, path):
        with pytest.raises(PydanticValidationError):
            PatchOperation(op="replace", path=path, value=1)

    def test_patch_op_is_closed(self):
        with pytest.raises(PydanticValidationError):
            PatchOperation(op="move", path="/title")

    def test_create_request_alias(self):
        request = CreateQuoteRequest.model_validate({"modelKey": "x", "client": "ACME"})
        assert request.model_key == "x"
