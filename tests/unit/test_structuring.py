"""
Unit tests for free-text structuring.
"""

import pytest

from quote_studio.models import Quote
from quote_studio.pricing import build_base_quote
from quote_studio.model_parser import parse_model
from quote_studio.structuring import (
    keyword_operations, fields_to_operations, extract_json,
    KeywordStructurer, LLMStructurer, create_structurer
)
from quote_studio.patch_engine import apply_patch
from quote_studio.error_handler import CollaboratorError


class CannedProvider:
    """LLM provider returning a fixed response."""

    def __init__(self, response):
        self.response = response
        self.calls = []

    async def generate(self, system, messages, max_tokens=900, temperature=0.2):
        self.calls.append({"system": system, "messages": messages, "max_tokens": max_tokens})
        return self.response

    async def test_connection(self):
        return True


@pytest.fixture
def base_quote(now):
    return build_base_quote(parse_model("골프장명(25.00.00)_G2_전자유도_5인승_액상"), now=now)


def _as_tuples(ops):
    return [(op.op, op.path, op.value) for op in ops]


@pytest.mark.unit
class TestKeywordOperations:

    def test_seats(self, base_quote):
        ops = keyword_operations("6인승으로 바꿔주세요", base_quote)
        assert _as_tuples(ops) == [
            ("replace", "/model/seats", 6),
            ("replace", "/model/seatLabel", "6인승"),
        ]

    def test_last_battery_keyword_wins(self, base_quote):
        ops = keyword_operations("액상 말고 리튬으로", base_quote)
        assert _as_tuples(ops) == [("replace", "/model/battery", "lithium")]

    def test_battery_not_included(self, base_quote):
        ops = keyword_operations("배터리 미포함", base_quote)
        assert ("replace", "/model/battery", "none-included") in _as_tuples(ops)

    def test_deck(self, base_quote):
        assert _as_tuples(keyword_operations("롱데크로 변경", base_quote)) == [
            ("replace", "/model/deck", "long-deck")
        ]

    def test_battery_quantity_targets_battery_line(self, base_quote):
        index = next(i for i, item in enumerate(base_quote.items) if item.id == "battery")

        ops = keyword_operations("배터리 2개 추가", base_quote)

        assert ("replace", f"/items/{index}/qty", 2) in _as_tuples(ops)

    def test_battery_quantity_without_battery_line(self, now):
        quote = Quote()
        assert keyword_operations("배터리 2개", quote) == []

    def test_memo_appends(self, base_quote):
        noted = base_quote.model_copy(update={"notes": "기존"})
        ops = keyword_operations("메모: 3월 납품", noted)
        assert _as_tuples(ops) == [("replace", "/notes", "기존\n3월 납품")]

    def test_memo_without_existing_notes(self):
        ops = keyword_operations("비고 빠른 납품", Quote())
        assert _as_tuples(ops) == [("replace", "/notes", "빠른 납품")]

    def test_nothing_recognised(self, base_quote):
        assert keyword_operations("안녕하세요", base_quote) == []

    def test_operations_apply_cleanly(self, base_quote, now):
        ops = keyword_operations("리튬, 8인승, 롱데크, 배터리 3개, 메모: 급함", base_quote)

        patched = apply_patch(base_quote, ops, now=now)

        assert patched.model.seats == 8
        assert patched.model.battery.value == "lithium"
        assert patched.model.deck.value == "long-deck"
        assert patched.notes.endswith("급함")

    @pytest.mark.asyncio
    async def test_keyword_structurer(self, base_quote):
        ops = await KeywordStructurer().structure("6인승", base_quote)
        assert len(ops) == 2


@pytest.mark.unit
class TestExtractJson:

    def test_plain_object(self):
        assert extract_json('{"client": "A"}') == {"client": "A"}

    def test_object_in_prose(self):
        assert extract_json('Sure!\n```json\n{"client": "A"}\n```') == {"client": "A"}

    @pytest.mark.parametrize("text", ["no json here", "[1, 2]", "{broken"])
    def test_unparseable(self, text):
        with pytest.raises(CollaboratorError):
            extract_json(text)


@pytest.mark.unit
class TestFieldsToOperations:

    def test_scalars(self):
        ops = fields_to_operations({"client": " ACME ", "memo": "급함", "payTerms": "현금", "owner": ""})
        assert _as_tuples(ops) == [
            ("replace", "/client", "ACME"),
            ("replace", "/payTerms", "현금"),
            ("replace", "/notes", "급함"),
        ]

    def test_model_key(self):
        ops = fields_to_operations({"model": "골프장명(25.00.00)_G3_롱데크_2인승_리튬"})
        assert _as_tuples(ops) == [
            ("replace", "/model/series", "G3"),
            ("replace", "/model/deck", "long-deck"),
            ("replace", "/model/seats", 2),
            ("replace", "/model/seatLabel", "2인승"),
            ("replace", "/model/battery", "lithium"),
        ]

    def test_items_and_options(self):
        ops = fields_to_operations({
            "items": [{"qty": "2", "description": "충전기", "unitPrice": "150,000"}, {"qty": 1}],
            "installed": ["레인커버"],
            "paid": [{"description": "LED", "price": -5}],
        })
        assert _as_tuples(ops) == [
            ("add", "/items/-", {"label": "충전기", "qty": 2, "unitPrice": 150000}),
            ("add", "/installed/-", {"description": "레인커버", "price": 0}),
            ("add", "/paid/-", {"description": "LED", "price": 0}),
        ]

    def test_output_applies(self, now):
        ops = fields_to_operations({
            "client": "ACME",
            "items": [{"qty": 2, "description": "충전기", "unitPrice": 100}],
            "extra": [{"description": "배송", "price": 50}],
        })

        patched = apply_patch(Quote(), ops, now=now)

        assert patched.client == "ACME"
        assert patched.subtotal == 250

    def test_price_range_is_not_an_amount(self):
        ops = fields_to_operations({"items": [{"description": "가이드", "unitPrice": "100-200"}]})
        assert _as_tuples(ops) == [("add", "/items/-", {"label": "가이드", "qty": 1})]

    def test_non_finite_numbers_from_json(self):
        fields = extract_json(
            '{"items": [{"description": "x", "qty": NaN, "unitPrice": Infinity}],'
            ' "paid": [{"description": "y", "price": -Infinity}]}'
        )

        ops = fields_to_operations(fields)

        assert _as_tuples(ops) == [
            ("add", "/items/-", {"label": "x", "qty": 1}),
            ("add", "/paid/-", {"description": "y", "price": 0}),
        ]

    @pytest.mark.parametrize("fields", [
        {"installed": 5},
        {"paid": "LED"},
        {"items": {"description": "충전기"}},
        {"extra": None},
    ])
    def test_non_list_collections_are_skipped(self, fields):
        assert fields_to_operations(fields) == []

    def test_explicit_zero_quantity_kept(self):
        ops = fields_to_operations({"items": [{"description": "시승", "qty": 0, "unitPrice": 0}]})
        assert _as_tuples(ops) == [("add", "/items/-", {"label": "시승", "qty": 0, "unitPrice": 0})]

    def test_model_without_series_token_keeps_series(self, now):
        quote = build_base_quote(parse_model("골프장명(25.00.00)_G3_전자유도_5인승_리튬"), now=now)

        ops = fields_to_operations({"model": "전자유도 카트"})
        patched = apply_patch(quote, ops, now=now)

        assert "/model/series" not in [op.path for op in ops]
        assert patched.model.series.value == "G3"
        assert patched.model.deck.value == "electronic-guidance"


@pytest.mark.unit
class TestLLMStructurer:

    @pytest.mark.asyncio
    async def test_structure(self, base_quote):
        provider = CannedProvider('{"client": "ACME", "memo": "급함"}')
        structurer = LLMStructurer(provider, max_tokens=300)

        ops = await structurer.structure("ACME 견적, 급함", base_quote)

        assert _as_tuples(ops) == [("replace", "/client", "ACME"), ("replace", "/notes", "급함")]
        assert "ACME 견적, 급함" in provider.calls[0]["messages"][0]["content"]
        assert provider.calls[0]["max_tokens"] == 300

    @pytest.mark.asyncio
    async def test_bad_response(self, base_quote):
        with pytest.raises(CollaboratorError):
            await LLMStructurer(CannedProvider("I cannot help")).structure("x", base_quote)

    def test_factory(self):
        assert isinstance(create_structurer("keyword"), KeywordStructurer)
        structurer = create_structurer("llm", provider=CannedProvider("{}"))
        assert isinstance(structurer, LLMStructurer)
