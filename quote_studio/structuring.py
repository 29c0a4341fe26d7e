"""
Free text to patch operations.

Two structurers share one protocol: ``KeywordStructurer`` recognises a fixed
set of Korean keywords (seats, battery, deck, battery quantity, memo), and
``LLMStructurer`` asks a language model for partial quote fields as JSON and
converts them with ``fields_to_operations``. Neither applies anything; their
output goes through the patch engine like any other patch.
"""

import json
import math
import re
from typing import Any, Dict, List, Optional, Protocol

from .models import Quote, PatchOperation, OPTION_BUCKETS
from .model_parser import DECK_TOKENS, SEAT_SUFFIX, find_series, parse_model
from .llm.base import LLMProvider
from .retry_utils import RetryManager, retry_manager
from .error_handler import CollaboratorError
from .logging_conf import get_logger

logger = get_logger(__name__)


class TextStructurer(Protocol):
    """Turns a user's free text into patch operations against ``quote``."""

    async def structure(self, text: str, quote: Quote) -> List[PatchOperation]:
        ...


_SEATS_RE = re.compile(r"(\d+)\s*(?:인승|명|좌석)")
_BATTERY_QTY_RE = re.compile(r"(배터리|battery).*?(\d+)\s*개", re.IGNORECASE)
_MEMO_KEYWORD_RE = re.compile(r"메모|노트|비고")
_MEMO_PREFIX_RE = re.compile(r"^[\s\S]*?(메모|노트|비고)[:：]?\s*")

# Short forms accepted in chat; the last mention wins
_BATTERY_KEYWORDS = [("리튬", "lithium"), ("액상", "liquid"), ("미포함", "none-included")]

BATTERY_ITEM_ID = "battery"


def _last_mention(text: str, table) -> Optional[Any]:
    found, position = None, -1
    for keyword, value in table:
        at = text.rfind(keyword)
        if at > position:
            found, position = value, at
    return found


def keyword_operations(text: str, quote: Quote) -> List[PatchOperation]:
    """Deterministic keyword extraction; returns an empty list when nothing matches."""
    ops: List[PatchOperation] = []

    seats = _SEATS_RE.search(text)
    if seats:
        count = int(seats.group(1))
        ops.append(PatchOperation(op="replace", path="/model/seats", value=count))
        ops.append(PatchOperation(op="replace", path="/model/seatLabel", value=f"{count}{SEAT_SUFFIX}"))

    battery = _last_mention(text, _BATTERY_KEYWORDS)
    if battery:
        ops.append(PatchOperation(op="replace", path="/model/battery", value=battery))

    deck = _last_mention(text, DECK_TOKENS)
    if deck:
        ops.append(PatchOperation(op="replace", path="/model/deck", value=deck.value))

    battery_qty = _BATTERY_QTY_RE.search(text)
    if battery_qty:
        for index, item in enumerate(quote.items):
            if item.id == BATTERY_ITEM_ID:
                ops.append(PatchOperation(op="replace", path=f"/items/{index}/qty", value=int(battery_qty.group(2))))
                break

    if _MEMO_KEYWORD_RE.search(text):
        note = _MEMO_PREFIX_RE.sub("", text, count=1).strip()
        if note:
            combined = f"{quote.notes}\n{note}" if quote.notes else note
            ops.append(PatchOperation(op="replace", path="/notes", value=combined))

    return ops


class KeywordStructurer:
    """Structurer backed by ``keyword_operations``."""

    async def structure(self, text: str, quote: Quote) -> List[PatchOperation]:
        ops = keyword_operations(text, quote)
        logger.debug("Keyword structuring", quote_id=quote.id, operations=len(ops))
        return ops


STRUCTURING_SYSTEM_PROMPT = """You convert golf-cart quote requests into JSON.
Return only a JSON object. Omit any field you are not sure about."""

STRUCTURING_PROMPT = """다음 견적 요청 문장을 JSON으로 구조화.
필드: client, model, items[{{qty, description, unitPrice?}}],
installed[{{description, price}}], paid[{{description, price}}], extra[{{description, price}}],
payTerms, deliveryTerms, memo, owner?
숫자는 정수/원, 모르면 생략. JSON만 출력.

문장:
{text}"""

_TEXT_FIELDS = {
    "client": "/client",
    "owner": "/owner",
    "payTerms": "/payTerms",
    "deliveryTerms": "/deliveryTerms",
    "memo": "/notes",
}

_MODEL_ATTRS = {
    "series": "series",
    "deck": "deck",
    "seats": "seats",
    "seat_label": "seatLabel",
    "battery": "battery",
    "variant": "variant",
}


def extract_json(text: str) -> Dict[str, Any]:
    """
    Parse the first JSON object in a model response.

    Raises:
        CollaboratorError: No JSON object could be decoded
    """
    candidates = [text.strip()]
    match = re.search(r"\{[\s\S]*\}", text)
    if match:
        candidates.append(match.group(0))
    for candidate in candidates:
        try:
            data = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(data, dict):
            return data
    logger.warning("Failed to parse structuring JSON", response=text[:200])
    raise CollaboratorError("llm", "response was not a JSON object")


_AMOUNT_RE = re.compile(r"-?[0-9][0-9,]*")


def _int_or_none(value: Any) -> Optional[int]:
    """Whole number from a model value; None when it is not a single finite amount."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if math.isfinite(value) else None
    if isinstance(value, str):
        text = value.strip().replace("원", "").strip()
        if not _AMOUNT_RE.fullmatch(text):
            return None
        try:
            return int(text.replace(",", ""))
        except ValueError:
            return None
    return None


def _entries(fields: Dict[str, Any], key: str) -> List[Any]:
    value = fields.get(key)
    return value if isinstance(value, list) else []


def fields_to_operations(fields: Dict[str, Any]) -> List[PatchOperation]:
    """
    Convert partial quote fields (as produced by the model) into operations.

    Scalars become ``replace``; items and option lines are appended with
    ``add`` at ``-``; a ``model`` catalog key is parsed and its recognised
    attributes replaced. Malformed entries are skipped.
    """
    ops: List[PatchOperation] = []

    for key, path in _TEXT_FIELDS.items():
        value = fields.get(key)
        if isinstance(value, str) and value.strip():
            ops.append(PatchOperation(op="replace", path=path, value=value.strip()))

    model_key = fields.get("model")
    if isinstance(model_key, str) and model_key.strip():
        attrs = parse_model(model_key)
        for attr, wire in _MODEL_ATTRS.items():
            # parse_model falls back to a default series; only an explicit token counts
            if attr == "series" and find_series(model_key) is None:
                continue
            value = getattr(attrs, attr)
            if value is not None:
                ops.append(PatchOperation(op="replace", path=f"/model/{wire}", value=getattr(value, "value", value)))

    for entry in _entries(fields, "items"):
        if not isinstance(entry, dict) or not entry.get("description"):
            continue
        qty = _int_or_none(entry.get("qty"))
        item = {"label": str(entry["description"]), "qty": 1 if qty is None else qty}
        unit_price = _int_or_none(entry.get("unitPrice"))
        if unit_price is not None:
            item["unitPrice"] = unit_price
        ops.append(PatchOperation(op="add", path="/items/-", value=item))

    for bucket in OPTION_BUCKETS:
        for entry in _entries(fields, bucket):
            if isinstance(entry, str) and entry.strip():
                entry = {"description": entry}
            if not isinstance(entry, dict) or not entry.get("description"):
                continue
            price = _int_or_none(entry.get("price")) or 0
            ops.append(PatchOperation(
                op="add",
                path=f"/{bucket}/-",
                value={"description": str(entry["description"]), "price": max(0, price)},
            ))

    return ops


class LLMStructurer:
    """Structurer that asks a language model for partial quote fields."""

    def __init__(
        self,
        provider: LLMProvider,
        max_tokens: int = 900,
        temperature: float = 0.2,
        retry: Optional[RetryManager] = None
    ):
        self.provider = provider
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.retry = retry or retry_manager

    async def structure(self, text: str, quote: Quote) -> List[PatchOperation]:
        response = await self.retry.execute_with_retry(
            self.provider.generate,
            "llm",
            "llm",
            {"quote_id": quote.id},
            system=STRUCTURING_SYSTEM_PROMPT,
            messages=[{"role": "user", "content": STRUCTURING_PROMPT.format(text=text)}],
            max_tokens=self.max_tokens,
            temperature=self.temperature,
        )
        ops = fields_to_operations(extract_json(response))
        logger.debug("LLM structuring", quote_id=quote.id, operations=len(ops))
        return ops


def create_structurer(kind: str = "keyword", provider: Optional[LLMProvider] = None, config=None) -> TextStructurer:
    """Build the configured structurer; ``llm`` falls back to the configured provider."""
    if kind == "llm":
        if provider is None:
            from .llm import create_llm_provider
            provider = create_llm_provider(config)
        if config is not None:
            return LLMStructurer(provider, max_tokens=config.llm_max_tokens, temperature=config.llm_temperature)
        return LLMStructurer(provider)
    return KeywordStructurer()
