"""
Pydantic data models for Quote Studio.

Defines the quote entity and its parts (line items, option lines, parsed
catalog attributes, quote numbers), patch operations, and the request and
response payloads of the HTTP API. Wire names are camelCase; Python
attributes are snake_case and accept either form on input.
"""

from __future__ import annotations

from typing import List, Optional, Any, Literal, Iterator
from datetime import datetime, timezone
from enum import Enum
import re
import uuid
from pydantic import BaseModel, ConfigDict, Field, field_validator


def utcnow() -> datetime:
    """Timezone-aware current time used as the default clock."""
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex


class Series(str, Enum):
    """Known product lines. The first member is the baseline series."""
    G2 = "G2"
    G3 = "G3"
    G20 = "G20"
    ST20 = "ST20"


class DeckType(str, Enum):
    """Deck / drive type of a vehicle."""
    ELECTRONIC_GUIDANCE = "electronic-guidance"
    MANUAL = "manual"
    LONG_DECK = "long-deck"
    SHORT_DECK = "short-deck"


class BatteryType(str, Enum):
    """Battery supplied with a vehicle."""
    LITHIUM = "lithium"
    LIQUID = "liquid"
    NONE_INCLUDED = "none-included"


class QuoteStatus(str, Enum):
    """Quote lifecycle status, ordered draft < revised < ready."""
    DRAFT = "draft"
    REVISED = "revised"
    READY = "ready"

    @property
    def rank(self) -> int:
        return _STATUS_ORDER.index(self)


_STATUS_ORDER = [QuoteStatus.DRAFT, QuoteStatus.REVISED, QuoteStatus.READY]


class QuoteNumber(BaseModel):
    """Human-facing quote identifier ``{year}-{sequence}-{subSequence}``."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    year: str = Field(..., pattern=r"^\d{2}$", description="Two-digit year key")
    sequence: int = Field(..., ge=1, description="Per-year sequence number")
    sub_sequence: int = Field(1, ge=1, alias="subSequence", description="Revision sub-number")

    def __str__(self) -> str:
        return f"{self.year}-{self.sequence}-{self.sub_sequence}"

    @classmethod
    def parse(cls, value: str) -> 'QuoteNumber':
        """Parse the serialized ``yy-seq-sub`` form."""
        match = re.fullmatch(r"(\d{2})-(\d+)-(\d+)", value.strip())
        if not match:
            raise ValueError(f"Not a quote number: {value!r}")
        return cls(year=match.group(1), sequence=int(match.group(2)), sub_sequence=int(match.group(3)))

    def next_revision(self) -> 'QuoteNumber':
        """Same year and sequence, sub-sequence incremented by one."""
        return QuoteNumber(year=self.year, sequence=self.sequence, sub_sequence=self.sub_sequence + 1)


class ModelAttributes(BaseModel):
    """Facts parsed out of a raw catalog key string."""

    model_config = ConfigDict(populate_by_name=True)

    course_name: str = Field("", alias="courseName", description="Golf course name prefix")
    date: str = Field("", description="Date token from the key, e.g. 25.01.01")
    series: Series = Field(Series.G2, description="Product line")
    deck: Optional[DeckType] = None
    seats: Optional[int] = Field(None, ge=0, description="Seat count")
    seat_label: Optional[str] = Field(None, alias="seatLabel", description="Display label, e.g. VIP 4인승")
    battery: Optional[BatteryType] = None
    variant: Optional[str] = Field(None, description="VIP / semi / reverse-facing display label")
    raw: str = Field("", description="Original catalog key")


class LineItem(BaseModel):
    """A quantity-priced line. ``total`` is always derived by recompute."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=lambda: uuid.uuid4().hex[:12])
    label: str = ""
    qty: int = 1
    unit_price: int = Field(0, alias="unitPrice", description="Minor currency units")
    total: int = 0
    meta: Optional[str] = None


class OptionLine(BaseModel):
    """An add-on charge without quantity."""

    model_config = ConfigDict(populate_by_name=True)

    description: str = ""
    price: int = Field(0, ge=0)


OPTION_BUCKETS = ("installed", "paid", "extra")


class Quote(BaseModel):
    """The canonical quote entity."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=new_id)
    title: str = ""
    model: ModelAttributes = Field(default_factory=ModelAttributes)
    items: List[LineItem] = Field(default_factory=list)
    installed: List[OptionLine] = Field(default_factory=list)
    paid: List[OptionLine] = Field(default_factory=list)
    extra: List[OptionLine] = Field(default_factory=list)
    subtotal: int = 0
    vat_rate: float = Field(0.1, ge=0.0, le=1.0, alias="vatRate")
    vat: int = 0
    grand_total: int = Field(0, alias="grandTotal")
    notes: Optional[str] = None
    client: str = ""
    owner: str = ""
    pay_terms: str = Field("", alias="payTerms")
    delivery_terms: str = Field("", alias="deliveryTerms")
    revision_number: int = Field(1, ge=1, alias="revisionNumber")
    last_updated: datetime = Field(default_factory=utcnow, alias="lastUpdated")
    quote_number: Optional[QuoteNumber] = Field(None, alias="quoteNumber")
    status: QuoteStatus = QuoteStatus.DRAFT
    pdf_url: Optional[str] = Field(None, alias="pdfUrl")
    png_url: Optional[str] = Field(None, alias="pngUrl")

    @property
    def quote_no(self) -> Optional[str]:
        return str(self.quote_number) if self.quote_number else None

    def option_lines(self) -> Iterator[OptionLine]:
        """All option lines across the installed/paid/extra buckets."""
        for bucket in OPTION_BUCKETS:
            yield from getattr(self, bucket)

    def to_document(self) -> dict:
        """JSON-compatible wire form used by stores and the API."""
        return self.model_dump(mode="json", by_alias=True)


class PatchOperation(BaseModel):
    """One structural edit of a quote's field tree."""

    op: Literal["replace", "add", "remove"]
    path: str = Field(..., description="Slash-delimited field locator, e.g. /items/0/qty")
    value: Any = None

    @field_validator('path')
    @classmethod
    def validate_path(cls, v):
        if not v.startswith("/") or v == "/":
            raise ValueError("Path must start with '/' and name a field")
        return v


# API payloads

class CreateQuoteRequest(BaseModel):
    """Create a quote from a catalog key."""

    model_config = ConfigDict(populate_by_name=True)

    model_key: str = Field(..., min_length=1, alias="modelKey")
    client: str = ""
    owner: str = ""


class PatchRequest(BaseModel):
    operations: List[PatchOperation] = Field(..., min_length=1)


class StructureRequest(BaseModel):
    """Free text to turn into patch operations."""

    text: str = Field(..., min_length=1)
    apply: bool = True


class StructureResponse(BaseModel):
    operations: List[PatchOperation]
    quote: Quote
    applied: bool


class RevisionResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    quote_id: str = Field(..., alias="quoteId")
    quote_no: str = Field(..., alias="quoteNo")


class ExportResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    quote_id: str = Field(..., alias="quoteId")
    pdf_url: str = Field(..., alias="pdfUrl")
    png_url: str = Field(..., alias="pngUrl")
    status: QuoteStatus


class SimilarQuote(BaseModel):
    """One ranked similarity hit."""

    model_config = ConfigDict(populate_by_name=True)

    quote_id: str = Field(..., alias="quoteId")
    score: float
    quote_no: Optional[str] = Field(None, alias="quoteNo")
    client: Optional[str] = None
    model: Optional[str] = None
    grand_total: Optional[int] = Field(None, alias="grandTotal")


class SimilarResponse(BaseModel):
    items: List[SimilarQuote]
