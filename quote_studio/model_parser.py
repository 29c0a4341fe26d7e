"""
Catalog key parsing.

Catalog keys look like ``골프장명(25.00.00)_G2_전자유도_VIP 6인승_리튬``: a course
name with a date, then underscore-separated series, deck, seat and battery
tokens. Parsing is total: any string yields a ModelAttributes, falling back
to the baseline series and leaving unknown fields unset.
"""

import re
from typing import List, Optional, Tuple

from .models import ModelAttributes, Series, DeckType, BatteryType


# Ordered by priority; electronic-guidance keys can contain other deck words.
DECK_TOKENS: List[Tuple[str, DeckType]] = [
    ("전자유도", DeckType.ELECTRONIC_GUIDANCE),
    ("수동", DeckType.MANUAL),
    ("롱데크", DeckType.LONG_DECK),
    ("숏데크", DeckType.SHORT_DECK),
]

BATTERY_TOKENS: List[Tuple[str, BatteryType]] = [
    ("리튬", BatteryType.LITHIUM),
    ("액상", BatteryType.LIQUID),
    ("배터리 미포함", BatteryType.NONE_INCLUDED),
]

# Display labels used on quote lines
DECK_LABELS = {deck: token for token, deck in DECK_TOKENS}
BATTERY_LABELS = {battery: token for token, battery in BATTERY_TOKENS}

SEAT_SUFFIX = "인승"
REVERSE_FACING = "역방향"

_COURSE_RE = re.compile(r"^(.*?)\(([^)]+)\)")
_SERIES_RE = re.compile(r"_(" + "|".join(s.value for s in Series) + r")_")
_VIP_SEATS_RE = re.compile(r"VIP\s*(\d+)인승")
_SEMI_SEATS_RE = re.compile(r"세미\s*(\d+)인승\((T\d)\)")
# Skips counts inside a parenthesised sub-tag such as "(6인승)"
_PLAIN_SEATS_RE = re.compile(r"_(\d+)인승(?!\))")

CATALOG_KEYS: List[str] = [
    "골프장명(25.00.00)_G2_롱데크(장축)_2인승_리튬",
    "골프장명(25.00.00)_G2_롱데크_2인승_리튬",
    "골프장명(25.00.00)_G2_롱데크_2인승_액상",
    "골프장명(25.00.00)_G2_숏데크_5인승_리튬",
    "골프장명(25.00.00)_G2_수동_5인승 역방향_리튬",
    "골프장명(25.00.00)_G2_수동_5인승_리튬",
    "골프장명(25.00.00)_G2_수동_8인승_리튬",
    "골프장명(25.00.00)_G2_수동_11인승_리튬",
    "골프장명(25.00.00)_G2_전자유도_5인승_리튬",
    "골프장명(25.00.00)_G2_전자유도_5인승_배터리 미포함",
    "골프장명(25.00.00)_G2_전자유도_5인승_액상",
    "골프장명(25.00.00)_G2_전자유도_8인승_리튬",
    "골프장명(25.00.00)_G2_전자유도_VIP 4인승_액상",
    "골프장명(25.00.00)_G2_전자유도_VIP 6인승_리튬",
    "골프장명(25.00.00)_G2_전자유도_세미 6인승(T1)_리튬",
    "골프장명(25.00.00)_G2_전자유도_세미 6인승(T2)_리튬",
    "골프장명(25.00.00)_G3_롱데크_2인승_리튬",
    "골프장명(25.00.00)_G3_전자유도_5인승_리튬",
    "골프장명(25.00.00)_G20_2인승_리튬",
    "골프장명(25.00.00)_G20_2인승_액상",
    "골프장명(25.00.00)_ST20_2인승_리튬",
    "골프장명(25.00.00)_ST20_2인승_액상",
]


def _first_token(raw: str, table):
    for token, value in table:
        if token in raw:
            return value
    return None


def find_series(raw: str) -> Optional[Series]:
    """Series named by an explicit ``_G2_``-style token, or None."""
    match = _SERIES_RE.search(raw) if isinstance(raw, str) else None
    return Series(match.group(1)) if match else None


def _parse_seats(raw: str) -> Tuple[Optional[int], Optional[str]]:
    vip = _VIP_SEATS_RE.search(raw)
    if vip:
        seats = int(vip.group(1))
        return seats, f"VIP {seats}{SEAT_SUFFIX}"

    semi = _SEMI_SEATS_RE.search(raw)
    if semi:
        seats = int(semi.group(1))
        return seats, f"세미 {seats}{SEAT_SUFFIX}({semi.group(2)})"

    plain = _PLAIN_SEATS_RE.search(raw)
    if plain:
        seats = int(plain.group(1))
        return seats, f"{seats}{SEAT_SUFFIX}"

    return None, None


def parse_model(raw: str) -> ModelAttributes:
    """
    Parse a raw catalog key into structured attributes.

    Args:
        raw: Catalog key string

    Returns:
        ModelAttributes; never raises
    """
    raw = raw if isinstance(raw, str) else ""

    course = _COURSE_RE.search(raw)
    course_name = course.group(1).strip() if course else ""
    date = course.group(2) if course else ""

    series = find_series(raw) or Series.G2

    deck = _first_token(raw, DECK_TOKENS)
    seats, seat_label = _parse_seats(raw)
    battery = _first_token(raw, BATTERY_TOKENS)

    variant = None
    if "VIP" in raw or "세미" in raw:
        variant = seat_label
    if REVERSE_FACING in raw:
        variant = f"{variant}, {REVERSE_FACING}" if variant else REVERSE_FACING

    return ModelAttributes(
        course_name=course_name,
        date=date,
        series=series,
        deck=deck,
        seats=seats,
        seat_label=seat_label,
        battery=battery,
        variant=variant,
        raw=raw,
    )


def search_catalog(term: str = "", keys: Optional[List[str]] = None) -> List[ModelAttributes]:
    """Parse catalog keys and keep those whose raw/series/deck/seat/battery text contains ``term``."""
    needle = term.strip().lower()
    results = []
    for key in (keys if keys is not None else CATALOG_KEYS):
        attrs = parse_model(key)
        haystack = [
            attrs.raw,
            attrs.series.value,
            DECK_LABELS.get(attrs.deck, "") if attrs.deck else "",
            attrs.deck.value if attrs.deck else "",
            attrs.seat_label or "",
            BATTERY_LABELS.get(attrs.battery, "") if attrs.battery else "",
            attrs.battery.value if attrs.battery else "",
        ]
        if not needle or any(needle in text.lower() for text in haystack):
            results.append(attrs)
    return results
