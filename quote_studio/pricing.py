"""
Base pricing of catalog models.

The PriceBook is configuration data (loaded from the ``[pricing]`` section of
config.toml); ``build_base_quote`` only combines it with parsed attributes.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Any, Optional, Tuple

from .models import ModelAttributes, LineItem, Quote
from .model_parser import DECK_LABELS, BATTERY_LABELS
from .recompute import recompute
from .error_handler import ConfigurationError

DEFAULT_NOTES = "※ 상기 금액은 예시 단가입니다. 실제 견적은 프로젝트 조건에 따라 변동될 수 있습니다."


def _default_series_base() -> Dict[str, int]:
    return {"G2": 11_000_000, "G3": 13_000_000, "G20": 9_000_000, "ST20": 8_500_000}


def _default_deck_surcharge() -> Dict[str, int]:
    return {"long-deck": 500_000, "electronic-guidance": 3_000_000}


def _default_battery_price() -> Dict[str, int]:
    return {"lithium": 2_000_000, "liquid": 1_000_000, "none-included": 0}


@dataclass
class PriceBook:
    """Base prices and surcharges, keyed by enum values."""

    series_base: Dict[str, int] = field(default_factory=_default_series_base)
    default_base: int = 10_000_000
    deck_surcharge: Dict[str, int] = field(default_factory=_default_deck_surcharge)
    included_seats: int = 2
    per_extra_seat: int = 400_000
    battery_price: Dict[str, int] = field(default_factory=_default_battery_price)
    variant_surcharge: int = 600_000
    vat_rate: float = 0.1
    default_notes: str = DEFAULT_NOTES

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PriceBook':
        """Build from the ``[pricing]`` TOML table, validating amounts."""
        book = cls()
        for name in ("default_base", "included_seats", "per_extra_seat", "variant_surcharge"):
            if name in data:
                setattr(book, name, _non_negative_int(name, data[name]))
        for name in ("series_base", "deck_surcharge", "battery_price"):
            if name in data:
                table = data[name]
                if not isinstance(table, dict):
                    raise ConfigurationError("pricing", f"{name} must be a table")
                merged = dict(getattr(book, name))
                merged.update({str(k): _non_negative_int(f"{name}.{k}", v) for k, v in table.items()})
                setattr(book, name, merged)
        if "vat_rate" in data:
            rate = data["vat_rate"]
            if isinstance(rate, bool) or not isinstance(rate, (int, float)) or not 0 <= rate <= 1:
                raise ConfigurationError("pricing", f"vat_rate must be within [0, 1], got {rate!r}")
            book.vat_rate = float(rate)
        if "default_notes" in data:
            book.default_notes = str(data["default_notes"])
        return book

    def to_toml(self) -> str:
        """Render as TOML tables for config.toml."""
        def table(name: str, values: Dict[str, int]) -> str:
            rows = "\n".join(f'"{key}" = {value}' for key, value in values.items())
            return f"[pricing.{name}]\n{rows}\n"

        notes = self.default_notes.replace('\\', '\\\\').replace('"', '\\"')
        return (
            "[pricing]\n"
            f"default_base = {self.default_base}\n"
            f"included_seats = {self.included_seats}\n"
            f"per_extra_seat = {self.per_extra_seat}\n"
            f"variant_surcharge = {self.variant_surcharge}\n"
            f"vat_rate = {self.vat_rate}\n"
            f'default_notes = "{notes}"\n\n'
            + table("series_base", self.series_base) + "\n"
            + table("deck_surcharge", self.deck_surcharge) + "\n"
            + table("battery_price", self.battery_price)
        )

    def vehicle_price(self, model: ModelAttributes) -> int:
        """Series base plus deck surcharge plus per-seat surcharge above the included seats."""
        base = self.series_base.get(model.series.value, self.default_base)
        if model.deck:
            base += self.deck_surcharge.get(model.deck.value, 0)
        if model.seats and model.seats > self.included_seats:
            base += (model.seats - self.included_seats) * self.per_extra_seat
        return base

    def battery_line_price(self, model: ModelAttributes) -> int:
        if model.battery is None:
            return 0
        return self.battery_price.get(model.battery.value, 0)


def _non_negative_int(name: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ConfigurationError("pricing", f"{name} must be a non-negative integer, got {value!r}")
    return value


def _labels(model: ModelAttributes) -> Tuple[str, str]:
    deck = f" ({DECK_LABELS[model.deck]})" if model.deck else ""
    battery = BATTERY_LABELS[model.battery] if model.battery else "선택"
    return f"{model.series.value} 기본차량{deck}", f"배터리 {battery}"


def build_base_quote(
    model: ModelAttributes,
    price_book: Optional[PriceBook] = None,
    now: Optional[datetime] = None
) -> Quote:
    """
    Construct the starting quote for a parsed catalog model.

    Args:
        model: Parsed catalog attributes
        price_book: Prices to apply (defaults to the configured price book)
        now: Timestamp for ``lastUpdated``

    Returns:
        Recomputed draft Quote with vehicle, battery and optional variant lines
    """
    if price_book is None:
        from .settings import settings
        price_book = settings.global_config.pricing

    vehicle_label, battery_label = _labels(model)
    items = [
        LineItem(id="vehicle", label=vehicle_label, qty=1, unit_price=price_book.vehicle_price(model)),
        LineItem(id="battery", label=battery_label, qty=1, unit_price=price_book.battery_line_price(model)),
    ]
    if model.variant:
        items.append(
            LineItem(id="variant", label=f"옵션: {model.variant}", qty=1, unit_price=price_book.variant_surcharge)
        )

    title = " ".join(part for part in (model.course_name, model.series.value, "견적서") if part)
    quote = Quote(
        title=title,
        model=model,
        items=items,
        vat_rate=price_book.vat_rate,
        notes=price_book.default_notes,
    )
    return recompute(quote, now=now)
