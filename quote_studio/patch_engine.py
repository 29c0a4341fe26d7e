"""
Structural patching of quotes.

Patches are ordered lists of ``replace``/``add``/``remove`` operations with
slash-delimited paths. Every path is resolved against a closed table of
addressable fields; anything outside it (identity, derived totals, status,
quote number, asset locators) is rejected. Operations run against a working
copy, so a rejected patch never leaves a half-applied quote behind.
"""

from datetime import datetime
from typing import Annotated, Any, Dict, List, Optional, Sequence, Union

from pydantic import Field, TypeAdapter, ValidationError as PydanticValidationError

from .models import (
    Quote, LineItem, OptionLine, PatchOperation, Series, DeckType, BatteryType, OPTION_BUCKETS
)
from .recompute import recompute
from .error_handler import PatchError
from .logging_conf import get_logger

logger = get_logger(__name__)

APPEND = "-"

NonNegativeInt = Annotated[int, Field(ge=0)]
Rate = Annotated[float, Field(ge=0.0, le=1.0)]


class FieldSpec:
    """Type and optionality of one addressable scalar field."""

    def __init__(self, annotation: Any, optional: bool = False):
        self.adapter = TypeAdapter(Optional[annotation] if optional else annotation)
        self.optional = optional

    def validate(self, value: Any) -> Any:
        return self.adapter.validate_python(value)


# Closed accessor table, keyed by wire name.
QUOTE_FIELDS: Dict[str, FieldSpec] = {
    "title": FieldSpec(str),
    "notes": FieldSpec(str, optional=True),
    "vatRate": FieldSpec(Rate),
    "client": FieldSpec(str),
    "owner": FieldSpec(str),
    "payTerms": FieldSpec(str),
    "deliveryTerms": FieldSpec(str),
}

MODEL_FIELDS: Dict[str, FieldSpec] = {
    "courseName": FieldSpec(str),
    "date": FieldSpec(str),
    "series": FieldSpec(Series),
    "deck": FieldSpec(DeckType, optional=True),
    "seats": FieldSpec(NonNegativeInt, optional=True),
    "seatLabel": FieldSpec(str, optional=True),
    "battery": FieldSpec(BatteryType, optional=True),
    "variant": FieldSpec(str, optional=True),
    "raw": FieldSpec(str),
}

ITEM_FIELDS: Dict[str, FieldSpec] = {
    "label": FieldSpec(str),
    "qty": FieldSpec(int),
    "unitPrice": FieldSpec(int),
    "meta": FieldSpec(str, optional=True),
}

OPTION_FIELDS: Dict[str, FieldSpec] = {
    "description": FieldSpec(str),
    "price": FieldSpec(NonNegativeInt),
}

SEQUENCES = ("items",) + OPTION_BUCKETS


class _Rejected(Exception):
    """Internal signal carrying the reason an operation cannot apply."""


def _describe(exc: PydanticValidationError) -> str:
    first = exc.errors()[0]
    return first.get("msg", str(exc))


def _validate(spec: FieldSpec, value: Any) -> Any:
    try:
        return spec.validate(value)
    except PydanticValidationError as e:
        raise _Rejected(_describe(e)) from e


def _new_element(sequence: str, value: Any) -> Dict[str, Any]:
    """Validate a whole item/option element and return its wire form."""
    if not isinstance(value, dict):
        raise _Rejected(f"{sequence} element must be an object")
    try:
        if sequence == "items":
            # totals are derived; ids are generated when missing
            data = {k: v for k, v in value.items() if k != "total"}
            if not data.get("id"):
                data.pop("id", None)
            element = LineItem.model_validate(data)
        else:
            element = OptionLine.model_validate(value)
    except PydanticValidationError as e:
        raise _Rejected(_describe(e)) from e
    return element.model_dump(by_alias=True)


def _index(segment: str, length: int, op: str) -> Union[int, str]:
    if segment == APPEND:
        if op != "add":
            raise _Rejected("'-' index is only valid for add")
        return APPEND
    if not (segment.isascii() and segment.isdigit()):
        raise _Rejected(f"invalid index {segment!r}")
    index = int(segment)
    limit = length if op == "add" else length - 1
    if index > limit:
        raise _Rejected(f"index {index} out of range for length {length}")
    return index


def _set_scalar(container: Dict[str, Any], table: Dict[str, FieldSpec], name: str, op: PatchOperation):
    spec = table.get(name)
    if spec is None:
        raise _Rejected(f"field {name!r} is not addressable")
    if op.op == "remove":
        if not spec.optional:
            raise _Rejected(f"field {name!r} is required")
        container[name] = None
    else:
        container[name] = _validate(spec, op.value)


def _apply_sequence(doc: Dict[str, Any], sequence: str, rest: List[str], op: PatchOperation):
    elements = doc[sequence]
    if not rest:
        raise _Rejected(f"{sequence} must be addressed by index")
    position = _index(rest[0], len(elements), op.op if len(rest) == 1 else "replace")

    if len(rest) == 1:
        if op.op == "remove":
            elements.pop(position)
        elif op.op == "add":
            element = _new_element(sequence, op.value)
            if position == APPEND:
                elements.append(element)
            else:
                elements.insert(position, element)
        else:
            elements[position] = _new_element(sequence, op.value)
        return

    if len(rest) > 2:
        raise _Rejected("path is too deep")
    table = ITEM_FIELDS if sequence == "items" else OPTION_FIELDS
    _set_scalar(elements[position], table, rest[1], op)


def _apply_one(doc: Dict[str, Any], op: PatchOperation):
    segments = op.path.strip("/").split("/")
    head, rest = segments[0], segments[1:]

    if head in SEQUENCES:
        _apply_sequence(doc, head, rest, op)
    elif head == "model":
        if len(rest) != 1:
            raise _Rejected("model must be addressed by attribute")
        _set_scalar(doc["model"], MODEL_FIELDS, rest[0], op)
    elif head in QUOTE_FIELDS and not rest:
        _set_scalar(doc, QUOTE_FIELDS, head, op)
    else:
        raise _Rejected(f"path {op.path!r} is not addressable")


def _as_operation(index: int, raw: Any) -> PatchOperation:
    if isinstance(raw, PatchOperation):
        return raw
    try:
        return PatchOperation.model_validate(raw)
    except PydanticValidationError as e:
        op = raw.get("op", "?") if isinstance(raw, dict) else "?"
        path = raw.get("path", "?") if isinstance(raw, dict) else "?"
        raise PatchError(index, str(op), str(path), _describe(e)) from e


def apply_patch(
    quote: Quote,
    operations: Sequence[Union[PatchOperation, Dict[str, Any]]],
    now: Optional[datetime] = None
) -> Quote:
    """
    Apply an ordered list of patch operations and recompute.

    Args:
        quote: Quote to patch; never mutated
        operations: PatchOperation objects or equivalent dicts
        now: Timestamp for ``lastUpdated`` after recompute

    Returns:
        New recomputed Quote

    Raises:
        PatchError: When any operation is malformed, unaddressable or
            carries a value of the wrong type
    """
    doc = quote.model_dump(by_alias=True)

    for index, raw in enumerate(operations):
        op = _as_operation(index, raw)
        try:
            _apply_one(doc, op)
        except _Rejected as e:
            logger.debug("Patch operation rejected", op_index=index, op=op.op, path=op.path, reason=str(e))
            raise PatchError(index, op.op, op.path, str(e)) from None

    try:
        patched = Quote.model_validate(doc)
    except PydanticValidationError as e:
        last = len(operations) - 1
        raise PatchError(last, "patch", "/", _describe(e)) from e

    return recompute(patched, now=now)
