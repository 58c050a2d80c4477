"""Normalization of the date encodings found in product documents.

Product stores hand us expiry values in several shapes: ISO-8601 strings,
``{"seconds": n}`` timestamp structures, native ``datetime``/``date`` values,
objects with a ``to_date()``-style converter, or anything else a generic
parser might understand. Every shape is mapped to one canonical instant: a
timezone-aware ``datetime`` in UTC.
"""

import math
from dataclasses import dataclass
from datetime import date, datetime, time, timezone, tzinfo
from decimal import Decimal
from typing import Any, Optional, Union

import dateparser

from .errors import InvalidDate


# Only complete absolute dates; relative phrases ("today") and placeholders ("N/A") are rejected
_PARSER_SETTINGS = {
    "STRICT_PARSING": True,
    "PARSERS": ["custom-formats", "absolute-time"],
}

# Converter method names checked, in order, on objects that carry their own conversion
_CONVERTER_NAMES = ("to_datetime", "to_date", "toDate")


@dataclass(frozen=True)
class NativeDate:
    """A ``datetime`` or ``date`` value."""
    value: Union[datetime, date]


@dataclass(frozen=True)
class Convertible:
    """An object exposing a ``to_date()``-like conversion (e.g. a Firestore timestamp)."""
    value: Any
    converter: str


@dataclass(frozen=True)
class SecondsStruct:
    """A structure carrying integer seconds since the epoch."""
    seconds: Union[int, float]


@dataclass(frozen=True)
class RawFallback:
    """Anything else: ISO strings, free-form strings, epoch milliseconds."""
    value: Any


SourceDate = Union[NativeDate, Convertible, SecondsStruct, RawFallback]


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float, Decimal)) and not isinstance(value, bool)


def _seconds_field(value: Any) -> Optional[Union[int, float]]:
    if isinstance(value, dict):
        seconds = value.get("seconds", value.get("_seconds"))
    else:
        seconds = getattr(value, "seconds", None)
    if not _is_number(seconds):
        return None
    # DynamoDB hands numbers back as Decimal
    return float(seconds) if isinstance(seconds, Decimal) else seconds


def classify_source(value: Any) -> SourceDate:
    """
    Identify which encoding a raw expiry value uses.

    The checks run in a fixed order and the first match wins: native value,
    converter method, ``seconds`` field, then raw fallback.
    """
    if isinstance(value, (datetime, date)):
        return NativeDate(value)
    for name in _CONVERTER_NAMES:
        if callable(getattr(value, name, None)):
            return Convertible(value, name)
    seconds = _seconds_field(value)
    if seconds is not None:
        return SecondsStruct(seconds)
    return RawFallback(value)


def _attach_zone(value: datetime, tz: Optional[tzinfo]) -> datetime:
    """Interpret naive datetimes in ``tz`` (host local time when None) and convert to UTC."""
    try:
        if value.tzinfo is None:
            if tz is not None:
                value = value.replace(tzinfo=tz)
            else:
                value = value.astimezone()
        return value.astimezone(timezone.utc)
    except (OverflowError, ValueError, OSError) as e:
        raise InvalidDate(value, f"outside the representable range: {e}") from e


def _from_native(value: Union[datetime, date], tz: Optional[tzinfo]) -> datetime:
    if not isinstance(value, datetime):
        value = datetime.combine(value, time.min)
    return _attach_zone(value, tz)


def _from_epoch(seconds: float, original: Any) -> datetime:
    if isinstance(seconds, float) and not math.isfinite(seconds):
        raise InvalidDate(original, "not a finite number")
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError, ValueError) as e:
        raise InvalidDate(original, str(e)) from e


def _parse_string(value: str, tz: Optional[tzinfo]) -> datetime:
    text = value.strip()
    if not text:
        raise InvalidDate(value, "empty string")
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        parsed = dateparser.parse(text, settings=_PARSER_SETTINGS)
    if parsed is None:
        raise InvalidDate(value, "unrecognized date format")
    return _attach_zone(parsed, tz)


def normalize(value: Any, tz: Optional[tzinfo] = None) -> datetime:
    """
    Convert a supported date representation into the canonical instant.

    Args:
        value: Raw expiry value taken from a product.
        tz: Zone used for naive values (host local time when None).

    Returns:
        A timezone-aware datetime in UTC.

    Raises:
        InvalidDate: If the value does not describe a representable instant.
    """
    source = classify_source(value)

    if isinstance(source, NativeDate):
        return _from_native(source.value, tz)

    if isinstance(source, Convertible):
        try:
            converted = getattr(source.value, source.converter)()
        except Exception as e:
            raise InvalidDate(value, f"{source.converter}() failed: {e}") from e
        if not isinstance(converted, (datetime, date)):
            raise InvalidDate(value, f"{source.converter}() returned {type(converted).__name__}")
        return _from_native(converted, tz)

    if isinstance(source, SecondsStruct):
        return _from_epoch(source.seconds, value)

    raw = source.value
    if isinstance(raw, str):
        return _parse_string(raw, tz)
    if _is_number(raw):
        # Bare numbers are epoch milliseconds
        return _from_epoch(float(raw) / 1000, value)
    raise InvalidDate(value, f"unsupported type {type(raw).__name__}")


def to_epoch_millis(instant: datetime) -> int:
    """Express a canonical instant as epoch milliseconds."""
    return int(round(instant.timestamp() * 1000))
