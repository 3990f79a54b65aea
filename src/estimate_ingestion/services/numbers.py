"""Cell value parsing: currency amounts, yes/no flags, units and activities."""

from __future__ import annotations

import re
from datetime import date, datetime, time
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

CENTS = Decimal("0.01")

_CURRENCY_SYMBOLS = re.compile(r"[$€£¥]")
_THOUSANDS = re.compile(r"(?<=\d),(?=\d{3}(?!\d))")
_BLANK_MARKERS = {"", "-", "–", "—"}

UNIT_ALIASES: dict[str, str] = {
    "EACH": "EA",
    "SQUARE FOOT": "SF",
    "SQUARE FEET": "SF",
    "SQ FT": "SF",
    "SQFT": "SF",
    "LINEAR FOOT": "LF",
    "LINEAR FEET": "LF",
    "LIN FT": "LF",
    "LINFT": "LF",
    "SQUARE": "SQ",
    "SQUARES": "SQ",
    "SQUARE YARD": "SY",
    "SQ YD": "SY",
    "SQYD": "SY",
    "CUBIC FOOT": "CF",
    "CU FT": "CF",
    "CUFT": "CF",
    "CUBIC YARD": "CY",
    "CU YD": "CY",
    "CUYD": "CY",
    "GALLON": "GAL",
    "GALLONS": "GAL",
    "BUNDLE": "BDL",
    "BUNDLES": "BDL",
    "ROLL": "ROL",
    "ROLLS": "ROL",
    "PIECE": "PC",
    "PIECES": "PC",
    "HOUR": "HR",
    "HOURS": "HR",
    "DAYS": "DAY",
}

VALID_UNITS = frozenset(
    {"SF", "LF", "EA", "SQ", "SY", "CF", "CY", "GAL", "BDL", "ROL", "PC", "HR", "DAY"}
)

TRUE_FLAGS = frozenset({"yes", "y", "true", "x"})
FALSE_FLAGS = frozenset({"no", "n", "false"})

ACTIVITY_ALIASES: dict[str, str] = {
    "r&r": "Remove and Replace",
    "d&r": "Detach & Reset",
    "remove": "Remove",
    "replace": "Replace",
}


def parse_number(value: Any) -> Decimal | None:
    """Parse a cell value as a Decimal amount.

    Tolerates currency symbols, thousands separators, surrounding whitespace
    and accounting parentheses ("(1,250.00)" is -1250.00). Blank cells and
    lone dashes read as None.

    Raises:
        ValueError: The value is present but not a number.
    """
    if value is None:
        return None
    if isinstance(value, bool) or isinstance(value, (datetime, date, time)):
        raise ValueError(f"not a number: {value!r}")
    if isinstance(value, Decimal):
        number = value
    elif isinstance(value, int):
        number = Decimal(value)
    elif isinstance(value, float):
        # str() gives the shortest repr, avoiding binary expansion noise
        number = Decimal(str(value))
    else:
        number = _parse_text(str(value))
        if number is None:
            return None

    if not number.is_finite():
        raise ValueError(f"not a number: {value!r}")
    return number


def _parse_text(raw: str) -> Decimal | None:
    text = raw.strip()
    if text in _BLANK_MARKERS:
        return None

    negative = False
    if text.startswith("(") and text.endswith(")"):
        negative = True
        text = text[1:-1].strip()

    text = _CURRENCY_SYMBOLS.sub("", text).strip()
    if text.startswith("-"):
        negative = not negative
        text = _CURRENCY_SYMBOLS.sub("", text[1:]).strip()
    text = _THOUSANDS.sub("", text).replace(" ", "")

    if not text or not re.fullmatch(r"\d+(\.\d*)?|\.\d+", text):
        raise ValueError(f"not a number: {raw!r}")
    try:
        number = Decimal(text)
    except InvalidOperation as e:
        raise ValueError(f"not a number: {raw!r}") from e
    return -number if negative else number


def quantize_cents(value: Decimal) -> Decimal:
    """Round to cents, half away from zero."""
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


def normalize_unit(value: Any) -> str | None:
    """Map a unit cell to an Xactimate unit code.

    Unknown units pass through upper-cased; blank cells give None.
    """
    if value is None:
        return None
    text = re.sub(r"\s+", " ", str(value).replace(".", " ")).strip().upper()
    if not text:
        return None
    if text in VALID_UNITS:
        return text
    return UNIT_ALIASES.get(text, text)


def parse_flag(value: Any) -> bool | None:
    """Parse a yes/no cell such as a "Taxable" or "Recoverable" column.

    Accepts booleans, yes/no/true/false (and y/n/x) in any case, and numbers,
    where anything above zero reads as yes. Blank cells give None.

    Raises:
        ValueError: The value is present but neither a flag nor a number.
    """
    if value is None or isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _BLANK_MARKERS:
        return None
    if text in TRUE_FLAGS:
        return True
    if text in FALSE_FLAGS:
        return False
    try:
        number = parse_number(value)
    except ValueError as e:
        raise ValueError(f"not a yes/no flag: {value!r}") from e
    return None if number is None else number > 0


def normalize_activity(value: Any) -> str | None:
    """Map an activity cell to its display name.

    "R&R" and any text naming both remove and replace become "Remove and
    Replace"; "D&R" and detach/reset text become "Detach & Reset". Other
    activities pass through with whitespace collapsed.
    """
    if value is None:
        return None
    text = " ".join(str(value).split())
    if not text:
        return None
    lowered = text.lower()
    if lowered in ACTIVITY_ALIASES:
        return ACTIVITY_ALIASES[lowered]
    if "remove" in lowered and "replace" in lowered:
        return "Remove and Replace"
    if "detach" in lowered and "reset" in lowered:
        return "Detach & Reset"
    return text
