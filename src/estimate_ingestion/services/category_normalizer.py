"""Free-text category normalization.

Maps raw category cells ("RFG", "ROOF", "Roofing ", "rofing") to canonical
category names. Unknown labels pass through verbatim so unfamiliar exports
still import, just under their own category.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass

from rapidfuzz import fuzz, process

from estimate_ingestion.config import Settings, settings as default_settings
from estimate_ingestion.models import ParsedLineItem
from estimate_ingestion.utils.logging import get_logger

logger = get_logger(__name__)

# Xactimate category codes
CATEGORY_CODES: dict[str, str] = {
    "RFG": "Roofing",
    "RFO": "Roofing",
    "SFG": "Soffit/Fascia/Gutters",
    "SFO": "Soffit/Fascia",
    "SDG": "Siding",
    "SID": "Siding",
    "GUT": "Gutters",
    "WDS": "Windows/Doors/Siding",
    "WND": "Windows",
    "DOR": "Doors",
    "INT": "Interior",
    "EXT": "Exterior",
    "DRY": "Drywall",
    "PNT": "Painting",
    "PLM": "Plumbing",
    "ELC": "Electrical",
    "HVC": "HVAC",
    "FLR": "Flooring",
    "FNC": "Fencing",
    "LND": "Landscaping",
    "DMO": "Demolition",
    "GEN": "General",
    "CLN": "Cleaning",
    "TMP": "Temporary",
    "AWN": "Awning",
    "WOR": "Windows/Doors",
    "FRM": "Framing",
    "MIL": "Millwork/Trim",
    "MTL": "Metal",
    "ELS": "Electrical Systems",
    "SOD": "Siding/Decking",
}

# Abbreviations, plurals and common misspellings seen in exports
CATEGORY_ALIASES: dict[str, str] = {
    "roof": "Roofing",
    "roofs": "Roofing",
    "roofing": "Roofing",
    "shingles": "Roofing",
    "siding": "Siding",
    "gutter": "Gutters",
    "gutters": "Gutters",
    "gutters downspouts": "Gutters",
    "soffit": "Soffit/Fascia",
    "fascia": "Soffit/Fascia",
    "soffit fascia": "Soffit/Fascia",
    "window": "Windows",
    "windows": "Windows",
    "door": "Doors",
    "doors": "Doors",
    "windows doors": "Windows/Doors",
    "interior": "Interior",
    "exterior": "Exterior",
    "drywall": "Drywall",
    "dry wall": "Drywall",
    "sheetrock": "Drywall",
    "paint": "Painting",
    "painting": "Painting",
    "plumbing": "Plumbing",
    "plumb": "Plumbing",
    "electric": "Electrical",
    "electrical": "Electrical",
    "hvac": "HVAC",
    "heating cooling": "HVAC",
    "floor": "Flooring",
    "floors": "Flooring",
    "flooring": "Flooring",
    "fence": "Fencing",
    "fencing": "Fencing",
    "landscape": "Landscaping",
    "landscaping": "Landscaping",
    "demo": "Demolition",
    "demolition": "Demolition",
    "tear off": "Demolition",
    "general": "General",
    "misc": "General",
    "miscellaneous": "General",
    "cleaning": "Cleaning",
    "clean up": "Cleaning",
    "cleanup": "Cleaning",
    "temporary": "Temporary",
    "temp": "Temporary",
    "awning": "Awning",
    "awnings": "Awning",
    "framing": "Framing",
    "rough carpentry": "Framing",
    "trim": "Millwork/Trim",
    "millwork": "Millwork/Trim",
    "finish carpentry": "Millwork/Trim",
    "metal": "Metal",
    "decking": "Siding/Decking",
}

CATEGORY_COLORS: dict[str, str] = {
    "RFG": "#3B82F6",
    "RFO": "#3B82F6",
    "SDG": "#8B5CF6",
    "SID": "#8B5CF6",
    "GUT": "#06B6D4",
    "SFG": "#06B6D4",
    "SFO": "#06B6D4",
    "WDS": "#10B981",
    "WND": "#10B981",
    "DOR": "#14B8A6",
    "DRY": "#F59E0B",
    "PNT": "#EC4899",
    "PLM": "#10B981",
    "ELC": "#EF4444",
    "HVC": "#6366F1",
    "FLR": "#D97706",
    "DMO": "#78716C",
    "GEN": "#6B7280",
    "INT": "#A855F7",
    "EXT": "#22C55E",
}

CATEGORY_ICONS: dict[str, str] = {
    "RFG": "home",
    "RFO": "home",
    "SDG": "layers",
    "SID": "layers",
    "GUT": "droplets",
    "SFG": "droplets",
    "PNT": "paintbrush",
    "PLM": "wrench",
    "ELC": "zap",
    "HVC": "wind",
    "DMO": "trash",
}

DEFAULT_COLOR = "#6B7280"
DEFAULT_ICON = "package"

_CODE_PATTERN = re.compile(r"^([A-Z]{2,4})(?=$|[^A-Za-z])")
_KEY_DROPPED = re.compile(r"[.'’]")
_KEY_SEPARATORS = re.compile(r"[^a-z0-9]+")
_WHITESPACE = re.compile(r"\s+")
_MIN_FUZZY_LENGTH = 4


def _key(label: str) -> str:
    """Lookup key: lower-cased, punctuation folded to single spaces."""
    key = _KEY_DROPPED.sub("", label.lower())
    return _KEY_SEPARATORS.sub(" ", key).strip()


def _build_lookup() -> dict[str, str]:
    lookup: dict[str, str] = {}
    for code, name in CATEGORY_CODES.items():
        lookup.setdefault(_key(code), name)
    for name in CATEGORY_CODES.values():
        lookup.setdefault(_key(name), name)
    for alias, name in CATEGORY_ALIASES.items():
        lookup.setdefault(_key(alias), name)
    return lookup


# First code listed for a canonical name is its presentation code
_CANONICAL_CODES: dict[str, str] = {}
for _code, _name in CATEGORY_CODES.items():
    _CANONICAL_CODES.setdefault(_name, _code)


@dataclass(frozen=True)
class CategoryInfo:
    """Presentation metadata for one canonical category."""

    code: str
    icon: str
    color: str


class CategoryNormalizer:
    """Normalize raw category labels to canonical names.

    Lookup order: exact normalized key, leading category code, fuzzy match,
    then pass-through of the trimmed label. Never raises.
    """

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or default_settings
        self._lookup = _build_lookup()
        self._fuzzy_keys = [k for k in self._lookup if len(k) >= _MIN_FUZZY_LENGTH]

    def normalize(self, raw: object) -> str:
        """Return the canonical category for a raw label."""
        cleaned = _WHITESPACE.sub(" ", str(raw)).strip() if raw is not None else ""
        if not cleaned:
            return self._settings.default_category

        key = _key(cleaned)
        if key in self._lookup:
            return self._lookup[key]

        code_match = _CODE_PATTERN.match(cleaned)
        if code_match and code_match.group(1) in CATEGORY_CODES:
            return CATEGORY_CODES[code_match.group(1)]

        if len(key) >= _MIN_FUZZY_LENGTH:
            best = process.extractOne(
                key,
                self._fuzzy_keys,
                scorer=fuzz.ratio,
                score_cutoff=self._settings.category_fuzzy_threshold,
            )
            if best is not None:
                match, score, _ = best
                logger.debug(
                    "Fuzzy category match",
                    raw=cleaned,
                    matched=match,
                    score=round(score, 1),
                )
                return self._lookup[match]

        return cleaned

    def get_unique_categories(self, line_items: Iterable[ParsedLineItem]) -> list[str]:
        """Unique canonical categories in first-seen order."""
        return list(dict.fromkeys(item.canonical_category for item in line_items))

    def describe(self, canonical: str) -> CategoryInfo:
        """Presentation code, icon and color for a canonical category."""
        code = _CANONICAL_CODES.get(canonical)
        if code is None:
            slug = _KEY_SEPARATORS.sub("-", canonical.lower()).strip("-")
            return CategoryInfo(
                code=slug.upper() or "GEN", icon=DEFAULT_ICON, color=DEFAULT_COLOR
            )
        return CategoryInfo(
            code=code,
            icon=CATEGORY_ICONS.get(code, DEFAULT_ICON),
            color=CATEGORY_COLORS.get(code, DEFAULT_COLOR),
        )
