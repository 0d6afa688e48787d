"""Canonical vocabulary for allergen and diet labels found in the menu table."""

from __future__ import annotations

from typing import Iterable, List, Optional, Union

ALLERGEN_ALIASES = {
    "wheat": "gluten",
    "milk": "dairy",
    "eggs": "eggs",
    "egg": "eggs",
    "soy": "soy",
    "fish": "fish",
    "shellfish": "shellfish",
    "peanuts": "nuts",
    "peanut": "nuts",
    "treenuts": "nuts",
    "tree nuts": "nuts",
    # grouped with nuts on the hall signage
    "sesame": "nuts",
}

DIET_TAG_ALIASES = {
    "gf": "GF",
    "gluten-free": "GF",
    "v": "V",
    "vegetarian": "V",
    "vg": "VG",
    "vgn": "VG",
    "vegan": "VG",
    "halal": "Halal",
}

RawLabels = Optional[Union[str, Iterable[str]]]


def _split(raw: RawLabels) -> List[str]:
    if isinstance(raw, str):
        parts: Iterable[str] = raw.split(",")
    elif isinstance(raw, (list, tuple, set)):
        parts = raw
    else:
        # numbers, booleans, dicts and None carry no labels
        return []
    return [str(part).strip() for part in parts if isinstance(part, str) and part.strip()]


def _dedupe(values: Iterable[str]) -> List[str]:
    seen = set()
    ordered: List[str] = []
    for value in values:
        if value in seen:
            continue
        seen.add(value)
        ordered.append(value)
    return ordered


def normalize_allergens(raw: RawLabels) -> List[str]:
    """
    Map a comma-separated allergen string (or a list of labels) to canonical tokens.

    ``"WHEAT, Soy, milk, soy"`` becomes ``["gluten", "soy", "dairy"]``. Unknown labels
    are kept lowercased, blanks are dropped and first-seen order is preserved, so the
    function is idempotent on its own output.
    """
    tokens = (part.lower() for part in _split(raw))
    return _dedupe(ALLERGEN_ALIASES.get(token, token) for token in tokens)


def normalize_diet_tags(raw: RawLabels) -> List[str]:
    """Map diet labels to GF / V / VG / Halal; unknown tags are uppercased."""
    tags = (DIET_TAG_ALIASES.get(part.lower(), part.upper()) for part in _split(raw))
    return _dedupe(tags)
