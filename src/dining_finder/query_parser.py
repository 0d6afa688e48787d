"""Best-effort extraction of date and meal hints from a free-text search."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Optional

FULL_DATE_RE = re.compile(r"\b(\d{1,2})/(\d{1,2})/(\d{4})\b")
SHORT_DATE_RE = re.compile(r"\b(\d{1,2})/(\d{1,2})\b")

MEAL_KEYWORDS = (
    ("breakfast", "Breakfast"),
    ("lunch", "Lunch"),
    ("dinner", "Dinner"),
    ("brunch", "Brunch"),
)
MEAL_SYNONYMS = (
    (re.compile(r"\b(?:brkfst|morning)\b"), "Breakfast"),
    (re.compile(r"\b(?:noon|midday)\b"), "Lunch"),
    (re.compile(r"\b(?:evening|night|supper)\b"), "Dinner"),
)


@dataclass
class ParsedQuery:
    meal: str
    date: Optional[str]


def format_date(day: date) -> str:
    return day.strftime("%m/%d/%Y")


def extract_date(query: Optional[str], *, today: Optional[date] = None) -> Optional[str]:
    """Return an ``MM/DD/YYYY``-style date mentioned in the query, or None."""
    if not query:
        return None
    today = today or date.today()

    match = FULL_DATE_RE.search(query)
    if match:
        return match.group(0)
    match = SHORT_DATE_RE.search(query)
    if match:
        return f"{match.group(1)}/{match.group(2)}/{today.year}"

    lowered = query.lower()
    if "today" in lowered:
        return format_date(today)
    if "tomorrow" in lowered:
        return format_date(today + timedelta(days=1))
    return None


def extract_meal(query: Optional[str]) -> Optional[str]:
    if not query:
        return None
    lowered = query.lower()
    for keyword, meal in MEAL_KEYWORDS:
        if keyword in lowered:
            return meal
    for pattern, meal in MEAL_SYNONYMS:
        if pattern.search(lowered):
            return meal
    return None


def parse_query(
    query: Optional[str],
    default_meal: str = "Dinner",
    default_date: Optional[str] = None,
    *,
    today: Optional[date] = None,
) -> ParsedQuery:
    return ParsedQuery(
        meal=extract_meal(query) or default_meal,
        date=extract_date(query, today=today) or default_date,
    )
