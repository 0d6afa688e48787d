"""LLM-backed ranking of dining halls against a free-text preference."""

from __future__ import annotations

import asyncio
import json
import logging
import math
import re
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Protocol, Sequence

import requests
from pydantic import ValidationError

from .errors import HallNotFound, RankingParseError, RankingUnavailable
from .image_service import food_image_with_fallback
from .llm_client import LLMError
from .models import DiningHall, MenuItem, RankedFoodItem, RankedHall
from .normalize import normalize_allergens

logger = logging.getLogger(__name__)

DEFAULT_REASON = "Relevant to your query"
MATCHED_DEFAULT_SCORE = 7
UNMATCHED_DEFAULT_SCORE = 5
TEXT_FIELDS = ("name", "station", "ingredients", "dietTags", "category", "notes")
FIELD_ALIASES = {"dietTags": ("dietTags", "diet_tags"), "relevanceScore": ("relevanceScore", "relevance_score")}

CODE_FENCE_RE = re.compile(r"```(?:json)?[ \t]*\n?", re.IGNORECASE)
GREEDY_ARRAY_RE = re.compile(r"\[[\s\S]*\]")
LEADING_JUNK_RE = re.compile(r"^[^\[\{]*")
TRAILING_JUNK_RE = re.compile(r"[^\]\}]*$")
# bracket positions tried before giving up on a reply
MAX_DECODE_ATTEMPTS = 64

TARGETED_PROMPT = """You are a helpful assistant that ranks Stanford dining halls based on user preferences.

User query: "{query}"

Available dining halls and their current menu items:
{menu_json}

Please analyze the user's query and rank the dining halls from best to worst match. For each dining hall, provide:
1. A relevance score from 1-10
2. A brief reason explaining why it matches (or doesn't match) the user's query
3. Filter the food items to only show items that are relevant to the user's query
4. A relevanceScore from 1-10 for every food item you keep

Return your response as a valid JSON array in this exact format (no markdown, no code blocks, just pure JSON):
[
  {{
    "name": "Dining Hall Name",
    "foodItems": [
      {{"name": "Food Item Name", "allergens": ["allergen1", "allergen2"], "relevanceScore": 8}}
    ],
    "score": 9,
    "reason": "Brief explanation of why this dining hall matches the query",
    "bestFoodItem": "Name of the best/most relevant food item for display"
  }}
]

Important instructions:
- Only include dining halls that have at least one relevant food item
- Rank them from highest score (best match) to lowest score
- Only include food items that are relevant to the user's query
- Use the exact dining hall and food item names from the menu above
- Return ONLY valid JSON, no markdown code blocks, no explanations before or after"""

GENERAL_PROMPT = """You are a helpful assistant that ranks Stanford dining halls based on their overall quality, variety, and appeal.

Meal: {meal}

Available dining halls and their current menu items:
{menu_json}

Please rank all dining halls from best to worst based on:
1. Variety and quality of food options
2. Appeal and popularity of menu items
3. Overall dining experience
4. Any standout or unique items

For each dining hall, provide:
1. A quality score from 1-10
2. A brief reason explaining why it ranks at this position
3. Show all food items available (don't filter)

Return your response as a valid JSON array in this exact format (no markdown, no code blocks, just pure JSON):
[
  {{
    "name": "Dining Hall Name",
    "foodItems": [
      {{"name": "Food Item Name", "allergens": ["allergen1", "allergen2"]}}
    ],
    "score": 9,
    "reason": "Brief explanation of why this dining hall ranks well (e.g., great variety, popular items, etc.)",
    "bestFoodItem": "Name of the best/most appealing food item for display"
  }}
]

Important instructions:
- Include ALL dining halls that have menu items
- Rank them from highest score (best overall) to lowest score
- Show ALL food items for each dining hall (don't filter)
- Use the exact dining hall and food item names from the menu above
- Return ONLY valid JSON, no markdown code blocks, no explanations before or after"""

MEAL_PLAN_PROMPT = """You are a campus nutrition assistant designing a plate at {hall}.

Meal: {meal}
Date: {date}
Student request: "{query}"

Menu available at {hall}:
{menu_json}

Recommend 3-5 items from this menu only, with a suggested portion for each and one short sentence
on why it fits the request. Finish with a line that starts with "To make this a balanced meal"
and mention allergens the student should watch for. Reply in plain text, one item per line."""

MEAL_PLAN_SYSTEM_PROMPT = "You are a helpful assistant. Reply in concise plain text without markdown tables."


class TextBackend(Protocol):
    name: str

    def generate(self, prompt: str, **kwargs: Any) -> str:
        ...


MenuSource = Callable[[str, str], Awaitable[List[DiningHall]]]
ImageLookup = Callable[[Optional[str], Optional[str]], Optional[str]]


# --------------------------------------------------------------------------- #
# Prompts
# --------------------------------------------------------------------------- #


def menu_json(halls: Sequence[DiningHall]) -> str:
    return json.dumps([hall.model_dump(by_alias=True) for hall in halls], indent=2)


def build_targeted_prompt(query: str, halls: Sequence[DiningHall]) -> str:
    return TARGETED_PROMPT.format(query=query.replace('"', "'"), menu_json=menu_json(halls))


def build_general_prompt(halls: Sequence[DiningHall], meal: str) -> str:
    return GENERAL_PROMPT.format(meal=meal, menu_json=menu_json(halls))


def build_meal_plan_prompt(hall: DiningHall, query: str, meal: str, date: str) -> str:
    return MEAL_PLAN_PROMPT.format(
        hall=hall.name,
        meal=meal,
        date=date,
        query=query.replace('"', "'"),
        menu_json=menu_json([hall]),
    )


# --------------------------------------------------------------------------- #
# Parsing model output
# --------------------------------------------------------------------------- #


def strip_code_fences(text: str) -> str:
    return CODE_FENCE_RE.sub("", text).strip()


def _parse_whole(text: str) -> Any:
    return json.loads(text)


def _parse_greedy_array(text: str) -> Any:
    match = GREEDY_ARRAY_RE.search(text)
    if not match:
        raise ValueError("no JSON array found")
    return json.loads(match.group(0))


def _parse_first_value(text: str) -> Any:
    decoder = json.JSONDecoder()
    attempts = 0
    for index, char in enumerate(text):
        if char not in "[{":
            continue
        attempts += 1
        if attempts > MAX_DECODE_ATTEMPTS:
            break
        try:
            value, _end = decoder.raw_decode(text, index)
        except (json.JSONDecodeError, RecursionError):
            continue
        if isinstance(value, (list, dict)):
            return value
    raise ValueError("no well-formed JSON value found")


def _parse_trimmed(text: str) -> Any:
    trimmed = TRAILING_JUNK_RE.sub("", LEADING_JUNK_RE.sub("", text))
    if not trimmed:
        raise ValueError("nothing left after trimming")
    return json.loads(trimmed)


PARSE_STRATEGIES: tuple[tuple[str, Callable[[str], Any]], ...] = (
    ("whole", _parse_whole),
    ("greedy_array", _parse_greedy_array),
    ("first_value", _parse_first_value),
    ("trimmed", _parse_trimmed),
)


def parse_ranking_response(text: str) -> List[Dict[str, Any]]:
    """
    Coerce free-form model output into a list of hall dictionaries.

    Markdown fences are removed first, then each strategy in ``PARSE_STRATEGIES`` is
    tried in order until one yields JSON. A lone object is promoted to a one-element
    list and non-object entries are dropped.
    """
    if not text or not text.strip():
        raise RankingParseError("empty model response")
    cleaned = strip_code_fences(text)
    for label, strategy in PARSE_STRATEGIES:
        try:
            value = strategy(cleaned)
        except (ValueError, RecursionError):
            continue
        if isinstance(value, dict):
            value = [value]
        if not isinstance(value, list):
            continue
        entries = [entry for entry in value if isinstance(entry, dict)]
        if entries:
            logger.debug("Parsed model output with %s strategy", label)
            return entries
    raise RankingParseError(f"could not parse model output: {text[:200]!r}")


# --------------------------------------------------------------------------- #
# Merging with authoritative menu data
# --------------------------------------------------------------------------- #


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def _field(data: Mapping[str, Any], key: str) -> Any:
    for alias in FIELD_ALIASES.get(key, (key,)):
        if alias in data:
            return data[alias]
    return None


def _name_key(name: str) -> str:
    return name.strip().lower()


def clamp_score(value: Any, *, matched: bool) -> int:
    if _is_number(value):
        return max(1, min(10, int(round(value))))
    return MATCHED_DEFAULT_SCORE if matched else UNMATCHED_DEFAULT_SCORE


def find_matching_hall(name: Optional[str], halls: Sequence[DiningHall]) -> Optional[DiningHall]:
    """Exact name first, then a case-insensitive substring match in either direction."""
    if not name or not name.strip():
        return None
    for hall in halls:
        if hall.name == name:
            return hall
    needle = _name_key(name)
    for hall in halls:
        candidate = _name_key(hall.name)
        if needle in candidate or candidate in needle:
            return hall
    return None


def merge_food_item(model_item: Mapping[str, Any], authoritative: Optional[MenuItem]) -> RankedFoodItem:
    """
    Left-biased merge of a model-returned dish onto the stored menu record.

    Model text fields win unless blank; allergens become the union of both sides with the
    stored labels first; ``relevanceScore`` comes from the model or defaults to 0.
    """
    merged: Dict[str, Any] = authoritative.model_dump(by_alias=True) if authoritative else {}
    for key in TEXT_FIELDS:
        value = _field(model_item, key)
        if isinstance(value, str) and value.strip():
            merged[key] = value
    merged["allergens"] = normalize_allergens(
        [*merged.get("allergens", []), *normalize_allergens(_field(model_item, "allergens"))]
    )
    relevance = _field(model_item, "relevanceScore")
    merged["relevanceScore"] = int(round(relevance)) if _is_number(relevance) else 0
    if authoritative is not None:
        merged["hallName"] = authoritative.hall_name
    return RankedFoodItem.model_validate(merged)


def _coerce_item(raw: Any) -> Optional[Mapping[str, Any]]:
    if isinstance(raw, str) and raw.strip():
        return {"name": raw}
    if isinstance(raw, dict) and isinstance(raw.get("name"), str) and raw["name"].strip():
        return raw
    return None


def merge_food_items(
    model_items: Any,
    authoritative: Optional[DiningHall],
    *,
    cover_all: bool,
) -> List[RankedFoodItem]:
    """
    Merge the model's dish list for one hall and drop repeated names.

    With ``cover_all`` the result holds exactly the stored dishes: invented ones are
    dropped and dishes the model skipped are appended in menu order.
    """
    lookup: Dict[str, MenuItem] = {}
    if authoritative is not None:
        for item in authoritative.food_items:
            lookup.setdefault(_name_key(item.name), item)

    raw_items = model_items if isinstance(model_items, list) else []
    if not raw_items and authoritative is not None:
        raw_items = [{"name": item.name} for item in authoritative.food_items]

    seen: set[str] = set()
    items: List[RankedFoodItem] = []
    for raw in raw_items:
        entry = _coerce_item(raw)
        if entry is None:
            continue
        key = _name_key(entry["name"])
        if key in seen:
            continue
        stored = lookup.get(key)
        if cover_all and authoritative is not None and stored is None:
            continue
        seen.add(key)
        items.append(merge_food_item(entry, stored))

    if cover_all and authoritative is not None:
        for key, stored in lookup.items():
            if key not in seen:
                seen.add(key)
                items.append(merge_food_item({}, stored))
    return items


def build_ranked_hall(
    entry: Mapping[str, Any],
    halls: Sequence[DiningHall],
    *,
    general: bool,
    image_lookup: ImageLookup = food_image_with_fallback,
) -> RankedHall:
    raw_name = entry.get("name")
    model_name = raw_name.strip() if isinstance(raw_name, str) and raw_name.strip() else None
    authoritative = find_matching_hall(model_name, halls)
    name = authoritative.name if authoritative else (model_name or "Unknown")

    food_items = merge_food_items(entry.get("foodItems"), authoritative, cover_all=general)

    best = entry.get("bestFoodItem")
    if not isinstance(best, str) or not best.strip():
        best = food_items[0].name if food_items else None

    reason = entry.get("reason")
    if not isinstance(reason, str) or not reason.strip():
        reason = DEFAULT_REASON

    try:
        image = image_lookup(best, name)
    except Exception as exc:
        logger.warning("Image lookup failed for %s: %s", name, exc)
        image = None

    return RankedHall(
        name=name,
        food_items=food_items,
        score=clamp_score(entry.get("score"), matched=authoritative is not None),
        reason=reason,
        best_food_item=best,
        image=image,
    )


def assemble_rankings(
    entries: Sequence[Mapping[str, Any]],
    halls: Sequence[DiningHall],
    *,
    general: bool,
    image_lookup: ImageLookup = food_image_with_fallback,
) -> List[RankedHall]:
    ranked: List[RankedHall] = []
    seen: set[str] = set()
    for entry in entries:
        hall = build_ranked_hall(entry, halls, general=general, image_lookup=image_lookup)
        key = _name_key(hall.name)
        if key in seen:
            continue
        seen.add(key)
        ranked.append(hall)
    if not any(hall.name != "Unknown" for hall in ranked):
        raise RankingParseError("model output contained no named dining halls")
    return ranked


# --------------------------------------------------------------------------- #
# Backend chain
# --------------------------------------------------------------------------- #


class HallRanker:
    """
    Ranks halls by trying each text backend in order until one yields usable output.

    ``backends`` is the ordered candidate list (primary models first, backup last).
    Every candidate runs inside its own failure boundary; when all of them fail the
    caller gets ``RankingUnavailable`` rather than made-up scores.
    """

    def __init__(
        self,
        backends: Sequence[TextBackend],
        menu_source: MenuSource,
        *,
        image_lookup: ImageLookup = food_image_with_fallback,
    ):
        self.backends = list(backends)
        self.menu_source = menu_source
        self.image_lookup = image_lookup

    async def rank_halls(self, query: Optional[str], meal: str, date: str) -> List[RankedHall]:
        halls = await self.menu_source(date, meal)
        if not halls:
            logger.info("No menu data for %s on %s; nothing to rank", meal, date)
            return []

        query = (query or "").strip()
        general = not query
        prompt = build_general_prompt(halls, meal) if general else build_targeted_prompt(query, halls)

        def interpret(text: str) -> List[RankedHall]:
            entries = parse_ranking_response(text)
            return assemble_rankings(entries, halls, general=general, image_lookup=self.image_lookup)

        return await self._first_success("ranking", prompt, interpret)

    async def plan_meal(self, hall_name: str, query: str, meal: str, date: str) -> str:
        halls = await self.menu_source(date, meal)
        hall = find_matching_hall(hall_name, halls)
        if hall is None:
            raise HallNotFound("hall_not_found")
        prompt = build_meal_plan_prompt(hall, query, meal, date)

        def interpret(text: str) -> str:
            plan = strip_code_fences(text)
            if not plan:
                raise RankingParseError("empty meal plan")
            return plan

        return await self._first_success(
            "meal plan", prompt, interpret, system_prompt=MEAL_PLAN_SYSTEM_PROMPT
        )

    async def _first_success(self, label: str, prompt: str, interpret: Callable[[str], Any], **kwargs: Any) -> Any:
        failures: List[str] = []
        for backend in self.backends:
            try:
                text = await asyncio.to_thread(backend.generate, prompt, **kwargs)
                return_value = self._interpret(interpret, text)
            except (LLMError, RankingParseError, requests.RequestException) as exc:
                logger.warning("%s via %s failed: %s", label.capitalize(), backend.name, exc)
                failures.append(f"{backend.name}: {exc}")
                continue
            logger.info("%s via %s succeeded", label.capitalize(), backend.name)
            return return_value
        if not failures:
            raise RankingUnavailable("no generative backend configured")
        raise RankingUnavailable(f"all generative backends failed for {label}", failures=failures)

    @staticmethod
    def _interpret(interpret: Callable[[str], Any], text: Any) -> Any:
        if not isinstance(text, str):
            raise RankingParseError(f"backend returned {type(text).__name__}, expected text")
        try:
            return interpret(text)
        except RankingParseError:
            raise
        except (TypeError, ValueError, AttributeError, ValidationError) as exc:
            raise RankingParseError(f"model output has an unexpected shape: {exc}") from exc
