from __future__ import annotations

from typing import Any, List

import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.pool import StaticPool

from dining_finder.menu_store import MenuStore

SCHEMA = """
    CREATE TABLE menu_item (
        id INTEGER PRIMARY KEY,
        hall_name TEXT NOT NULL,
        name TEXT NOT NULL,
        station TEXT,
        ingredients TEXT,
        allergens TEXT,
        diet_tags TEXT,
        category TEXT,
        notes TEXT,
        meal_type TEXT NOT NULL,
        date_served TEXT NOT NULL
    )
"""

MENU_ROWS = [
    {
        "hall_name": "Branner Dining",
        "name": "Pancakes",
        "station": "Griddle",
        "ingredients": "flour, milk, eggs",
        "allergens": "WHEAT, Milk, eggs",
        "diet_tags": "V",
        "category": "Entree",
        "notes": None,
        "meal_type": "Breakfast",
        "date_served": "2025-10-24",
    },
    {
        "hall_name": "Branner Dining",
        "name": "pancakes ",
        "station": "Griddle",
        "ingredients": None,
        "allergens": "Wheat",
        "diet_tags": None,
        "category": "Entree",
        "notes": "duplicate row from a second station feed",
        "meal_type": "Breakfast",
        "date_served": "2025-10-24",
    },
    {
        "hall_name": "Arrillaga Family Dining Commons",
        "name": "Scrambled Eggs",
        "station": "Hot Line",
        "ingredients": "eggs, butter",
        "allergens": "Eggs, Milk",
        "diet_tags": "gf, v",
        "category": "Entree",
        "notes": None,
        "meal_type": "Breakfast",
        "date_served": "2025-10-24",
    },
    {
        "hall_name": "Arrillaga Family Dining Commons",
        "name": "Fruit Cup",
        "station": "Cold Bar",
        "ingredients": "melon, grapes",
        "allergens": None,
        "diet_tags": "VG",
        "category": "Dessert",
        "notes": None,
        "meal_type": "Breakfast",
        "date_served": "2025-10-24",
    },
    {
        "hall_name": "Wilbur Dining",
        "name": "Tofu Stir Fry",
        "station": "Wok",
        "ingredients": "tofu, broccoli, soy sauce",
        "allergens": "Soy, Sesame",
        "diet_tags": "vegan",
        "category": "Entree",
        "notes": None,
        "meal_type": "Dinner",
        "date_served": "2025-10-24",
    },
    {
        "hall_name": "Branner Dining",
        "name": "Oatmeal",
        "station": "Hot Cereal",
        "ingredients": "oats",
        "allergens": "",
        "diet_tags": "VG",
        "category": "Entree",
        "notes": None,
        "meal_type": "Breakfast",
        "date_served": "2025-10-25",
    },
]


def make_engine(rows: List[dict[str, Any]] = MENU_ROWS):
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    with engine.begin() as conn:
        conn.execute(text(SCHEMA))
        if rows:
            columns = ", ".join(rows[0].keys())
            values = ", ".join(f":{key}" for key in rows[0].keys())
            conn.execute(text(f"INSERT INTO menu_item ({columns}) VALUES ({values})"), rows)
    return engine


@pytest.fixture
def engine():
    engine = make_engine()
    yield engine
    engine.dispose()


@pytest.fixture
def store(engine) -> MenuStore:
    return MenuStore(engine=engine)


class FakeBackend:
    """Stand-in text backend that records prompts and replays a canned reply."""

    def __init__(self, name: str, reply: str | None = None, error: Exception | None = None):
        self.name = name
        self.reply = reply
        self.error = error
        self.calls: List[tuple[str, dict]] = []

    def generate(self, prompt: str, **kwargs: Any) -> str:
        self.calls.append((prompt, kwargs))
        if self.error is not None:
            raise self.error
        return self.reply or ""


class FakeResponse:
    def __init__(self, status_code: int = 200, payload: Any = None, text: str = ""):
        self.status_code = status_code
        self._payload = payload
        self.text = text

    def json(self) -> Any:
        if self._payload is None:
            raise ValueError("no JSON body")
        return self._payload


class FakeSession:
    """Minimal ``requests``-like object whose ``get`` answers per travel mode."""

    def __init__(self, responses: dict[str, Any]):
        self.responses = responses
        self.calls: List[dict[str, Any]] = []

    def get(self, url: str, params: dict[str, Any] | None = None, timeout: Any = None) -> FakeResponse:
        params = params or {}
        self.calls.append({"url": url, "params": params, "timeout": timeout})
        response = self.responses[params["mode"]]
        if isinstance(response, Exception):
            raise response
        return response


def matrix_payload(elements: List[dict[str, Any]]) -> dict[str, Any]:
    return {"status": "OK", "rows": [{"elements": elements}]}


def ok_element(meters: int, seconds: int) -> dict[str, Any]:
    return {"status": "OK", "distance": {"value": meters}, "duration": {"value": seconds}}
