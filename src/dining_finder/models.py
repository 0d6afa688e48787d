from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .normalize import normalize_allergens


class MenuItem(BaseModel):
    """A single dish served at a hall for one (date, meal)."""

    model_config = ConfigDict(populate_by_name=True)

    hall_name: Optional[str] = Field(default=None, alias="hallName", exclude=True)
    name: str
    allergens: List[str] = Field(default_factory=list)
    station: Optional[str] = None
    ingredients: Optional[str] = None
    diet_tags: Optional[str] = Field(default=None, alias="dietTags")
    category: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("allergens", mode="before")
    @classmethod
    def canonical_allergens(cls, value):
        return normalize_allergens(value)


class DiningHall(BaseModel):
    """Menu view of one hall: its name plus the dishes in display order."""

    model_config = ConfigDict(populate_by_name=True)

    name: str
    food_items: List[MenuItem] = Field(default_factory=list, alias="foodItems")


class Coordinate(BaseModel):
    lat: float
    lon: float


class HallLocation(BaseModel):
    name: str
    lat: float
    lon: float

    def as_destination(self) -> str:
        return f"{self.lat},{self.lon}"


class EtaResult(BaseModel):
    hall: str
    distance_km: Optional[float] = None
    walk_min: Optional[float] = None
    bike_min: Optional[float] = None


class RankedFoodItem(MenuItem):
    relevance_score: int = Field(default=0, alias="relevanceScore")


class RankedHall(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    food_items: List[RankedFoodItem] = Field(default_factory=list, alias="foodItems")
    score: int = Field(ge=1, le=10)
    reason: str
    best_food_item: Optional[str] = Field(default=None, alias="bestFoodItem")
    image: Optional[str] = None
