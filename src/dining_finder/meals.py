"""Meal periods by the dining-hall clock (weekday vs weekend service)."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import List, Optional

from dateutil import tz

from .query_parser import format_date

ALL_MEALS = ["Breakfast", "Lunch", "Dinner", "Brunch"]
WEEKDAY_MEALS = ["Breakfast", "Lunch", "Dinner"]
WEEKEND_MEALS = ["Brunch", "Dinner"]

# (meal, first hour, end hour) for each service window.
WEEKDAY_WINDOWS = (("Breakfast", 7, 11), ("Lunch", 11, 15), ("Dinner", 17, 21))
WEEKEND_WINDOWS = (("Brunch", 9, 14), ("Dinner", 17, 20))


def local_now(timezone_name: str = "America/Los_Angeles") -> datetime:
    tzinfo = tz.gettz(timezone_name) or timezone.utc
    return datetime.now(tzinfo)


def _is_weekend(day: date) -> bool:
    return day.weekday() >= 5


def current_meal(now: Optional[datetime] = None) -> str:
    """Return the meal being served at ``now``, or the next one coming up."""
    now = now or local_now()
    hour = now.hour
    if _is_weekend(now.date()):
        if hour < 14:
            return "Brunch"
        return "Dinner"
    if hour < 11:
        return "Breakfast"
    if hour < 15:
        return "Lunch"
    # after evening service the last meal of the day is still shown
    return "Dinner"


def available_meals(day: Optional[date]) -> List[str]:
    if not isinstance(day, date):
        return list(ALL_MEALS)
    return list(WEEKEND_MEALS if _is_weekend(day) else WEEKDAY_MEALS)


def is_meal_currently_served(meal: str, now: Optional[datetime] = None) -> bool:
    now = now or local_now()
    windows = WEEKEND_WINDOWS if _is_weekend(now.date()) else WEEKDAY_WINDOWS
    return any(name == meal and start <= now.hour < end for name, start, end in windows)


def upcoming_days(today: Optional[date] = None, count: int = 7) -> List[dict]:
    """Labelled date choices starting today, values formatted as ``MM/DD/YYYY``."""
    today = today or local_now().date()
    days = []
    for offset in range(count):
        day = today + timedelta(days=offset)
        short = day.strftime("%a")
        if offset == 0:
            label = f"Today ({short}, {day.strftime('%m/%d')})"
        elif offset == 1:
            label = f"Tomorrow ({short}, {day.strftime('%m/%d')})"
        else:
            label = f"{short}, {format_date(day)}"
        days.append(
            {
                "label": label,
                "value": format_date(day),
                "is_today": offset == 0,
                "is_tomorrow": offset == 1,
            }
        )
    return days


def canonical_meal(meal: Optional[str]) -> Optional[str]:
    """Case-insensitive lookup in ``ALL_MEALS``; None when the name is not a meal period."""
    if not isinstance(meal, str):
        return None
    wanted = meal.strip().lower()
    for name in ALL_MEALS:
        if name.lower() == wanted:
            return name
    return None
