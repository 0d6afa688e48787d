"""Read-only access to the ``menu_item`` table, grouped into per-hall menus."""

from __future__ import annotations

import asyncio
import datetime as dt
import logging
import re
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from sqlalchemy import create_engine, text
from sqlalchemy.engine import URL, Engine
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError, SQLAlchemyError

from .config import ServerConfig
from .errors import InvalidRequest, QueryError, StorageUnavailable
from .models import DiningHall, MenuItem

logger = logging.getLogger(__name__)

MENU_QUERY = """
    SELECT
        hall_name,
        name AS item_name,
        station,
        ingredients,
        allergens,
        diet_tags,
        category,
        notes
    FROM menu_item
    WHERE date_served = :date_served AND meal_type = :meal_type
    ORDER BY hall_name, category, name
"""
HALLS_QUERY = "SELECT DISTINCT hall_name FROM menu_item ORDER BY hall_name"
DATES_QUERY = "SELECT DISTINCT date_served FROM menu_item ORDER BY date_served"

SLASH_DATE_RE = re.compile(r"^\s*(\d{1,2})/(\d{1,2})/(\d{4})\s*$")
ISO_DATE_RE = re.compile(r"^\s*(\d{4})-(\d{2})-(\d{2})\s*$")


def normalize_date(value: str) -> str:
    """Return ``YYYY-MM-DD`` for a ``MM/DD/YYYY`` or ``YYYY-MM-DD`` date string that exists on the calendar."""
    if not value or not isinstance(value, str):
        raise InvalidRequest("invalid_date")
    match = SLASH_DATE_RE.match(value)
    if match:
        month, day, year = match.groups()
    else:
        match = ISO_DATE_RE.match(value)
        if not match:
            raise InvalidRequest("invalid_date")
        year, month, day = match.groups()
    try:
        return dt.date(int(year), int(month), int(day)).isoformat()
    except ValueError as exc:
        raise InvalidRequest("invalid_date") from exc


def build_database_url(config: ServerConfig) -> URL | str:
    if config.database_url:
        url = config.database_url
        # SQLAlchemy only accepts the postgresql:// scheme.
        if url.startswith("postgres://"):
            url = "postgresql://" + url[len("postgres://") :]
        return url
    return URL.create(
        "postgresql+psycopg2",
        username=config.db_user or None,
        password=config.db_password or None,
        host=config.db_host,
        port=config.db_port,
        database=config.db_name,
    )


def _default_engine_factory(config: ServerConfig) -> Callable[[], Engine]:
    def factory() -> Engine:
        connect_args: Dict[str, Any] = {}
        if config.db_ssl:
            connect_args["sslmode"] = "require"
        return create_engine(
            build_database_url(config),
            pool_pre_ping=True,
            connect_args=connect_args,
        )

    return factory


class MenuStore:
    """
    Menu queries against the relational store.

    The SQLAlchemy engine (and its connection pool) is built on first use and shared by
    every request afterwards. Blocking driver calls run on worker threads so the
    event loop stays free.
    """

    def __init__(
        self,
        config: ServerConfig | None = None,
        *,
        engine: Engine | None = None,
        engine_factory: Callable[[], Engine] | None = None,
    ):
        if engine is None and engine_factory is None:
            engine_factory = _default_engine_factory(config or ServerConfig())
        self._engine = engine
        self._engine_factory = engine_factory

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            assert self._engine_factory is not None
            try:
                self._engine = self._engine_factory()
            except Exception as exc:
                logger.error("Failed to initialize database engine: %s", exc)
                raise StorageUnavailable(f"Database not initialized: {exc}") from exc
        return self._engine

    async def get_menu(self, date: str, meal: str) -> List[DiningHall]:
        """Return the halls serving ``meal`` on ``date``, each with its deduplicated items."""
        formatted_date = normalize_date(date)
        rows = await self._fetch(MENU_QUERY, {"date_served": formatted_date, "meal_type": meal})
        return group_menu_rows(rows)

    async def list_dining_halls(self) -> List[str]:
        rows = await self._fetch(HALLS_QUERY)
        return [row["hall_name"] for row in rows]

    async def list_available_dates(self) -> List[str]:
        rows = await self._fetch(DATES_QUERY)
        return [_date_to_str(row["date_served"]) for row in rows]

    async def ping(self) -> bool:
        await self._fetch("SELECT 1 AS ok")
        return True

    def close(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
            logger.info("Database connection closed")
            self._engine = None

    async def _fetch(self, sql: str, params: Optional[Mapping[str, Any]] = None) -> List[Mapping[str, Any]]:
        engine = self.engine
        return await asyncio.to_thread(self._execute, engine, sql, dict(params or {}))

    @staticmethod
    def _execute(engine: Engine, sql: str, params: Dict[str, Any]) -> List[Mapping[str, Any]]:
        try:
            with engine.connect() as conn:
                return list(conn.execute(text(sql), params).mappings().all())
        except (OperationalError, InterfaceError) as exc:
            logger.error("Database connection error: %s", exc)
            raise StorageUnavailable(str(exc.orig or exc)) from exc
        except (DBAPIError, SQLAlchemyError) as exc:
            logger.error("Database query error: %s", exc)
            raise QueryError(str(exc)) from exc


def group_menu_rows(rows: Sequence[Mapping[str, Any]]) -> List[DiningHall]:
    """Group sorted menu rows by hall in first-seen order, dropping repeated item names."""
    halls: Dict[str, DiningHall] = {}
    seen_items: Dict[str, set[str]] = {}
    for row in rows:
        hall_name = row["hall_name"]
        hall = halls.get(hall_name)
        if hall is None:
            hall = halls[hall_name] = DiningHall(name=hall_name)
            seen_items[hall_name] = set()
        item_name = row["item_name"]
        key = item_name.strip().lower()
        if key in seen_items[hall_name]:
            continue
        seen_items[hall_name].add(key)
        hall.food_items.append(
            MenuItem(
                hall_name=hall_name,
                name=item_name,
                allergens=row.get("allergens"),
                station=row.get("station"),
                ingredients=row.get("ingredients"),
                diet_tags=row.get("diet_tags"),
                category=row.get("category"),
                notes=row.get("notes"),
            )
        )
    return list(halls.values())


def _date_to_str(value: Any) -> str:
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return str(value)
