from __future__ import annotations

import json
import logging
import math
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import ServerConfig
from .distance_matrix import DistanceMatrixProxy
from .errors import (
    DiningError,
    InvalidOrigin,
    InvalidRequest,
    MissingApiKey,
    PayloadTooLarge,
    QueryError,
    StorageUnavailable,
)
from .llm_client import GeminiClient, OpenAIChatClient
from .meals import available_meals, canonical_meal, current_meal, local_now, upcoming_days
from .menu_store import MenuStore, normalize_date
from .models import Coordinate, DiningHall, EtaResult, RankedHall
from .query_parser import extract_date, extract_meal, format_date
from .ranking import HallRanker, TextBackend

logger = logging.getLogger("dining_server")
logging.basicConfig(level=logging.INFO)

# upper bound on cached (meal, date) menus
MENU_CACHE_MAX_ENTRIES = 64

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}


class RankRequest(BaseModel):
    query: Optional[str] = Field(default=None, max_length=2000)
    meal: Optional[str] = None
    date: Optional[str] = None


class MealPlanRequest(BaseModel):
    hall: str = Field(min_length=1)
    query: str = Field(min_length=1, max_length=2000)
    meal: Optional[str] = None
    date: Optional[str] = None


class MealPlanResponse(BaseModel):
    hall: str
    meal: str
    date: str
    plan: str


class MealsResponse(BaseModel):
    date: Optional[str] = None
    meals: List[str]
    current: str


def build_backends(config: ServerConfig) -> List[TextBackend]:
    """Primary Gemini models in preference order, then the OpenAI backup."""
    backends: List[TextBackend] = []
    if config.gemini_api_key:
        backends.extend(GeminiClient(model, api_key=config.gemini_api_key) for model in config.gemini_models)
    if config.openai_api_key:
        backends.append(OpenAIChatClient(api_key=config.openai_api_key, model=config.openai_model))
    return backends


class DiningService:
    """
    Process-wide state for the API: the menu store (and its lazily built pool), the
    ``(meal, date)`` menu cache used by rankings, the ETA proxy and the ranker.
    """

    def __init__(
        self,
        config: ServerConfig,
        *,
        menu_store: MenuStore | None = None,
        eta_proxy: DistanceMatrixProxy | None = None,
        backends: Sequence[TextBackend] | None = None,
    ):
        self.config = config
        self.menu_store = menu_store or MenuStore(config)
        self.eta_proxy = eta_proxy or DistanceMatrixProxy(config.google_maps_key)
        self._menu_cache: Dict[Tuple[str, str], List[DiningHall]] = {}
        self._menu_cache_expiration: Dict[Tuple[str, str], datetime] = {}
        self._menu_cache_ttl = timedelta(minutes=max(1, config.menu_cache_minutes))
        self.ranker = HallRanker(
            build_backends(config) if backends is None else backends,
            self.get_cached_menu,
        )

    async def check_storage(self) -> bool:
        try:
            await self.menu_store.ping()
        except DiningError as exc:
            logger.warning("Database connection check failed: %s", exc)
            return False
        logger.info("Database connected successfully")
        return True

    async def get_menu(self, date: str, meal: str) -> List[DiningHall]:
        return await self.menu_store.get_menu(date, meal)

    async def get_cached_menu(self, date: str, meal: str) -> List[DiningHall]:
        canonical = canonical_meal(meal)
        if canonical is None:
            raise InvalidRequest("invalid_meal")
        key = (canonical, normalize_date(date))
        now = datetime.now(timezone.utc)
        cached = self._menu_cache.get(key)
        expiration = self._menu_cache_expiration.get(key)
        if cached is not None and expiration and now < expiration:
            logger.debug("Using cached menu for %s", key)
            return cached
        halls = await self.menu_store.get_menu(date, canonical)
        self._store_menu(key, halls, now)
        return halls

    def _store_menu(self, key: Tuple[str, str], halls: List[DiningHall], now: datetime) -> None:
        for stale in [k for k, expires in self._menu_cache_expiration.items() if expires <= now]:
            self._menu_cache.pop(stale, None)
            self._menu_cache_expiration.pop(stale, None)
        while len(self._menu_cache) >= MENU_CACHE_MAX_ENTRIES and key not in self._menu_cache:
            oldest = min(self._menu_cache_expiration, key=self._menu_cache_expiration.__getitem__)
            self._menu_cache.pop(oldest, None)
            self._menu_cache_expiration.pop(oldest, None)
        self._menu_cache[key] = halls
        self._menu_cache_expiration[key] = now + self._menu_cache_ttl

    async def list_dining_halls(self) -> List[str]:
        return await self.menu_store.list_dining_halls()

    async def list_available_dates(self) -> List[str]:
        return await self.menu_store.list_available_dates()

    async def compute_etas(self, origin: Coordinate) -> List[EtaResult]:
        return await self.eta_proxy.compute_etas(origin)

    def resolve_meal_and_date(
        self, query: Optional[str], meal: Optional[str], date: Optional[str]
    ) -> Tuple[str, str]:
        """Explicit values win, then hints in the query, then the dining-hall clock."""
        now = local_now(self.config.timezone)
        if meal:
            resolved_meal = canonical_meal(meal)
            if resolved_meal is None:
                raise InvalidRequest("invalid_meal")
        else:
            resolved_meal = extract_meal(query) or current_meal(now)
        resolved_date = date or extract_date(query, today=now.date()) or format_date(now.date())
        return resolved_meal, resolved_date

    async def rank_halls(
        self, query: Optional[str], meal: Optional[str] = None, date: Optional[str] = None
    ) -> List[RankedHall]:
        resolved_meal, resolved_date = self.resolve_meal_and_date(query, meal, date)
        return await self.ranker.rank_halls(query, resolved_meal, resolved_date)

    async def plan_meal(
        self, hall: str, query: str, meal: Optional[str] = None, date: Optional[str] = None
    ) -> MealPlanResponse:
        resolved_meal, resolved_date = self.resolve_meal_and_date(query, meal, date)
        plan = await self.ranker.plan_meal(hall, query, resolved_meal, resolved_date)
        return MealPlanResponse(hall=hall, meal=resolved_meal, date=resolved_date, plan=plan)

    def meals_for(self, date: Optional[str]) -> MealsResponse:
        day = None
        if date:
            try:
                day = datetime.strptime(normalize_date(date), "%Y-%m-%d").date()
            except InvalidRequest:
                day = None
        return MealsResponse(
            date=date,
            meals=available_meals(day),
            current=current_meal(local_now(self.config.timezone)),
        )

    def close(self) -> None:
        self.menu_store.close()


async def read_limited_body(request: Request, limit: int) -> bytes:
    """Read the request body, giving up as soon as it grows past ``limit`` bytes."""
    declared = request.headers.get("content-length")
    if declared and declared.isdigit() and int(declared) > limit:
        raise PayloadTooLarge("payload_too_large")
    chunks = bytearray()
    async for chunk in request.stream():
        chunks.extend(chunk)
        if len(chunks) > limit:
            raise PayloadTooLarge("payload_too_large")
    return bytes(chunks)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def parse_origin(payload: Any) -> Coordinate:
    origin = payload.get("origin") if isinstance(payload, dict) else None
    if not isinstance(origin, dict):
        raise InvalidOrigin("invalid_origin")
    lat, lon = origin.get("lat"), origin.get("lon")
    if not _is_number(lat) or not _is_number(lon):
        raise InvalidOrigin("invalid_origin")
    return Coordinate(lat=lat, lon=lon)


def get_service(request: Request) -> DiningService:
    return request.app.state.service


def create_app(config: ServerConfig | None = None, *, service: DiningService | None = None) -> FastAPI:
    config = config or (service.config if service else ServerConfig.from_env())
    service = service or DiningService(config)

    app = FastAPI(title="Dining Hall Finder API")
    app.state.service = service

    @app.on_event("startup")
    async def _startup() -> None:
        await service.check_storage()

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        service.close()

    @app.middleware("http")
    async def cors_and_errors(request: Request, call_next):
        start = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            logger.exception("Unhandled error in %s %s", request.method, request.url.path)
            response = JSONResponse({"error": "internal_error"}, status_code=500)
        for key, value in CORS_HEADERS.items():
            response.headers[key] = value
        duration_ms = (time.perf_counter() - start) * 1000
        logger.info("%s %s %s %.2fms", request.method, request.url.path, response.status_code, duration_ms)
        return response

    @app.exception_handler(DiningError)
    async def _dining_error(request: Request, exc: DiningError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        headers = {"Connection": "close"} if isinstance(exc, PayloadTooLarge) else None
        return JSONResponse(exc.to_payload(), status_code=exc.status_code, headers=headers)

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        if exc.status_code in (404, 405):
            return JSONResponse({"error": "not_found"}, status_code=404)
        body = exc.detail if isinstance(exc.detail, dict) else {"error": exc.detail}
        return JSONResponse(body, status_code=exc.status_code, headers=getattr(exc, "headers", None))

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        details = [error.get("msg", "") for error in exc.errors()]
        return JSONResponse({"error": "invalid_request", "details": details}, status_code=400)

    @app.get("/health")
    async def health() -> Dict[str, Any]:
        return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}

    @app.get("/api/menu", response_model=List[DiningHall])
    async def menu(
        date: Optional[str] = Query(default=None),
        meal: str = Query(default="Dinner"),
        service: DiningService = Depends(get_service),
    ) -> List[DiningHall]:
        if not date:
            raise HTTPException(status_code=400, detail="Date parameter is required")
        try:
            return await service.get_menu(date, meal)
        except (StorageUnavailable, QueryError) as exc:
            raise HTTPException(
                status_code=500,
                detail={"error": "Failed to fetch dining hall menu", "details": str(exc)},
            ) from exc

    @app.get("/api/dining-halls", response_model=List[str])
    async def dining_halls(service: DiningService = Depends(get_service)) -> List[str]:
        try:
            return await service.list_dining_halls()
        except (StorageUnavailable, QueryError) as exc:
            raise HTTPException(
                status_code=500,
                detail={"error": "Failed to fetch dining halls", "details": str(exc)},
            ) from exc

    @app.get("/api/dates", response_model=List[str])
    async def dates(service: DiningService = Depends(get_service)) -> List[str]:
        try:
            return await service.list_available_dates()
        except (StorageUnavailable, QueryError) as exc:
            raise HTTPException(
                status_code=500,
                detail={"error": "Failed to fetch available dates", "details": str(exc)},
            ) from exc

    @app.post("/api/etas", response_model=List[EtaResult])
    async def etas(request: Request, service: DiningService = Depends(get_service)) -> List[EtaResult]:
        if not service.eta_proxy.has_credentials:
            raise MissingApiKey("missing_api_key")
        body = await read_limited_body(request, service.config.max_body_bytes)
        try:
            payload = json.loads(body or b"{}")
        except ValueError as exc:
            raise InvalidRequest("invalid_json") from exc
        origin = parse_origin(payload)
        return await service.compute_etas(origin)

    @app.options("/api/etas")
    async def etas_preflight() -> Response:
        return Response(status_code=204)

    @app.post("/api/rank", response_model=List[RankedHall])
    async def rank(request: RankRequest, service: DiningService = Depends(get_service)) -> List[RankedHall]:
        return await service.rank_halls(request.query, request.meal, request.date)

    @app.post("/api/meal-plan", response_model=MealPlanResponse)
    async def meal_plan(
        request: MealPlanRequest, service: DiningService = Depends(get_service)
    ) -> MealPlanResponse:
        if not request.hall.strip() or not request.query.strip():
            raise InvalidRequest("hall and query are required")
        return await service.plan_meal(request.hall.strip(), request.query.strip(), request.meal, request.date)

    @app.get("/api/meals", response_model=MealsResponse)
    async def meals(
        date: Optional[str] = Query(default=None),
        service: DiningService = Depends(get_service),
    ) -> MealsResponse:
        return service.meals_for(date)

    @app.get("/api/upcoming-days")
    async def days(service: DiningService = Depends(get_service)) -> List[Dict[str, Any]]:
        return upcoming_days(local_now(service.config.timezone).date())

    return app
