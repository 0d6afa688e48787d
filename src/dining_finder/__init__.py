"""Dining hall discovery backend: menus, travel times and LLM rankings."""

from .config import ServerConfig
from .distance_matrix import DistanceMatrixProxy
from .errors import DiningError
from .llm_client import GeminiClient, OpenAIChatClient
from .menu_store import MenuStore
from .models import DiningHall, EtaResult, MenuItem, RankedHall
from .ranking import HallRanker

__all__ = [
    "DiningError",
    "DiningHall",
    "DistanceMatrixProxy",
    "EtaResult",
    "GeminiClient",
    "HallRanker",
    "MenuItem",
    "MenuStore",
    "OpenAIChatClient",
    "RankedHall",
    "ServerConfig",
]
