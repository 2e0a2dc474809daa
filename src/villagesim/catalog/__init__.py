"""静态目录数据：资源表与事件表。"""

from villagesim.catalog.events import EVENT_CATEGORIES, FALLBACK_EVENTS, SEASONAL_EVENTS
from villagesim.catalog.resources import PRODUCTION_CHAINS, ProductionChain

__all__ = [
    "EVENT_CATEGORIES",
    "FALLBACK_EVENTS",
    "PRODUCTION_CHAINS",
    "ProductionChain",
    "SEASONAL_EVENTS",
]
