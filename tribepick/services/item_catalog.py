"""
Item catalog service.

Loads and caches candidate item snapshots from a JSON file. The file maps
item ids to item records:

    {
        "item-1": {
            "name": "Luigi's",
            "category": "italian",
            "tags": ["pasta", "date-night"],
            "dietary": ["vegetarian"],
            "location": {"latitude": 40.71, "longitude": -74.0},
            "business_hours": {
                "timezone": "America/New_York",
                "days": {"friday": {"open": "17:00", "close": "01:00"}}
            }
        }
    }
"""

import json
import logging
from functools import lru_cache
from pathlib import Path
from typing import Any

from tribepick.config import settings
from tribepick.models.item import CandidateItem, item_from_dict

logger = logging.getLogger(__name__)


def load_item_catalog(path: Path) -> dict[str, CandidateItem]:
    """
    Load an item catalog from file.

    Args:
        path: Path to the JSON catalog

    Returns:
        Dict mapping item ids to CandidateItem.

    Raises:
        FileNotFoundError: If the catalog file doesn't exist
    """
    if not path.exists():
        raise FileNotFoundError(f"Item catalog not found at {path}.")

    with open(path, encoding="utf-8") as f:
        raw: dict[str, dict[str, Any]] = json.load(f)

    return {item_id: item_from_dict(item_id, data) for item_id, data in raw.items()}


class CatalogItemProvider:
    """ItemProvider backed by an in-memory catalog."""

    def __init__(self, catalog: dict[str, CandidateItem] | None = None):
        self._catalog = dict(catalog or {})

    def add(self, item: CandidateItem) -> None:
        self._catalog[item.id] = item

    async def get_items(self, item_ids: list[str]) -> list[CandidateItem]:
        """Return items in request order; unknown ids are skipped."""
        found = [self._catalog[i] for i in item_ids if i in self._catalog]
        missing = len(item_ids) - len(found)
        if missing:
            logger.warning(
                "catalog_items_missing",
                extra={"requested": len(item_ids), "missing": missing},
            )
        return found


@lru_cache(maxsize=1)
def get_item_provider() -> CatalogItemProvider:
    """
    Get the process-wide item provider (cached).

    Uses settings.item_catalog_path; an unset path gives an empty catalog.
    """
    if not settings.item_catalog_path:
        return CatalogItemProvider()
    return CatalogItemProvider(load_item_catalog(Path(settings.item_catalog_path)))
