from tribepick.services.decision_service import DecisionService
from tribepick.services.item_catalog import (
    CatalogItemProvider,
    get_item_provider,
    load_item_catalog,
)
from tribepick.services.providers import (
    ActivityProvider,
    InMemoryActivityProvider,
    InMemorySessionRepository,
    ItemProvider,
    RecentActivitySnapshot,
    SessionRepository,
)
from tribepick.services.session_locks import (
    SessionLockRegistry,
    get_lock_registry,
    reset_lock_registry,
)

__all__ = [
    "ActivityProvider",
    "CatalogItemProvider",
    "DecisionService",
    "InMemoryActivityProvider",
    "InMemorySessionRepository",
    "ItemProvider",
    "RecentActivitySnapshot",
    "SessionLockRegistry",
    "SessionRepository",
    "get_item_provider",
    "get_lock_registry",
    "load_item_catalog",
    "reset_lock_registry",
]
