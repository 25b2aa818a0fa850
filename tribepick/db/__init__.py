from tribepick.db.database import get_session, init_db
from tribepick.db.operations import (
    SqlActivityProvider,
    SqlSessionRepository,
    activity_to_row,
    get_session_row,
    row_to_session,
    session_to_row,
)

__all__ = [
    "SqlActivityProvider",
    "SqlSessionRepository",
    "activity_to_row",
    "get_session",
    "get_session_row",
    "init_db",
    "row_to_session",
    "session_to_row",
]
