# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Table-backed cache store - persists TTLCache entries in employee_cache
"""
import json
import logging
from datetime import datetime
from typing import Any, Optional, Tuple

from sqlalchemy.orm import sessionmaker

from db.database import session_scope
from db.tables import EmployeeCache
from utils.timezone import from_utc_naive, to_utc_naive

logger = logging.getLogger(__name__)


class TableCacheStore:
    """Stores JSON-serializable values, one row per key"""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def load(self, key: str) -> Optional[Tuple[Any, datetime]]:
        with session_scope(self.session_factory) as session:
            row = session.get(EmployeeCache, key)
            if row is None:
                return None
            try:
                value = json.loads(row.data)
            except ValueError:
                logger.warning(f"Discarding unreadable cache row: {key}")
                session.delete(row)
                return None
            return value, from_utc_naive(row.updated_at)

    def save(self, key: str, value: Any, stored_at: datetime):
        with session_scope(self.session_factory) as session:
            row = session.get(EmployeeCache, key)
            if row is None:
                row = EmployeeCache(key=key)
                session.add(row)
            row.data = json.dumps(value)
            row.updated_at = to_utc_naive(stored_at)

    def remove(self, key: str):
        with session_scope(self.session_factory) as session:
            row = session.get(EmployeeCache, key)
            if row is not None:
                session.delete(row)
