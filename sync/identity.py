# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Identity Cache - workforce employee id to name/email, cached with a TTL
"""
import logging
from typing import Dict, Iterable, Optional

import config
from utils.batching import run_batched
from utils.cache import TTLCache

logger = logging.getLogger(__name__)


class EmployeeIdentityCache:
    """Resolves employee details through a TTL cache in front of the workforce API"""

    def __init__(self, workforce_client, cache: Optional[TTLCache] = None):
        self.client = workforce_client
        self.cache = cache or TTLCache()

    @staticmethod
    def _key(employee_id) -> str:
        return f"employee:{employee_id}"

    def lookup(self, employee_id) -> Optional[Dict]:
        """Cached details, or None if the workforce API could not supply them"""
        try:
            return self.cache.get_or_load(
                self._key(employee_id), lambda: self.client.get_employee(str(employee_id))
            )
        except Exception as e:
            logger.warning(f"⚠️ No details for employee {employee_id}: {type(e).__name__}: {e}")
            return None

    def lookup_many(self, employee_ids: Iterable, batch_size: Optional[int] = None,
                    delay: Optional[float] = None) -> Dict[str, Dict]:
        """Resolve many employees in small concurrent batches; misses are left out"""
        unique_ids = list(dict.fromkeys(str(e) for e in employee_ids if e))
        found: Dict[str, Dict] = {}

        for outcome in run_batched(
            unique_ids,
            self.lookup,
            batch_size=batch_size or config.EMPLOYEE_LOOKUP_BATCH_SIZE,
            delay=config.EMPLOYEE_LOOKUP_DELAY if delay is None else delay,
            label="employees",
        ):
            for employee_id, info in outcome.results:
                if info:
                    found[employee_id] = info

        logger.info(f"👥 Resolved {len(found)}/{len(unique_ids)} employees")
        return found
