# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Best-effort tasks - side effects whose failure must never fail the caller
"""
import logging
from dataclasses import dataclass
from threading import Lock
from typing import Any, Callable, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class TaskOutcome:
    name: str
    ok: bool
    result: Any = None
    error: Optional[str] = None


class BestEffortTasks:
    """Runs side effects inline, capturing every outcome for later inspection"""

    def __init__(self):
        self._outcomes: List[TaskOutcome] = []
        self._lock = Lock()

    def dispatch(self, name: str, func: Callable[..., Any], *args, **kwargs) -> TaskOutcome:
        try:
            outcome = TaskOutcome(name=name, ok=True, result=func(*args, **kwargs))
        except Exception as e:
            logger.warning(f"⚠️ Best-effort task '{name}' failed: {type(e).__name__}: {e}")
            outcome = TaskOutcome(name=name, ok=False, error=str(e))

        with self._lock:
            self._outcomes.append(outcome)
        return outcome

    def drain(self) -> List[TaskOutcome]:
        """Return and forget every outcome recorded so far"""
        with self._lock:
            outcomes, self._outcomes = self._outcomes, []
        return outcomes
