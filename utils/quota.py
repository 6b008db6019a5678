"""
Daily image generation quota, persisted locally as {date, count}.
"""

import json
import os
import threading
from datetime import date
from typing import Callable, Optional

from schemas import QuotaState
from utils.logger import get_logger

logger = get_logger("quota")


def _today_iso() -> str:
    return date.today().isoformat()


class QuotaCounter:
    """
    File-backed counter that resets when the date rolls over.

    Args:
        store_path: JSON file holding the QuotaState
        limit: daily maximum
        today: date provider (YYYY-MM-DD), injectable for tests
    """

    def __init__(
        self,
        store_path: str = "outputs/quota.json",
        limit: int = 10000,
        today: Optional[Callable[[], str]] = None,
    ):
        self.store_path = store_path
        self.limit = limit
        self._today = today or _today_iso
        self._lock = threading.Lock()

    def _read(self) -> QuotaState:
        today = self._today()
        if not os.path.exists(self.store_path):
            return QuotaState(date=today, count=0)
        try:
            with open(self.store_path, "r", encoding="utf-8") as f:
                state = QuotaState(**json.load(f))
        except (OSError, ValueError, TypeError) as e:
            logger.warning(f"Quota file unreadable ({e}); starting from zero")
            return QuotaState(date=today, count=0)
        if state.date != today:
            # Reset for new day
            return QuotaState(date=today, count=0)
        return state

    def _write(self, state: QuotaState) -> None:
        store_dir = os.path.dirname(self.store_path)
        if store_dir:
            os.makedirs(store_dir, exist_ok=True)
        with open(self.store_path, "w", encoding="utf-8") as f:
            json.dump(state.model_dump(), f)

    def get(self) -> int:
        with self._lock:
            return self._read().count

    def increment(self) -> int:
        with self._lock:
            state = self._read()
            state.count += 1
            self._write(state)
            return state.count

    def remaining(self) -> int:
        return max(0, self.limit - self.get())
