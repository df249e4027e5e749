"""Persistent client-side key/value state.

Holds the saved forms and the cross-device correlation ids under fixed
key names so a restarted client resumes where it left off.
"""

import json
import os
import threading
from pathlib import Path
from typing import Any

from src.utils.logger import get_logger

logger = get_logger(__name__)

FORMS_KEY = "form-storage"
PENDING_FORM_KEY = "pendingFormId"
LAST_SUBMISSION_KEY = "lastSubmissionId"
TARGET_FORM_KEY = "targetFormId"


class LocalStorage:
    """JSON-file backed key/value store.

    Args:
        path: File holding the state. When ``None`` the store lives in
            memory only.
    """

    def __init__(self, path: Path | None = None) -> None:
        self.path = path
        self._lock = threading.RLock()
        self._data: dict[str, Any] = self._load()

    def _load(self) -> dict[str, Any]:
        if self.path is None or not self.path.exists():
            return {}
        try:
            with open(self.path) as f:
                data = json.load(f)
        except json.JSONDecodeError as exc:
            logger.warning("Ignoring unreadable client state at %s: %s", self.path, exc)
            return {}
        return data if isinstance(data, dict) else {}

    def _flush(self) -> None:
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp, "w") as f:
            json.dump(self._data, f, indent=2)
        os.replace(tmp, self.path)

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._data[key] = value
            self._flush()

    def remove(self, key: str) -> None:
        with self._lock:
            if self._data.pop(key, None) is not None:
                self._flush()

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._data
