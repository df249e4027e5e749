"""Storage backends for the submission queue.

The queue only needs keyed get/put/delete, an atomic read-modify-write
and an insertion-ordered scan, so any keyed store offering those can back
it. The in-process store below covers single-instance deployments.
"""

import threading
from collections import OrderedDict
from collections.abc import Callable
from typing import Protocol

from src.errors import SubmissionNotFoundError

from .models import Submission


class SubmissionStore(Protocol):
    """Keyed storage capability required by :class:`SubmissionQueue`."""

    def get(self, submission_id: str) -> Submission | None: ...

    def put(self, submission: Submission) -> None: ...

    def delete(self, submission_id: str) -> bool: ...

    def update(
        self, submission_id: str, fn: Callable[[Submission], Submission]
    ) -> Submission: ...

    def values(self) -> list[Submission]: ...


class InMemorySubmissionStore:
    """Thread-safe, insertion-ordered in-process submission store."""

    def __init__(self) -> None:
        self._items: OrderedDict[str, Submission] = OrderedDict()
        self._lock = threading.RLock()

    def get(self, submission_id: str) -> Submission | None:
        with self._lock:
            return self._items.get(submission_id)

    def put(self, submission: Submission) -> None:
        with self._lock:
            self._items[submission.id] = submission

    def delete(self, submission_id: str) -> bool:
        with self._lock:
            return self._items.pop(submission_id, None) is not None

    def update(
        self, submission_id: str, fn: Callable[[Submission], Submission]
    ) -> Submission:
        """Atomically replace a submission with ``fn(current)``.

        Raises:
            SubmissionNotFoundError: If the id is not stored.
        """
        with self._lock:
            current = self._items.get(submission_id)
            if current is None:
                raise SubmissionNotFoundError(submission_id)
            updated = fn(current)
            self._items[submission_id] = updated
            return updated

    def values(self) -> list[Submission]:
        with self._lock:
            return list(self._items.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)
