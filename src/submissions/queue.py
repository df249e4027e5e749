"""Shared submission queue: the single source of truth for handoff state.

The capture device enqueues, the extraction worker advances status, and
the desktop poller looks entries up (optionally removing terminal ones).
Removal on lookup is the only way entries leave the queue.
"""

from collections.abc import Callable
from dataclasses import dataclass

from src.errors import InvalidTransitionError, SubmissionNotFoundError
from src.utils.ids import new_submission_id
from src.utils.logger import get_logger

from .models import Submission, SubmissionStatus
from .store import InMemorySubmissionStore, SubmissionStore

logger = get_logger(__name__)

_TARGET_VISIBLE = (
    SubmissionStatus.PENDING,
    SubmissionStatus.PROCESSING,
    SubmissionStatus.COMPLETED,
)
_UNCLAIMED = (SubmissionStatus.PENDING, SubmissionStatus.PROCESSING)
_TERMINAL = (SubmissionStatus.COMPLETED, SubmissionStatus.ERROR)


@dataclass
class LookupResult:
    """Outcome of a lookup, including whether the entry was removed."""

    submission: Submission | None
    removed: bool = False

    @property
    def found(self) -> bool:
        return self.submission is not None


class SubmissionQueue:
    """Queue operations over a pluggable :class:`SubmissionStore`.

    Every operation is a single store call (or a read followed by an
    idempotent delete of a terminal entry), so callers never observe a
    half-applied change.

    Args:
        store: Backing store. Defaults to an in-process store.
    """

    def __init__(self, store: SubmissionStore | None = None) -> None:
        self.store = store if store is not None else InMemorySubmissionStore()

    def enqueue(
        self, captured_image: str | None, target_form_id: str | None = None
    ) -> Submission:
        """Create a pending submission and return it without waiting on extraction.

        Args:
            captured_image: Image payload as a data URL.
            target_form_id: Form session awaiting this image, if known.

        Returns:
            The stored pending submission.
        """
        submission = Submission(
            id=new_submission_id(),
            target_form_id=target_form_id or None,
            captured_image=captured_image,
        )
        self.store.put(submission)
        logger.info(
            "Enqueued submission %s (target=%s)",
            submission.id,
            submission.target_form_id or "-",
        )
        return submission

    def get(self, submission_id: str) -> Submission | None:
        return self.store.get(submission_id)

    def all(self) -> list[Submission]:
        return self.store.values()

    def update(
        self, submission_id: str, fn: Callable[[Submission], Submission]
    ) -> Submission:
        """Atomically apply ``fn`` to a stored submission."""
        return self.store.update(submission_id, fn)

    def find_by_target(self, target_form_id: str) -> Submission | None:
        """Return the oldest live submission aimed at ``target_form_id``.

        Entries in ``error`` are skipped so a form that retried its photo
        never resurfaces a dead attempt.
        """
        return self._first(
            lambda s: s.target_form_id == target_form_id
            and s.status in _TARGET_VISIBLE
        )

    def find_oldest_unclaimed(self) -> Submission | None:
        return self._first(lambda s: s.status in _UNCLAIMED)

    def find_oldest_terminal(self) -> Submission | None:
        return self._first(lambda s: s.status in _TERMINAL)

    def remove(self, submission_id: str) -> bool:
        """Delete a terminal submission.

        Returns:
            ``True`` if an entry was deleted, ``False`` if it was already gone.

        Raises:
            InvalidTransitionError: If the submission is still in flight.
        """
        current = self.store.get(submission_id)
        if current is None:
            return False
        if not current.is_terminal:
            raise InvalidTransitionError(
                f"Submission {submission_id} is {current.status}; "
                "only completed or failed submissions can be removed"
            )
        removed = self.store.delete(submission_id)
        if removed:
            logger.info("Removed %s submission %s", current.status, submission_id)
        return removed

    def lookup(
        self,
        submission_id: str | None = None,
        target_form_id: str | None = None,
        remove_completed: bool = False,
    ) -> LookupResult:
        """Locate a submission for a polling client.

        Resolution order: explicit id; else entries targeting the form;
        else the oldest in-flight entry; else the oldest finished entry.

        Args:
            submission_id: Specific submission to return.
            target_form_id: Form session whose submission is wanted.
            remove_completed: Delete the returned entry if it is terminal.

        Returns:
            The located submission (possibly none).

        Raises:
            SubmissionNotFoundError: If ``submission_id`` is given but unknown.
        """
        if submission_id:
            submission = self.store.get(submission_id)
            if submission is None:
                raise SubmissionNotFoundError(submission_id)
        else:
            submission = None
            if target_form_id:
                submission = self.find_by_target(target_form_id)
            if submission is None:
                submission = self.find_oldest_unclaimed()
            if submission is None:
                submission = self.find_oldest_terminal()

        if submission is None:
            return LookupResult(submission=None)

        removed = False
        if remove_completed and submission.is_terminal:
            removed = self.remove(submission.id)
        return LookupResult(submission=submission, removed=removed)

    def _first(self, predicate: Callable[[Submission], bool]) -> Submission | None:
        return next((s for s in self.store.values() if predicate(s)), None)

    def __len__(self) -> int:
        return len(self.store.values())
