"""Desktop-side reconciliation of cross-device submissions.

While a new form waits for its photo, the poller asks the submissions
resource every couple of seconds what has happened and merges whatever
is available into the current form: the photo as soon as it arrives,
the extracted fields once OCR completes. It learns about progress only
by re-reading state, never by callback.
"""

import threading

import httpx

from src.errors import HandoffError
from src.submissions.models import Submission, SubmissionStatus
from src.utils.logger import get_logger

from .forms import FormSessionStore, ProcessingStep
from .scheduler import Subscription, schedule
from .storage import LAST_SUBMISSION_KEY, PENDING_FORM_KEY, LocalStorage
from .transport import SubmissionsClient

logger = get_logger(__name__)


class ReconciliationPoller:
    """Polls for the current form's submission and merges its results.

    Once a submission has been located the poller follows that id until
    it reaches a terminal state; it never switches to another one.

    Args:
        client: Submissions API client.
        forms: Form store whose current form receives the data.
        storage: Client storage holding the correlation ids.
        interval_s: Seconds between polls.
        remove_completed: Ask the server to drop the submission once it
            is returned in a terminal state.
    """

    def __init__(
        self,
        client: SubmissionsClient,
        forms: FormSessionStore,
        storage: LocalStorage,
        interval_s: float = 2.0,
        remove_completed: bool = True,
    ) -> None:
        self.client = client
        self.forms = forms
        self.storage = storage
        self.interval_s = interval_s
        self.remove_completed = remove_completed
        self.has_received = False
        self.result: Submission | None = None
        self._submission_id: str | None = None
        self._subscription: Subscription | None = None
        self._done = threading.Event()
        self._lock = threading.RLock()

    @property
    def submission_id(self) -> str | None:
        return self._submission_id

    @property
    def is_polling(self) -> bool:
        return self._subscription is not None and self._subscription.active

    def start(self) -> Subscription:
        """Begin polling for the current form.

        Returns:
            Subscription that must be released (or passed to :meth:`stop`)
            when the owning view goes away.

        Raises:
            HandoffError: If there is no current form awaiting a photo.
        """
        with self._lock:
            if self._subscription is not None and self._subscription.active:
                return self._subscription
            if self.forms.current_form is None:
                raise HandoffError("No form session is awaiting a photo")

            stored = self.storage.get(LAST_SUBMISSION_KEY)
            if stored and self._submission_id is None:
                logger.info("Resuming stored submission %s", stored)
                self._submission_id = stored

            self.result = None
            self._done.clear()
            self.forms.set_waiting_for_photo(True)
            self._subscription = schedule(
                self.interval_s, self.poll_once, name="reconciliation-poller"
            )
            logger.info(
                "Polling every %.1fs for form %s",
                self.interval_s,
                self.forms.current_form.id,
            )
            return self._subscription

    def stop(self) -> None:
        """Tear down polling, e.g. when navigating away from the form."""
        # Cancel outside the lock; a tick in progress needs it to finish.
        with self._lock:
            subscription, self._subscription = self._subscription, None
        if subscription is not None:
            subscription.cancel()
        self.forms.set_waiting_for_photo(False)

    def reset(self) -> None:
        """Forget what has been received so polling can start over."""
        self.stop()
        with self._lock:
            self.has_received = False
            self._submission_id = None
            self.result = None
            self._done.clear()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until a terminal state was reconciled.

        Returns:
            ``True`` if polling finished within ``timeout``.
        """
        return self._done.wait(timeout)

    def poll_once(self) -> ProcessingStep:
        """Run one polling cycle.

        Transport failures are logged and leave all state untouched.

        Returns:
            Processing phase after this cycle.
        """
        with self._lock:
            try:
                submission = self._fetch()
            except httpx.HTTPError as exc:
                logger.warning("Polling for submission failed: %s", exc)
                return self.forms.processing_step

            if submission is None:
                if self._submission_id is not None:
                    logger.warning(
                        "Submission %s is no longer queued; searching by form",
                        self._submission_id,
                    )
                    self._submission_id = None
                    self.storage.remove(LAST_SUBMISSION_KEY)
                return self.forms.processing_step

            if self._submission_id is None:
                logger.info("Following submission %s", submission.id)
                self._submission_id = submission.id

            self._apply(submission)
            return self.forms.processing_step

    def _fetch(self) -> Submission | None:
        if self._submission_id:
            return self.client.lookup(
                submission_id=self._submission_id,
                remove_completed=self.remove_completed,
            )

        target = self.storage.get(PENDING_FORM_KEY)
        if not target and self.forms.current_form is not None:
            target = self.forms.current_form.id
        return self.client.lookup(
            target_form_id=target, remove_completed=self.remove_completed
        )

    def _apply(self, submission: Submission) -> None:
        status = submission.status

        if status == SubmissionStatus.PENDING:
            self.forms.set_processing(True, ProcessingStep.ANALYZING)
            if submission.captured_image:
                self.forms.receive_submission(
                    {"captured_image": submission.captured_image}, keep_processing=True
                )
                self.has_received = True

        elif status == SubmissionStatus.PROCESSING:
            self.forms.set_processing(True, ProcessingStep.EXTRACTING)
            if not self.has_received and submission.captured_image:
                self.forms.receive_submission(
                    {"captured_image": submission.captured_image}, keep_processing=True
                )
                self.has_received = True

        elif status == SubmissionStatus.COMPLETED:
            data = dict(submission.extracted_fields)
            if submission.captured_image:
                data["captured_image"] = submission.captured_image
            self.forms.receive_submission(data, keep_processing=False)
            self.has_received = True
            logger.info("Submission %s merged into form", submission.id)
            self._finish(submission)

        elif status == SubmissionStatus.ERROR:
            logger.error("Submission %s failed: %s", submission.id, submission.error)
            if submission.captured_image:
                self.forms.receive_submission(
                    {"captured_image": submission.captured_image}, keep_processing=False
                )
                self.has_received = True
            else:
                self.forms.set_processing(False, ProcessingStep.COMPLETE)
                self.forms.set_waiting_for_photo(False)
            self._finish(submission)

    def _finish(self, submission: Submission) -> None:
        self.result = submission
        self._submission_id = None
        self.storage.remove(LAST_SUBMISSION_KEY)
        # A failed photo can be retaken for the same form.
        if submission.status == SubmissionStatus.COMPLETED:
            self.storage.remove(PENDING_FORM_KEY)
        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None
        self.forms.set_waiting_for_photo(False)
        self._done.set()
