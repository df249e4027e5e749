"""Background extraction worker.

Takes queued submissions through ``pending -> processing -> completed``
(or ``error``) on a bounded thread pool. Each submission is processed
independently; retry backoff sleeps only the thread handling that
submission.
"""

import logging
import threading
import time
from collections.abc import Callable
from concurrent.futures import Executor, Future, ThreadPoolExecutor, wait
from typing import Any

from tenacity import Retrying, before_sleep_log, stop_after_attempt, wait_exponential

from src.errors import HandoffError, InvalidImageError, SubmissionNotFoundError
from src.submissions.models import Submission, SubmissionStatus
from src.submissions.queue import SubmissionQueue
from src.utils.config import WorkerConfig
from src.utils.logger import get_logger

from .form_reader import FormReader
from .parsing import decode_data_url, parse_extraction_output

logger = get_logger(__name__)

NO_IMAGE_MESSAGE = "No image was supplied with the submission"


class ExtractionWorker:
    """Runs OCR extraction for queued submissions.

    Args:
        queue: Submission queue to read from and write results to.
        reader: OCR collaborator.
        config: Pool size and retry policy.
        executor: Executor override. When omitted the worker owns a
            ``ThreadPoolExecutor`` sized by ``config.max_workers``.
        sleep: Sleep function used between retry attempts.
    """

    def __init__(
        self,
        queue: SubmissionQueue,
        reader: FormReader,
        config: WorkerConfig | None = None,
        executor: Executor | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.queue = queue
        self.reader = reader
        self.config = config or WorkerConfig()
        self._owns_executor = executor is None
        self.executor = executor or ThreadPoolExecutor(
            max_workers=self.config.max_workers,
            thread_name_prefix="extraction",
        )
        self._sleep = sleep
        self._futures: set[Future] = set()
        self._lock = threading.Lock()

    def submit(self, submission_id: str) -> Future:
        """Schedule a submission for extraction without waiting for it.

        Returns:
            Future resolving to the final submission (or ``None`` if it
            vanished from the queue).
        """
        future = self.executor.submit(self.process, submission_id)
        with self._lock:
            self._futures.add(future)
        future.add_done_callback(self._forget)
        logger.debug("Scheduled extraction for %s", submission_id)
        return future

    def _forget(self, future: Future) -> None:
        with self._lock:
            self._futures.discard(future)

    def process(self, submission_id: str) -> Submission | None:
        """Run one submission to a terminal state. Never raises."""
        try:
            return self._process(submission_id)
        except SubmissionNotFoundError:
            logger.warning("Submission %s disappeared before extraction finished", submission_id)
            return None
        except Exception as exc:
            logger.exception("Unexpected failure while extracting %s", submission_id)
            try:
                return self._fail(submission_id, f"Unexpected extraction failure: {exc}")
            except HandoffError:
                return self.queue.get(submission_id)

    def _process(self, submission_id: str) -> Submission:
        submission = self.queue.get(submission_id)
        if submission is None:
            raise SubmissionNotFoundError(submission_id)
        if submission.is_terminal:
            return submission

        if not submission.captured_image:
            return self._fail(submission_id, NO_IMAGE_MESSAGE)
        try:
            media_type, payload = decode_data_url(submission.captured_image)
        except InvalidImageError as exc:
            return self._fail(submission_id, str(exc))

        self.queue.update(
            submission_id, lambda s: s.advance(SubmissionStatus.PROCESSING)
        )
        logger.info("Extracting fields for submission %s", submission_id)

        try:
            fields = self._extract_with_retry(payload, media_type)
        except Exception as exc:
            return self._fail(
                submission_id,
                f"Extraction failed after {self.config.max_attempts} attempts: {exc}",
            )

        completed = self.queue.update(
            submission_id,
            lambda s: s.advance(SubmissionStatus.COMPLETED, extracted_fields=fields),
        )
        logger.info(
            "Submission %s completed with %d fields", submission_id, len(fields)
        )
        return completed

    def _extract_with_retry(self, payload: bytes, media_type: str) -> dict[str, Any]:
        retrying = Retrying(
            stop=stop_after_attempt(self.config.max_attempts),
            wait=wait_exponential(
                multiplier=self.config.initial_backoff_s, exp_base=2
            ),
            sleep=self._sleep,
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        return retrying(self._attempt, payload, media_type)

    def _attempt(self, payload: bytes, media_type: str) -> dict[str, Any]:
        raw = self.reader.read(payload, media_type)
        return parse_extraction_output(raw)

    def _fail(self, submission_id: str, message: str) -> Submission:
        logger.error("Submission %s failed: %s", submission_id, message)
        return self.queue.update(
            submission_id,
            lambda s: s.advance(SubmissionStatus.ERROR, error=message),
        )

    def drain(self, timeout: float | None = None) -> bool:
        """Wait for all scheduled extractions.

        Returns:
            ``True`` if everything finished within ``timeout``.
        """
        with self._lock:
            pending = list(self._futures)
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    def shutdown(self, wait_for_pending: bool = True) -> None:
        """Stop the worker pool if this worker created it."""
        if self._owns_executor:
            self.executor.shutdown(
                wait=wait_for_pending, cancel_futures=not wait_for_pending
            )
