"""Cancellable fixed-interval background tasks."""

import threading
from collections.abc import Callable

from src.utils.logger import get_logger

logger = get_logger(__name__)


class Subscription:
    """Handle for a running periodic task. Release it with :meth:`cancel`."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def active(self) -> bool:
        return (
            not self._stop.is_set()
            and self._thread is not None
            and self._thread.is_alive()
        )

    def cancel(self, timeout: float | None = 5.0) -> None:
        """Stop the task. Idempotent and safe to call from the task itself."""
        if not self._stop.is_set():
            logger.debug("Cancelling %s", self.name)
        self._stop.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.cancel()


def schedule(
    interval: float,
    fn: Callable[[], object],
    name: str = "periodic-task",
    run_immediately: bool = False,
) -> Subscription:
    """Call ``fn`` every ``interval`` seconds on a daemon thread.

    A failing call is logged and the schedule continues.

    Args:
        interval: Seconds between calls.
        fn: Zero-argument callable.
        name: Thread and log name.
        run_immediately: Make the first call right away instead of after
            one interval.

    Returns:
        Subscription that stops the task when cancelled.
    """
    if interval <= 0:
        raise ValueError("interval must be positive")

    subscription = Subscription(name)
    stop = subscription._stop

    def _tick() -> None:
        try:
            fn()
        except Exception:
            logger.exception("%s tick failed", name)

    def _loop() -> None:
        if run_immediately and not stop.is_set():
            _tick()
        while not stop.wait(interval):
            _tick()

    thread = threading.Thread(target=_loop, name=name, daemon=True)
    subscription._thread = thread
    thread.start()
    return subscription
