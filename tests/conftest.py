"""Shared test fixtures for the intake handoff test suite."""

import json
from concurrent.futures import Executor, Future
from pathlib import Path

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from src.api.app import create_app
from src.extraction.worker import ExtractionWorker
from src.submissions.queue import SubmissionQueue
from src.utils.config import AppConfig, WorkerConfig

SAMPLE_IMAGE = "data:image/png;base64,aGVsbG8gd29ybGQ="

SAMPLE_OUTPUT = json.dumps(
    {
        "Customer Name": "Ana Lima",
        "email": "ana@example.com",
        "vehicleMake": "Toyota",
        "Date": "03/21/2024",
        "serviceRequests": [{"area": "Brakes", "description": "Squeal when stopping"}],
    }
)


class ManualExecutor(Executor):
    """Executor that queues work until :meth:`run_all` is called."""

    def __init__(self) -> None:
        self.jobs: list[tuple[Future, object, tuple, dict]] = []

    def submit(self, fn, /, *args, **kwargs) -> Future:  # type: ignore[override]
        future: Future = Future()
        self.jobs.append((future, fn, args, kwargs))
        return future

    def run_all(self) -> None:
        jobs, self.jobs = self.jobs, []
        for future, fn, args, kwargs in jobs:
            try:
                future.set_result(fn(*args, **kwargs))
            except Exception as exc:
                future.set_exception(exc)


class FakeReader:
    """Form reader returning scripted outputs or raising scripted errors."""

    def __init__(self, *outcomes: str | Exception) -> None:
        self.outcomes = list(outcomes) or [SAMPLE_OUTPUT]
        self.calls: list[tuple[bytes, str]] = []

    def read(self, image: bytes, media_type: str) -> str:
        self.calls.append((image, media_type))
        outcome = self.outcomes[min(len(self.calls), len(self.outcomes)) - 1]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class RecordingSleep:
    """Stand-in for ``time.sleep`` that records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)

    @property
    def total(self) -> float:
        return sum(self.delays)


@pytest.fixture
def sample_image() -> str:
    """Return a small base64 data URL payload."""
    return SAMPLE_IMAGE


@pytest.fixture
def sample_output() -> str:
    """Return collaborator output as a vision model would phrase it."""
    return SAMPLE_OUTPUT


@pytest.fixture
def make_reader() -> type[FakeReader]:
    """Return the scripted reader class for tests that need custom outcomes."""
    return FakeReader


@pytest.fixture
def queue() -> SubmissionQueue:
    """Create an empty in-process submission queue."""
    return SubmissionQueue()


@pytest.fixture
def executor() -> ManualExecutor:
    return ManualExecutor()


@pytest.fixture
def sleeper() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def reader() -> FakeReader:
    return FakeReader()


@pytest.fixture
def worker(
    queue: SubmissionQueue,
    reader: FakeReader,
    executor: ManualExecutor,
    sleeper: RecordingSleep,
) -> ExtractionWorker:
    """Create a worker whose jobs only run when the executor is drained."""
    return ExtractionWorker(
        queue, reader, WorkerConfig(), executor=executor, sleep=sleeper
    )


@pytest.fixture
def api(queue: SubmissionQueue, worker: ExtractionWorker) -> FastAPI:
    return create_app(AppConfig(), queue=queue, worker=worker)


@pytest.fixture
def client(api: FastAPI) -> TestClient:
    """Create a FastAPI test client."""
    return TestClient(api)


@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return Path(__file__).parent.parent
