"""Tests for the FastAPI REST endpoints."""

from conftest import FakeReader, ManualExecutor, RecordingSleep
from fastapi.testclient import TestClient

from src.api.app import NO_PENDING_MESSAGE, create_app
from src.errors import ExtractionError
from src.extraction.worker import ExtractionWorker
from src.submissions.queue import SubmissionQueue
from src.utils.config import AppConfig, HandoffConfig, WorkerConfig


def _post(client: TestClient, image: str | None, target: str | None = None) -> dict:
    response = client.post(
        "/submissions", json={"capturedImage": image, "targetFormId": target}
    )
    return response.json()


class TestHealthEndpoint:
    """Tests for GET /health."""

    def test_health_check(self, client: TestClient) -> None:
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["version"] == "1.0.0"
        assert data["queueSize"] == 0
        assert isinstance(data["tesseractAvailable"], bool)


class TestCreateSubmission:
    """Tests for POST /submissions."""

    def test_accepts_image(
        self, client: TestClient, queue: SubmissionQueue, executor: ManualExecutor, sample_image: str
    ) -> None:
        data = _post(client, sample_image, "form_1")
        assert data["success"] is True
        assert data["submissionId"].startswith("sub_")

        stored = queue.get(data["submissionId"])
        assert stored.status == "pending"
        assert stored.target_form_id == "form_1"
        assert len(executor.jobs) == 1

    def test_target_is_optional(self, client: TestClient, queue: SubmissionQueue, sample_image: str) -> None:
        data = _post(client, sample_image)
        assert queue.get(data["submissionId"]).target_form_id is None

    def test_missing_image_rejected(
        self, client: TestClient, queue: SubmissionQueue, executor: ManualExecutor
    ) -> None:
        for body in ({}, {"capturedImage": ""}, {"capturedImage": None, "targetFormId": "form_1"}):
            response = client.post("/submissions", json=body)
            assert response.status_code == 400
            assert response.json()["detail"] == "No image provided"
        assert len(queue) == 0
        assert executor.jobs == []


class TestLookupSubmission:
    """Tests for DELETE /submissions."""

    def test_empty_queue(self, client: TestClient) -> None:
        response = client.delete("/submissions", params={"targetFormId": "form_1"})
        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["message"] == NO_PENDING_MESSAGE
        assert "submission" not in data

    def test_unknown_id_is_404(self, client: TestClient) -> None:
        response = client.delete("/submissions", params={"id": "sub_missing"})
        assert response.status_code == 404
        assert response.json() == {"success": False, "message": "Submission sub_missing not found"}

    def test_pending_to_completed(
        self, client: TestClient, executor: ManualExecutor, sample_image: str
    ) -> None:
        sid = _post(client, sample_image, "form_1")["submissionId"]

        pending = client.delete("/submissions", params={"targetFormId": "form_1"}).json()
        assert pending["submission"]["id"] == sid
        assert pending["submission"]["status"] == "pending"
        assert pending["removed"] is False

        executor.run_all()

        done = client.delete("/submissions", params={"targetFormId": "form_1"}).json()
        submission = done["submission"]
        assert submission["status"] == "completed"
        assert submission["targetFormId"] == "form_1"
        assert submission["capturedImage"] == sample_image
        assert submission["extractedFields"]["signature_date"] == "2024-03-21T12:00:00"
        assert done["removed"] is False

        again = client.delete("/submissions", params={"targetFormId": "form_1"}).json()
        assert again["submission"] == submission

    def test_remove_completed(
        self, client: TestClient, queue: SubmissionQueue, executor: ManualExecutor, sample_image: str
    ) -> None:
        sid = _post(client, sample_image, "form_1")["submissionId"]

        early = client.delete(
            "/submissions", params={"id": sid, "removeCompleted": "true"}
        ).json()
        assert early["removed"] is False
        assert queue.get(sid) is not None

        executor.run_all()
        final = client.delete(
            "/submissions", params={"id": sid, "removeCompleted": "true"}
        ).json()
        assert final["removed"] is True
        assert final["submission"]["status"] == "completed"
        assert queue.get(sid) is None

        gone = client.delete("/submissions", params={"id": sid, "removeCompleted": "true"})
        assert gone.status_code == 404

    def test_failed_extraction_is_reported(
        self, queue: SubmissionQueue, executor: ManualExecutor, sleeper: RecordingSleep, sample_image: str
    ) -> None:
        worker = ExtractionWorker(
            queue,
            FakeReader(ExtractionError("unreadable")),
            WorkerConfig(),
            executor=executor,
            sleep=sleeper,
        )
        client = TestClient(create_app(AppConfig(), queue=queue, worker=worker))
        _post(client, sample_image, "form_1")
        executor.run_all()

        data = client.delete("/submissions", params={"targetFormId": "form_1"}).json()
        assert data["submission"]["status"] == "error"
        assert "unreadable" in data["submission"]["error"]

    def test_untargeted_fallback(self, client: TestClient, sample_image: str) -> None:
        sid = _post(client, sample_image)["submissionId"]
        data = client.delete("/submissions", params={"targetFormId": "form_other"}).json()
        assert data["submission"]["id"] == sid


class TestListSubmissions:
    """Tests for GET /submissions."""

    def test_lists_in_arrival_order(self, client: TestClient, sample_image: str) -> None:
        first = _post(client, sample_image, "form_1")["submissionId"]
        second = _post(client, sample_image, "form_2")["submissionId"]

        data = client.get("/submissions").json()
        assert [s["id"] for s in data["submissions"]] == [first, second]


class TestHandoffEndpoints:
    """Tests for handoff link, QR code and capture page."""

    def test_handoff_link(self, client: TestClient) -> None:
        data = client.get("/handoff/form_1").json()
        assert data == {"formId": "form_1", "url": "https://testserver/snap?formId=form_1"}

    def test_loopback_replaced_with_public_hostname(
        self, queue: SubmissionQueue, worker: ExtractionWorker
    ) -> None:
        config = AppConfig(
            handoff=HandoffConfig(scheme="http", public_hostname="192.168.1.20:8000")
        )
        client = TestClient(
            create_app(config, queue=queue, worker=worker), base_url="http://localhost:8000"
        )
        data = client.get("/handoff/form_1").json()
        assert data["url"] == "http://192.168.1.20:8000/snap?formId=form_1"

    def test_qr_code(self, client: TestClient) -> None:
        response = client.get("/handoff/form_1/qr.png")
        assert response.status_code == 200
        assert response.headers["content-type"] == "image/png"
        assert response.content.startswith(b"\x89PNG")

    def test_capture_page_seeds_form_id(self, client: TestClient) -> None:
        response = client.get("/snap", params={"formId": "form_1"})
        assert response.status_code == 200
        assert "text/html" in response.headers["content-type"]
        assert 'const targetFormId = "form_1";' in response.text

    def test_capture_page_without_form_id(self, client: TestClient) -> None:
        assert "const targetFormId = null;" in client.get("/snap").text

    def test_capture_page_escapes_form_id(self, client: TestClient) -> None:
        page = client.get("/snap", params={"formId": "</script><script>alert(1)"}).text
        assert "<script>alert(1)" not in page
        assert "\\u003c/script\\u003e" in page
