"""HTTP client for the submissions resource."""

import httpx

from src.submissions.models import Submission
from src.utils.logger import get_logger

logger = get_logger(__name__)


class SubmissionsClient:
    """Thin wrapper over ``/submissions`` for capture devices and pollers.

    Args:
        http: Configured ``httpx.Client`` (any subclass, including
            FastAPI's ``TestClient``) whose base URL points at the API.
    """

    def __init__(self, http: httpx.Client) -> None:
        self.http = http

    @classmethod
    def from_base_url(cls, base_url: str, timeout: float = 10.0) -> "SubmissionsClient":
        return cls(httpx.Client(base_url=base_url, timeout=timeout))

    def submit(self, captured_image: str, target_form_id: str | None = None) -> str:
        """Post a captured image.

        Returns:
            Id of the created submission.

        Raises:
            httpx.HTTPStatusError: If the API rejects the upload.
        """
        body: dict[str, str] = {"capturedImage": captured_image}
        if target_form_id:
            body["targetFormId"] = target_form_id
        response = self.http.post("/submissions", json=body)
        response.raise_for_status()
        submission_id = response.json()["submissionId"]
        logger.info("Submitted image as %s", submission_id)
        return submission_id

    def lookup(
        self,
        submission_id: str | None = None,
        target_form_id: str | None = None,
        remove_completed: bool = False,
    ) -> Submission | None:
        """Look up a submission by id, by target form, or the oldest available.

        Returns:
            The submission, or ``None`` if the queue has nothing matching.

        Raises:
            httpx.HTTPError: On transport failures or unexpected statuses.
        """
        params: dict[str, str] = {}
        if submission_id:
            params["id"] = submission_id
        elif target_form_id:
            params["targetFormId"] = target_form_id
        if remove_completed:
            params["removeCompleted"] = "true"

        response = self.http.delete("/submissions", params=params)
        if response.status_code == 404:
            return None
        response.raise_for_status()

        raw = response.json().get("submission")
        return Submission.model_validate(raw) if raw else None

    def list_all(self) -> list[Submission]:
        response = self.http.get("/submissions")
        response.raise_for_status()
        return [Submission.model_validate(s) for s in response.json()["submissions"]]

    def close(self) -> None:
        self.http.close()
