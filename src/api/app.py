"""FastAPI application for the cross-device intake handoff service.

Provides the submissions resource shared by the capture device, the
extraction worker and the desktop poller, plus handoff link/QR
endpoints, the capture entry page and a health check.
"""

import json
import shutil
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from string import Template
from typing import Annotated

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse, Response

from src.errors import SubmissionNotFoundError
from src.extraction.form_reader import TesseractFormReader
from src.extraction.worker import ExtractionWorker
from src.handoff.encoder import build_handoff_url, render_qr_png
from src.submissions.queue import SubmissionQueue
from src.utils.config import AppConfig, load_config
from src.utils.logger import get_logger

from .schemas import (
    HandoffResponse,
    HealthResponse,
    SubmissionCreatedResponse,
    SubmissionCreateRequest,
    SubmissionListResponse,
    SubmissionLookupResponse,
)

logger = get_logger(__name__)

VERSION = "1.0.0"
NO_PENDING_MESSAGE = "No pending submissions"

_CAPTURE_PAGE = Template(
    """<!doctype html>
<html>
<head>
<meta charset="utf-8">
<meta name="viewport" content="width=device-width, initial-scale=1">
<title>Snap intake form</title>
</head>
<body>
<h1>Take a photo of the intake form</h1>
<input id="photo" type="file" accept="image/*" capture="environment">
<p id="status"></p>
<script>
const targetFormId = $target_form_id;
document.getElementById("photo").addEventListener("change", (event) => {
  const file = event.target.files[0];
  if (!file) return;
  const reader = new FileReader();
  reader.onload = async () => {
    const status = document.getElementById("status");
    status.textContent = "Uploading...";
    const response = await fetch("$submissions_path", {
      method: "POST",
      headers: {"Content-Type": "application/json"},
      body: JSON.stringify({capturedImage: reader.result, targetFormId}),
    });
    const result = await response.json();
    if (result.submissionId) {
      localStorage.setItem("lastSubmissionId", result.submissionId);
      status.textContent = "Photo sent. You can return to the other device.";
    } else {
      status.textContent = "Upload failed, please try again.";
    }
  };
  reader.readAsDataURL(file);
});
</script>
</body>
</html>
"""
)


def get_queue(request: Request) -> SubmissionQueue:
    return request.app.state.queue


def get_worker(request: Request) -> ExtractionWorker:
    return request.app.state.worker


def get_config(request: Request) -> AppConfig:
    return request.app.state.config


def create_app(
    config: AppConfig | None = None,
    queue: SubmissionQueue | None = None,
    worker: ExtractionWorker | None = None,
) -> FastAPI:
    """Build the API application and its shared components.

    Args:
        config: Application configuration. Loaded from YAML when omitted.
        queue: Submission queue. A fresh in-process queue when omitted.
        worker: Extraction worker. A Tesseract-backed worker on a thread
            pool when omitted.

    Returns:
        Configured FastAPI application.
    """
    config = config or load_config()
    queue = queue if queue is not None else SubmissionQueue()
    if worker is None:
        worker = ExtractionWorker(
            queue, TesseractFormReader(config.ocr), config.worker
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        logger.info("Shutting down extraction worker")
        worker.shutdown(wait_for_pending=False)

    app = FastAPI(
        title="Intake Handoff API",
        description="Hand off intake form photos between devices and merge OCR results",
        version=VERSION,
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.queue = queue
    app.state.worker = worker

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(SubmissionNotFoundError)
    async def _not_found(request: Request, exc: SubmissionNotFoundError) -> JSONResponse:
        return JSONResponse(
            status_code=404, content={"success": False, "message": str(exc)}
        )

    _register_routes(app)
    return app


def _register_routes(app: FastAPI) -> None:
    @app.get("/health", response_model=HealthResponse)
    async def health_check(
        queue: Annotated[SubmissionQueue, Depends(get_queue)],
        config: Annotated[AppConfig, Depends(get_config)],
    ) -> HealthResponse:
        """Return system health status."""
        return HealthResponse(
            status="healthy",
            version=VERSION,
            tesseract_available=(
                shutil.which(config.ocr.tesseract_cmd or "tesseract") is not None
            ),
            queue_size=len(queue),
        )

    @app.get("/submissions", response_model=SubmissionListResponse)
    async def list_submissions(
        queue: Annotated[SubmissionQueue, Depends(get_queue)],
    ) -> SubmissionListResponse:
        """Return every queued submission (debugging aid)."""
        return SubmissionListResponse(submissions=queue.all())

    @app.post("/submissions", response_model=SubmissionCreatedResponse)
    async def create_submission(
        body: SubmissionCreateRequest,
        queue: Annotated[SubmissionQueue, Depends(get_queue)],
        worker: Annotated[ExtractionWorker, Depends(get_worker)],
    ) -> SubmissionCreatedResponse:
        """Accept a captured image and start extraction in the background.

        Args:
            body: Data-URL image and the optional target form id.

        Returns:
            The new submission id. Extraction has not finished yet.
        """
        if not body.captured_image:
            raise HTTPException(status_code=400, detail="No image provided")

        submission = queue.enqueue(body.captured_image, body.target_form_id)
        worker.submit(submission.id)
        return SubmissionCreatedResponse(submission_id=submission.id)

    @app.delete(
        "/submissions",
        response_model=SubmissionLookupResponse,
        response_model_exclude_none=True,
    )
    async def lookup_submission(
        queue: Annotated[SubmissionQueue, Depends(get_queue)],
        submission_id: Annotated[str | None, Query(alias="id")] = None,
        target_form_id: Annotated[str | None, Query(alias="targetFormId")] = None,
        remove_completed: Annotated[bool, Query(alias="removeCompleted")] = False,
    ) -> SubmissionLookupResponse:
        """Look up a submission for a polling client.

        Finished submissions are deleted only when ``removeCompleted`` is set.

        Args:
            submission_id: Specific submission to return (404 if unknown).
            target_form_id: Form session whose submission is wanted.
            remove_completed: Delete the returned entry if it is terminal.

        Returns:
            The located submission, or a "no pending submissions" message.
        """
        result = queue.lookup(
            submission_id=submission_id,
            target_form_id=target_form_id,
            remove_completed=remove_completed,
        )
        if not result.found:
            return SubmissionLookupResponse(message=NO_PENDING_MESSAGE)
        return SubmissionLookupResponse(
            submission=result.submission, removed=result.removed
        )

    @app.get("/handoff/{form_id}", response_model=HandoffResponse)
    async def handoff_link(
        form_id: str,
        request: Request,
        config: Annotated[AppConfig, Depends(get_config)],
    ) -> HandoffResponse:
        """Return the capture URL a second device should open."""
        url = build_handoff_url(form_id, request.url.netloc, config.handoff)
        return HandoffResponse(form_id=form_id, url=url)

    @app.get("/handoff/{form_id}/qr.png")
    async def handoff_qr(
        form_id: str,
        request: Request,
        config: Annotated[AppConfig, Depends(get_config)],
    ) -> Response:
        """Return the capture URL rendered as a QR code."""
        url = build_handoff_url(form_id, request.url.netloc, config.handoff)
        png = render_qr_png(
            url, box_size=config.handoff.qr_box_size, border=config.handoff.qr_border
        )
        return Response(content=png, media_type="image/png")

    @app.get("/snap", response_class=HTMLResponse)
    async def capture_page(
        form_id: Annotated[str | None, Query(alias="formId")] = None,
    ) -> HTMLResponse:
        """Serve the capture page, seeding the upload's target form id."""
        target = (
            json.dumps(form_id)
            .replace("<", "\\u003c")
            .replace(">", "\\u003e")
            .replace("&", "\\u0026")
        )
        page = _CAPTURE_PAGE.substitute(
            target_form_id=target, submissions_path="/submissions"
        )
        return HTMLResponse(page)


app = create_app()
