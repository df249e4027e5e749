"""Command-line interface for the intake handoff service.

Provides subcommands to run the API server, start a form session and
print its handoff link, act as the capture device, and watch a form
session until its photo has been processed.
"""

import argparse
import json
import mimetypes
import sys
from pathlib import Path

import httpx
import uvicorn

from src.api.app import create_app
from src.client.forms import FormSessionStore
from src.client.poller import ReconciliationPoller
from src.client.storage import (
    LAST_SUBMISSION_KEY,
    PENDING_FORM_KEY,
    TARGET_FORM_KEY,
    LocalStorage,
)
from src.client.transport import SubmissionsClient
from src.errors import ExtractionError
from src.extraction.parsing import encode_data_url
from src.handoff.encoder import build_handoff_url, render_qr_png
from src.submissions.models import SubmissionStatus
from src.utils.config import AppConfig, load_config
from src.utils.logger import get_logger, setup_logging

logger = get_logger(__name__)

_PREVIEW_CHARS = 48


def _storage(config: AppConfig) -> LocalStorage:
    return LocalStorage(Path(config.poller.state_path))


def serve(config: AppConfig, host: str | None = None, port: int | None = None) -> None:
    """Run the API server."""
    if config.handoff.public_hostname is None:
        logger.warning(
            "handoff.public_hostname is not set; links built for localhost "
            "will not open on another device"
        )
    uvicorn.run(
        create_app(config),
        host=host or config.server.host,
        port=port or config.server.port,
    )


def new_form(
    config: AppConfig, request_host: str, qr_path: Path | None = None
) -> dict[str, str]:
    """Start a form session and produce its handoff link.

    Args:
        config: Application configuration.
        request_host: Host the desktop uses to reach the server.
        qr_path: Where to write the QR code PNG, if wanted.

    Returns:
        Dictionary with the form id and handoff URL.
    """
    storage = _storage(config)
    forms = FormSessionStore(storage)
    form = forms.create_new_form()
    url = build_handoff_url(form.id, request_host, config.handoff)

    if qr_path is not None:
        qr_path.parent.mkdir(parents=True, exist_ok=True)
        qr_path.write_bytes(
            render_qr_png(
                url,
                box_size=config.handoff.qr_box_size,
                border=config.handoff.qr_border,
            )
        )
        logger.info("QR code written to %s", qr_path)

    return {"formId": form.id, "url": url}


def submit_image(
    config: AppConfig,
    image_path: Path,
    form_id: str | None = None,
    client: SubmissionsClient | None = None,
) -> str:
    """Upload a photo as the capture device would.

    Args:
        config: Application configuration.
        image_path: Photo of the handwritten form.
        form_id: Target form session. Defaults to the pending form, then
            the last form a photo was sent to.
        client: API client override.

    Returns:
        Id of the created submission.
    """
    storage = _storage(config)
    client = client or SubmissionsClient.from_base_url(config.poller.base_url)
    target = form_id or storage.get(PENDING_FORM_KEY) or storage.get(TARGET_FORM_KEY)

    media_type = mimetypes.guess_type(image_path.name)[0] or "image/jpeg"
    data_url = encode_data_url(image_path.read_bytes(), media_type)

    submission_id = client.submit(data_url, target)
    if target:
        storage.set(TARGET_FORM_KEY, target)
    storage.set(LAST_SUBMISSION_KEY, submission_id)
    return submission_id


def watch(
    config: AppConfig,
    timeout: float | None = None,
    save: bool = True,
    client: SubmissionsClient | None = None,
) -> dict[str, object] | None:
    """Poll for the pending form's submission until it finishes.

    Args:
        config: Application configuration.
        timeout: Give up after this many seconds.
        save: Save the form once the submission has been merged.
        client: API client override.

    Returns:
        The merged form (without the image payload), or ``None`` on timeout.

    Raises:
        ExtractionError: If the submission ended in error. The photo is
            merged but the form is neither saved nor released, so the
            photo can be retaken for the same form.
    """
    storage = _storage(config)
    forms = FormSessionStore(storage)
    if forms.resume_pending_form() is None:
        raise ValueError("No pending form; run 'new-form' first")

    client = client or SubmissionsClient.from_base_url(config.poller.base_url)
    poller = ReconciliationPoller(
        client,
        forms,
        storage,
        interval_s=config.poller.interval_s,
        remove_completed=config.poller.remove_completed,
    )

    with poller.start():
        finished = poller.wait(timeout)
    if not finished:
        poller.stop()
        return None

    result = poller.result
    if result is not None and result.status == SubmissionStatus.ERROR:
        raise ExtractionError(f"Submission {result.id} failed: {result.error}")

    if save:
        forms.save_form()
    form = forms.current_form
    if form is None:
        return None
    return form.model_dump(mode="json", by_alias=True, exclude={"captured_image"})


def list_submissions(
    config: AppConfig, client: SubmissionsClient | None = None
) -> list[dict[str, object]]:
    """Return all queued submissions with image payloads abbreviated."""
    client = client or SubmissionsClient.from_base_url(config.poller.base_url)
    rows: list[dict[str, object]] = []
    for submission in client.list_all():
        row = submission.model_dump(mode="json", by_alias=True)
        image = row.get("capturedImage")
        if image:
            row["capturedImage"] = image[:_PREVIEW_CHARS] + "..."
        rows.append(row)
    return rows


def main(argv: list[str] | None = None) -> None:
    """Parse CLI arguments and dispatch to the appropriate command.

    Args:
        argv: Command-line arguments (defaults to sys.argv).
    """
    parser = argparse.ArgumentParser(
        description="Cross-device intake form handoff",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "-c", "--config", type=Path, default=None, help="YAML configuration file"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    serve_parser = subparsers.add_parser("serve", help="Run the API server")
    serve_parser.add_argument("--host", default=None, help="Bind address")
    serve_parser.add_argument("--port", type=int, default=None, help="Bind port")

    form_parser = subparsers.add_parser(
        "new-form", help="Start a form session and print its handoff link"
    )
    form_parser.add_argument(
        "--host",
        default=None,
        help="Host the desktop uses to reach the server (default: localhost:PORT)",
    )
    form_parser.add_argument("--qr", type=Path, help="Write the QR code PNG here")

    submit_parser = subparsers.add_parser(
        "submit", help="Upload a form photo as the capture device"
    )
    submit_parser.add_argument("image", type=Path, help="Photo of the form")
    submit_parser.add_argument("--form-id", default=None, help="Target form session")

    watch_parser = subparsers.add_parser(
        "watch", help="Wait for the pending form's photo to be processed"
    )
    watch_parser.add_argument(
        "--timeout", type=float, default=None, help="Give up after N seconds"
    )
    watch_parser.add_argument(
        "--no-save", action="store_true", help="Do not save the merged form"
    )

    list_parser = subparsers.add_parser("list", help="List queued submissions")

    for sub in (submit_parser, watch_parser, list_parser):
        sub.add_argument(
            "--base-url", default=None, help="API base URL (overrides config)"
        )

    args = parser.parse_args(argv)

    config = load_config(args.config)
    if getattr(args, "base_url", None):
        config.poller.base_url = args.base_url
    setup_logging(config.log_level)

    try:
        if args.command == "serve":
            serve(config, args.host, args.port)
        elif args.command == "new-form":
            host = args.host or f"localhost:{config.server.port}"
            print(json.dumps(new_form(config, host, args.qr), indent=2))
        elif args.command == "submit":
            if not args.image.exists():
                print(f"Error: {args.image} does not exist", file=sys.stderr)
                sys.exit(1)
            print(submit_image(config, args.image, args.form_id))
        elif args.command == "watch":
            result = watch(config, args.timeout, save=not args.no_save)
            if result is None:
                print("Timed out waiting for a submission", file=sys.stderr)
                sys.exit(2)
            print(json.dumps(result, indent=2))
        elif args.command == "list":
            print(json.dumps(list_submissions(config), indent=2))
        else:
            parser.print_help()
            sys.exit(0)
    except ExtractionError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(3)
    except (httpx.HTTPError, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
