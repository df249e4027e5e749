"""Domain exceptions for the intake handoff service."""


class HandoffError(Exception):
    """Base class for all handoff service errors."""


class SubmissionNotFoundError(HandoffError):
    """Raised when a submission id is not present in the queue."""

    def __init__(self, submission_id: str) -> None:
        super().__init__(f"Submission {submission_id} not found")
        self.submission_id = submission_id


class InvalidTransitionError(HandoffError):
    """Raised when a submission would move backwards or out of a terminal state."""


class InvalidImageError(HandoffError):
    """Raised when a captured image payload cannot be decoded."""


class ExtractionError(HandoffError):
    """Raised when a single extraction attempt fails."""


class MalformedOutputError(ExtractionError):
    """Raised when the OCR collaborator returns output that is not valid JSON."""
