"""Submission data model and its forward-only status state machine."""

from datetime import datetime, timezone
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from src.errors import InvalidTransitionError


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SubmissionStatus(StrEnum):
    """Processing status of a cross-device submission."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (SubmissionStatus.COMPLETED, SubmissionStatus.ERROR)


# Terminal states are sinks.
_TRANSITIONS: dict[SubmissionStatus, frozenset[SubmissionStatus]] = {
    SubmissionStatus.PENDING: frozenset(
        {SubmissionStatus.PROCESSING, SubmissionStatus.ERROR}
    ),
    SubmissionStatus.PROCESSING: frozenset(
        {SubmissionStatus.COMPLETED, SubmissionStatus.ERROR}
    ),
    SubmissionStatus.COMPLETED: frozenset(),
    SubmissionStatus.ERROR: frozenset(),
}


class Submission(BaseModel):
    """One image handoff attempt and its processing result.

    Serialized with camelCase keys so the capture page and the desktop
    poller share one wire format.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    target_form_id: str | None = None
    status: SubmissionStatus = SubmissionStatus.PENDING
    captured_image: str | None = None
    extracted_fields: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None
    timestamp: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def can_advance(self, status: SubmissionStatus) -> bool:
        return status in _TRANSITIONS[self.status]

    def advance(self, status: SubmissionStatus, **changes: Any) -> "Submission":
        """Return a copy moved to ``status`` with ``changes`` applied.

        Args:
            status: Target status.
            **changes: Other field values to set on the copy.

        Returns:
            Updated submission. The original instance is left untouched.

        Raises:
            InvalidTransitionError: If ``status`` is not reachable from the
                current status.
        """
        if not self.can_advance(status):
            raise InvalidTransitionError(
                f"Submission {self.id} cannot move from {self.status} to {status}"
            )
        return self.model_copy(
            update={"status": status, "updated_at": _utcnow(), **changes}
        )
