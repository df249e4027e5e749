"""Client-side form sessions and the saved-forms collection.

One form session is "current" at a time. It is edited field by field,
receives merged data from cross-device submissions, and can be saved
into (or deleted from) the persisted collection.
"""

import threading
from datetime import date, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from src.utils.ids import new_form_id
from src.utils.logger import get_logger

from .storage import (
    FORMS_KEY,
    LAST_SUBMISSION_KEY,
    PENDING_FORM_KEY,
    TARGET_FORM_KEY,
    LocalStorage,
)

logger = get_logger(__name__)

SIGNATURE_DATE = "signature_date"


class ProcessingStep(StrEnum):
    """UI-observable phase of an incoming cross-device submission."""

    IDLE = "idle"
    ANALYZING = "analyzing"
    EXTRACTING = "extracting"
    COMPLETE = "complete"


class ServiceRequest(BaseModel):
    """A numbered line on the form describing requested work."""

    area: str = ""
    description: str = ""


class FormSession(BaseModel):
    """One intake form, in progress or saved."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    created_at: datetime = Field(default_factory=datetime.now)
    fields: dict[str, str] = Field(default_factory=dict)
    service_requests: list[ServiceRequest] = Field(
        default_factory=lambda: [ServiceRequest()]
    )
    captured_image: str | None = None


def _today_at_noon() -> str:
    today = date.today()
    return datetime(today.year, today.month, today.day, 12).isoformat()


class FormSessionStore:
    """State container for the current form and the saved collection.

    Args:
        storage: Client storage used to persist saved forms and the
            pending form id.
    """

    def __init__(self, storage: LocalStorage) -> None:
        self.storage = storage
        self._lock = threading.RLock()
        self.current_form: FormSession | None = None
        self.has_unsaved_changes = False
        self.is_waiting_for_photo = False
        self.is_processing = False
        self.processing_step = ProcessingStep.IDLE
        self.forms: list[FormSession] = [
            FormSession.model_validate(raw) for raw in storage.get(FORMS_KEY, [])
        ]

    def create_new_form(self) -> FormSession:
        """Start a fresh form session and publish its id for handoff."""
        with self._lock:
            self.clear_current_form()
            form = FormSession(id=new_form_id())
            self.current_form = form
            self.has_unsaved_changes = True
            self.storage.set(PENDING_FORM_KEY, form.id)
            logger.info("Created form session %s", form.id)
            return form

    def resume_pending_form(self) -> FormSession | None:
        """Reopen the form whose id was published for handoff, after a restart.

        Returns:
            The current form, or ``None`` if no form id is pending.
        """
        with self._lock:
            pending = self.storage.get(PENDING_FORM_KEY)
            if not pending:
                return None
            if self.current_form is None or self.current_form.id != pending:
                saved = next((f for f in self.forms if f.id == pending), None)
                self.current_form = (
                    saved.model_copy(deep=True) if saved else FormSession(id=pending)
                )
                self.has_unsaved_changes = saved is None
            return self.current_form

    def update_form(self, data: dict[str, Any]) -> None:
        """Apply direct edits to the current form.

        ``captured_image`` and ``service_requests`` update those
        attributes; every other key is a form field.
        """
        with self._lock:
            if self.current_form is None:
                return
            self.current_form = self._merged(self.current_form, data)
            self.has_unsaved_changes = True

    def add_service_request(self, area: str = "", description: str = "") -> None:
        with self._lock:
            if self.current_form is None:
                return
            self.current_form.service_requests.append(
                ServiceRequest(area=area, description=description)
            )
            self.has_unsaved_changes = True

    def remove_service_request(self, index: int) -> None:
        """Remove a service request, always keeping at least one line."""
        with self._lock:
            if self.current_form is None:
                return
            requests = self.current_form.service_requests
            if len(requests) <= 1 or not 0 <= index < len(requests):
                return
            del requests[index]
            self.has_unsaved_changes = True

    def save_form(self) -> FormSession | None:
        """Persist the current form, replacing any earlier save with its id.

        The current form stays current after saving.
        """
        with self._lock:
            if self.current_form is None:
                return None
            if not self.current_form.fields.get(SIGNATURE_DATE):
                self.current_form.fields[SIGNATURE_DATE] = _today_at_noon()

            saved = self.current_form.model_copy(deep=True)
            for i, form in enumerate(self.forms):
                if form.id == saved.id:
                    self.forms[i] = saved
                    break
            else:
                self.forms.insert(0, saved)

            self._persist_forms()
            self.has_unsaved_changes = False
            logger.info("Saved form %s", saved.id)
            return saved

    def delete_form(self, form_id: str) -> None:
        with self._lock:
            self.forms = [f for f in self.forms if f.id != form_id]
            if self.current_form is not None and self.current_form.id == form_id:
                self.current_form = None
            self._persist_forms()

    def set_current_form(self, form_id: str) -> FormSession | None:
        """Open a saved form for editing."""
        with self._lock:
            form = next((f for f in self.forms if f.id == form_id), None)
            if form is not None:
                self.current_form = form.model_copy(deep=True)
                self.has_unsaved_changes = False
            return self.current_form if form is not None else None

    def clear_current_form(self) -> None:
        """Drop the current form and any cross-device correlation state."""
        with self._lock:
            self.current_form = None
            self.has_unsaved_changes = False
            self.storage.remove(PENDING_FORM_KEY)
            self.storage.remove(LAST_SUBMISSION_KEY)
            self.storage.remove(TARGET_FORM_KEY)

    def set_waiting_for_photo(self, waiting: bool) -> None:
        with self._lock:
            self.is_waiting_for_photo = waiting

    def set_processing(
        self, processing: bool, step: ProcessingStep = ProcessingStep.IDLE
    ) -> None:
        with self._lock:
            self.is_processing = processing
            self.processing_step = step

    def receive_submission(self, data: dict[str, Any], keep_processing: bool = False) -> None:
        """Merge data from a cross-device submission into the current form.

        Args:
            data: Extracted fields and/or ``captured_image``.
            keep_processing: Leave the processing phase untouched because
                more data is still expected.
        """
        with self._lock:
            if self.current_form is None:
                logger.warning("Dropping submission data: no current form")
                return
            self.current_form = self._merged(self.current_form, data)
            self.has_unsaved_changes = True
            self.is_processing = keep_processing
            if not keep_processing:
                self.processing_step = ProcessingStep.COMPLETE
            self.is_waiting_for_photo = keep_processing
            logger.info(
                "Merged %d submitted values into form %s",
                len(data),
                self.current_form.id,
            )

    @staticmethod
    def _merged(form: FormSession, data: dict[str, Any]) -> FormSession:
        updated = form.model_copy(deep=True)
        for key, value in data.items():
            if key == "captured_image":
                updated.captured_image = value
            elif key == "service_requests":
                requests = [ServiceRequest.model_validate(r) for r in value or []]
                updated.service_requests = requests or [ServiceRequest()]
            elif value is None:
                updated.fields.pop(key, None)
            else:
                updated.fields[key] = str(value)
        return updated

    def _persist_forms(self) -> None:
        self.storage.set(
            FORMS_KEY,
            [f.model_dump(mode="json", by_alias=True) for f in self.forms],
        )
