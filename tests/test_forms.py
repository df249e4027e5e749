"""Tests for client storage and form sessions."""

import json
from datetime import date
from pathlib import Path

import pytest

from src.client.forms import FormSessionStore, ProcessingStep, ServiceRequest
from src.client.storage import (
    FORMS_KEY,
    LAST_SUBMISSION_KEY,
    PENDING_FORM_KEY,
    TARGET_FORM_KEY,
    LocalStorage,
)


@pytest.fixture
def storage(tmp_path: Path) -> LocalStorage:
    return LocalStorage(tmp_path / "state.json")


@pytest.fixture
def forms(storage: LocalStorage) -> FormSessionStore:
    return FormSessionStore(storage)


class TestLocalStorage:
    """Tests for the JSON-file key/value store."""

    def test_memory_only(self) -> None:
        storage = LocalStorage()
        storage.set("a", 1)
        assert storage.get("a") == 1
        assert "a" in storage
        storage.remove("a")
        assert storage.get("a", "missing") == "missing"

    def test_persists_across_instances(self, tmp_path: Path) -> None:
        path = tmp_path / "nested" / "state.json"
        LocalStorage(path).set(PENDING_FORM_KEY, "form_1")
        assert LocalStorage(path).get(PENDING_FORM_KEY) == "form_1"

    def test_remove_persists(self, tmp_path: Path) -> None:
        path = tmp_path / "state.json"
        storage = LocalStorage(path)
        storage.set(LAST_SUBMISSION_KEY, "sub_1")
        storage.remove(LAST_SUBMISSION_KEY)
        assert LAST_SUBMISSION_KEY not in LocalStorage(path)

    def test_unreadable_file_is_ignored(self, tmp_path: Path) -> None:
        path = tmp_path / "state.json"
        path.write_text("{not json")
        storage = LocalStorage(path)
        assert storage.get(FORMS_KEY) is None
        storage.set("a", 1)
        assert json.loads(path.read_text()) == {"a": 1}


class TestFormLifecycle:
    """Tests for creating, saving and deleting forms."""

    def test_create_publishes_pending_id(self, forms: FormSessionStore, storage: LocalStorage) -> None:
        form = forms.create_new_form()
        assert form.id.startswith("form_")
        assert forms.current_form is form
        assert forms.has_unsaved_changes
        assert storage.get(PENDING_FORM_KEY) == form.id
        assert len(form.service_requests) == 1

    def test_create_clears_previous_correlation(
        self, forms: FormSessionStore, storage: LocalStorage
    ) -> None:
        forms.create_new_form()
        storage.set(LAST_SUBMISSION_KEY, "sub_old")
        storage.set(TARGET_FORM_KEY, "form_old")
        forms.create_new_form()
        assert LAST_SUBMISSION_KEY not in storage
        assert TARGET_FORM_KEY not in storage

    def test_save_stamps_signature_date(self, forms: FormSessionStore) -> None:
        forms.create_new_form()
        saved = forms.save_form()
        today = date.today().isoformat()
        assert saved.fields["signature_date"] == f"{today}T12:00:00"
        assert not forms.has_unsaved_changes
        assert forms.current_form is not None

    def test_save_keeps_existing_signature_date(self, forms: FormSessionStore) -> None:
        forms.create_new_form()
        forms.update_form({"signature_date": "2024-03-21T12:00:00"})
        assert forms.save_form().fields["signature_date"] == "2024-03-21T12:00:00"

    def test_resave_replaces_in_place(self, forms: FormSessionStore) -> None:
        first = forms.create_new_form()
        forms.save_form()
        second = forms.create_new_form()
        forms.save_form()
        forms.set_current_form(first.id)
        forms.update_form({"customer_name": "Ana"})
        forms.save_form()

        assert [f.id for f in forms.forms] == [second.id, first.id]
        assert forms.forms[1].fields["customer_name"] == "Ana"

    def test_saved_forms_reload(self, forms: FormSessionStore, storage: LocalStorage) -> None:
        forms.create_new_form()
        forms.update_form({"email": "ana@example.com"})
        saved = forms.save_form()

        reloaded = FormSessionStore(storage)
        assert reloaded.forms[0].id == saved.id
        assert reloaded.forms[0].fields["email"] == "ana@example.com"

    def test_delete_current(self, forms: FormSessionStore, storage: LocalStorage) -> None:
        form = forms.create_new_form()
        forms.save_form()
        forms.delete_form(form.id)
        assert forms.forms == []
        assert forms.current_form is None
        assert storage.get(FORMS_KEY) == []

    def test_set_current_unknown(self, forms: FormSessionStore) -> None:
        assert forms.set_current_form("form_missing") is None

    def test_resume_pending_form(self, storage: LocalStorage) -> None:
        storage.set(PENDING_FORM_KEY, "form_restart")
        forms = FormSessionStore(storage)
        assert forms.resume_pending_form().id == "form_restart"

    def test_resume_without_pending(self, forms: FormSessionStore) -> None:
        assert forms.resume_pending_form() is None


class TestFormEditing:
    """Tests for field edits and service request lines."""

    def test_update_fields_and_image(self, forms: FormSessionStore) -> None:
        forms.create_new_form()
        forms.update_form({"mileage": 42000, "captured_image": "data:x"})
        assert forms.current_form.fields["mileage"] == "42000"
        assert forms.current_form.captured_image == "data:x"

    def test_none_clears_field(self, forms: FormSessionStore) -> None:
        forms.create_new_form()
        forms.update_form({"email": "a@b.co"})
        forms.update_form({"email": None})
        assert "email" not in forms.current_form.fields

    def test_update_without_form_is_noop(self, forms: FormSessionStore) -> None:
        forms.update_form({"email": "a@b.co"})
        assert forms.current_form is None

    def test_service_requests_keep_one_line(self, forms: FormSessionStore) -> None:
        forms.create_new_form()
        forms.remove_service_request(0)
        assert len(forms.current_form.service_requests) == 1

        forms.add_service_request("Tires", "Rotate")
        forms.remove_service_request(0)
        assert forms.current_form.service_requests == [ServiceRequest(area="Tires", description="Rotate")]

        forms.remove_service_request(5)
        assert len(forms.current_form.service_requests) == 1

    def test_replacing_service_requests(self, forms: FormSessionStore) -> None:
        forms.create_new_form()
        forms.update_form({"service_requests": [{"area": "Brakes", "description": "Squeal"}]})
        assert forms.current_form.service_requests[0].area == "Brakes"
        forms.update_form({"service_requests": []})
        assert forms.current_form.service_requests == [ServiceRequest()]


class TestReceiveSubmission:
    """Tests for merging cross-device data."""

    def test_final_merge(self, forms: FormSessionStore) -> None:
        forms.create_new_form()
        forms.update_form({"customer_name": "Typed By Hand"})
        forms.set_waiting_for_photo(True)
        forms.set_processing(True, ProcessingStep.EXTRACTING)

        forms.receive_submission({"email": "ana@example.com"})

        form = forms.current_form
        assert form.fields == {"customer_name": "Typed By Hand", "email": "ana@example.com"}
        assert not forms.is_processing
        assert not forms.is_waiting_for_photo
        assert forms.processing_step == ProcessingStep.COMPLETE

    def test_partial_merge_keeps_processing(self, forms: FormSessionStore) -> None:
        forms.create_new_form()
        forms.set_processing(True, ProcessingStep.ANALYZING)

        forms.receive_submission({"captured_image": "data:x"}, keep_processing=True)

        assert forms.current_form.captured_image == "data:x"
        assert forms.is_processing
        assert forms.processing_step == ProcessingStep.ANALYZING

    def test_without_current_form(self, forms: FormSessionStore) -> None:
        forms.receive_submission({"email": "a@b.co"})
        assert forms.current_form is None
