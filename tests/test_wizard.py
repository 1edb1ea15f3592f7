"""Tests for the client-side wizard: navigation, persistence and the API session."""

import json

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport

from checkin import config
from checkin.main import app
from checkin.wizard.client import ApiError, CheckInClient, WizardSession, demographics_payload
from checkin.wizard.state import (
    COMPLETED_STEPS_KEY,
    CURRENT_STEP_KEY,
    FORM_DATA_KEY,
    PATIENT_ID_KEY,
    VERSION_KEY,
    IntakeWizard,
    Step,
    step_path,
)
from checkin.wizard.storage import JSONFileStorage, MemoryStorage

DEMOGRAPHICS = {
    "firstName": "John",
    "lastName": "Doe",
    "dateOfBirth": "1990-01-15",
    "address": "123 Main St",
    "city": "Springfield",
    "state": "IL",
    "zipCode": "62704",
    "phoneNumber": "555-123-4567",
    "email": "John@Example.com",
}
INSURANCE = {
    "provider": "Blue Cross",
    "policyNumber": "BC123456",
    "subscriberName": "John Doe",
}
CLINICAL = {
    "medicalHistory": "Hypertension",
    "allergies": "None known",
}


# --- Navigation ---


class TestNavigation:
    def test_starts_at_step_one(self):
        wizard = IntakeWizard(MemoryStorage())
        assert wizard.current_step is Step.DEMOGRAPHICS
        assert wizard.completed_steps == set()
        assert wizard.patient_id is None

    def test_can_navigate_requires_previous_step(self):
        wizard = IntakeWizard(MemoryStorage())
        assert wizard.can_navigate_to(1)
        assert not wizard.can_navigate_to(2)
        wizard.mark_step_completed(Step.DEMOGRAPHICS)
        assert wizard.can_navigate_to(2)
        assert not wizard.can_navigate_to(3)
        assert not wizard.can_navigate_to(5)

    def test_unreachable_step_redirects_to_first(self):
        wizard = IntakeWizard(MemoryStorage())
        wizard.advance()
        assert wizard.current_step is Step.INSURANCE
        assert wizard.navigate_to(Step.CONFIRMATION) is Step.DEMOGRAPHICS
        assert wizard.current_step is Step.DEMOGRAPHICS

    def test_back_navigation_keeps_progress(self):
        wizard = IntakeWizard(MemoryStorage())
        wizard.advance()
        wizard.advance()
        assert wizard.navigate_to(Step.INSURANCE) is Step.INSURANCE
        assert wizard.completed_steps == {Step.DEMOGRAPHICS, Step.INSURANCE}

    def test_advance_stops_at_confirmation(self):
        wizard = IntakeWizard(MemoryStorage())
        for _ in range(5):
            wizard.advance()
        assert wizard.current_step is Step.CONFIRMATION
        assert Step.CONFIRMATION in wizard.completed_steps

    def test_resolve_route(self):
        wizard = IntakeWizard(MemoryStorage())
        assert wizard.resolve_route("/clinical-forms") == "/demographics"
        assert wizard.resolve_route("/admin/submissions/3") == "/admin/submissions/3"
        wizard.advance()
        assert wizard.resolve_route("/insurance") == "/insurance"
        assert wizard.resolve_route("/somewhere") == "/insurance"

    def test_step_path(self):
        assert step_path(3) == "/clinical-forms"
        assert step_path(9) == "/"


# --- Persistence ---


class TestPersistence:
    def test_every_change_is_written(self):
        storage = MemoryStorage()
        wizard = IntakeWizard(storage)
        wizard.update_form_data(Step.DEMOGRAPHICS, firstName="Jane")
        wizard.advance()
        wizard.set_patient_id(7)

        assert storage.items[VERSION_KEY] == "1"
        assert storage.items[CURRENT_STEP_KEY] == "2"
        assert json.loads(storage.items[COMPLETED_STEPS_KEY]) == [1]
        assert json.loads(storage.items[FORM_DATA_KEY])["demographics"]["firstName"] == "Jane"
        assert storage.items[PATIENT_ID_KEY] == "7"

    def test_rehydrates_across_instances(self, tmp_path):
        path = tmp_path / "state.json"
        wizard = IntakeWizard(JSONFileStorage(path))
        wizard.update_form_data(Step.DEMOGRAPHICS, lastName="Doe")
        wizard.advance()
        wizard.set_patient_id(11)

        restored = IntakeWizard(JSONFileStorage(path))
        assert restored.current_step is Step.INSURANCE
        assert restored.completed_steps == {Step.DEMOGRAPHICS}
        assert restored.patient_id == 11
        assert restored.section(Step.DEMOGRAPHICS).lastName == "Doe"

    def test_version_mismatch_discards_state(self):
        storage = MemoryStorage({
            VERSION_KEY: "0",
            CURRENT_STEP_KEY: "3",
            COMPLETED_STEPS_KEY: "[1, 2]",
            PATIENT_ID_KEY: "5",
        })
        wizard = IntakeWizard(storage)
        assert wizard.current_step is Step.DEMOGRAPHICS
        assert wizard.patient_id is None
        assert storage.items == {}

    def test_corrupt_state_discarded(self):
        storage = MemoryStorage({
            VERSION_KEY: "1",
            FORM_DATA_KEY: "{not json",
            CURRENT_STEP_KEY: "2",
        })
        wizard = IntakeWizard(storage)
        assert wizard.current_step is Step.DEMOGRAPHICS
        assert storage.items == {}

    def test_file_storage_default_path(self, tmp_path, monkeypatch):
        monkeypatch.setattr(config, "WIZARD_STATE_PATH", str(tmp_path / "default.json"))
        storage = JSONFileStorage()
        storage.set_item(VERSION_KEY, "1")
        assert json.loads((tmp_path / "default.json").read_text()) == {VERSION_KEY: "1"}

    def test_unreadable_file_storage_starts_empty(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text("garbage", encoding="utf-8")
        assert JSONFileStorage(path).get_item(VERSION_KEY) is None

    def test_start_over_clears_everything(self):
        storage = MemoryStorage()
        wizard = IntakeWizard(storage)
        wizard.update_form_data(Step.DEMOGRAPHICS, firstName="Jane")
        wizard.advance()
        wizard.set_patient_id(3)

        wizard.start_over()
        assert wizard.current_step is Step.DEMOGRAPHICS
        assert wizard.completed_steps == set()
        assert wizard.patient_id is None
        assert wizard.section(Step.DEMOGRAPHICS).firstName == ""
        assert storage.items == {}


def test_demographics_payload_joins_address():
    """Address parts are joined into one line for the API."""
    payload = demographics_payload(DEMOGRAPHICS)
    assert payload["address"] == "123 Main St, Springfield, IL 62704"
    assert payload["first_name"] == "John"
    assert payload["phone"] == "555-123-4567"


def test_api_error_field_errors():
    """ApiError exposes details as a field to message map."""
    err = ApiError(400, {
        "error": "Validation failed",
        "code": "VALIDATION_ERROR",
        "details": [{"field": "email", "message": "Email format is invalid"}],
    })
    assert err.message == "Validation failed"
    assert err.code == "VALIDATION_ERROR"
    assert err.field_errors == {"email": "Email format is invalid"}


# --- Session against the API ---


@pytest_asyncio.fixture
async def api_client(db):
    async with CheckInClient(base_url="http://test/api", transport=ASGITransport(app=app)) as client:
        yield client


@pytest.fixture
def session(api_client):
    return WizardSession(IntakeWizard(MemoryStorage()), api_client)


async def test_full_check_in(session, api_client):
    """A patient can go through every step and complete."""
    outcome = await session.submit_demographics(**DEMOGRAPHICS)
    assert outcome.ok
    patient_id = session.wizard.patient_id
    assert patient_id == outcome.data["id"]
    assert session.wizard.current_step is Step.INSURANCE

    assert (await session.submit_insurance(**INSURANCE)).ok
    assert (await session.submit_clinical_forms(**CLINICAL)).ok
    assert session.wizard.current_step is Step.CONFIRMATION

    done = await session.complete()
    assert done.ok
    assert done.data["estimatedWaitTime"] == 20
    assert Step.CONFIRMATION in session.wizard.completed_steps

    detail = await api_client.get_submission(patient_id)
    assert detail["status"] == "completed"
    assert detail["patient"]["email"] == "john@example.com"
    assert detail["patient"]["address"] == "123 Main St, Springfield, IL 62704"


async def test_local_validation_blocks_request(session, api_client):
    """Local errors stop the request and are keyed by the form's own field names."""
    outcome = await session.submit_demographics(**{**DEMOGRAPHICS, "email": "bad", "firstName": ""})
    assert not outcome.ok
    assert set(outcome.field_errors) == {"firstName", "email"}
    assert session.wizard.current_step is Step.DEMOGRAPHICS
    _, total = await api_client.list_submissions()
    assert total == 0


async def test_server_field_errors_use_form_names():
    """Field errors the API reports come back under the form's field names."""
    def reject(request):
        return httpx.Response(400, json={
            "error": "Validation failed",
            "message": "Please correct the following errors",
            "code": "VALIDATION_ERROR",
            "details": [
                {"field": "phone", "message": "Phone number format is invalid"},
                {"field": "date_of_birth", "message": "Date of birth is not a valid date"},
                {"field": "address", "message": "Address is required"},
            ],
        })

    async with CheckInClient(base_url="http://test/api", transport=httpx.MockTransport(reject)) as client:
        session = WizardSession(IntakeWizard(MemoryStorage()), client)
        outcome = await session.submit_demographics(**DEMOGRAPHICS)
    assert not outcome.ok
    assert outcome.field_errors == {
        "phoneNumber": "Phone number format is invalid",
        "dateOfBirth": "Date of birth is not a valid date",
        "address": "Address is required",
    }
    assert session.wizard.current_step is Step.DEMOGRAPHICS


async def test_dependent_step_requires_previous(session):
    """Later steps are refused until the earlier ones are done."""
    outcome = await session.submit_insurance(**INSURANCE)
    assert not outcome.ok
    assert outcome.banner == "Please complete the previous steps first"
    assert session.wizard.current_step is Step.DEMOGRAPHICS


async def test_server_rejection_keeps_step(session):
    """A server error leaves the wizard on the current step."""
    await session.submit_demographics(**DEMOGRAPHICS)
    session.wizard.set_patient_id(9999)

    outcome = await session.submit_insurance(**INSURANCE)
    assert not outcome.ok
    assert outcome.banner == "Patient not found"
    assert session.wizard.current_step is Step.INSURANCE
    assert Step.INSURANCE not in session.wizard.completed_steps


async def test_insurance_with_card_image(session, api_client, tmp_path):
    """Card images from disk are uploaded with the insurance step."""
    card = tmp_path / "front.png"
    card.write_bytes(b"\x89PNG")
    await session.submit_demographics(**DEMOGRAPHICS)

    outcome = await session.submit_insurance(**INSURANCE, cardImages=[str(card)])
    assert outcome.ok
    detail = await api_client.get_submission(session.wizard.patient_id)
    assert len(detail["insurance"]["cardImages"]) == 1


async def test_completion_requested_once(session, api_client):
    """Completion is sent once unless a retry is forced."""
    await session.submit_demographics(**DEMOGRAPHICS)
    await session.submit_insurance(**INSURANCE)
    await session.submit_clinical_forms(**CLINICAL)

    first = await session.complete()
    again = await session.complete()
    assert first.ok and again.ok
    assert again.data == first.data

    # A forced retry reaches the server, which refuses the duplicate
    retry = await session.complete(retry=True)
    assert not retry.ok
    assert retry.banner == "Check-in already completed for this patient"


async def test_complete_before_forms_is_redirected(session):
    """Completing early sends the wizard back to the first open step."""
    await session.submit_demographics(**DEMOGRAPHICS)
    outcome = await session.complete()
    assert not outcome.ok
    assert session.wizard.current_step is Step.DEMOGRAPHICS


async def test_start_over_after_completion(session):
    """Start over clears the session and the wizard."""
    await session.submit_demographics(**DEMOGRAPHICS)
    await session.submit_insurance(**INSURANCE)
    await session.submit_clinical_forms(**CLINICAL)
    await session.complete()

    session.start_over()
    assert session.completion is None
    assert session.wizard.patient_id is None
    assert session.wizard.current_step is Step.DEMOGRAPHICS


async def test_network_failure_becomes_api_error():
    """Transport failures surface as ApiError without a status."""
    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    async with CheckInClient(base_url="http://test/api", transport=httpx.MockTransport(refuse)) as client:
        with pytest.raises(ApiError) as exc_info:
            await client.health()
    assert exc_info.value.status_code is None
    assert exc_info.value.message.startswith("Network error")


async def test_non_json_error_response():
    """Error responses without JSON get a generic message."""
    transport = httpx.MockTransport(lambda request: httpx.Response(502, text="Bad Gateway"))
    async with CheckInClient(base_url="http://test/api", transport=transport) as client:
        with pytest.raises(ApiError) as exc_info:
            await client.create_patient({})
    assert exc_info.value.status_code == 502
    assert exc_info.value.message == "Request failed"
