"""Wizard step handlers: demographics -> insurance -> clinical forms -> completion.

Each handler validates its whole payload (reporting every failing field),
checks the referenced patient, then appends exactly one record to its own
collection. Handlers never modify another step's records.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping

from checkin import config
from checkin.errors import (
    AlreadyCompleted,
    ConstraintViolation,
    InvalidIdentifier,
    NotFound,
    PatientNotFound,
    ValidationFailed,
)
from checkin.models.clinical_form import ClinicalForm, ClinicalFormCreate
from checkin.models.completion import Completion, CompletionCreate, CompletionResult
from checkin.models.insurance import Insurance, InsuranceCreate, encode_card_images
from checkin.models.patient import Patient, PatientCreate, PatientSummary
from checkin.repositories import RecordStore
from checkin.sanitization import FieldKind, FieldSpec, sanitize_number, validate_payload
from checkin.services.notifier import ConfirmationNotifier
from checkin.services.uploads import CardUpload, store_uploads

logger = logging.getLogger(__name__)


# Largest id both SQLite INTEGER and Postgres BIGINT columns can hold
MAX_IDENTIFIER = 2**63 - 1

PATIENT_ID = FieldSpec(
    FieldKind.NUMBER, label="Patient ID", required=True, minimum=1, maximum=MAX_IDENTIFIER, integer=True,
)

DEMOGRAPHICS_SCHEMA = {
    "first_name": FieldSpec(FieldKind.STRING, label="First name", required=True, max_length=100),
    "last_name": FieldSpec(FieldKind.STRING, label="Last name", required=True, max_length=100),
    "date_of_birth": FieldSpec(FieldKind.DATE, label="Date of birth", required=True, date_format=True),
    "address": FieldSpec(FieldKind.STRING, label="Address", required=True, max_length=500),
    "phone": FieldSpec(FieldKind.PHONE, label="Phone number", required=True, max_length=30),
    "email": FieldSpec(FieldKind.EMAIL, label="Email", required=True, max_length=254),
}

INSURANCE_SCHEMA = {
    "provider": FieldSpec(FieldKind.STRING, label="Insurance provider", required=True, min_length=2, max_length=100),
    "policyNumber": FieldSpec(FieldKind.STRING, label="Policy number", required=True, min_length=1, max_length=50),
    "groupNumber": FieldSpec(FieldKind.STRING, label="Group number", max_length=50),
    "subscriberName": FieldSpec(FieldKind.STRING, label="Subscriber name", required=True, min_length=2, max_length=100),
    "patientId": PATIENT_ID,
}

CLINICAL_FORMS_SCHEMA = {
    "medicalHistory": FieldSpec(FieldKind.STRING, label="Medical history", required=True, min_length=1, max_length=2000),
    "currentMedications": FieldSpec(FieldKind.STRING, label="Current medications", max_length=2000),
    "allergies": FieldSpec(FieldKind.STRING, label="Allergies information", required=True, min_length=1, max_length=1000),
    "symptoms": FieldSpec(FieldKind.STRING, label="Symptoms description", max_length=2000),
    "patientId": PATIENT_ID,
}

COMPLETION_SCHEMA = {
    "patientId": PATIENT_ID,
    "estimatedWaitTime": FieldSpec(
        FieldKind.NUMBER, label="Estimated wait time", minimum=0, maximum=180, integer=True
    ),
}


def _validated(payload: Any, schema: Mapping[str, FieldSpec]) -> dict[str, Any]:
    if not isinstance(payload, Mapping):
        raise ValidationFailed([{"field": "body", "message": "Request body must be an object"}])
    cleaned, errors = validate_payload(payload, schema)
    if errors:
        raise ValidationFailed(errors)
    return cleaned


def parse_identifier(raw: Any, code: str = "INVALID_PATIENT_ID", label: str = "Patient ID") -> int:
    value = sanitize_number(raw, minimum=1, maximum=MAX_IDENTIFIER, integer=True)
    if value is None:
        raise InvalidIdentifier(
            f"{label} must be a positive integer",
            error=f"Invalid {label[0].lower()}{label[1:]}",
            code=code,
        )
    return int(value)


async def _require_patient(store: RecordStore, patient_id: int) -> Patient:
    patient = await store.patients.get_by_id(patient_id)
    if patient is None:
        raise PatientNotFound(f"No patient exists with ID {patient_id}")
    return patient


async def submit_demographics(store: RecordStore, payload: Any) -> Patient:
    fields = _validated(payload, DEMOGRAPHICS_SCHEMA)
    return await store.patients.create(PatientCreate(**fields))


async def submit_insurance(
    store: RecordStore,
    payload: Any,
    files: list[CardUpload] | None = None,
) -> Insurance:
    fields = _validated(payload, INSURANCE_SCHEMA)
    patient = await _require_patient(store, fields["patientId"])
    stored = store_uploads(files or [])
    return await store.insurance.create(InsuranceCreate(
        patient_id=patient.id,
        provider=fields["provider"],
        policy_number=fields["policyNumber"],
        group_number=fields["groupNumber"],
        subscriber_name=fields["subscriberName"],
        card_image_path=encode_card_images(stored),
    ))


async def submit_clinical_forms(store: RecordStore, payload: Any) -> ClinicalForm:
    fields = _validated(payload, CLINICAL_FORMS_SCHEMA)
    patient = await _require_patient(store, fields["patientId"])
    return await store.clinical_forms.create(ClinicalFormCreate(
        patient_id=patient.id,
        medical_history=fields["medicalHistory"],
        current_medications=fields["currentMedications"],
        allergies=fields["allergies"],
        symptoms=fields["symptoms"],
    ))


async def submit_completion(
    store: RecordStore,
    payload: Any,
    notifier: ConfirmationNotifier,
) -> CompletionResult:
    """Record the patient's check-in completion and send the confirmation.

    At most one completion exists per patient: an existing record (or a
    concurrent insert caught by the store's unique constraint) is reported
    as :class:`AlreadyCompleted`. The notification is best effort; its
    outcome only decides ``confirmation_sent``.
    """
    fields = _validated(payload, COMPLETION_SCHEMA)
    wait = fields["estimatedWaitTime"]
    wait = config.DEFAULT_WAIT_MINUTES if wait is None else int(wait)
    patient = await _require_patient(store, fields["patientId"])

    if await store.completions.get_by_patient_id(patient.id) is not None:
        raise AlreadyCompleted()
    try:
        completion = await store.completions.create(
            CompletionCreate(patient_id=patient.id, estimated_wait_time=wait)
        )
    except ConstraintViolation as exc:
        if await store.completions.get_by_patient_id(patient.id) is not None:
            raise AlreadyCompleted() from exc
        raise

    completion = await _send_confirmation(store, notifier, patient, completion)
    return CompletionResult(
        completion=completion,
        patient=PatientSummary(id=patient.id, name=patient.full_name, email=patient.email),
        estimatedWaitTime=completion.estimated_wait_time,
    )


async def _send_confirmation(
    store: RecordStore,
    notifier: ConfirmationNotifier,
    patient: Patient,
    completion: Completion,
) -> Completion:
    try:
        await notifier.send(patient, completion)
    except Exception:
        logger.warning("Confirmation for patient %s could not be sent", patient.id, exc_info=True)
        return completion
    if await store.completions.mark_confirmation_sent(patient.id):
        completion = completion.model_copy(update={"confirmation_sent": True})
    return completion


async def get_insurance(store: RecordStore, patient_id: int) -> Insurance:
    record = await store.insurance.get_by_patient_id(patient_id)
    if record is None:
        raise NotFound(error="Insurance not found for this patient")
    return record


async def get_clinical_forms(store: RecordStore, patient_id: int) -> ClinicalForm:
    record = await store.clinical_forms.get_by_patient_id(patient_id)
    if record is None:
        raise NotFound(error="Clinical forms not found for this patient")
    return record


async def get_completion(store: RecordStore, patient_id: int) -> Completion:
    record = await store.completions.get_by_patient_id(patient_id)
    if record is None:
        raise NotFound(error="Check-in completion not found for this patient")
    return record
