"""Client-side wizard state machine.

Steps run 1 -> 4; step N is reachable only once step N-1 is marked
completed. Every change is written through to :class:`LocalStorage` so a
restarted client resumes where it stopped. The persisted blob carries a
version; a blob from another version (or one that fails to parse) is
discarded and the wizard starts over.
"""

from __future__ import annotations

import json
import logging
from enum import IntEnum
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from checkin.wizard.storage import LocalStorage

logger = logging.getLogger(__name__)

STATE_VERSION = 1

FORM_DATA_KEY = "checkInFormData"
CURRENT_STEP_KEY = "checkInCurrentStep"
COMPLETED_STEPS_KEY = "checkInCompletedSteps"
PATIENT_ID_KEY = "patientId"
VERSION_KEY = "checkInStateVersion"
STORAGE_KEYS = (FORM_DATA_KEY, CURRENT_STEP_KEY, COMPLETED_STEPS_KEY, PATIENT_ID_KEY, VERSION_KEY)


class Step(IntEnum):
    DEMOGRAPHICS = 1
    INSURANCE = 2
    CLINICAL_FORMS = 3
    CONFIRMATION = 4


STEP_PATHS = {
    Step.DEMOGRAPHICS: "/demographics",
    Step.INSURANCE: "/insurance",
    Step.CLINICAL_FORMS: "/clinical-forms",
    Step.CONFIRMATION: "/confirmation",
}
PATH_STEPS = {path: step for step, path in STEP_PATHS.items()}
ADMIN_PREFIX = "/admin"

SECTIONS = {
    Step.DEMOGRAPHICS: "demographics",
    Step.INSURANCE: "insurance",
    Step.CLINICAL_FORMS: "clinicalForms",
}


class DemographicsForm(BaseModel):
    firstName: str = ""
    lastName: str = ""
    dateOfBirth: str = ""
    address: str = ""
    city: str = ""
    state: str = ""
    zipCode: str = ""
    phoneNumber: str = ""
    email: str = ""


class InsuranceForm(BaseModel):
    provider: str = ""
    policyNumber: str = ""
    groupNumber: str = ""
    subscriberName: str = ""
    cardImages: list[str] = []  # local file paths


class ClinicalFormsForm(BaseModel):
    medicalHistory: str = ""
    currentMedications: str = ""
    allergies: str = ""
    symptoms: str = ""


class FormData(BaseModel):
    demographics: DemographicsForm = Field(default_factory=DemographicsForm)
    insurance: InsuranceForm = Field(default_factory=InsuranceForm)
    clinicalForms: ClinicalFormsForm = Field(default_factory=ClinicalFormsForm)


class WizardState(BaseModel):
    current_step: Step = Step.DEMOGRAPHICS
    completed_steps: set[Step] = set()
    form_data: FormData = Field(default_factory=FormData)
    patient_id: int | None = None


def step_path(step: int) -> str:
    try:
        return STEP_PATHS[Step(step)]
    except ValueError:
        return "/"


class IntakeWizard:
    def __init__(self, storage: LocalStorage) -> None:
        self.storage = storage
        self.state = self._rehydrate()

    # --- persistence ---

    def _rehydrate(self) -> WizardState:
        version = self.storage.get_item(VERSION_KEY)
        if version is None and all(self.storage.get_item(k) is None for k in STORAGE_KEYS):
            return WizardState()
        try:
            if version is None or int(version) != STATE_VERSION:
                raise ValueError(f"unsupported wizard state version {version!r}")
            state = WizardState(
                current_step=Step(int(self.storage.get_item(CURRENT_STEP_KEY) or Step.DEMOGRAPHICS)),
                completed_steps={Step(s) for s in json.loads(self.storage.get_item(COMPLETED_STEPS_KEY) or "[]")},
                form_data=FormData.model_validate_json(self.storage.get_item(FORM_DATA_KEY) or "{}"),
                patient_id=_parse_patient_id(self.storage.get_item(PATIENT_ID_KEY)),
            )
        except (ValueError, TypeError, ValidationError) as exc:
            logger.warning("Discarding saved wizard state: %s", exc)
            self._clear_storage()
            return WizardState()
        return state

    def _persist(self) -> None:
        self.storage.set_item(VERSION_KEY, str(STATE_VERSION))
        self.storage.set_item(FORM_DATA_KEY, self.state.form_data.model_dump_json())
        self.storage.set_item(CURRENT_STEP_KEY, str(int(self.state.current_step)))
        self.storage.set_item(COMPLETED_STEPS_KEY, json.dumps(sorted(int(s) for s in self.state.completed_steps)))
        if self.state.patient_id is None:
            self.storage.remove_item(PATIENT_ID_KEY)
        else:
            self.storage.set_item(PATIENT_ID_KEY, str(self.state.patient_id))

    def _clear_storage(self) -> None:
        for key in STORAGE_KEYS:
            self.storage.remove_item(key)

    # --- queries ---

    @property
    def current_step(self) -> Step:
        return self.state.current_step

    @property
    def completed_steps(self) -> set[Step]:
        return set(self.state.completed_steps)

    @property
    def patient_id(self) -> int | None:
        return self.state.patient_id

    def can_navigate_to(self, step: int) -> bool:
        if step == Step.DEMOGRAPHICS:
            return True
        if not _is_step(step):
            return False
        return Step(step - 1) in self.state.completed_steps

    def section(self, step: int) -> BaseModel:
        return getattr(self.state.form_data, SECTIONS[Step(step)])

    # --- transitions ---

    def navigate_to(self, step: int) -> Step:
        """Move to ``step`` if reachable, otherwise back to step 1. Returns the active step."""
        if _is_step(step) and self.can_navigate_to(step):
            self.state.current_step = Step(step)
        else:
            self.state.current_step = Step.DEMOGRAPHICS
        self._persist()
        return self.state.current_step

    def resolve_route(self, path: str) -> str:
        """Apply the navigation guard to a direct URL or back/forward visit."""
        if path.startswith(ADMIN_PREFIX):
            return path
        step = PATH_STEPS.get(path)
        if step is None:
            return STEP_PATHS[self.state.current_step]
        return STEP_PATHS[self.navigate_to(step)]

    def update_form_data(self, step: int, **fields: Any) -> None:
        section = self.section(step)
        setattr(
            self.state.form_data,
            SECTIONS[Step(step)],
            type(section).model_validate({**section.model_dump(), **fields}),
        )
        self._persist()

    def mark_step_completed(self, step: int) -> None:
        self.state.completed_steps.add(Step(step))
        self._persist()

    def advance(self) -> Step:
        """Mark the current step completed and move to the next one."""
        current = self.state.current_step
        self.state.completed_steps.add(current)
        if current < Step.CONFIRMATION:
            self.state.current_step = Step(current + 1)
        self._persist()
        return self.state.current_step

    def set_patient_id(self, patient_id: int | None) -> None:
        self.state.patient_id = patient_id
        self._persist()

    def start_over(self) -> None:
        """Forget everything, including the patient ID, and return to step 1."""
        self._clear_storage()
        self.state = WizardState()


def _is_step(step: int) -> bool:
    return step in {s.value for s in Step}


def _parse_patient_id(value: str | None) -> int | None:
    if value is None or value == "":
        return None
    return int(value)
