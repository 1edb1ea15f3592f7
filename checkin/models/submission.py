"""Per-patient submission aggregate and the admin views built from it."""

from enum import Enum

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from checkin.models.clinical_form import ClinicalForm
from checkin.models.completion import Completion
from checkin.models.insurance import Insurance
from checkin.models.patient import Patient


class SubmissionStatus(str, Enum):
    COMPLETED = "completed"
    PARTIAL = "partial"
    INCOMPLETE = "incomplete"


class SubmissionAggregate(BaseModel):
    """A patient joined with whichever dependent records exist for them."""

    patient: Patient
    insurance: Insurance | None = None
    clinical_form: ClinicalForm | None = None
    completion: Completion | None = None

    def derive_status(self, tristate: bool = False) -> SubmissionStatus:
        """Compute the submission status from the records present.

        Never stored: it is recomputed on every read.
        """
        if self.completion is not None:
            return SubmissionStatus.COMPLETED
        if tristate and (self.clinical_form is not None or self.insurance is not None):
            return SubmissionStatus.PARTIAL
        return SubmissionStatus.INCOMPLETE


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SubmissionListItem(_CamelModel):
    id: int
    patient_name: str
    email: str
    phone: str
    submitted_at: str
    status: SubmissionStatus
    completed_at: str | None = None
    estimated_wait_time: int | None = None
    has_insurance: bool = False
    has_clinical_forms: bool = False


class PatientView(_CamelModel):
    first_name: str
    last_name: str
    date_of_birth: str
    address: str
    phone: str
    email: str
    created_at: str


class InsuranceView(_CamelModel):
    provider: str
    policy_number: str
    group_number: str | None = None
    subscriber_name: str
    card_images: list[str] = []
    created_at: str


class ClinicalFormView(_CamelModel):
    medical_history: str
    current_medications: str | None = None
    allergies: str
    symptoms: str | None = None
    created_at: str


class CompletionView(_CamelModel):
    completed_at: str
    estimated_wait_time: int
    confirmation_sent: bool


class SubmissionDetail(_CamelModel):
    id: int
    patient: PatientView
    insurance: InsuranceView | None = None
    clinical_forms: ClinicalFormView | None = None
    completion: CompletionView | None = None
    status: SubmissionStatus


def to_list_item(aggregate: SubmissionAggregate, tristate: bool = False) -> SubmissionListItem:
    patient = aggregate.patient
    completion = aggregate.completion
    return SubmissionListItem(
        id=patient.id,
        patient_name=patient.full_name,
        email=patient.email,
        phone=patient.phone,
        submitted_at=patient.created_at,
        status=aggregate.derive_status(tristate),
        completed_at=completion.completed_at if completion else None,
        estimated_wait_time=completion.estimated_wait_time if completion else None,
        has_insurance=aggregate.insurance is not None,
        has_clinical_forms=aggregate.clinical_form is not None,
    )


def to_detail(aggregate: SubmissionAggregate, tristate: bool = False) -> SubmissionDetail:
    patient = aggregate.patient
    insurance = aggregate.insurance
    clinical = aggregate.clinical_form
    completion = aggregate.completion
    return SubmissionDetail(
        id=patient.id,
        patient=PatientView(**patient.model_dump(exclude={"id"})),
        insurance=InsuranceView(
            provider=insurance.provider,
            policy_number=insurance.policy_number,
            group_number=insurance.group_number,
            subscriber_name=insurance.subscriber_name,
            card_images=insurance.card_images,
            created_at=insurance.created_at,
        ) if insurance else None,
        clinical_forms=ClinicalFormView(
            **clinical.model_dump(exclude={"id", "patient_id"})
        ) if clinical else None,
        completion=CompletionView(
            completed_at=completion.completed_at,
            estimated_wait_time=completion.estimated_wait_time,
            confirmation_sent=completion.confirmation_sent,
        ) if completion else None,
        status=aggregate.derive_status(tristate),
    )


class SubmissionFilters(BaseModel):
    """Admin list filters; every supplied filter must hold (logical AND)."""

    search: str | None = None
    date_from: str | None = None  # YYYY-MM-DD, inclusive
    date_to: str | None = None  # YYYY-MM-DD, inclusive
    status: SubmissionStatus | None = None

    def matches_patient(self, patient: Patient) -> bool:
        if self.search and self.search.strip():
            needle = self.search.strip().lower()
            if needle not in patient.full_name.lower():
                return False
        created_on = patient.created_at[:10]
        if self.date_from and created_on < self.date_from:
            return False
        if self.date_to and created_on > self.date_to:
            return False
        return True

    def matches_status(self, status: SubmissionStatus) -> bool:
        if self.status is None:
            return True
        if self.status is SubmissionStatus.INCOMPLETE:
            return status is not SubmissionStatus.COMPLETED
        return status is self.status
