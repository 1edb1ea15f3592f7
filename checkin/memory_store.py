"""In-process record store with the same contract as the SQL store.

Used by tests and by ``STORE_BACKEND=memory``. Nothing here awaits
between a uniqueness check and the matching insert, so the completion
check-and-insert is atomic under the event loop.
"""

from __future__ import annotations

import itertools
from typing import Generic, TypeVar

from checkin.errors import ConstraintViolation
from checkin.models.clinical_form import ClinicalForm, ClinicalFormCreate
from checkin.models.completion import Completion, CompletionCreate
from checkin.models.insurance import Insurance, InsuranceCreate, InsuranceUpdate
from checkin.models.patient import Patient, PatientCreate
from checkin.models.submission import SubmissionAggregate, SubmissionFilters
from checkin.repositories import utc_now

RecordT = TypeVar("RecordT", Patient, Insurance, ClinicalForm, Completion)


class _Collection(Generic[RecordT]):
    created_field = "created_at"

    def __init__(self) -> None:
        self._rows: dict[int, RecordT] = {}
        self._ids = itertools.count(1)

    def _add(self, record: RecordT) -> RecordT:
        self._rows[record.id] = record
        return record

    async def get_by_id(self, record_id: int) -> RecordT | None:
        record = self._rows.get(record_id)
        return record.model_copy() if record else None

    async def get_by_patient_id(self, patient_id: int) -> RecordT | None:
        matches = [r for r in self._rows.values() if getattr(r, "patient_id", None) == patient_id]
        if not matches:
            return None
        return max(matches, key=lambda r: r.id).model_copy()

    async def list_all(self) -> list[RecordT]:
        return sorted(
            (r.model_copy() for r in self._rows.values()),
            key=lambda r: (getattr(r, self.created_field), r.id),
            reverse=True,
        )


class MemoryPatientRepository(_Collection[Patient]):
    async def create(self, fields: PatientCreate) -> Patient:
        return self._add(Patient(id=next(self._ids), created_at=utc_now(), **fields.model_dump())).model_copy()


class MemoryInsuranceRepository(_Collection[Insurance]):
    async def create(self, fields: InsuranceCreate) -> Insurance:
        return self._add(Insurance(id=next(self._ids), created_at=utc_now(), **fields.model_dump())).model_copy()

    async def update(self, insurance_id: int, fields: InsuranceUpdate) -> Insurance | None:
        current = self._rows.get(insurance_id)
        if current is None:
            return None
        updated = current.model_copy(update=fields.model_dump(exclude_unset=True))
        self._rows[insurance_id] = updated
        return updated.model_copy()

    async def delete(self, insurance_id: int) -> bool:
        return self._rows.pop(insurance_id, None) is not None


class MemoryClinicalFormRepository(_Collection[ClinicalForm]):
    async def create(self, fields: ClinicalFormCreate) -> ClinicalForm:
        return self._add(ClinicalForm(id=next(self._ids), created_at=utc_now(), **fields.model_dump())).model_copy()


class MemoryCompletionRepository(_Collection[Completion]):
    created_field = "completed_at"

    def __init__(self) -> None:
        super().__init__()
        self._by_patient: dict[int, int] = {}

    async def create(self, fields: CompletionCreate) -> Completion:
        if fields.patient_id in self._by_patient:
            raise ConstraintViolation(
                "The provided data violates database constraints",
                details=["UNIQUE constraint failed: check_in_completions.patient_id"],
            )
        record = Completion(id=next(self._ids), completed_at=utc_now(), **fields.model_dump())
        self._by_patient[fields.patient_id] = record.id
        return self._add(record).model_copy()

    async def get_by_patient_id(self, patient_id: int) -> Completion | None:
        record_id = self._by_patient.get(patient_id)
        return self._rows[record_id].model_copy() if record_id is not None else None

    async def mark_confirmation_sent(self, patient_id: int) -> bool:
        record_id = self._by_patient.get(patient_id)
        if record_id is None:
            return False
        self._rows[record_id] = self._rows[record_id].model_copy(update={"confirmation_sent": True})
        return True


class InMemoryRecordStore:
    engine = "memory"

    def __init__(self) -> None:
        self.patients = MemoryPatientRepository()
        self.insurance = MemoryInsuranceRepository()
        self.clinical_forms = MemoryClinicalFormRepository()
        self.completions = MemoryCompletionRepository()

    async def _aggregate(self, patient: Patient) -> SubmissionAggregate:
        return SubmissionAggregate(
            patient=patient,
            insurance=await self.insurance.get_by_patient_id(patient.id),
            clinical_form=await self.clinical_forms.get_by_patient_id(patient.id),
            completion=await self.completions.get_by_patient_id(patient.id),
        )

    async def list_submissions(self, filters: SubmissionFilters) -> list[SubmissionAggregate]:
        patients = [p for p in await self.patients.list_all() if filters.matches_patient(p)]
        return [await self._aggregate(p) for p in patients]

    async def get_submission(self, patient_id: int) -> SubmissionAggregate | None:
        patient = await self.patients.get_by_id(patient_id)
        return await self._aggregate(patient) if patient else None
