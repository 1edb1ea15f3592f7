"""Record store: the four intake collections and their patient join.

Handlers receive a :class:`RecordStore` through :func:`get_store` and never
touch tables or module-level collections directly. Input is assumed to be
validated already; the store performs no validation of its own. Lookups
that find nothing return ``None``.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any, Protocol

from checkin.config import STORE_BACKEND
from checkin.database import DatabaseAdapter, get_db
from checkin.models.clinical_form import ClinicalForm, ClinicalFormCreate
from checkin.models.completion import Completion, CompletionCreate
from checkin.models.insurance import Insurance, InsuranceCreate, InsuranceUpdate
from checkin.models.patient import Patient, PatientCreate
from checkin.models.submission import SubmissionAggregate, SubmissionFilters

logger = logging.getLogger(__name__)


def utc_now() -> str:
    return datetime.now(UTC).isoformat()


class PatientRepository(Protocol):
    async def create(self, fields: PatientCreate) -> Patient: ...
    async def get_by_id(self, patient_id: int) -> Patient | None: ...
    async def list_all(self) -> list[Patient]: ...


class InsuranceRepository(Protocol):
    async def create(self, fields: InsuranceCreate) -> Insurance: ...
    async def get_by_id(self, insurance_id: int) -> Insurance | None: ...
    async def get_by_patient_id(self, patient_id: int) -> Insurance | None: ...
    async def list_all(self) -> list[Insurance]: ...
    async def update(self, insurance_id: int, fields: InsuranceUpdate) -> Insurance | None: ...
    async def delete(self, insurance_id: int) -> bool: ...


class ClinicalFormRepository(Protocol):
    async def create(self, fields: ClinicalFormCreate) -> ClinicalForm: ...
    async def get_by_id(self, form_id: int) -> ClinicalForm | None: ...
    async def get_by_patient_id(self, patient_id: int) -> ClinicalForm | None: ...
    async def list_all(self) -> list[ClinicalForm]: ...


class CompletionRepository(Protocol):
    async def create(self, fields: CompletionCreate) -> Completion: ...
    async def get_by_id(self, completion_id: int) -> Completion | None: ...
    async def get_by_patient_id(self, patient_id: int) -> Completion | None: ...
    async def list_all(self) -> list[Completion]: ...
    async def mark_confirmation_sent(self, patient_id: int) -> bool: ...


class RecordStore(Protocol):
    engine: str
    patients: PatientRepository
    insurance: InsuranceRepository
    clinical_forms: ClinicalFormRepository
    completions: CompletionRepository

    async def list_submissions(self, filters: SubmissionFilters) -> list[SubmissionAggregate]:
        """Patients matching the search and date filters, newest first, joined with their records."""
        ...

    async def get_submission(self, patient_id: int) -> SubmissionAggregate | None: ...


# --- SQL implementation ---

PATIENT_COLUMNS = ("id", "first_name", "last_name", "date_of_birth", "address", "phone", "email", "created_at")
INSURANCE_COLUMNS = (
    "id", "patient_id", "provider", "policy_number", "group_number",
    "subscriber_name", "card_image_path", "created_at",
)
CLINICAL_COLUMNS = (
    "id", "patient_id", "medical_history", "current_medications", "allergies", "symptoms", "created_at",
)
COMPLETION_COLUMNS = ("id", "patient_id", "completed_at", "confirmation_sent", "estimated_wait_time")


def _row_fields(row: Any, columns: tuple[str, ...], prefix: str = "") -> dict[str, Any]:
    return {col: row[f"{prefix}{col}"] for col in columns}


def _completion_from(fields: dict[str, Any]) -> Completion:
    fields["confirmation_sent"] = bool(fields["confirmation_sent"])
    return Completion(**fields)


class _SQLRepository:
    table: str
    columns: tuple[str, ...]
    order_column = "created_at"

    def __init__(self, db: DatabaseAdapter) -> None:
        self.db = db

    def _to_model(self, fields: dict[str, Any]) -> Any:  # pragma: no cover - interface
        raise NotImplementedError

    async def _insert(self, values: dict[str, Any]) -> int:
        names = ", ".join(values)
        marks = ", ".join("?" for _ in values)
        row_id = await self.db.insert(
            f"INSERT INTO {self.table} ({names}) VALUES ({marks})",
            tuple(values.values()),
        )
        await self.db.commit()
        return row_id

    async def get_by_id(self, record_id: int):
        row = await self.db.fetch_one(f"SELECT * FROM {self.table} WHERE id = ?", (record_id,))
        return self._to_model(_row_fields(row, self.columns)) if row else None

    async def get_by_patient_id(self, patient_id: int):
        row = await self.db.fetch_one(
            f"SELECT * FROM {self.table} WHERE patient_id = ? ORDER BY id DESC LIMIT 1",
            (patient_id,),
        )
        return self._to_model(_row_fields(row, self.columns)) if row else None

    async def list_all(self) -> list:
        rows = await self.db.fetch_all(
            f"SELECT * FROM {self.table} ORDER BY {self.order_column} DESC, id DESC"
        )
        return [self._to_model(_row_fields(row, self.columns)) for row in rows]


class SQLPatientRepository(_SQLRepository):
    table = "patients"
    columns = PATIENT_COLUMNS

    def _to_model(self, fields: dict[str, Any]) -> Patient:
        return Patient(**fields)

    async def create(self, fields: PatientCreate) -> Patient:
        values = {**fields.model_dump(), "created_at": utc_now()}
        row_id = await self._insert(values)
        logger.info("Patient %s created", row_id)
        return Patient(id=row_id, **values)


class SQLInsuranceRepository(_SQLRepository):
    table = "insurance"
    columns = INSURANCE_COLUMNS

    def _to_model(self, fields: dict[str, Any]) -> Insurance:
        return Insurance(**fields)

    async def create(self, fields: InsuranceCreate) -> Insurance:
        values = {**fields.model_dump(), "created_at": utc_now()}
        row_id = await self._insert(values)
        logger.info("Insurance %s created for patient %s", row_id, fields.patient_id)
        return Insurance(id=row_id, **values)

    async def update(self, insurance_id: int, fields: InsuranceUpdate) -> Insurance | None:
        changes = fields.model_dump(exclude_unset=True)
        if changes:
            assignments = ", ".join(f"{name} = ?" for name in changes)
            await self.db.execute(
                f"UPDATE insurance SET {assignments} WHERE id = ?",
                (*changes.values(), insurance_id),
            )
            await self.db.commit()
        return await self.get_by_id(insurance_id)

    async def delete(self, insurance_id: int) -> bool:
        deleted = await self.db.execute("DELETE FROM insurance WHERE id = ?", (insurance_id,))
        await self.db.commit()
        return deleted > 0


class SQLClinicalFormRepository(_SQLRepository):
    table = "clinical_forms"
    columns = CLINICAL_COLUMNS

    def _to_model(self, fields: dict[str, Any]) -> ClinicalForm:
        return ClinicalForm(**fields)

    async def create(self, fields: ClinicalFormCreate) -> ClinicalForm:
        values = {**fields.model_dump(), "created_at": utc_now()}
        row_id = await self._insert(values)
        logger.info("Clinical forms %s created for patient %s", row_id, fields.patient_id)
        return ClinicalForm(id=row_id, **values)


class SQLCompletionRepository(_SQLRepository):
    table = "check_in_completions"
    columns = COMPLETION_COLUMNS
    order_column = "completed_at"

    def _to_model(self, fields: dict[str, Any]) -> Completion:
        return _completion_from(fields)

    async def create(self, fields: CompletionCreate) -> Completion:
        # patient_id is UNIQUE: a concurrent duplicate fails here with ConstraintViolation.
        values = {**fields.model_dump(), "completed_at": utc_now(), "confirmation_sent": 0}
        row_id = await self._insert(values)
        logger.info("Completion %s created for patient %s", row_id, fields.patient_id)
        return _completion_from({"id": row_id, **values})

    async def mark_confirmation_sent(self, patient_id: int) -> bool:
        updated = await self.db.execute(
            "UPDATE check_in_completions SET confirmation_sent = 1 WHERE patient_id = ?",
            (patient_id,),
        )
        await self.db.commit()
        return updated > 0


def _select_list(alias: str, columns: tuple[str, ...]) -> str:
    return ", ".join(f"{alias}.{col} AS {alias}_{col}" for col in columns)


_SUBMISSION_SELECT = f"""
    SELECT {_select_list('p', PATIENT_COLUMNS)},
           {_select_list('i', INSURANCE_COLUMNS)},
           {_select_list('cf', CLINICAL_COLUMNS)},
           {_select_list('cc', COMPLETION_COLUMNS)}
    FROM patients p
    LEFT JOIN insurance i
        ON i.id = (SELECT MAX(id) FROM insurance WHERE patient_id = p.id)
    LEFT JOIN clinical_forms cf
        ON cf.id = (SELECT MAX(id) FROM clinical_forms WHERE patient_id = p.id)
    LEFT JOIN check_in_completions cc
        ON cc.patient_id = p.id
"""


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def build_submission_query(filters: SubmissionFilters) -> tuple[str, list[Any]]:
    """Build the joined admin query for the search and date filters.

    Status is not part of the SQL: it is derived from the joined rows.
    """
    conditions: list[str] = []
    params: list[Any] = []

    if filters.search and filters.search.strip():
        conditions.append("LOWER(p.first_name || ' ' || p.last_name) LIKE ? ESCAPE '\\'")
        params.append(f"%{_escape_like(filters.search.strip().lower())}%")
    if filters.date_from:
        conditions.append("SUBSTR(p.created_at, 1, 10) >= ?")
        params.append(filters.date_from)
    if filters.date_to:
        conditions.append("SUBSTR(p.created_at, 1, 10) <= ?")
        params.append(filters.date_to)

    sql = _SUBMISSION_SELECT
    if conditions:
        sql += " WHERE " + " AND ".join(conditions)
    sql += " ORDER BY p.created_at DESC, p.id DESC"
    return sql, params


def _aggregate_from_row(row: Any) -> SubmissionAggregate:
    insurance = clinical = completion = None
    if row["i_id"] is not None:
        insurance = Insurance(**_row_fields(row, INSURANCE_COLUMNS, "i_"))
    if row["cf_id"] is not None:
        clinical = ClinicalForm(**_row_fields(row, CLINICAL_COLUMNS, "cf_"))
    if row["cc_id"] is not None:
        completion = _completion_from(_row_fields(row, COMPLETION_COLUMNS, "cc_"))
    return SubmissionAggregate(
        patient=Patient(**_row_fields(row, PATIENT_COLUMNS, "p_")),
        insurance=insurance,
        clinical_form=clinical,
        completion=completion,
    )


class SQLRecordStore:
    def __init__(self, db: DatabaseAdapter) -> None:
        self.db = db
        self.engine = db.engine
        self.patients = SQLPatientRepository(db)
        self.insurance = SQLInsuranceRepository(db)
        self.clinical_forms = SQLClinicalFormRepository(db)
        self.completions = SQLCompletionRepository(db)

    async def list_submissions(self, filters: SubmissionFilters) -> list[SubmissionAggregate]:
        sql, params = build_submission_query(filters)
        rows = await self.db.fetch_all(sql, params)
        return [_aggregate_from_row(row) for row in rows]

    async def get_submission(self, patient_id: int) -> SubmissionAggregate | None:
        row = await self.db.fetch_one(_SUBMISSION_SELECT + " WHERE p.id = ?", (patient_id,))
        return _aggregate_from_row(row) if row else None


_store: RecordStore | None = None


async def get_store() -> RecordStore:
    """FastAPI dependency returning the process-wide record store."""
    global _store
    if _store is None:
        if STORE_BACKEND == "memory":
            from checkin.memory_store import InMemoryRecordStore

            _store = InMemoryRecordStore()
            logger.info("Using in-memory record store")
        else:
            _store = SQLRecordStore(await get_db())
    return _store


def reset_store() -> None:
    global _store
    _store = None
