from pydantic import BaseModel


class ClinicalFormCreate(BaseModel):
    patient_id: int
    medical_history: str
    current_medications: str | None = None
    allergies: str
    symptoms: str | None = None


class ClinicalForm(ClinicalFormCreate):
    id: int
    created_at: str
