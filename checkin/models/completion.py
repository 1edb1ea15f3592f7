from pydantic import BaseModel, Field

from checkin.models.patient import PatientSummary


class CompletionCreate(BaseModel):
    patient_id: int
    estimated_wait_time: int = Field(20, ge=0, le=180)


class Completion(CompletionCreate):
    id: int
    completed_at: str
    confirmation_sent: bool = False


class CompletionResult(BaseModel):
    completion: Completion
    patient: PatientSummary
    estimatedWaitTime: int
