from pydantic import BaseModel


class PatientCreate(BaseModel):
    first_name: str
    last_name: str
    date_of_birth: str
    address: str
    phone: str
    email: str


class Patient(PatientCreate):
    id: int
    created_at: str

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class PatientSummary(BaseModel):
    id: int
    name: str
    email: str
