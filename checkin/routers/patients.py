import logging
from typing import Any

from fastapi import APIRouter, Body, Depends

from checkin.repositories import RecordStore, get_store
from checkin.services.steps import submit_demographics

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/patients", tags=["patients"])


@router.post("", status_code=201)
async def create_patient(
    payload: dict[str, Any] = Body(...),
    store: RecordStore = Depends(get_store),
):
    """Wizard step 1: save patient demographics."""
    patient = await submit_demographics(store, payload)
    return {"message": "Patient demographics saved successfully", "data": patient}
