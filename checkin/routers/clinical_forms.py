import logging
from typing import Any

from fastapi import APIRouter, Body, Depends

from checkin.repositories import RecordStore, get_store
from checkin.services.steps import get_clinical_forms, parse_identifier, submit_clinical_forms

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/clinical-forms", tags=["clinical-forms"])


@router.post("", status_code=201)
async def create_clinical_forms(
    payload: dict[str, Any] = Body(...),
    store: RecordStore = Depends(get_store),
):
    """Wizard step 3: save medical history, medications, allergies and symptoms."""
    form = await submit_clinical_forms(store, payload)
    return {"message": "Clinical forms saved successfully", "data": form}


@router.get("/{patient_id}")
async def read_clinical_forms(patient_id: str, store: RecordStore = Depends(get_store)):
    form = await get_clinical_forms(store, parse_identifier(patient_id))
    return {"message": "Clinical forms retrieved successfully", "data": form}
