import logging
from typing import Any

from fastapi import APIRouter, Body, Depends

from checkin.repositories import RecordStore, get_store
from checkin.services.notifier import ConfirmationNotifier, get_notifier
from checkin.services.steps import get_completion, parse_identifier, submit_completion

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/completion", tags=["completion"])


@router.post("", status_code=201)
async def complete_check_in(
    payload: dict[str, Any] = Body(...),
    store: RecordStore = Depends(get_store),
    notifier: ConfirmationNotifier = Depends(get_notifier),
):
    """Wizard step 4: mark the check-in complete and send the confirmation.

    A second call for the same patient is rejected with ``ALREADY_COMPLETED``.
    """
    result = await submit_completion(store, payload, notifier)
    logger.info("Check-in completed for patient %s", result.patient.id)
    return {"message": "Check-in completed successfully", "data": result}


@router.get("/{patient_id}")
async def read_completion(patient_id: str, store: RecordStore = Depends(get_store)):
    completion = await get_completion(store, parse_identifier(patient_id))
    return {"message": "Completion status retrieved successfully", "data": completion}
