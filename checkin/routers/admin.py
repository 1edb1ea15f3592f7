import logging

from fastapi import APIRouter, Depends, Query

from checkin.repositories import RecordStore, get_store
from checkin.services.steps import parse_identifier
from checkin.services.submissions import get_submission, list_submissions, parse_filters

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"])


@router.get("/submissions")
async def read_submissions(
    search: str | None = None,
    date_from: str | None = Query(None, alias="dateFrom"),
    date_to: str | None = Query(None, alias="dateTo"),
    status: str | None = None,
    store: RecordStore = Depends(get_store),
):
    """List submissions, newest first.

    Filters combine with AND:
    - search: case-insensitive substring of "first last"
    - dateFrom / dateTo: inclusive bounds on the submission date
    - status: derived status (completed, incomplete, or partial in tristate mode)
    """
    filters = parse_filters(search=search, date_from=date_from, date_to=date_to, status=status)
    submissions = await list_submissions(store, filters)
    return {
        "message": "Submissions retrieved successfully",
        "data": submissions,
        "total": len(submissions),
    }


@router.get("/submissions/{submission_id}")
async def read_submission(submission_id: str, store: RecordStore = Depends(get_store)):
    """Full joined record for one patient."""
    patient_id = parse_identifier(submission_id, code="INVALID_SUBMISSION_ID", label="Submission ID")
    detail = await get_submission(store, patient_id)
    return {"message": "Submission details retrieved successfully", "data": detail}
