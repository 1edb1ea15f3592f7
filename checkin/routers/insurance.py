import json
import logging
from typing import Any

from fastapi import APIRouter, Depends, Request
from starlette.datastructures import UploadFile

from checkin import config
from checkin.errors import TooManyFiles, ValidationFailed
from checkin.repositories import RecordStore, get_store
from checkin.services.steps import get_insurance, parse_identifier, submit_insurance
from checkin.services.uploads import CardUpload

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/insurance", tags=["insurance"])

CARD_FIELD = "cardImages"


async def _read_payload(request: Request) -> tuple[Any, list[CardUpload]]:
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("multipart/form-data") or content_type.startswith(
        "application/x-www-form-urlencoded"
    ):
        form = await request.form(max_files=config.MAX_UPLOAD_FILES + 8)
        payload: dict[str, Any] = {}
        files: list[CardUpload] = []
        for key, value in form.multi_items():
            if isinstance(value, UploadFile):
                if key != CARD_FIELD:
                    continue
                files.append(CardUpload(
                    filename=value.filename or "",
                    content_type=value.content_type or "",
                    data=await value.read(),
                ))
            else:
                payload[key] = value
        if len(files) > config.MAX_UPLOAD_FILES:
            raise TooManyFiles(f"Maximum {config.MAX_UPLOAD_FILES} files allowed")
        return payload, files

    try:
        return json.loads(await request.body() or b"{}"), []
    except ValueError:
        raise ValidationFailed(
            [{"field": "body", "message": "Invalid JSON format"}],
            message="Please check your request body format",
        ) from None


@router.post("", status_code=201)
async def create_insurance(request: Request, store: RecordStore = Depends(get_store)):
    """Wizard step 2: save insurance details and up to two card images.

    Accepts JSON or multipart form data; card images go in ``cardImages``.
    """
    payload, files = await _read_payload(request)
    insurance = await submit_insurance(store, payload, files)
    return {"message": "Insurance information saved successfully", "data": insurance}


@router.get("/{patient_id}")
async def read_insurance(patient_id: str, store: RecordStore = Depends(get_store)):
    insurance = await get_insurance(store, parse_identifier(patient_id))
    return {"message": "Insurance information retrieved successfully", "data": insurance}
