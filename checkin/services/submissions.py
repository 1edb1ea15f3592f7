"""Admin view over submissions: filter, join and derive status."""

import logging
from typing import Any

from checkin import config
from checkin.errors import InvalidStatus, NotFound
from checkin.models.submission import (
    SubmissionDetail,
    SubmissionFilters,
    SubmissionListItem,
    SubmissionStatus,
    to_detail,
    to_list_item,
)
from checkin.repositories import RecordStore
from checkin.sanitization import sanitize_date, sanitize_string

logger = logging.getLogger(__name__)


def tristate_enabled() -> bool:
    return config.SUBMISSION_STATUS_MODE == "tristate"


def allowed_statuses() -> list[str]:
    if tristate_enabled():
        return [s.value for s in SubmissionStatus]
    return [SubmissionStatus.COMPLETED.value, SubmissionStatus.INCOMPLETE.value]


def parse_filters(
    search: Any = None,
    date_from: Any = None,
    date_to: Any = None,
    status: Any = None,
) -> SubmissionFilters:
    """Sanitize raw query parameters into :class:`SubmissionFilters`.

    Unparseable dates are dropped; an unknown status raises :class:`InvalidStatus`.
    """
    status_value = sanitize_string(status) if status else None
    if status_value:
        allowed = allowed_statuses()
        if status_value not in allowed:
            quoted = " or ".join(f'"{s}"' for s in allowed)
            raise InvalidStatus(f"Status must be either {quoted}")
    search_value = sanitize_string(search) if isinstance(search, str) else None
    return SubmissionFilters(
        search=search_value or None,
        date_from=sanitize_date(date_from) if date_from else None,
        date_to=sanitize_date(date_to) if date_to else None,
        status=SubmissionStatus(status_value) if status_value else None,
    )


async def list_submissions(store: RecordStore, filters: SubmissionFilters) -> list[SubmissionListItem]:
    tristate = tristate_enabled()
    rows = []
    for aggregate in await store.list_submissions(filters):
        if filters.matches_status(aggregate.derive_status(tristate)):
            rows.append(to_list_item(aggregate, tristate))
    logger.info("Admin submissions listed - %d records returned", len(rows))
    return rows


async def get_submission(store: RecordStore, patient_id: int) -> SubmissionDetail:
    aggregate = await store.get_submission(patient_id)
    if aggregate is None:
        raise NotFound(
            "No submission found with the provided ID",
            error="Submission not found",
            code="SUBMISSION_NOT_FOUND",
        )
    logger.info("Admin detail view accessed for patient %s", patient_id)
    return to_detail(aggregate, tristate_enabled())
