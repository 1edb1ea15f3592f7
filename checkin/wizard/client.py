"""HTTP client for the check-in API and the session that drives the wizard.

The session validates each step locally, posts it, and only marks the step
completed (and advances) when the server accepts it. Failures are kept as
inline field errors or a page-level banner; nothing fails silently.
"""

from __future__ import annotations

import logging
import mimetypes
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import httpx

from checkin import config
from checkin.sanitization import validate_payload
from checkin.services.steps import (
    CLINICAL_FORMS_SCHEMA,
    DEMOGRAPHICS_SCHEMA,
    INSURANCE_SCHEMA,
)
from checkin.wizard.state import IntakeWizard, Step

logger = logging.getLogger(__name__)


class ApiError(Exception):
    """A non-2xx response, a timeout, or a network failure."""

    def __init__(self, status_code: int | None, payload: dict[str, Any] | None = None, message: str = "") -> None:
        self.status_code = status_code
        self.payload = payload or {}
        self.message = message or self.payload.get("error") or "Request failed"
        super().__init__(self.message)

    @property
    def code(self) -> str | None:
        return self.payload.get("code")

    @property
    def field_errors(self) -> dict[str, str]:
        errors: dict[str, str] = {}
        for detail in self.payload.get("details") or []:
            if isinstance(detail, dict) and "field" in detail:
                errors.setdefault(detail["field"], detail.get("message", "Invalid value"))
        return errors


class CheckInClient:
    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url or config.API_BASE_URL,
            timeout=timeout or config.API_TIMEOUT_SECONDS,
            transport=transport,
        )

    async def __aenter__(self) -> CheckInClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, url: str, **kwargs: Any) -> dict[str, Any]:
        try:
            resp = await self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            raise ApiError(None, message="The request timed out") from exc
        except httpx.HTTPError as exc:
            raise ApiError(None, message=f"Network error: {exc}") from exc
        try:
            payload = resp.json()
        except ValueError:
            payload = {}
        if resp.is_error:
            raise ApiError(resp.status_code, payload if isinstance(payload, dict) else {})
        return payload

    async def health(self) -> dict[str, Any]:
        return await self._request("GET", "/health")

    async def create_patient(self, fields: dict[str, Any]) -> dict[str, Any]:
        return (await self._request("POST", "/patients", json=fields))["data"]

    async def create_insurance(self, fields: dict[str, Any], card_images: list[str] | None = None) -> dict[str, Any]:
        if not card_images:
            return (await self._request("POST", "/insurance", json=fields))["data"]
        files = []
        for path in card_images:
            content_type = mimetypes.guess_type(path)[0] or "application/octet-stream"
            files.append(("cardImages", (Path(path).name, Path(path).read_bytes(), content_type)))
        data = {k: str(v) for k, v in fields.items() if v is not None}
        return (await self._request("POST", "/insurance", data=data, files=files))["data"]

    async def create_clinical_forms(self, fields: dict[str, Any]) -> dict[str, Any]:
        return (await self._request("POST", "/clinical-forms", json=fields))["data"]

    async def complete(self, patient_id: int, estimated_wait_time: int | None = None) -> dict[str, Any]:
        body: dict[str, Any] = {"patientId": patient_id}
        if estimated_wait_time is not None:
            body["estimatedWaitTime"] = estimated_wait_time
        return (await self._request("POST", "/completion", json=body))["data"]

    async def get_completion(self, patient_id: int) -> dict[str, Any]:
        return (await self._request("GET", f"/completion/{patient_id}"))["data"]

    async def list_submissions(self, **filters: Any) -> tuple[list[dict[str, Any]], int]:
        params = {
            "search": filters.get("search"),
            "dateFrom": filters.get("date_from"),
            "dateTo": filters.get("date_to"),
            "status": filters.get("status"),
        }
        payload = await self._request("GET", "/admin/submissions", params={k: v for k, v in params.items() if v})
        return payload["data"], payload["total"]

    async def get_submission(self, submission_id: int) -> dict[str, Any]:
        return (await self._request("GET", f"/admin/submissions/{submission_id}"))["data"]


# Client form field -> API field, per step
DEMOGRAPHICS_FIELDS = {
    "firstName": "first_name",
    "lastName": "last_name",
    "dateOfBirth": "date_of_birth",
    "phoneNumber": "phone",
    "email": "email",
}
# API field -> form field; the joined address reports against the street line
DEMOGRAPHICS_FORM_FIELDS = {api: local for local, api in DEMOGRAPHICS_FIELDS.items()}


def demographics_payload(form: dict[str, Any]) -> dict[str, Any]:
    payload = {api: form.get(local, "") for local, api in DEMOGRAPHICS_FIELDS.items()}
    locality = " ".join(p for p in (form.get("state", ""), form.get("zipCode", "")) if p)
    parts = [p for p in (form.get("address", ""), form.get("city", ""), locality) if p]
    payload["address"] = ", ".join(parts)
    return payload


def demographics_form_errors(errors: dict[str, str]) -> dict[str, str]:
    return {DEMOGRAPHICS_FORM_FIELDS.get(name, name): message for name, message in errors.items()}


@dataclass
class StepOutcome:
    ok: bool
    step: Step
    field_errors: dict[str, str] = field(default_factory=dict)
    banner: str | None = None
    data: dict[str, Any] | None = None


class WizardSession:
    """Drives :class:`IntakeWizard` against the API."""

    def __init__(self, wizard: IntakeWizard, client: CheckInClient) -> None:
        self.wizard = wizard
        self.client = client
        self.completion: dict[str, Any] | None = None
        self._completion_requested = False

    def _local_errors(self, payload: dict[str, Any], schema: dict) -> dict[str, str]:
        _, errors = validate_payload(payload, schema)
        return {e["field"]: e["message"] for e in errors}

    async def _post(self, step: Step, call) -> StepOutcome:
        try:
            data = await call()
        except ApiError as exc:
            logger.warning("Step %s rejected: %s", int(step), exc.message)
            return StepOutcome(False, step, field_errors=exc.field_errors, banner=exc.message)
        return StepOutcome(True, step, data=data)

    async def submit_demographics(self, **fields: Any) -> StepOutcome:
        self.wizard.navigate_to(Step.DEMOGRAPHICS)
        self.wizard.update_form_data(Step.DEMOGRAPHICS, **fields)
        payload = demographics_payload(self.wizard.section(Step.DEMOGRAPHICS).model_dump())
        errors = self._local_errors(payload, DEMOGRAPHICS_SCHEMA)
        if errors:
            return StepOutcome(False, Step.DEMOGRAPHICS, field_errors=demographics_form_errors(errors))
        outcome = await self._post(Step.DEMOGRAPHICS, lambda: self.client.create_patient(payload))
        if outcome.ok:
            self.wizard.set_patient_id(outcome.data["id"])
            self.wizard.advance()
        else:
            outcome.field_errors = demographics_form_errors(outcome.field_errors)
        return outcome

    async def submit_insurance(self, **fields: Any) -> StepOutcome:
        return await self._submit_dependent_step(Step.INSURANCE, INSURANCE_SCHEMA, fields)

    async def submit_clinical_forms(self, **fields: Any) -> StepOutcome:
        return await self._submit_dependent_step(Step.CLINICAL_FORMS, CLINICAL_FORMS_SCHEMA, fields)

    async def _submit_dependent_step(self, step: Step, schema: dict, fields: dict[str, Any]) -> StepOutcome:
        if self.wizard.navigate_to(step) != step:
            return StepOutcome(False, step, banner="Please complete the previous steps first")
        self.wizard.update_form_data(step, **fields)
        form = self.wizard.section(step).model_dump()
        card_images = form.pop("cardImages", None)
        payload = {**form, "patientId": self.wizard.patient_id}
        errors = self._local_errors(payload, schema)
        if errors:
            return StepOutcome(False, step, field_errors=errors)

        if step is Step.INSURANCE:
            outcome = await self._post(step, lambda: self.client.create_insurance(payload, card_images))
        else:
            outcome = await self._post(step, lambda: self.client.create_clinical_forms(payload))
        if outcome.ok:
            self.wizard.advance()
        return outcome

    async def complete(self, estimated_wait_time: int | None = None, retry: bool = False) -> StepOutcome:
        """Send the completion request once.

        Repeated calls return the first outcome without another request
        unless ``retry`` is set after a failure.
        """
        if self.wizard.navigate_to(Step.CONFIRMATION) != Step.CONFIRMATION:
            return StepOutcome(False, Step.CONFIRMATION, banner="Please complete the previous steps first")
        if self._completion_requested and not retry:
            return StepOutcome(self.completion is not None, Step.CONFIRMATION, data=self.completion)
        if self.wizard.patient_id is None:
            return StepOutcome(False, Step.CONFIRMATION, banner="Patient ID not found")

        self._completion_requested = True
        outcome = await self._post(
            Step.CONFIRMATION,
            lambda: self.client.complete(self.wizard.patient_id, estimated_wait_time),
        )
        if outcome.ok:
            self.completion = outcome.data
            self.wizard.mark_step_completed(Step.CONFIRMATION)
        return outcome

    def start_over(self) -> None:
        self.wizard.start_over()
        self.completion = None
        self._completion_requested = False
