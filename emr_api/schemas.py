"""Request payload models and JSON body parsing."""

import json
import logging
from typing import Any, Dict, List, Optional

from fastapi import Request
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from emr_api.errors import BadRequestError

logger = logging.getLogger("emr_api.schemas")


async def read_json_object(request: Request) -> Dict[str, Any]:
    """Parse the request body as a JSON object; an empty body is ``{}``."""
    raw = await request.body()
    if not raw or not raw.strip():
        return {}
    try:
        body = json.loads(raw)
    except (UnicodeDecodeError, ValueError) as exc:
        logger.warning("Error parsing request body JSON: %s", exc)
        raise BadRequestError("Bad Request: Invalid JSON format in request body.") from exc
    if not isinstance(body, dict):
        raise BadRequestError("Bad Request: Invalid JSON object in body.")
    return body


def parse_payload(model, body: Dict[str, Any], message: str):
    """Validate ``body`` against ``model``, turning failures into a 400."""
    try:
        return model.model_validate(body)
    except ValidationError as exc:
        fields = sorted({".".join(str(loc) for loc in err["loc"]) for err in exc.errors()})
        raise BadRequestError(message, error=f"Invalid fields: {', '.join(fields)}") from exc


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)


def _blank_to_none(value):
    if isinstance(value, str) and not value.strip():
        return None
    return value


class _PatientFields(_Payload):
    middle_initial: Optional[str] = None
    preferred_name: Optional[str] = None
    gender: Optional[str] = None
    phone_number: Optional[str] = None
    email: Optional[str] = None
    address_line1: Optional[str] = None
    address_line2: Optional[str] = None
    city: Optional[str] = None
    state_province: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None
    is_medicare_eligible: bool = False
    custom_data: Dict[str, Any] = Field(default_factory=dict)

    @field_validator(
        "middle_initial",
        "preferred_name",
        "gender",
        "phone_number",
        "email",
        "address_line1",
        "address_line2",
        "city",
        "state_province",
        "postal_code",
        "country",
        mode="before",
    )
    @classmethod
    def _optional_text(cls, value):
        return _blank_to_none(value)

    @field_validator("is_medicare_eligible", mode="before")
    @classmethod
    def _null_is_false(cls, value):
        return False if value is None else value

    @field_validator("custom_data", mode="before")
    @classmethod
    def _null_is_empty(cls, value):
        return {} if value is None else value


class PatientCreate(_PatientFields):
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    date_of_birth: str = Field(..., min_length=1)


class PatientUpdate(_PatientFields):
    """Partial patient update; only the fields present in the body are applied."""

    first_name: Optional[str] = Field(None, min_length=1)
    last_name: Optional[str] = Field(None, min_length=1)
    date_of_birth: Optional[str] = Field(None, min_length=1)

    @field_validator("first_name", "last_name", "date_of_birth")
    @classmethod
    def _not_null(cls, value):
        if value is None:
            raise ValueError("may not be null")
        return value


def _code_list(value) -> Optional[List[Any]]:
    if isinstance(value, list) and value:
        return value
    return None


class _NoteText(_Payload):
    subjective: Optional[str] = None
    objective: Optional[str] = None
    assessment: Optional[str] = None
    plan: Optional[str] = None

    @field_validator("subjective", "objective", "assessment", "plan", mode="before")
    @classmethod
    def _optional_text(cls, value):
        return _blank_to_none(value)


class NoteCreate(_NoteText):
    patient_id: str = Field(..., min_length=1)
    doctor_id: Optional[str] = None
    dx_codes: Optional[List[Any]] = None
    billing_codes: Optional[List[Any]] = None

    @field_validator("doctor_id", mode="before")
    @classmethod
    def _optional_doctor(cls, value):
        return _blank_to_none(value)

    @field_validator("dx_codes", "billing_codes", mode="before")
    @classmethod
    def _lists_only(cls, value):
        return _code_list(value)


class NoteUpdate(_NoteText):
    pass


# Request field -> column for partial updates; unlisted fields keep their name.
NOTE_UPDATE_COLUMNS = {
    "subjective": "subjective_note",
    "objective": "objective_note",
    "assessment": "assessment_note",
    "plan": "plan_note",
}


class QueueEntryCreate(_Payload):
    patient_id: str = Field(..., min_length=1)
    notes: Optional[str] = None

    @classmethod
    def from_body(cls, body: Dict[str, Any]) -> "QueueEntryCreate":
        data = dict(body)
        if "patient_id" not in data and "patientId" in data:
            data["patient_id"] = data["patientId"]
        return parse_payload(cls, data, "Bad Request: Missing required field 'patientId'.")


def parse_update(
    model, body: Dict[str, Any], message: str, columns: Optional[Dict[str, str]] = None
) -> Dict[str, Any]:
    """Validate a partial update and return ``{column: value}`` for the fields it sets.

    Unrecognized fields are ignored; a recognized field with the wrong type is a 400.
    """
    ignored = sorted(set(body) - set(model.model_fields))
    if ignored:
        logger.debug("Ignoring unrecognized update fields: %s", ", ".join(ignored))
    update = parse_payload(model, body, message)
    columns = columns or {}
    return {columns.get(name, name): value for name, value in update.model_dump(exclude_unset=True).items()}
