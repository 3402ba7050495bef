"""SOAP note routes.

Notes are created when an encounter is saved and edited while in draft; there
is no delete route.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from psycopg.types.json import Jsonb

from emr_api.database import DatabaseRuntime
from emr_api.dependencies import get_runtime, get_tenant_schema
from emr_api.errors import BadRequestError, DatabaseError, NotFoundError
from emr_api.queries import UpdateBuilder
from emr_api.schemas import (
    NOTE_UPDATE_COLUMNS,
    NoteCreate,
    NoteUpdate,
    parse_payload,
    parse_update,
    read_json_object,
)
from emr_api.tenancy import tenant_session

soapnoterouter = APIRouter()
logger = logging.getLogger("emr_api.soapnotes")

NOTES_TABLE = "notes"
NOTE_COLUMNS = (
    "note_id",
    "patient_id",
    "doctor_id",
    "note_type",
    "signed_status",
    "subjective_note",
    "objective_note",
    "assessment_note",
    "plan_note",
    "dx_codes",
    "billing_codes",
    "custom_data",
    "created_at",
    "updated_at",
)

INSERT_NOTE = """
    INSERT INTO notes (
        patient_id, doctor_id, subjective_note, objective_note, assessment_note,
        plan_note, dx_codes, billing_codes, note_type
    )
    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, 'SOAP')
    RETURNING note_id, created_at, updated_at, signed_status
"""

LIST_NOTES = """
    SELECT note_id, patient_id, doctor_id, note_type, created_at, updated_at, signed_status
    FROM notes
"""

GET_NOTE = f"SELECT {', '.join(NOTE_COLUMNS)} FROM notes WHERE note_id = %s"

INVALID_NOTE_UPDATE = "Bad Request: Invalid data format provided for SOAP note update."


def _jsonb_or_none(codes):
    return Jsonb(codes) if codes else None


@soapnoterouter.post("/soapnotes", status_code=201)
async def create_soap_note(
    request: Request,
    runtime: DatabaseRuntime = Depends(get_runtime),
    tenant: str = Depends(get_tenant_schema),
):
    body = await read_json_object(request)
    note = parse_payload(NoteCreate, body, "Bad Request: Missing required field 'patient_id'.")

    values = [
        note.patient_id,
        note.doctor_id,
        note.subjective,
        note.objective,
        note.assessment,
        note.plan,
        _jsonb_or_none(note.dx_codes),
        _jsonb_or_none(note.billing_codes),
    ]
    async with tenant_session(
        runtime,
        tenant,
        "save SOAP note",
        references={
            "fk_notes_patient": ("patient_id", note.patient_id),
            "fk_notes_doctor": ("doctor_id", note.doctor_id),
        },
    ) as conn:
        cursor = await conn.execute(INSERT_NOTE, values)
        created = await cursor.fetchone()
    if not created:
        raise DatabaseError("Internal Server Error: Failed to retrieve created note details after insert.")

    logger.info("Inserted SOAP note %s for tenant %s", created["note_id"], tenant)
    return {"message": "SOAP note created successfully.", "note": created}


@soapnoterouter.get("/soapnotes")
async def list_soap_notes(
    patient_id: Optional[str] = None,
    runtime: DatabaseRuntime = Depends(get_runtime),
    tenant: str = Depends(get_tenant_schema),
):
    query = LIST_NOTES
    params = []
    if patient_id:
        query += " WHERE patient_id = %s"
        params.append(patient_id)
    query += " ORDER BY created_at DESC"

    async with tenant_session(
        runtime,
        tenant,
        "retrieve SOAP notes list",
        invalid_format_message=f"Bad Request: Invalid format for patient_id filter '{patient_id}'.",
    ) as conn:
        cursor = await conn.execute(query, params)
        notes = await cursor.fetchall()

    logger.info("Retrieved %s SOAP notes for tenant %s", len(notes), tenant)
    return {"message": "SOAP notes retrieved successfully.", "notes": notes}


@soapnoterouter.get("/soapnotes/{note_id}")
async def get_soap_note(
    note_id: str,
    runtime: DatabaseRuntime = Depends(get_runtime),
    tenant: str = Depends(get_tenant_schema),
):
    async with tenant_session(
        runtime,
        tenant,
        f"retrieve SOAP note {note_id}",
        invalid_format_message=f"Bad Request: Invalid format for SOAP note ID '{note_id}'.",
    ) as conn:
        cursor = await conn.execute(GET_NOTE, [note_id])
        note = await cursor.fetchone()
    if not note:
        raise NotFoundError(f"SOAP note with ID {note_id} not found.")
    return {"message": "SOAP note retrieved successfully.", "note": note}


@soapnoterouter.put("/soapnotes/{note_id}")
async def update_soap_note(
    note_id: str,
    request: Request,
    runtime: DatabaseRuntime = Depends(get_runtime),
    tenant: str = Depends(get_tenant_schema),
):
    body = await read_json_object(request)
    if not body:
        raise BadRequestError("Bad Request: No fields provided for update.")

    changes = parse_update(NoteUpdate, body, INVALID_NOTE_UPDATE, NOTE_UPDATE_COLUMNS)

    builder = UpdateBuilder(NOTES_TABLE)
    for column, value in changes.items():
        builder.set(column, value)
    if not builder:
        raise BadRequestError("Bad Request: No updatable SOAP note fields provided.")
    builder.touch("updated_at")
    query, params = builder.build("note_id", note_id, returning=NOTE_COLUMNS)

    async with tenant_session(
        runtime,
        tenant,
        f"update SOAP note {note_id}",
        invalid_format_message=INVALID_NOTE_UPDATE,
    ) as conn:
        cursor = await conn.execute(query, params)
        updated = await cursor.fetchone()
    if not updated:
        raise NotFoundError(f"SOAP note with ID {note_id} not found.")

    logger.info("Updated SOAP note %s for tenant %s", note_id, tenant)
    return {"message": "SOAP note updated successfully.", "note": updated}
