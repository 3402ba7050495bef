"""Patient intake and maintenance routes."""

import logging
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, Request
from psycopg.types.json import Jsonb

from emr_api.database import DatabaseRuntime
from emr_api.dependencies import get_runtime, get_tenant_schema
from emr_api.errors import BadRequestError, DatabaseError, NotFoundError
from emr_api.queries import UpdateBuilder
from emr_api.schemas import PatientCreate, PatientUpdate, parse_payload, parse_update, read_json_object
from emr_api.tenancy import tenant_session

patientrouter = APIRouter()
logger = logging.getLogger("emr_api.patients")

LIST_PATIENTS = """
    SELECT patient_id, first_name, last_name, date_of_birth, created_at, updated_at
    FROM patients
    ORDER BY last_name, first_name
"""

INSERT_PATIENT = """
    INSERT INTO patients (
        first_name, last_name, date_of_birth, middle_initial, preferred_name,
        gender, phone_number, email, address_line1, address_line2, city,
        state_province, postal_code, country, is_medicare_eligible, custom_data
    )
    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
    RETURNING patient_id, first_name, last_name, date_of_birth, created_at
"""

DELETE_PATIENT = "DELETE FROM patients WHERE patient_id = %s"

UPDATE_RETURNING = ("patient_id", "first_name", "last_name", "date_of_birth", "updated_at")
JSON_COLUMNS = {"custom_data"}
INVALID_UPDATE = "Bad Request: Invalid data format provided for update."


@patientrouter.get("/patients")
async def list_patients(
    runtime: DatabaseRuntime = Depends(get_runtime),
    tenant: str = Depends(get_tenant_schema),
):
    async with tenant_session(runtime, tenant, "fetch patients") as conn:
        cursor = await conn.execute(LIST_PATIENTS)
        rows: List[Dict[str, Any]] = await cursor.fetchall()
    logger.info("Found %s patients for tenant %s", len(rows), tenant)
    return rows


@patientrouter.post("/patients", status_code=201)
async def create_patient(
    request: Request,
    runtime: DatabaseRuntime = Depends(get_runtime),
    tenant: str = Depends(get_tenant_schema),
):
    body = await read_json_object(request)
    patient = parse_payload(
        PatientCreate,
        body,
        "Bad Request: Missing required patient fields (first_name, last_name, date_of_birth).",
    )
    values = [
        patient.first_name,
        patient.last_name,
        patient.date_of_birth,
        patient.middle_initial,
        patient.preferred_name,
        patient.gender,
        patient.phone_number,
        patient.email,
        patient.address_line1,
        patient.address_line2,
        patient.city,
        patient.state_province,
        patient.postal_code,
        patient.country,
        patient.is_medicare_eligible,
        Jsonb(patient.custom_data),
    ]

    async with tenant_session(runtime, tenant, "create patient") as conn:
        cursor = await conn.execute(INSERT_PATIENT, values)
        created = await cursor.fetchone()
    if not created:
        raise DatabaseError("Internal Server Error: Failed to retrieve created patient details after insert.")

    logger.info("Created patient %s for tenant %s", created["patient_id"], tenant)
    return {"message": "Patient created successfully.", "patientId": created["patient_id"]}


@patientrouter.put("/patients/{patient_id}")
async def update_patient(
    patient_id: str,
    request: Request,
    runtime: DatabaseRuntime = Depends(get_runtime),
    tenant: str = Depends(get_tenant_schema),
):
    body = await read_json_object(request)
    if not body:
        raise BadRequestError("Bad Request: No fields provided for update.")

    changes = parse_update(PatientUpdate, body, INVALID_UPDATE)

    builder = UpdateBuilder("patients")
    for column, value in changes.items():
        if column in JSON_COLUMNS:
            value = Jsonb(value)
        builder.set(column, value)
    if not builder:
        raise BadRequestError("Bad Request: No updatable fields provided.")
    builder.touch("updated_at")
    query, params = builder.build("patient_id", patient_id, returning=UPDATE_RETURNING)

    async with tenant_session(
        runtime,
        tenant,
        f"update patient {patient_id}",
        invalid_format_message=INVALID_UPDATE,
    ) as conn:
        cursor = await conn.execute(query, params)
        updated = await cursor.fetchone()
    if not updated:
        raise NotFoundError(f"Patient with ID {patient_id} not found.")

    logger.info("Updated patient %s (%s) for tenant %s", patient_id, ", ".join(builder.columns), tenant)
    return {"message": "Patient updated successfully.", "patient": updated}


@patientrouter.delete("/patients/{patient_id}")
async def delete_patient(
    patient_id: str,
    runtime: DatabaseRuntime = Depends(get_runtime),
    tenant: str = Depends(get_tenant_schema),
):
    async with tenant_session(
        runtime,
        tenant,
        f"delete patient {patient_id}",
        foreign_key_status=409,
        invalid_format_message=f"Bad Request: Invalid format for patient ID '{patient_id}'.",
    ) as conn:
        cursor = await conn.execute(DELETE_PATIENT, [patient_id])
        deleted = cursor.rowcount
    if not deleted:
        raise NotFoundError(f"Patient with ID {patient_id} not found.")

    logger.info("Deleted patient %s for tenant %s", patient_id, tenant)
    return {"message": f"Patient {patient_id} deleted successfully."}
