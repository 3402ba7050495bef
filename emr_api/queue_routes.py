"""Waiting-queue routes.

Entries are created when a patient checks in and deleted when a clinician
takes or closes the encounter; they are not kept around as completed rows.
"""

import logging

from fastapi import APIRouter, Depends, Request

from emr_api.database import DatabaseRuntime
from emr_api.dependencies import get_runtime, get_tenant_schema
from emr_api.errors import DatabaseError, NotFoundError
from emr_api.schemas import QueueEntryCreate, read_json_object
from emr_api.tenancy import tenant_session

queuerouter = APIRouter()
logger = logging.getLogger("emr_api.queue")

LIST_QUEUE = """
    SELECT
        wq.queue_entry_id,
        wq.patient_id,
        p.first_name,
        p.last_name,
        wq.queue_timestamp,
        wq.status,
        wq.notes
    FROM waiting_queue wq
    JOIN patients p ON wq.patient_id = p.patient_id
    ORDER BY wq.queue_timestamp ASC, wq.queue_entry_id ASC
"""

INSERT_QUEUE_ENTRY = """
    INSERT INTO waiting_queue (patient_id, status, notes)
    VALUES (%s, 'waiting', %s)
    RETURNING queue_entry_id, patient_id, queue_timestamp, status, notes
"""

DELETE_QUEUE_ENTRY = "DELETE FROM waiting_queue WHERE queue_entry_id = %s"


@queuerouter.get("/queue")
@queuerouter.get("/waiting-queue")
async def list_queue(
    runtime: DatabaseRuntime = Depends(get_runtime),
    tenant: str = Depends(get_tenant_schema),
):
    async with tenant_session(runtime, tenant, "fetch waiting queue") as conn:
        cursor = await conn.execute(LIST_QUEUE)
        rows = await cursor.fetchall()
    logger.info("Fetched %s waiting queue entries for tenant %s", len(rows), tenant)
    return rows


@queuerouter.post("/queue", status_code=201)
async def enqueue_patient(
    request: Request,
    runtime: DatabaseRuntime = Depends(get_runtime),
    tenant: str = Depends(get_tenant_schema),
):
    entry = QueueEntryCreate.from_body(await read_json_object(request))

    async with tenant_session(
        runtime,
        tenant,
        "add patient to waiting queue",
        references={"fk_queue_patient": ("patientId", entry.patient_id)},
        invalid_format_message=f"Bad Request: Invalid format for patientId '{entry.patient_id}'.",
    ) as conn:
        cursor = await conn.execute(INSERT_QUEUE_ENTRY, [entry.patient_id, entry.notes])
        created = await cursor.fetchone()
    if not created:
        raise DatabaseError("Internal Server Error: Failed to retrieve queue entry after insert.")

    logger.info("Queued patient %s for tenant %s", entry.patient_id, tenant)
    return {"message": "Patient added to waiting queue.", "queueEntry": created}


@queuerouter.delete("/queue/{queue_entry_id}")
async def remove_queue_entry(
    queue_entry_id: str,
    runtime: DatabaseRuntime = Depends(get_runtime),
    tenant: str = Depends(get_tenant_schema),
):
    async with tenant_session(
        runtime,
        tenant,
        f"remove queue entry {queue_entry_id}",
        invalid_format_message=f"Bad Request: Invalid format for queue entry ID '{queue_entry_id}'.",
    ) as conn:
        cursor = await conn.execute(DELETE_QUEUE_ENTRY, [queue_entry_id])
        deleted = cursor.rowcount
    if not deleted:
        raise NotFoundError(f"Queue entry with ID {queue_entry_id} not found.")

    logger.info("Removed queue entry %s for tenant %s", queue_entry_id, tenant)
    return {"message": f"Queue entry {queue_entry_id} removed successfully."}
