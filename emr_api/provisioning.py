"""DDL for onboarding a clinic tenant.

Every clinic gets its own schema holding the same six tables. Shared objects
(the ``pgcrypto`` extension and the ``set_updated_at`` trigger function) live
in the shared schema and are created once per database.
"""

import logging
from typing import List, Optional

from psycopg import sql

from emr_api.errors import InvalidTenantError
from emr_api.tenancy import is_valid_schema_name

logger = logging.getLogger("emr_api.provisioning")

# Table bodies; {schema} is substituted with the quoted tenant schema.
TENANT_TABLES = {
    "clinic_settings": """
        id BOOLEAN PRIMARY KEY DEFAULT TRUE CHECK (id),
        clinic_name TEXT,
        custom_terms TEXT,
        custom_llm_instructions TEXT,
        fee_schedule JSONB NOT NULL DEFAULT '{{}}'::jsonb,
        created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP
    """,
    "doctors": """
        doctor_id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        first_name TEXT NOT NULL,
        last_name TEXT NOT NULL,
        credentials TEXT,
        is_active BOOLEAN NOT NULL DEFAULT TRUE,
        created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP
    """,
    "custom_form_fields": """
        field_id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        area TEXT NOT NULL,
        label TEXT NOT NULL,
        field_type TEXT NOT NULL,
        options JSONB,
        is_required BOOLEAN NOT NULL DEFAULT FALSE,
        display_order INTEGER NOT NULL DEFAULT 0,
        created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP
    """,
    "patients": """
        patient_id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        first_name TEXT NOT NULL,
        last_name TEXT NOT NULL,
        middle_initial TEXT,
        preferred_name TEXT,
        date_of_birth DATE NOT NULL,
        gender TEXT,
        phone_number TEXT,
        email TEXT UNIQUE,
        address_line1 TEXT,
        address_line2 TEXT,
        city TEXT,
        state_province TEXT,
        postal_code TEXT,
        country TEXT,
        is_medicare_eligible BOOLEAN NOT NULL DEFAULT FALSE,
        custom_data JSONB NOT NULL DEFAULT '{{}}'::jsonb,
        created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP
    """,
    "notes": """
        note_id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        patient_id UUID NOT NULL,
        doctor_id UUID,
        note_type TEXT NOT NULL DEFAULT 'SOAP',
        signed_status TEXT NOT NULL DEFAULT 'Draft'
            CHECK (signed_status IN ('Draft', 'Signed', 'Addendum')),
        subjective_note TEXT,
        objective_note TEXT,
        assessment_note TEXT,
        plan_note TEXT,
        dx_codes JSONB,
        billing_codes JSONB,
        custom_data JSONB NOT NULL DEFAULT '{{}}'::jsonb,
        created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
        CONSTRAINT fk_notes_patient FOREIGN KEY (patient_id)
            REFERENCES {schema}.patients (patient_id) ON DELETE CASCADE,
        CONSTRAINT fk_notes_doctor FOREIGN KEY (doctor_id)
            REFERENCES {schema}.doctors (doctor_id) ON DELETE SET NULL
    """,
    "waiting_queue": """
        queue_entry_id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        patient_id UUID NOT NULL,
        queue_timestamp TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
        status TEXT NOT NULL DEFAULT 'waiting'
            CHECK (status IN ('waiting', 'in_progress', 'completed')),
        notes TEXT,
        CONSTRAINT fk_queue_patient FOREIGN KEY (patient_id)
            REFERENCES {schema}.patients (patient_id) ON DELETE CASCADE
    """,
}

TENANT_INDEXES = (
    ("idx_patients_name", "patients", "last_name, first_name"),
    ("idx_notes_patient_created", "notes", "patient_id, created_at DESC"),
    ("idx_waiting_queue_timestamp", "waiting_queue", "queue_timestamp"),
)

TABLES_WITH_UPDATED_AT = ("clinic_settings", "doctors", "custom_form_fields", "patients", "notes")


def shared_schema_statements(shared_schema: str = "public") -> List[sql.Composed]:
    shared = sql.Identifier(shared_schema)
    return [
        sql.SQL("CREATE EXTENSION IF NOT EXISTS pgcrypto WITH SCHEMA {}").format(shared),
        sql.SQL(
            "CREATE OR REPLACE FUNCTION {}.set_updated_at() RETURNS trigger "
            "LANGUAGE plpgsql AS $$ BEGIN NEW.updated_at = CURRENT_TIMESTAMP; RETURN NEW; END; $$"
        ).format(shared),
    ]


def tenant_schema_statements(
    schema: str,
    *,
    shared_schema: str = "public",
    app_role: Optional[str] = None,
    clinic_name: Optional[str] = None,
) -> List[sql.Composed]:
    """Ordered, idempotent DDL creating one tenant schema."""
    if not is_valid_schema_name(schema):
        raise InvalidTenantError(f"Invalid tenant schema name: {schema!r}")

    ident = sql.Identifier(schema)
    statements = [sql.SQL("CREATE SCHEMA IF NOT EXISTS {}").format(ident)]

    for table, body in TENANT_TABLES.items():
        statements.append(
            sql.SQL("CREATE TABLE IF NOT EXISTS {}.{} (" + body + ")").format(
                ident, sql.Identifier(table), schema=ident
            )
        )

    for index, table, columns in TENANT_INDEXES:
        statements.append(
            sql.SQL("CREATE INDEX IF NOT EXISTS {} ON {}.{} (" + columns + ")").format(
                sql.Identifier(index), ident, sql.Identifier(table)
            )
        )

    for table in TABLES_WITH_UPDATED_AT:
        target = sql.SQL("{}.{}").format(ident, sql.Identifier(table))
        statements.append(sql.SQL("DROP TRIGGER IF EXISTS set_updated_at ON {}").format(target))
        statements.append(
            sql.SQL(
                "CREATE TRIGGER set_updated_at BEFORE UPDATE ON {} "
                "FOR EACH ROW EXECUTE FUNCTION {}.set_updated_at()"
            ).format(target, sql.Identifier(shared_schema))
        )

    statements.append(
        sql.SQL(
            "INSERT INTO {}.clinic_settings (id, clinic_name) VALUES (TRUE, {}) "
            "ON CONFLICT (id) DO NOTHING"
        ).format(ident, sql.Literal(clinic_name))
    )

    if app_role:
        role = sql.Identifier(app_role)
        statements.extend(
            [
                sql.SQL("GRANT USAGE ON SCHEMA {} TO {}").format(ident, role),
                sql.SQL(
                    "GRANT SELECT, INSERT, UPDATE, DELETE ON ALL TABLES IN SCHEMA {} TO {}"
                ).format(ident, role),
            ]
        )
    return statements


def provision_tenant(
    conn,
    schema: str,
    *,
    shared_schema: str = "public",
    app_role: Optional[str] = None,
    clinic_name: Optional[str] = None,
    include_shared: bool = True,
) -> int:
    """Create (or complete) a tenant schema in one transaction.

    Returns the number of statements executed.
    """
    statements = tenant_schema_statements(
        schema, shared_schema=shared_schema, app_role=app_role, clinic_name=clinic_name
    )
    if include_shared:
        statements = shared_schema_statements(shared_schema) + statements

    with conn.transaction():
        for statement in statements:
            conn.execute(statement)
    logger.info("Provisioned tenant schema %s (%s statements)", schema, len(statements))
    return len(statements)
