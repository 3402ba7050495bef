#!/usr/bin/env python3
"""Create the schema, tables and grants for a new clinic tenant."""

from __future__ import annotations

import argparse
import logging
import sys

import psycopg
from psycopg.conninfo import make_conninfo

from emr_api.aws_utils import CredentialResolver
from emr_api.errors import CredentialError, InvalidTenantError
from emr_api.provisioning import provision_tenant
from emr_api.settings import get_settings


def _parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("schema", help="Tenant schema name (the custom:clinic_id claim value)")
    parser.add_argument("--clinic-name", help="Initial clinic_settings.clinic_name")
    parser.add_argument("--app-role", help="Database role granted DML on the tenant tables")
    parser.add_argument(
        "--dsn",
        help="libpq connection string; defaults to the cluster secret in Secrets Manager",
    )
    parser.add_argument(
        "--skip-shared",
        action="store_true",
        help="Do not (re)create the shared extension and trigger function",
    )
    return parser.parse_args(argv)


def _conninfo_from_secret() -> str:
    settings = get_settings()
    resolver = CredentialResolver(
        settings.db_cluster_identifier,
        region=settings.aws_region,
        fallback_host=settings.db_cluster_endpoint,
        fallback_database=settings.db_name,
    )
    creds = resolver.get_credentials()
    return make_conninfo(
        host=creds.host,
        port=creds.port,
        user=creds.user,
        password=creds.password,
        dbname=creds.database,
        sslmode=settings.db_sslmode,
    )


def main(argv=None) -> int:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    args = _parse_args(argv)

    try:
        conninfo = args.dsn or _conninfo_from_secret()
        with psycopg.connect(conninfo) as conn:
            count = provision_tenant(
                conn,
                args.schema,
                app_role=args.app_role,
                clinic_name=args.clinic_name,
                include_shared=not args.skip_shared,
            )
    except (InvalidTenantError, CredentialError, psycopg.Error) as exc:
        print(f"Provisioning failed: {exc}", file=sys.stderr)
        return 1

    print(f"Tenant schema {args.schema} ready ({count} statements).")
    return 0


if __name__ == "__main__":
    sys.exit(main())
