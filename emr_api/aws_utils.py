"""Secrets Manager helpers for resolving Aurora database credentials.

The credentials secret is discovered rather than configured: RDS-managed
secrets are tagged with the ARN of the cluster they belong to, so we scan the
account's secrets for that tag and fall back to the ``rds!cluster-...`` naming
pattern. The discovered ARN is cached on the resolver; the secret value is
fetched every time because RDS rotates it.
"""

import json
import logging
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from emr_api.errors import CredentialResolutionError, CredentialRetrievalError

logger = logging.getLogger("emr_api.aws")

CLUSTER_ARN_TAG = "aws:rds:primaryDBClusterArn"
_INVALIDATING_ERROR_CODES = {"ResourceNotFoundException", "AccessDeniedException"}


@lru_cache(maxsize=None)
def get_secrets_client(region: str):
    """Return a cached Secrets Manager client for the given region."""
    return boto3.client("secretsmanager", region_name=region)


@dataclass(frozen=True)
class DatabaseCredentials:
    host: str
    port: int
    user: str
    password: str = field(repr=False)
    database: str


class CredentialResolver:
    """Locate and read the credentials secret for one database cluster."""

    def __init__(
        self,
        cluster_identifier: str,
        *,
        region: str,
        fallback_host: Optional[str] = None,
        fallback_database: Optional[str] = None,
        client=None,
    ):
        if not cluster_identifier:
            raise CredentialResolutionError("Database cluster identifier is not configured.")
        self.cluster_identifier = cluster_identifier
        self.region = region
        self.fallback_host = fallback_host
        self.fallback_database = fallback_database
        self._client = client
        self._secret_arn: Optional[str] = None

    @property
    def client(self):
        if self._client is None:
            self._client = get_secrets_client(self.region)
        return self._client

    @property
    def cached_secret_arn(self) -> Optional[str]:
        return self._secret_arn

    def invalidate(self) -> None:
        """Forget the cached secret ARN so the next call re-discovers it."""
        self._secret_arn = None

    def secret_arn(self) -> str:
        if self._secret_arn:
            logger.debug("Using cached secret ARN %s", self._secret_arn)
            return self._secret_arn

        try:
            arn = self._find_by_tag() or self._find_by_name()
        except (BotoCoreError, ClientError) as exc:
            raise CredentialResolutionError(f"Could not retrieve secret ARN: {exc}") from exc

        if not arn:
            raise CredentialResolutionError(
                f"Secret not found via tags or name pattern for cluster: {self.cluster_identifier}"
            )
        self._secret_arn = arn
        logger.info("Secret ARN determined and cached: %s", arn)
        return arn

    def _find_by_tag(self) -> Optional[str]:
        paginator = self.client.get_paginator("list_secrets")
        pages = paginator.paginate(
            IncludePlannedDeletion=False,
            SortOrder="desc",
            PaginationConfig={"PageSize": 100},
        )
        for page in pages:
            for secret in page.get("SecretList", []):
                for tag in secret.get("Tags") or []:
                    if tag.get("Key") != CLUSTER_ARN_TAG:
                        continue
                    if self.cluster_identifier in (tag.get("Value") or ""):
                        logger.info("Found secret %s via cluster tag", secret.get("Name"))
                        return secret["ARN"]
        return None

    def _find_by_name(self) -> Optional[str]:
        prefix = f"rds!cluster-{self.cluster_identifier.split('-')[-1]}"
        logger.info("Secret not found via tags; trying name prefix %s", prefix)
        response = self.client.list_secrets(
            Filters=[{"Key": "name", "Values": [prefix]}],
            MaxResults=5,
        )
        secrets = response.get("SecretList", [])
        if not secrets:
            return None
        logger.info("Found secret %s via name pattern", secrets[0].get("Name"))
        return secrets[0]["ARN"]

    def get_credentials(self) -> DatabaseCredentials:
        """Fetch the current credentials. Blocking: call off the event loop."""
        arn = self.secret_arn()
        try:
            response = self.client.get_secret_value(SecretId=arn)
        except ClientError as exc:
            code = exc.response.get("Error", {}).get("Code")
            if code in _INVALIDATING_ERROR_CODES:
                logger.warning("Invalidating cached secret ARN after %s", code)
                self.invalidate()
            raise CredentialRetrievalError(f"Could not retrieve database credentials: {exc}") from exc
        except BotoCoreError as exc:
            raise CredentialRetrievalError(f"Could not retrieve database credentials: {exc}") from exc

        if "SecretString" not in response:
            raise CredentialRetrievalError("Cannot handle binary secret value.")
        try:
            secret = json.loads(response["SecretString"])
        except ValueError as exc:
            raise CredentialRetrievalError("Secret value is not valid JSON.") from exc
        return self._parse_secret(secret)

    def _parse_secret(self, secret: dict) -> DatabaseCredentials:
        host = secret.get("host") or self.fallback_host
        if not host:
            raise CredentialRetrievalError("DB endpoint address not found in secret or configuration.")
        try:
            return DatabaseCredentials(
                host=host,
                port=int(secret.get("port") or 5432),
                user=secret["username"],
                password=secret["password"],
                database=secret.get("dbname") or self.fallback_database or "postgres",
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise CredentialRetrievalError(f"Malformed credentials secret: missing or invalid {exc}") from exc
