"""Application settings for the EMR API Lambda."""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = Field("EMR API", description="Service title")
    aws_region: str = Field(..., description="AWS region of the Secrets Manager secret")
    db_cluster_identifier: str = Field(
        ...,
        description="Aurora cluster identifier used to discover the credentials secret.",
    )
    db_cluster_endpoint: Optional[str] = Field(
        None,
        description="Writer endpoint used when the secret does not carry a host.",
    )
    db_name: Optional[str] = Field(
        None, description="Database name used when the secret does not carry one."
    )
    db_pool_max: int = Field(5, ge=1, description="Maximum pooled connections per process.")
    db_idle_timeout_seconds: float = Field(30.0, description="Close idle connections after this long.")
    db_connect_timeout_seconds: int = Field(10, description="Connection and checkout timeout.")
    db_sslmode: str = Field("require", description="libpq sslmode for pooled connections.")
    shared_schema: str = Field(
        "public",
        description="Schema appended to every tenant search path for shared objects.",
    )
    tenant_claim: str = Field(
        "custom:clinic_id", description="Cognito claim carrying the tenant schema name."
    )
    cors_allow_origin: str = Field("*", description="Access-Control-Allow-Origin value.")
    log_level: str = Field("INFO", description="Level for the emr_api loggers.")

    model_config = SettingsConfigDict(case_sensitive=False)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
