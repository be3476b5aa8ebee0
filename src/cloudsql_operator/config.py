"""Operator configuration loaded from a TOML file."""

import logging
import os
from pathlib import Path
from typing import Optional

import toml
from pydantic import BaseModel, Field, field_validator

from cloudsql_operator import constants

logger = logging.getLogger(__name__)

CONFIG_FILE_ENV_VAR = "CLOUDSQL_OPERATOR_CONFIG"

LOG_LEVELS = ("debug", "info", "warning", "error", "critical")


class AdmissionConfig(BaseModel):
    """Admission webhook settings."""

    bind_address: str = Field(
        default=constants.DEFAULT_WEBHOOK_BIND_ADDRESS,
        description="host:port where the admission webhook is served",
    )
    cloud_sql_proxy_image: str = Field(
        default=constants.DEFAULT_CLOUD_SQL_PROXY_IMAGE,
        description="Image used for the injected Cloud SQL proxy sidecar",
    )
    service_name: str = Field(
        default=constants.APPLICATION_NAME,
        description="Name of the service backing the admission webhook",
    )
    shutdown_grace_period_seconds: float = 5.0

    @property
    def host(self) -> str:
        return self.bind_address.rsplit(":", 1)[0] or "0.0.0.0"

    @property
    def port(self) -> int:
        return int(self.bind_address.rsplit(":", 1)[1])


class ClusterConfig(BaseModel):
    """Cluster access settings."""

    kubeconfig: str = ""
    namespace: str = constants.DEFAULT_NAMESPACE
    manage_crds: bool = True


class ControllersConfig(BaseModel):
    """Reconciliation loop settings."""

    resync_period_seconds: float = 10.0
    retry_delay_seconds: float = 10.0
    workers: int = Field(default=1, ge=1)


class LoggingConfig(BaseModel):
    level: str = "info"

    @field_validator("level")
    @classmethod
    def validate_level(cls, value):
        value = value.lower()
        # "warn" is accepted for compatibility with older configuration files.
        if value == "warn":
            value = "warning"
        if value not in LOG_LEVELS:
            raise ValueError(f"{value!r} is not a valid log level")
        return value


class GCPConfig(BaseModel):
    """Google Cloud Platform settings."""

    admin_service_account_key_path: str = ""
    client_service_account_key_path: str = ""
    project_id: str = ""


class Configuration(BaseModel):
    """Root configuration object."""

    admission: AdmissionConfig = Field(default_factory=AdmissionConfig)
    cluster: ClusterConfig = Field(default_factory=ClusterConfig)
    controllers: ControllersConfig = Field(default_factory=ControllersConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    gcp: GCPConfig = Field(default_factory=GCPConfig)

    def read_client_credentials(self) -> str:
        """Read the credentials handed to the Cloud SQL proxy sidecars."""
        path = self.gcp.client_service_account_key_path
        if not path:
            logger.warning("No client service account key configured")
            return ""
        return Path(path).read_text()


def load_configuration(path: Optional[str] = None) -> Configuration:
    """Parse the configuration file at `path`, or return the defaults.

    When no path is given the CLOUDSQL_OPERATOR_CONFIG environment variable
    is consulted.
    """
    path = path or os.getenv(CONFIG_FILE_ENV_VAR)
    if not path:
        logger.info("No configuration file provided, using defaults")
        return Configuration()

    data = toml.load(path)
    logger.info(f"Loaded configuration from {path}")
    return Configuration.model_validate(data)
