"""PostgresqlInstance CRD models."""

from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional

from cloudsql_operator import constants
from cloudsql_operator.crd.base import CRDCondition, CRDSpec, CRDStatus

ANY = "Any"

AVAILABILITY_TYPE_REGIONAL = "Regional"
AVAILABILITY_TYPE_ZONAL = "Zonal"
AVAILABILITY_TYPES = (AVAILABILITY_TYPE_REGIONAL, AVAILABILITY_TYPE_ZONAL)

DISK_TYPE_HDD = "HDD"
DISK_TYPE_SSD = "SSD"

MAINTENANCE_DAYS = (
    "Monday",
    "Tuesday",
    "Wednesday",
    "Thursday",
    "Friday",
    "Saturday",
    "Sunday",
)

VERSION_96 = "9.6"

CONDITION_CREATED = "Created"
CONDITION_READY = "Ready"
CONDITION_UP_TO_DATE = "UpToDate"

# Values set on admission when the corresponding field is absent.
DEFAULT_AVAILABILITY_TYPE = AVAILABILITY_TYPE_ZONAL
DEFAULT_BACKUPS_DAILY_ENABLED = True
DEFAULT_BACKUPS_DAILY_START_TIME = "00:00"
DEFAULT_LOCATION_REGION = "europe-west1"
DEFAULT_LOCATION_ZONE = ANY
DEFAULT_MAINTENANCE_DAY = ANY
DEFAULT_MAINTENANCE_HOUR = "04:00"
DEFAULT_PRIVATE_IP_ENABLED = False
DEFAULT_PRIVATE_IP_NETWORK = ""
DEFAULT_PUBLIC_IP_ENABLED = False
DEFAULT_DISK_SIZE_MAXIMUM_GB = 0
DEFAULT_DISK_SIZE_MINIMUM_GB = 10
DEFAULT_DISK_TYPE = DISK_TYPE_SSD
DEFAULT_INSTANCE_TYPE = "db-custom-1-3840"
DEFAULT_VERSION = VERSION_96

MINIMUM_DISK_SIZE_GB = 10


class AvailabilitySpec(CRDSpec):
    type: Optional[str] = Field(
        default=None, description="Availability type of the instance (Regional or Zonal)"
    )


class BackupsDailySpec(CRDSpec):
    enabled: Optional[bool] = Field(
        default=None, description="Whether daily backups are enabled"
    )
    startTime: Optional[str] = Field(
        default=None, description="Start time (UTC) for daily backups, in HH:00 format"
    )


class BackupsSpec(CRDSpec):
    daily: Optional[BackupsDailySpec] = None


class LocationSpec(CRDSpec):
    region: Optional[str] = Field(
        default=None, description="Region where the instance is located"
    )
    zone: Optional[str] = Field(
        default=None, description="Zone where the instance is located, or Any"
    )


class MaintenanceSpec(CRDSpec):
    day: Optional[str] = Field(
        default=None, description="Preferred day of the week for maintenance, or Any"
    )
    hour: Optional[str] = Field(
        default=None, description="Preferred hour (UTC) for maintenance, in HH:00 format"
    )


class PrivateIPSpec(CRDSpec):
    enabled: Optional[bool] = Field(
        default=None, description="Whether the instance is reachable via a private IP"
    )
    network: Optional[str] = Field(
        default=None, description="Resource link of the VPC network"
    )


class AuthorizedNetwork(CRDSpec):
    cidr: str = Field(..., description="Subnet authorized by this rule")
    name: Optional[str] = Field(default=None, description="Name of this rule")


class PublicIPSpec(CRDSpec):
    authorizedNetworks: Optional[List[AuthorizedNetwork]] = Field(
        default=None, description="Subnets authorized to access the public IP"
    )
    enabled: Optional[bool] = Field(
        default=None, description="Whether the instance is reachable via a public IP"
    )


class NetworkingSpec(CRDSpec):
    privateIp: Optional[PrivateIPSpec] = None
    publicIp: Optional[PublicIPSpec] = None


class DiskSpec(CRDSpec):
    sizeMaximumGb: Optional[int] = Field(
        default=None,
        description="Maximum size (GB) for automatic storage increase, 0 disables it",
    )
    sizeMinimumGb: Optional[int] = Field(
        default=None, description="Requested storage capacity (GB)"
    )
    type: Optional[str] = Field(default=None, description="Disk type (HDD or SSD)")


class ResourcesSpec(CRDSpec):
    disk: Optional[DiskSpec] = None
    instanceType: Optional[str] = Field(
        default=None, description="Machine type of the instance"
    )


class PostgresqlInstanceSpec(CRDSpec):
    """PostgresqlInstance CRD specification."""

    availability: Optional[AvailabilitySpec] = None
    backups: Optional[BackupsSpec] = None
    flags: Optional[List[str]] = Field(
        default=None, description="Database flags, in name=value format"
    )
    labels: Optional[Dict[str, str]] = Field(
        default=None, description="User labels set on the instance"
    )
    location: Optional[LocationSpec] = None
    maintenance: Optional[MaintenanceSpec] = None
    name: str = Field(default="", description="Name of the Cloud SQL instance")
    networking: Optional[NetworkingSpec] = None
    paused: Optional[bool] = Field(
        default=None, description="Skip reconciliation of this resource"
    )
    resources: Optional[ResourcesSpec] = None
    version: Optional[str] = Field(default=None, description="PostgreSQL version")


class StatusIPAddresses(BaseModel):
    privateIp: Optional[str] = None
    publicIp: Optional[str] = None


class PostgresqlInstanceStatus(CRDStatus):
    """Observed state of a PostgresqlInstance."""

    connectionName: Optional[str] = None
    ips: Optional[StatusIPAddresses] = None

    def get_condition(self, condition_type: str) -> Optional[CRDCondition]:
        for condition in self.conditions:
            if condition.type == condition_type:
                return condition
        return None


class PostgresqlInstance(BaseModel):
    """A PostgresqlInstance resource as stored in the cluster."""

    apiVersion: str = constants.API_VERSION
    kind: str = constants.KIND
    metadata: Dict[str, Any] = Field(default_factory=dict)
    spec: PostgresqlInstanceSpec = Field(default_factory=PostgresqlInstanceSpec)
    status: PostgresqlInstanceStatus = Field(default_factory=PostgresqlInstanceStatus)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PostgresqlInstance":
        data = dict(data)
        # The API server may send explicit nulls for empty objects.
        for key in ("metadata", "spec", "status"):
            if data.get(key) is None:
                data.pop(key, None)
        return cls.model_validate(data)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)

    def clone(self) -> "PostgresqlInstance":
        return self.model_copy(deep=True)

    @property
    def name(self) -> str:
        return self.metadata.get("name", "")

    @property
    def uid(self) -> Optional[str]:
        return self.metadata.get("uid")

    @property
    def resource_version(self) -> Optional[str]:
        return self.metadata.get("resourceVersion")

    @property
    def annotations(self) -> Dict[str, str]:
        return self.metadata.get("annotations") or {}

    def set_annotation(self, key: str, value: str):
        self.metadata["annotations"] = {**self.annotations, key: value}

    @property
    def deletion_timestamp(self) -> Optional[str]:
        return self.metadata.get("deletionTimestamp")

    def owner_reference(self) -> Dict[str, Any]:
        """Owner reference making this resource the controller of a dependent."""
        return {
            "apiVersion": constants.API_VERSION,
            "kind": constants.KIND,
            "name": self.name,
            "uid": self.uid,
            "controller": True,
            "blockOwnerDeletion": True,
        }

    def public_ip_enabled(self) -> bool:
        networking = self.spec.networking
        return bool(networking and networking.publicIp and networking.publicIp.enabled)

    def private_ip_enabled(self) -> bool:
        networking = self.spec.networking
        return bool(
            networking and networking.privateIp and networking.privateIp.enabled
        )
