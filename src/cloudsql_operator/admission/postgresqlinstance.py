"""Defaulting and validation of PostgresqlInstance resources.

Each step takes the candidate object (mutated in place) and, on updates, the
previously stored object, and raises ValidationError to reject the request.
Steps run in the order given by `build_pipeline`.
"""

import json
import re
from typing import Callable, List, Optional

from cloudsql_operator import constants
from cloudsql_operator.cloudsql.errors import is_not_found
from cloudsql_operator.models import postgresqlinstance as m
from cloudsql_operator.models.postgresqlinstance import PostgresqlInstance

from .errors import ValidationError


OWNER_LABEL = "owner"
FLAG_SEPARATOR = "="

HOUR_OF_THE_DAY_REGEX = re.compile(r"^([01][0-9]|2[0-3]):00$")
NAME_REGEX = re.compile(r"^[a-z][a-z0-9-]+[a-z0-9]$")
# Connection names have the "<project>:<region>:<name>" format and are
# limited to 98 characters.
NAME_AND_PROJECT_ID_MAX_LENGTH = 97

Step = Callable[[PostgresqlInstance, Optional[PostgresqlInstance]], None]


def q(value) -> str:
    """Quote a value for inclusion in an error message."""
    return json.dumps(value)


def validate_deletion(previous: PostgresqlInstance):
    """Allow deletion only of resources explicitly marked as deletable."""
    if previous.annotations.get(constants.ALLOW_DELETION_ANNOTATION) != constants.TRUE:
        raise ValidationError(
            f"the resource cannot be deleted unless the "
            f"{q(constants.ALLOW_DELETION_ANNOTATION)} annotation is set to "
            f"{q(constants.TRUE)}"
        )


def default_annotations(candidate, previous):
    if not candidate.annotations.get(constants.ALLOW_DELETION_ANNOTATION):
        candidate.set_annotation(constants.ALLOW_DELETION_ANNOTATION, constants.FALSE)


def validate_availability(candidate, previous):
    spec = candidate.spec
    if spec.availability is None:
        spec.availability = m.AvailabilitySpec()
    if spec.availability.type is None:
        spec.availability.type = m.DEFAULT_AVAILABILITY_TYPE
    if spec.availability.type not in m.AVAILABILITY_TYPES:
        raise ValidationError(
            f"the availability type of the instance must be one of "
            f"{q(m.AVAILABILITY_TYPE_REGIONAL)} or {q(m.AVAILABILITY_TYPE_ZONAL)} "
            f"(got {q(spec.availability.type)})"
        )


def validate_backups(candidate, previous):
    spec = candidate.spec
    if spec.backups is None:
        spec.backups = m.BackupsSpec()
    if spec.backups.daily is None:
        spec.backups.daily = m.BackupsDailySpec()
    daily = spec.backups.daily
    if daily.enabled is None:
        daily.enabled = m.DEFAULT_BACKUPS_DAILY_ENABLED
    if daily.startTime is None:
        daily.startTime = m.DEFAULT_BACKUPS_DAILY_START_TIME
    if not HOUR_OF_THE_DAY_REGEX.match(daily.startTime):
        raise ValidationError(
            f"the start time for daily backups of the instance must be a valid "
            f"hour of the day in 24-hour format (got {q(daily.startTime)})"
        )


def validate_flags(candidate, previous):
    spec = candidate.spec
    if spec.flags is None:
        spec.flags = []
    for flag in spec.flags:
        if flag.count(FLAG_SEPARATOR) != 1:
            raise ValidationError(
                f'flags must be specified in the "<name>=<value>" format '
                f"(got {q(flag)})"
            )


def default_labels(candidate, previous):
    labels = dict(candidate.spec.labels or {})
    labels[OWNER_LABEL] = constants.APPLICATION_NAME
    candidate.spec.labels = labels


def validate_location(candidate, previous):
    spec = candidate.spec
    if spec.location is None:
        spec.location = m.LocationSpec()
    if spec.location.region is None:
        spec.location.region = m.DEFAULT_LOCATION_REGION
    if spec.location.zone is None:
        spec.location.zone = m.DEFAULT_LOCATION_ZONE

    previous_location = previous.spec.location if previous else None
    if previous_location is not None and previous_location.region is not None:
        if spec.location.region != previous_location.region:
            raise ValidationError(
                f"the region where the instance is located cannot be changed "
                f"(had {q(previous_location.region)}, got {q(spec.location.region)})"
            )


def validate_maintenance(candidate, previous):
    spec = candidate.spec
    if spec.maintenance is None:
        spec.maintenance = m.MaintenanceSpec()
    if spec.maintenance.day is None:
        spec.maintenance.day = m.DEFAULT_MAINTENANCE_DAY
    if spec.maintenance.hour is None:
        spec.maintenance.hour = m.DEFAULT_MAINTENANCE_HOUR

    day = spec.maintenance.day
    if day != m.ANY and day not in m.MAINTENANCE_DAYS:
        raise ValidationError(
            f"the day of the week for periodic maintenance must be {q(m.ANY)} "
            f"or a valid weekday (got {q(day)})"
        )
    hour = spec.maintenance.hour
    if hour != m.ANY and not HOUR_OF_THE_DAY_REGEX.match(hour):
        raise ValidationError(
            f"the hour of the day for periodic maintenance must be {q(m.ANY)} or "
            f"a valid hour of the day in 24-hour format (got {q(hour)})"
        )


class NameValidator:
    """Validates ".spec.name", probing Cloud SQL for names already in use."""

    def __init__(self, cloudsql_client, project_id: str):
        self.cloudsql_client = cloudsql_client
        self.project_id = project_id

    @property
    def max_length(self) -> int:
        return NAME_AND_PROJECT_ID_MAX_LENGTH - len(self.project_id)

    def __call__(self, candidate, previous):
        name = candidate.spec.name
        if previous is not None and previous.spec.name and name != previous.spec.name:
            raise ValidationError(
                f"the name of the instance cannot be changed "
                f"(had {q(previous.spec.name)}, got {q(name)})"
            )
        if not name:
            raise ValidationError("the name of the instance cannot be empty")
        if not NAME_REGEX.match(name):
            raise ValidationError(
                f"the name of the instance must match the {q(NAME_REGEX.pattern)} "
                f"regular expression (got {q(name)})"
            )
        if len(name) > self.max_length:
            raise ValidationError(
                f"the name of the instance must not exceed {self.max_length} "
                f"characters (got {q(name)})"
            )
        if previous is not None:
            return

        try:
            self.cloudsql_client.get_instance(name)
        except Exception as e:
            if is_not_found(e):
                return
            raise ValidationError(
                f"failed to check whether {q(name)} can be used as an instance "
                f"name: {e}"
            ) from e
        raise ValidationError(f"the name {q(name)} is already in use by an instance")


def validate_networking(candidate, previous):
    spec = candidate.spec
    if spec.networking is None:
        spec.networking = m.NetworkingSpec()
    networking = spec.networking
    if networking.privateIp is None:
        networking.privateIp = m.PrivateIPSpec()
    if networking.privateIp.enabled is None:
        networking.privateIp.enabled = m.DEFAULT_PRIVATE_IP_ENABLED
    if networking.privateIp.network is None:
        networking.privateIp.network = m.DEFAULT_PRIVATE_IP_NETWORK
    if networking.publicIp is None:
        networking.publicIp = m.PublicIPSpec()
    if networking.publicIp.enabled is None:
        networking.publicIp.enabled = m.DEFAULT_PUBLIC_IP_ENABLED
    if networking.publicIp.authorizedNetworks is None:
        networking.publicIp.authorizedNetworks = []

    previous_private_ip = None
    if previous is not None and previous.spec.networking is not None:
        previous_private_ip = previous.spec.networking.privateIp
    if previous_private_ip is not None:
        if previous_private_ip.enabled and not networking.privateIp.enabled:
            raise ValidationError(
                "private ip access to the instance cannot be disabled after having "
                "been enabled"
            )
        if previous_private_ip.network and not networking.privateIp.network:
            raise ValidationError(
                "the resource link of the vpc network for the instance cannot be "
                "removed"
            )

    if not networking.privateIp.enabled and not networking.publicIp.enabled:
        raise ValidationError(
            "at least one of private or public ip access to the instance must be "
            "enabled"
        )
    if networking.privateIp.enabled and not networking.privateIp.network:
        raise ValidationError(
            "the resource link of the vpc network for the instance cannot be empty"
        )


def validate_resources(candidate, previous):
    spec = candidate.spec
    if spec.resources is None:
        spec.resources = m.ResourcesSpec()
    if spec.resources.disk is None:
        spec.resources.disk = m.DiskSpec()
    disk = spec.resources.disk
    if disk.sizeMaximumGb is None:
        disk.sizeMaximumGb = m.DEFAULT_DISK_SIZE_MAXIMUM_GB
    if disk.sizeMinimumGb is None:
        disk.sizeMinimumGb = m.DEFAULT_DISK_SIZE_MINIMUM_GB
    if disk.type is None:
        disk.type = m.DEFAULT_DISK_TYPE
    if spec.resources.instanceType is None:
        spec.resources.instanceType = m.DEFAULT_INSTANCE_TYPE

    previous_disk = None
    if previous is not None and previous.spec.resources is not None:
        previous_disk = previous.spec.resources.disk
    if previous_disk is not None:
        if (
            previous_disk.sizeMinimumGb is not None
            and disk.sizeMinimumGb < previous_disk.sizeMinimumGb
        ):
            raise ValidationError(
                f"the minimum disk size for the instance cannot be decreased "
                f'(had "{previous_disk.sizeMinimumGb}", got "{disk.sizeMinimumGb}")'
            )
        if previous_disk.type is not None and disk.type != previous_disk.type:
            raise ValidationError(
                f"the disk type for the instance cannot be changed "
                f"(had {q(previous_disk.type)}, got {q(disk.type)})"
            )

    if disk.sizeMinimumGb < m.MINIMUM_DISK_SIZE_GB:
        raise ValidationError(
            f"the minimum disk size in gb for the instance is "
            f'{m.MINIMUM_DISK_SIZE_GB} (got "{disk.sizeMinimumGb}")'
        )
    if disk.sizeMaximumGb != 0 and disk.sizeMaximumGb < disk.sizeMinimumGb:
        raise ValidationError(
            f"the maximum disk size in gb for the instance must be 0 or at least "
            f'{disk.sizeMinimumGb} (got "{disk.sizeMaximumGb}")'
        )
    if disk.type not in (m.DISK_TYPE_HDD, m.DISK_TYPE_SSD):
        raise ValidationError(
            f"the disk type for the instance must be one of {q(m.DISK_TYPE_HDD)} "
            f"or {q(m.DISK_TYPE_SSD)} (got {q(disk.type)})"
        )


def validate_version(candidate, previous):
    spec = candidate.spec
    if previous is None:
        if spec.version is None:
            spec.version = m.DEFAULT_VERSION
    else:
        # Objects stored without a version were admitted with the default.
        previous_version = previous.spec.version or m.DEFAULT_VERSION
        if spec.version is None:
            spec.version = previous_version
        if spec.version != previous_version:
            raise ValidationError("the version of the instance cannot be changed")
    if spec.version != m.VERSION_96:
        raise ValidationError(
            f"the version of the instance must be {q(m.VERSION_96)} "
            f"(got {q(spec.version)})"
        )


def build_pipeline(cloudsql_client, project_id: str) -> List[Step]:
    return [
        default_annotations,
        validate_availability,
        validate_backups,
        validate_flags,
        default_labels,
        validate_location,
        validate_maintenance,
        NameValidator(cloudsql_client, project_id),
        validate_networking,
        validate_resources,
        validate_version,
    ]


def run_pipeline(
    pipeline: List[Step],
    candidate: PostgresqlInstance,
    previous: Optional[PostgresqlInstance] = None,
) -> PostgresqlInstance:
    """Return a defaulted copy of `candidate`, or raise ValidationError."""
    mutated = candidate.clone()
    for step in pipeline:
        step(mutated, previous)
    return mutated
