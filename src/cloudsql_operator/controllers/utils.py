"""Helpers translating between PostgresqlInstance resources and Cloud SQL instances."""

import copy
import datetime
import logging
import secrets
import string
from typing import Any, Dict, List, NamedTuple

from cloudsql_operator import constants
from cloudsql_operator.crd.base import CRDCondition
from cloudsql_operator.models import postgresqlinstance as m
from cloudsql_operator.models.postgresqlinstance import (
    PostgresqlInstance,
    StatusIPAddresses,
)

logger = logging.getLogger(__name__)

ACL_ENTRY_KIND = "sql#aclEntry"
DATABASE_VERSIONS = {m.VERSION_96: "POSTGRES_9_6"}
DISK_TYPES = {m.DISK_TYPE_HDD: "PD_HDD", m.DISK_TYPE_SSD: "PD_SSD"}

PASSWORD_LENGTH = 32
PASSWORD_ALPHABET = string.ascii_letters + string.digits + "!#$%&()*+,-./;<=>?@[]^_{|}~"


class AggregatedError(Exception):
    """Several errors raised while processing a single item."""

    def __init__(self, errors: List[BaseException]):
        self.errors = list(errors)
        super().__init__("; ".join(str(e) for e in self.errors))


class OperationStatus(NamedTuple):
    in_progress_or_failed: bool
    name: str = ""
    operation_type: str = ""
    status: str = ""
    error_message: str = ""


def generate_password(length: int = PASSWORD_LENGTH) -> str:
    return "".join(secrets.choice(PASSWORD_ALPHABET) for _ in range(length))


def _maintenance_hour(hour: str) -> int:
    try:
        return int(hour[: -len(":00")] if hour.endswith(":00") else hour)
    except ValueError:
        return 0


def build_settings(instance: PostgresqlInstance) -> Dict[str, Any]:
    """Build the Cloud SQL settings corresponding to a (defaulted) PostgresqlInstance."""
    spec = instance.spec
    disk = spec.resources.disk

    authorized_networks = []
    for network in spec.networking.publicIp.authorizedNetworks or []:
        entry = {"kind": ACL_ENTRY_KIND, "value": network.cidr}
        if network.name is not None:
            entry["name"] = network.name
        authorized_networks.append(entry)

    ip_configuration = {
        "authorizedNetworks": authorized_networks,
        "ipv4Enabled": bool(spec.networking.publicIp.enabled),
        "privateNetwork": "",
    }
    if spec.networking.privateIp.enabled:
        ip_configuration["privateNetwork"] = spec.networking.privateIp.network

    if spec.maintenance.day == m.ANY:
        maintenance_window = {"day": 0, "hour": 0}
    else:
        maintenance_window = {
            "day": m.MAINTENANCE_DAYS.index(spec.maintenance.day) + 1,
            "hour": _maintenance_hour(spec.maintenance.hour),
        }

    # A maximum of zero, or equal to the minimum, means the disk never grows.
    if disk.sizeMaximumGb in (0, disk.sizeMinimumGb):
        auto_resize, auto_resize_limit = False, 0
    else:
        auto_resize, auto_resize_limit = True, disk.sizeMaximumGb

    flags = []
    for flag in spec.flags or []:
        name, _, value = flag.partition("=")
        flags.append({"name": name, "value": value})

    return {
        "activationPolicy": constants.ACTIVATION_POLICY_ALWAYS,
        "availabilityType": spec.availability.type.upper(),
        "backupConfiguration": {
            "enabled": bool(spec.backups.daily.enabled),
            "startTime": spec.backups.daily.startTime,
        },
        "databaseFlags": flags,
        "dataDiskSizeGb": str(disk.sizeMinimumGb),
        "dataDiskType": DISK_TYPES.get(disk.type, DISK_TYPES[m.DISK_TYPE_SSD]),
        "ipConfiguration": ip_configuration,
        "locationPreference": {
            "zone": "" if spec.location.zone == m.ANY else spec.location.zone
        },
        "maintenanceWindow": maintenance_window,
        "storageAutoResize": auto_resize,
        "storageAutoResizeLimit": str(auto_resize_limit),
        "tier": spec.resources.instanceType,
        "userLabels": dict(spec.labels or {}),
    }


def build_database_instance(instance: PostgresqlInstance) -> Dict[str, Any]:
    """Build the body of the request creating the Cloud SQL instance."""
    return {
        "databaseVersion": DATABASE_VERSIONS.get(
            instance.spec.version, DATABASE_VERSIONS[m.DEFAULT_VERSION]
        ),
        "name": instance.spec.name,
        "region": instance.spec.location.region,
        "settings": build_settings(instance),
    }


def _int(value) -> int:
    # int64 fields are serialized as strings by the Cloud SQL Admin API.
    return int(value or 0)


def _flags(value):
    return [(f.get("name"), f.get("value")) for f in value or []]


def _acl_entries(value):
    return [(e.get("value"), e.get("name") or "") for e in value or []]


# (path, normalization) of every setting kept in sync with .spec.
COMPARED_SETTINGS = (
    (("availabilityType",), str),
    (("backupConfiguration", "enabled"), bool),
    (("backupConfiguration", "startTime"), str),
    (("databaseFlags",), _flags),
    (("dataDiskSizeGb",), _int),
    (("dataDiskType",), str),
    (("ipConfiguration", "authorizedNetworks"), _acl_entries),
    (("ipConfiguration", "ipv4Enabled"), bool),
    (("ipConfiguration", "privateNetwork"), lambda v: v or ""),
    (("locationPreference", "zone"), lambda v: v or ""),
    (("maintenanceWindow", "day"), _int),
    (("maintenanceWindow", "hour"), _int),
    (("storageAutoResize",), bool),
    (("storageAutoResizeLimit",), _int),
    (("tier",), str),
    (("userLabels",), lambda v: dict(v or {})),
)


def _get(settings: Dict[str, Any], path):
    value = settings
    for key in path:
        if not isinstance(value, dict):
            return None
        value = value.get(key)
    return value


def _set(settings: Dict[str, Any], path, value):
    for key in path[:-1]:
        if not isinstance(settings.get(key), dict):
            settings[key] = {}
        settings = settings[key]
    settings[path[-1]] = copy.deepcopy(value)


def update_settings(instance: PostgresqlInstance, database_instance: Dict[str, Any]) -> bool:
    """Bring the settings of `database_instance` in line with `instance.spec`.

    Only differing fields are overwritten; everything else is left untouched.
    Returns True if any field was changed.
    """
    desired = build_settings(instance)
    settings = database_instance.setdefault("settings", {})
    must_update = False
    for path, normalize in COMPARED_SETTINGS:
        if path == ("locationPreference", "zone") and instance.spec.location.zone == m.ANY:
            continue
        desired_value = _get(desired, path)
        if normalize(_get(settings, path)) == normalize(desired_value):
            continue
        logger.debug(
            f"[postgresqlinstance={instance.name}] .settings.{'.'.join(path)} "
            f"must be updated"
        )
        _set(settings, path, desired_value)
        must_update = True
    return must_update


def check_operations(operations: List[Dict[str, Any]]) -> OperationStatus:
    """Report whether the latest operation on an instance is in progress or failed.

    Operations are listed in reverse chronological order.
    """
    if not operations:
        return OperationStatus(False)
    last = operations[0]
    name = last.get("name", "")
    operation_type = last.get("operationType", "")
    status = last.get("status", "")
    errors = (last.get("error") or {}).get("errors") or []
    if status == constants.OPERATION_STATUS_DONE and not errors:
        return OperationStatus(False, name, operation_type, status)
    error_message = "".join(
        f'{e.get("code", "")}; "{e.get("message", "")}"' for e in errors
    )
    return OperationStatus(True, name, operation_type, status, error_message)


def now() -> str:
    return datetime.datetime.now(datetime.timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def set_condition(
    instance: PostgresqlInstance,
    condition_type: str,
    status: str,
    reason: str,
    message: str,
):
    """Set a condition, keeping its last transition time if its status is unchanged."""
    condition = CRDCondition(
        type=condition_type,
        status=status,
        reason=reason,
        message=message,
        lastTransitionTime=now(),
    )
    conditions = instance.status.conditions
    for idx, existing in enumerate(conditions):
        if existing.type != condition_type:
            continue
        if existing.status == status:
            condition.lastTransitionTime = existing.lastTransitionTime
        conditions[idx] = condition
        return
    conditions.append(condition)


def set_connection_name_and_ips(instance: PostgresqlInstance, database_instance: Dict[str, Any]):
    ips = StatusIPAddresses()
    for address in database_instance.get("ipAddresses") or []:
        if address.get("type") == constants.IP_ADDRESS_TYPE_PRIVATE:
            ips.privateIp = address.get("ipAddress")
        elif address.get("type") == constants.IP_ADDRESS_TYPE_PUBLIC:
            ips.publicIp = address.get("ipAddress")
    instance.status.ips = ips
    instance.status.connectionName = database_instance.get("connectionName")
