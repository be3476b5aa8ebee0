"""JSON Patch computation shared by the admission webhook and the controller."""

import base64
import json
import logging

import jsonpatch

from cloudsql_operator import constants

logger = logging.getLogger(__name__)


def create_patch(old: dict, new: dict) -> list:
    """Return the RFC 6902 operations turning `old` into `new`."""
    return jsonpatch.make_patch(old, new).patch


def encode_patch(operations: list) -> str:
    """Encode JSON Patch operations as expected in an AdmissionResponse."""
    return base64.b64encode(json.dumps(operations).encode()).decode()


def set_field(path: str, old, new) -> list:
    """Operations setting the value at `path` wholesale, if it changed.

    "add" replaces an existing member and creates a missing one, so this
    works whether or not the stored object carries the field yet.
    """
    if old == new:
        return []
    return [{"op": "add", "path": path, "value": new}]


def guarded(operations: list, resource_version) -> list:
    """Prefix `operations` with a resourceVersion test.

    The API server rejects the patch if the object changed since it was read.
    """
    if not operations or not resource_version:
        return operations
    return [
        {"op": "test", "path": "/metadata/resourceVersion", "value": resource_version}
    ] + operations


def patch_postgresqlinstance_status(api, old, new):
    """Persist the status of a PostgresqlInstance through the status subresource.

    Returns the updated object as a dict, or None when nothing changed.
    """
    operations = set_field(
        "/status",
        old.status.model_dump(exclude_none=True),
        new.status.model_dump(exclude_none=True),
    )
    if not operations:
        return None
    logger.debug(f"Patching status of postgresqlinstance {old.name}")
    return api.patch_cluster_custom_object_status(
        constants.GROUP,
        constants.VERSION,
        constants.PLURAL,
        old.name,
        guarded(operations, old.resource_version),
    )


def patch_secret_data(api, secret: dict, data: dict):
    """Replace the `data` of an existing secret if it differs.

    `secret` is the current object as a dict and `data` the desired
    base64-encoded contents. Returns None when nothing changed.
    """
    metadata = secret.get("metadata") or {}
    operations = set_field("/data", secret.get("data") or {}, data)
    if not operations:
        return None
    return api.patch_namespaced_secret(
        metadata["name"],
        metadata["namespace"],
        guarded(operations, metadata.get("resourceVersion")),
    )
