"""Injection of the Cloud SQL proxy sidecar into pods."""

import base64
import copy
import logging
import posixpath
import random

from kubernetes.client.exceptions import ApiException

from cloudsql_operator import constants
from cloudsql_operator.kube import is_already_exists, is_not_found, to_dict
from cloudsql_operator.models.postgresqlinstance import PostgresqlInstance
from cloudsql_operator.patch import create_patch, patch_secret_data

from .base import AdmissionHandler
from .errors import ValidationError
from .postgresqlinstance import q

logger = logging.getLogger(__name__)

CLIENT_CREDENTIALS_KEY = "credentials.json"
PGPASS_CONF_KEY = "pgpass.conf"
PROXY_CONTAINER_NAME = "cloud-sql-proxy"
PROXY_PORT_MIN = 49152
PROXY_PORT_MAX = 65535
CREDENTIALS_VOLUME_NAME = "credentials"
CREDENTIALS_MOUNT_PATH = "/secret"
# 0400
CREDENTIALS_DEFAULT_MODE = 256
LOCAL_SECRET_NAME_FORMAT = "{}-cloud-sql-proxy"

PROXY_IP_ADDRESS_TYPE_PUBLIC = "PUBLIC"
PROXY_IP_ADDRESS_TYPE_PRIVATE = "PRIVATE"


def b64encode(value: str) -> str:
    return base64.b64encode(value.encode()).decode()


def b64decode(value: str) -> str:
    return base64.b64decode(value or "").decode()


def escape_pgpass(value: str) -> str:
    return value.replace("\\", "\\\\").replace(":", "\\:")


def used_ports(pod: dict) -> set:
    ports = set()
    for container in pod.get("spec", {}).get("containers") or []:
        for port in container.get("ports") or []:
            ports.add(port.get("containerPort"))
    return ports


def get_free_random_port(pod: dict) -> int:
    """Draw a port from the dynamic range not used by any container of `pod`."""
    taken = used_ports(pod)
    while True:
        port = random.randint(PROXY_PORT_MIN, PROXY_PORT_MAX)
        if port not in taken:
            return port


class PodHandler(AdmissionHandler):
    """Injects the Cloud SQL proxy into pods requesting access to an instance."""

    group = ""
    version = "v1"
    resource = "pods"

    def __init__(
        self,
        core_api,
        custom_objects_api,
        namespace: str,
        proxy_image: str,
        client_credentials: str,
    ):
        self.core_api = core_api
        self.custom_objects_api = custom_objects_api
        self.namespace = namespace
        self.proxy_image = proxy_image
        self.client_credentials = client_credentials

    def admit(self, request):
        pod = request.get("object") or {}
        metadata = pod.get("metadata") or {}
        namespace = request.get("namespace") or metadata.get("namespace", "")
        pod_name = metadata.get("name") or metadata.get("generateName", "")

        try:
            mutated = self.mutate(namespace, pod, dry_run=bool(request.get("dryRun")))
        except Exception as e:
            logger.error(f"[namespace={namespace}, pod={pod_name}] {e}")
            raise
        return create_patch(pod, mutated)

    def mutate(self, namespace: str, pod: dict, dry_run: bool = False) -> dict:
        """Return a copy of `pod` with the proxy sidecar injected, if requested."""
        annotations = (pod.get("metadata") or {}).get("annotations") or {}
        instance_name = annotations.get(constants.POSTGRESQL_INSTANCE_NAME_ANNOTATION)
        if not instance_name:
            return pod
        if annotations.get(constants.PROXY_INJECTED_ANNOTATION) == constants.TRUE:
            return pod

        instance = self._get_postgresqlinstance(instance_name)
        secret = self._get_credentials_secret(instance)
        if not instance.status.connectionName:
            raise ValidationError(
                f"the connection name of postgresqlinstance {q(instance.name)} has "
                f"not been reported yet"
            )

        secret_data = secret.get("data") or {}
        username = b64decode(secret_data.get(constants.USERNAME_KEY))
        password = b64decode(secret_data.get(constants.PASSWORD_KEY))

        local_secret = self.build_local_secret(namespace, instance, username, password)
        if not dry_run:
            self._ensure_local_secret(local_secret)

        mutated = copy.deepcopy(pod)
        spec = mutated.setdefault("spec", {})
        spec.setdefault("volumes", []).append(
            {
                "name": CREDENTIALS_VOLUME_NAME,
                "secret": {
                    "secretName": local_secret["metadata"]["name"],
                    "defaultMode": CREDENTIALS_DEFAULT_MODE,
                    "optional": False,
                },
            }
        )

        port = get_free_random_port(mutated)
        for container in spec.setdefault("containers", []):
            container.setdefault("volumeMounts", []).append(self._volume_mount())
            container.setdefault("env", []).extend(
                [
                    {"name": "PGHOST", "value": "localhost"},
                    {"name": "PGPORT", "value": str(port)},
                    {"name": "PGUSER", "value": username},
                    {
                        "name": "PGPASSFILE",
                        "value": posixpath.join(CREDENTIALS_MOUNT_PATH, PGPASS_CONF_KEY),
                    },
                ]
            )
        spec["containers"].append(self.build_proxy_container(instance, port))

        mutated_metadata = mutated.setdefault("metadata", {})
        mutated_metadata["annotations"] = {
            **annotations,
            constants.PROXY_INJECTED_ANNOTATION: constants.TRUE,
        }
        logger.info(
            f"Injecting cloud sql proxy for postgresqlinstance {instance.name} "
            f"on port {port}"
        )
        return mutated

    def build_local_secret(self, namespace, instance, username, password) -> dict:
        """Secret holding pgpass.conf and the proxy credentials in `namespace`."""
        pgpass = f"*:*:*:{escape_pgpass(username)}:{escape_pgpass(password)}"
        return {
            "apiVersion": "v1",
            "kind": "Secret",
            "type": "Opaque",
            "metadata": {
                "name": LOCAL_SECRET_NAME_FORMAT.format(instance.name),
                "namespace": namespace,
                "labels": {constants.LABEL_APP_KEY: constants.APPLICATION_NAME},
                "ownerReferences": [instance.owner_reference()],
            },
            "data": {
                CLIENT_CREDENTIALS_KEY: b64encode(self.client_credentials),
                PGPASS_CONF_KEY: b64encode(pgpass),
            },
        }

    def build_proxy_container(self, instance: PostgresqlInstance, port: int) -> dict:
        ip_address_types = []
        if instance.public_ip_enabled():
            ip_address_types.append(PROXY_IP_ADDRESS_TYPE_PUBLIC)
        if instance.private_ip_enabled():
            ip_address_types.append(PROXY_IP_ADDRESS_TYPE_PRIVATE)
        return {
            "name": PROXY_CONTAINER_NAME,
            "image": self.proxy_image,
            "command": [
                "/cloud_sql_proxy",
                "-credential_file="
                + posixpath.join(CREDENTIALS_MOUNT_PATH, CLIENT_CREDENTIALS_KEY),
                f"-instances={instance.status.connectionName}=tcp:{port}",
                "-ip_address_types=" + ",".join(ip_address_types),
            ],
            "ports": [{"containerPort": port, "protocol": "TCP"}],
            "volumeMounts": [self._volume_mount()],
        }

    @staticmethod
    def _volume_mount():
        return {
            "name": CREDENTIALS_VOLUME_NAME,
            "mountPath": CREDENTIALS_MOUNT_PATH,
            "readOnly": True,
        }

    def _get_postgresqlinstance(self, name) -> PostgresqlInstance:
        try:
            obj = self.custom_objects_api.get_cluster_custom_object(
                constants.GROUP, constants.VERSION, constants.PLURAL, name
            )
        except ApiException as e:
            if is_not_found(e):
                raise ValidationError(
                    f"postgresqlinstance {q(name)} does not exist"
                ) from e
            raise ValidationError(
                f"failed to get postgresqlinstance {q(name)}: {e}"
            ) from e
        return PostgresqlInstance.from_dict(obj)

    def _get_credentials_secret(self, instance) -> dict:
        try:
            secret = self.core_api.read_namespaced_secret(instance.name, self.namespace)
        except ApiException as e:
            if is_not_found(e):
                raise ValidationError(
                    f"the secret associated with postgresqlinstance "
                    f"{q(instance.name)} does not exist"
                ) from e
            raise ValidationError(
                f"failed to get the secret associated with postgresqlinstance "
                f"{q(instance.name)}: {e}"
            ) from e
        return to_dict(secret)

    def _ensure_local_secret(self, secret: dict):
        metadata = secret["metadata"]
        try:
            self.core_api.create_namespaced_secret(metadata["namespace"], secret)
            logger.info(
                f"Created secret {metadata['namespace']}/{metadata['name']}"
            )
            return
        except ApiException as e:
            if not is_already_exists(e):
                raise ValidationError(
                    f"failed to create the local secret {q(metadata['name'])}: {e}"
                ) from e

        # A pod for this instance was admitted in this namespace before, but
        # the credentials may have changed since.
        current = to_dict(
            self.core_api.read_namespaced_secret(metadata["name"], metadata["namespace"])
        )
        patch_secret_data(self.core_api, current, secret["data"])
