"""Controller reconciling PostgresqlInstance resources with Cloud SQL instances."""

import base64
import copy
import logging

import kopf
from kubernetes.client.exceptions import ApiException

from cloudsql_operator import constants
from cloudsql_operator.cloudsql.errors import is_bad_request, is_conflict, is_not_found
from cloudsql_operator.kube import to_dict
from cloudsql_operator.models import postgresqlinstance as m
from cloudsql_operator.models.postgresqlinstance import PostgresqlInstance
from cloudsql_operator.patch import patch_postgresqlinstance_status, patch_secret_data

from . import reasons
from .utils import (
    AggregatedError,
    build_database_instance,
    check_operations,
    generate_password,
    set_condition,
    set_connection_name_and_ips,
    update_settings,
)

logger = logging.getLogger(__name__)

TRUE = "True"
FALSE = "False"


def b64encode(value: str) -> str:
    return base64.b64encode(value.encode()).decode()


def instance_from_body(body) -> PostgresqlInstance:
    """Build a PostgresqlInstance owned by the caller from a kopf body."""
    return PostgresqlInstance.from_dict(copy.deepcopy(dict(body)))


class PostgresqlInstanceController:
    """Drives Cloud SQL instances towards the state declared by PostgresqlInstance resources.

    kopf calls `sync` when a resource is created, updated or resumed and on
    every resync tick, and `finalize` once the resource is being deleted.
    Handling is serialized per resource by kopf, which also owns the cleanup
    finalizer and retries handlers that raise.
    """

    def __init__(self, custom_objects_api, core_api, cloudsql_client, namespace: str):
        self.custom_objects_api = custom_objects_api
        self.core_api = core_api
        self.cloudsql_client = cloudsql_client
        self.namespace = namespace

    @staticmethod
    def _normal(instance: PostgresqlInstance, reason: str, message: str):
        kopf.info(instance.to_dict(), reason=reason, message=message)

    @staticmethod
    def _warning(instance: PostgresqlInstance, reason: str, message: str):
        kopf.warn(instance.to_dict(), reason=reason, message=message)

    def sync(self, body):
        """Reconcile a PostgresqlInstance with its Cloud SQL instance."""
        original = instance_from_body(body)
        if original.deletion_timestamp is not None:
            return
        instance = original.clone()

        if instance.spec.paused:
            logger.warning(f"skipping paused postgresqlinstance {instance.name}")
            return

        try:
            self._reconcile(instance)
        except Exception as e:
            body_error = e
        else:
            body_error = None

        try:
            patch_postgresqlinstance_status(self.custom_objects_api, original, instance)
        except Exception as e:
            if body_error is not None:
                raise AggregatedError([body_error, e]) from e
            raise
        if body_error is not None:
            raise body_error

    def finalize(self, body):
        """Delete the Cloud SQL instance backing a PostgresqlInstance being deleted."""
        instance = instance_from_body(body)
        name = instance.spec.name
        if not name:
            return
        try:
            self.cloudsql_client.delete_instance(name)
            logger.info(f"[postgresqlinstance={instance.name}] Deleted instance {name}")
        except Exception as e:
            if not is_not_found(e):
                raise
            logger.info(
                f"[postgresqlinstance={instance.name}] Instance {name} is already gone"
            )

    def _reconcile(self, instance: PostgresqlInstance):
        name = instance.spec.name
        try:
            database_instance = self.cloudsql_client.get_instance(name)
        except Exception as e:
            if not is_not_found(e):
                raise
            if not self._create(instance):
                return
            database_instance = self.cloudsql_client.get_instance(name)
        else:
            set_condition(
                instance,
                m.CONDITION_CREATED,
                TRUE,
                reasons.INSTANCE_CREATED,
                "the instance has been created",
            )

        set_connection_name_and_ips(instance, database_instance)

        if not self._check_operations(instance):
            return
        if not self._check_ready(instance, database_instance):
            return
        self._ensure_credentials(instance)
        self._update(instance, database_instance)

    def _create(self, instance: PostgresqlInstance) -> bool:
        """Create the Cloud SQL instance, returning whether processing may continue."""
        name = instance.spec.name
        try:
            self.cloudsql_client.insert_instance(build_database_instance(instance))
        except Exception as e:
            if is_conflict(e):
                message = f"the name {name!r} is unavailable: {e}"
                set_condition(
                    instance, m.CONDITION_CREATED, FALSE, reasons.NAME_UNAVAILABLE, message
                )
                self._warning(instance, reasons.NAME_UNAVAILABLE, message)
                return False
            if is_bad_request(e):
                message = f"the spec of the instance is invalid: {e}"
                set_condition(
                    instance, m.CONDITION_CREATED, FALSE, reasons.INVALID_SPEC, message
                )
                self._warning(instance, reasons.INVALID_SPEC, message)
                return False
            message = f"failed to create the instance: {e}"
            set_condition(
                instance, m.CONDITION_CREATED, FALSE, reasons.UNEXPECTED_ERROR, message
            )
            self._warning(instance, reasons.UNEXPECTED_ERROR, message)
            raise

        message = "the instance has been created"
        logger.info(f"[postgresqlinstance={instance.name}] Created instance {name}")
        set_condition(
            instance, m.CONDITION_CREATED, TRUE, reasons.INSTANCE_CREATED, message
        )
        self._normal(instance, reasons.INSTANCE_CREATED, message)
        return True

    def _check_operations(self, instance: PostgresqlInstance) -> bool:
        """Return whether no operation is pending or failed on the instance."""
        operations = self.cloudsql_client.list_operations(instance.spec.name)
        status = check_operations(operations)
        if not status.in_progress_or_failed:
            return True

        if status.error_message:
            message = (
                f"operation {status.name} of type {status.operation_type} failed: "
                f"{status.error_message}"
            )
            set_condition(
                instance, m.CONDITION_READY, FALSE, reasons.UNEXPECTED_ERROR, message
            )
            self._warning(instance, reasons.UNEXPECTED_ERROR, message)
            logger.error(f"[postgresqlinstance={instance.name}] {message}")
            return False

        message = (
            f"operation {status.name} of type {status.operation_type} is "
            f"{status.status.lower()}"
        )
        set_condition(
            instance, m.CONDITION_READY, FALSE, reasons.OPERATION_IN_PROGRESS, message
        )
        logger.info(f"[postgresqlinstance={instance.name}] {message}")
        return False

    def _check_ready(self, instance: PostgresqlInstance, database_instance: dict) -> bool:
        state = database_instance.get("state")
        policy = (database_instance.get("settings") or {}).get("activationPolicy")
        if (
            state != constants.INSTANCE_STATE_RUNNABLE
            or policy != constants.ACTIVATION_POLICY_ALWAYS
        ):
            message = (
                f"the instance is not ready (state: {state}, activation policy: "
                f"{policy})"
            )
            set_condition(
                instance, m.CONDITION_READY, FALSE, reasons.INSTANCE_NOT_READY, message
            )
            return False
        set_condition(
            instance,
            m.CONDITION_READY,
            TRUE,
            reasons.INSTANCE_READY,
            "the instance is ready",
        )
        return True

    def _build_credentials_secret(self, instance: PostgresqlInstance) -> dict:
        return {
            "apiVersion": "v1",
            "kind": "Secret",
            "type": "Opaque",
            "metadata": {
                "name": instance.name,
                "namespace": self.namespace,
                "labels": {constants.LABEL_APP_KEY: constants.APPLICATION_NAME},
                "ownerReferences": [instance.owner_reference()],
            },
        }

    def _ensure_credentials(self, instance: PostgresqlInstance):
        """Make sure the superuser password is set and stored in a secret."""
        try:
            secret = self.core_api.read_namespaced_secret(instance.name, self.namespace)
        except ApiException as e:
            if e.status != 404:
                raise
            secret = self.core_api.create_namespaced_secret(
                self.namespace, self._build_credentials_secret(instance)
            )
            logger.info(
                f"[postgresqlinstance={instance.name}] Created secret "
                f"{self.namespace}/{instance.name}"
            )
        secret = to_dict(secret)
        if (secret.get("data") or {}).get(constants.PASSWORD_KEY):
            return

        password = generate_password()
        self.cloudsql_client.set_user_password(
            instance.spec.name, constants.SUPERUSER_NAME, password
        )
        patch_secret_data(
            self.core_api,
            secret,
            {
                constants.USERNAME_KEY: b64encode(constants.SUPERUSER_NAME),
                constants.PASSWORD_KEY: b64encode(password),
            },
        )
        logger.info(
            f"[postgresqlinstance={instance.name}] Set the password of user "
            f"{constants.SUPERUSER_NAME}"
        )

    def _update(self, instance: PostgresqlInstance, database_instance: dict):
        """Update the Cloud SQL instance if its settings drifted from its .spec."""
        updated = copy.deepcopy(database_instance)
        if not update_settings(instance, updated):
            set_condition(
                instance,
                m.CONDITION_UP_TO_DATE,
                TRUE,
                reasons.INSTANCE_UP_TO_DATE,
                "the instance is up-to-date",
            )
            return

        try:
            self.cloudsql_client.update_instance(instance.spec.name, updated)
        except Exception as e:
            if is_conflict(e):
                message = f"the instance could not be updated: {e}"
                reason = reasons.CONFLICT
            elif is_bad_request(e):
                message = f"the spec of the instance is invalid: {e}"
                reason = reasons.INVALID_SPEC
            else:
                message = f"failed to update the instance: {e}"
                set_condition(
                    instance, m.CONDITION_UP_TO_DATE, FALSE, reasons.UNEXPECTED_ERROR, message
                )
                self._warning(instance, reasons.UNEXPECTED_ERROR, message)
                raise
            set_condition(instance, m.CONDITION_UP_TO_DATE, FALSE, reason, message)
            self._warning(instance, reason, message)
            return

        message = "the settings of the instance are being updated"
        logger.info(f"[postgresqlinstance={instance.name}] Updating instance")
        set_condition(
            instance, m.CONDITION_UP_TO_DATE, FALSE, reasons.INSTANCE_UPDATED, message
        )
        self._normal(instance, reasons.INSTANCE_UPDATED, message)
