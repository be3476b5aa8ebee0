"""Admission handler for PostgresqlInstance resources."""

import logging

import pydantic
from kubernetes.client.exceptions import ApiException

from cloudsql_operator import constants
from cloudsql_operator.kube import is_not_found
from cloudsql_operator.models.postgresqlinstance import PostgresqlInstance
from cloudsql_operator.patch import create_patch

from .base import AdmissionHandler
from .errors import ValidationError
from .postgresqlinstance import q, run_pipeline, validate_deletion

logger = logging.getLogger(__name__)


class PostgresqlInstanceHandler(AdmissionHandler):
    """Defaults and validates PostgresqlInstance resources."""

    group = constants.GROUP
    version = constants.VERSION
    resource = constants.PLURAL

    def __init__(self, pipeline, custom_objects_api):
        self.pipeline = pipeline
        self.custom_objects_api = custom_objects_api

    def admit(self, request):
        operation = request.get("operation")

        if operation == "DELETE":
            previous = self._parse(
                request.get("oldObject") or self._read(request.get("name")),
                "previous",
            )
            validate_deletion(previous)
            logger.info(f"Allowing deletion of postgresqlinstance {previous.name}")
            return []

        if operation not in ("CREATE", "UPDATE"):
            raise ValidationError(f"unsupported operation {q(operation)}")

        current = self._parse(request.get("object"), "current")
        previous = None
        if operation == "UPDATE" and request.get("oldObject"):
            previous = self._parse(request["oldObject"], "previous")

        mutated = run_pipeline(self.pipeline, current, previous)
        return create_patch(current.to_dict(), mutated.to_dict())

    def _read(self, name):
        try:
            return self.custom_objects_api.get_cluster_custom_object(
                constants.GROUP, constants.VERSION, constants.PLURAL, name
            )
        except ApiException as e:
            if is_not_found(e):
                raise ValidationError(
                    f"failed to read deleted object: postgresqlinstance {q(name)} "
                    f"does not exist"
                ) from e
            raise ValidationError(f"failed to read deleted object: {e}") from e

    @staticmethod
    def _parse(data, which):
        if not data:
            raise ValidationError(f"the {which} object is missing from the request")
        try:
            return PostgresqlInstance.from_dict(data)
        except pydantic.ValidationError as e:
            raise ValidationError(
                f"failed to deserialize the {which} object: {e}"
            ) from e
