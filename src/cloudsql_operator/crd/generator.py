"""Generation and installation of the PostgresqlInstance CRD."""

import logging
import time
from pathlib import Path

import yaml
from kubernetes import client

from cloudsql_operator import constants
from cloudsql_operator.models.postgresqlinstance import (
    PostgresqlInstanceSpec,
    PostgresqlInstanceStatus,
)

logger = logging.getLogger(__name__)

CRD_NAME = f"{constants.PLURAL}.{constants.GROUP}"


class OpenAPIConverter:
    """Convert pydantic schemas to OpenAPI v3 compatible schemas for CRDs."""

    @staticmethod
    def convert_schema(pydantic_schema):
        """Convert pydantic JSON schema to a structural OpenAPI v3 schema."""
        openapi_schema = {"type": "object", "properties": {}}

        if "properties" in pydantic_schema:
            openapi_schema["properties"] = OpenAPIConverter._convert_properties(
                pydantic_schema["properties"], pydantic_schema.get("$defs", {})
            )

        if "required" in pydantic_schema:
            openapi_schema["required"] = pydantic_schema["required"]

        return openapi_schema

    @staticmethod
    def _convert_properties(properties, property_defs):
        converted = {}

        for prop_name, prop_schema in properties.items():
            converted[prop_name] = OpenAPIConverter._convert_property(
                prop_schema, property_defs
            )

        return converted

    @staticmethod
    def _convert_property(prop_schema, defs):
        """Convert a single property schema."""
        # Optional[X] is rendered by pydantic as anyOf [X, null]
        if "anyOf" in prop_schema:
            variants = [v for v in prop_schema["anyOf"] if v.get("type") != "null"]
            if len(variants) == 1:
                merged = dict(variants[0])
                if "description" in prop_schema:
                    merged["description"] = prop_schema["description"]
                converted = OpenAPIConverter._convert_property(merged, defs)
                converted["nullable"] = True
                return converted

        if "$ref" in prop_schema:
            ref_path = prop_schema["$ref"]
            if ref_path.startswith("#/$defs/"):
                def_name = ref_path.replace("#/$defs/", "")
                if def_name in defs:
                    converted = OpenAPIConverter._convert_property(defs[def_name], defs)
                    if "description" in prop_schema:
                        converted["description"] = prop_schema["description"]
                    return converted

        if prop_schema.get("type") == "array":
            converted = {"type": "array"}
            if "items" in prop_schema:
                converted["items"] = OpenAPIConverter._convert_property(
                    prop_schema["items"], defs
                )
            if "description" in prop_schema:
                converted["description"] = prop_schema["description"]
            return converted

        if prop_schema.get("type") == "object":
            converted = {"type": "object"}
            if "properties" in prop_schema:
                converted["properties"] = OpenAPIConverter._convert_properties(
                    prop_schema["properties"], defs
                )
            elif isinstance(prop_schema.get("additionalProperties"), dict):
                converted["additionalProperties"] = OpenAPIConverter._convert_property(
                    prop_schema["additionalProperties"], defs
                )
            else:
                converted["x-kubernetes-preserve-unknown-fields"] = True
            if "required" in prop_schema:
                converted["required"] = prop_schema["required"]
            if "description" in prop_schema:
                converted["description"] = prop_schema["description"]
            return converted

        result = {}
        if "type" in prop_schema:
            result["type"] = prop_schema["type"]
        if "description" in prop_schema:
            result["description"] = prop_schema["description"]
        if prop_schema.get("default") is not None:
            result["default"] = prop_schema["default"]
        if "enum" in prop_schema:
            result["enum"] = prop_schema["enum"]

        if not result.get("type"):
            result["type"] = "object"
            result["x-kubernetes-preserve-unknown-fields"] = True

        return result


def build_crd():
    """Build the CustomResourceDefinition for PostgresqlInstance resources."""
    converter = OpenAPIConverter()
    spec_schema = converter.convert_schema(PostgresqlInstanceSpec.model_json_schema())
    status_schema = converter.convert_schema(
        PostgresqlInstanceStatus.model_json_schema()
    )

    return {
        "apiVersion": "apiextensions.k8s.io/v1",
        "kind": "CustomResourceDefinition",
        "metadata": {
            "name": CRD_NAME,
            "labels": {constants.LABEL_APP_KEY: constants.APPLICATION_NAME},
        },
        "spec": {
            "group": constants.GROUP,
            "versions": [
                {
                    "name": constants.VERSION,
                    "served": True,
                    "storage": True,
                    "schema": {
                        "openAPIV3Schema": {
                            "type": "object",
                            "properties": {
                                "spec": spec_schema,
                                "status": status_schema,
                            },
                            "required": ["spec"],
                        }
                    },
                    "subresources": {"status": {}},
                    "additionalPrinterColumns": [
                        {
                            "name": "Instance",
                            "type": "string",
                            "jsonPath": ".spec.name",
                        },
                        {
                            "name": "Ready",
                            "type": "string",
                            "jsonPath": '.status.conditions[?(@.type=="Ready")].status',
                        },
                        {
                            "name": "Age",
                            "type": "date",
                            "jsonPath": ".metadata.creationTimestamp",
                        },
                    ],
                }
            ],
            "scope": "Cluster",
            "names": {
                "plural": constants.PLURAL,
                "singular": constants.SINGULAR,
                "kind": constants.KIND,
                "listKind": f"{constants.KIND}List",
                "shortNames": ["csqlp"],
            },
        },
    }


def is_subset(desired, current) -> bool:
    """Whether every field set in `desired` holds the same value in `current`.

    Fields the API server fills in with defaults only appear in `current`.
    """
    if isinstance(desired, dict):
        return isinstance(current, dict) and all(
            key in current and is_subset(value, current[key])
            for key, value in desired.items()
        )
    if isinstance(desired, list):
        return (
            isinstance(current, list)
            and len(desired) == len(current)
            and all(is_subset(d, c) for d, c in zip(desired, current))
        )
    return desired == current


class CRDManager:
    """Writes the CRD manifest to disk or installs it in the cluster."""

    def __init__(self, api=None):
        self._api = api

    @property
    def api(self):
        if self._api is None:
            self._api = client.ApiextensionsV1Api()
        return self._api

    def write(self, output_dir):
        """Write the CRD manifest under `output_dir` and return its path."""
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)
        file_path = output_dir / f"{CRD_NAME}.yaml"

        with open(file_path, "w") as f:
            yaml.dump(build_crd(), f, default_flow_style=False, sort_keys=False)

        logger.info(f"Generated CRD: {file_path}")
        return file_path

    def ensure(self, timeout=60.0, interval=1.0):
        """Create or replace the CRD, then wait for it to become established."""
        desired = build_crd()

        try:
            self.api.create_custom_resource_definition(body=desired)
            logger.info(f"Created CRD {CRD_NAME}")
        except client.exceptions.ApiException as e:
            if e.status != 409:
                raise
            existing = self.api.read_custom_resource_definition(CRD_NAME)
            current = client.ApiClient().sanitize_for_serialization(existing)
            if is_subset(desired["spec"], current.get("spec")):
                logger.debug(f"CRD {CRD_NAME} is up-to-date")
            else:
                desired["metadata"]["resourceVersion"] = current["metadata"]["resourceVersion"]
                self.api.replace_custom_resource_definition(name=CRD_NAME, body=desired)
                logger.info(f"Updated CRD {CRD_NAME}")

        self.wait_established(timeout=timeout, interval=interval)

    def wait_established(self, timeout=60.0, interval=1.0):
        deadline = time.monotonic() + timeout
        while True:
            crd = self.api.read_custom_resource_definition(CRD_NAME)
            conditions = (crd.status.conditions if crd.status else None) or []
            for condition in conditions:
                if condition.type == "Established" and condition.status == "True":
                    logger.info(f"CRD {CRD_NAME} is established")
                    return
            if time.monotonic() >= deadline:
                raise TimeoutError(
                    f"timed out waiting for CRD {CRD_NAME} to become established"
                )
            time.sleep(interval)
