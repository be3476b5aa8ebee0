"""Registration of the admission webhook with the API server."""

import base64
import logging

from kubernetes import client
from kubernetes.client.exceptions import ApiException

from cloudsql_operator import constants

logger = logging.getLogger(__name__)

WEBHOOK_CONFIGURATION_NAME = constants.APPLICATION_NAME
ADMISSION_PATH = "/admissionrequests"
ADMISSION_REVIEW_VERSIONS = ["v1", "v1beta1"]

# Fields of each webhook compared against the registered configuration.
COMPARED_FIELDS = (
    "name",
    "rules",
    "clientConfig",
    "failurePolicy",
    "sideEffects",
    "admissionReviewVersions",
)


def _client_config(service_name, namespace, ca_bundle):
    return {
        "caBundle": base64.b64encode(ca_bundle).decode(),
        "service": {
            "name": service_name,
            "namespace": namespace,
            "path": ADMISSION_PATH,
            "port": 443,
        },
    }


def build_webhook_configuration(service_name: str, namespace: str, ca_bundle: bytes):
    """Build the MutatingWebhookConfiguration routing requests to the webhook."""
    client_config = _client_config(service_name, namespace, ca_bundle)
    return {
        "apiVersion": "admissionregistration.k8s.io/v1",
        "kind": "MutatingWebhookConfiguration",
        "metadata": {
            "name": WEBHOOK_CONFIGURATION_NAME,
            "labels": {constants.LABEL_APP_KEY: constants.APPLICATION_NAME},
        },
        "webhooks": [
            {
                "name": f"{constants.PLURAL}.{constants.GROUP}",
                "rules": [
                    {
                        "apiGroups": [constants.GROUP],
                        "apiVersions": [constants.VERSION],
                        "operations": ["CREATE", "UPDATE", "DELETE"],
                        "resources": [constants.PLURAL],
                    }
                ],
                "clientConfig": client_config,
                "failurePolicy": "Fail",
                "sideEffects": "None",
                "admissionReviewVersions": ADMISSION_REVIEW_VERSIONS,
            },
            {
                # Never block unrelated pods because injection failed.
                "name": f"pods.{constants.GROUP}",
                "rules": [
                    {
                        "apiGroups": [""],
                        "apiVersions": ["v1"],
                        "operations": ["CREATE"],
                        "resources": ["pods"],
                    }
                ],
                "clientConfig": client_config,
                "failurePolicy": "Ignore",
                "sideEffects": "NoneOnDryRun",
                "admissionReviewVersions": ADMISSION_REVIEW_VERSIONS,
            },
        ],
    }


def _comparable(webhooks):
    return [
        {field: webhook.get(field) for field in COMPARED_FIELDS}
        for webhook in webhooks or []
    ]


def _normalize_rules(webhooks):
    # The API server fills in "scope" on every rule.
    for webhook in webhooks or []:
        for rule in webhook.get("rules") or []:
            rule.pop("scope", None)
    return webhooks


def ensure_webhook_configuration(admission_api, desired):
    """Create the webhook configuration, or overwrite it if it differs.

    Returns True if the configuration was created or updated.
    """
    try:
        admission_api.create_mutating_webhook_configuration(body=desired)
        logger.info(f"Registered webhook configuration {WEBHOOK_CONFIGURATION_NAME}")
        return True
    except ApiException as e:
        if e.status != 409:
            raise

    existing = admission_api.read_mutating_webhook_configuration(
        WEBHOOK_CONFIGURATION_NAME
    )
    current = client.ApiClient().sanitize_for_serialization(existing)
    current_webhooks = _normalize_rules(current.get("webhooks"))
    if _comparable(current_webhooks) == _comparable(desired["webhooks"]):
        logger.info("Webhook configuration is up-to-date")
        return False

    desired = dict(desired)
    desired["metadata"] = dict(
        desired["metadata"],
        resourceVersion=(current.get("metadata") or {}).get("resourceVersion"),
    )
    admission_api.replace_mutating_webhook_configuration(
        WEBHOOK_CONFIGURATION_NAME, body=desired
    )
    logger.info(f"Updated webhook configuration {WEBHOOK_CONFIGURATION_NAME}")
    return True
