"""
Tests for the admission webhook HTTP layer and the PostgresqlInstance handler
"""
import base64
import json

import pytest

from cloudsql_operator import constants
from cloudsql_operator.admission import PostgresqlInstanceHandler, ValidationError, Webhook
from cloudsql_operator.admission.register import ADMISSION_PATH

from .conftest import api_exception


def decode_patch(response):
    return json.loads(base64.b64decode(response["patch"]))


def review(request):
    return {"apiVersion": "admission.k8s.io/v1", "kind": "AdmissionReview", "request": request}


def instance_request(operation, obj=None, old_obj=None, uid="req-1"):
    return {
        "uid": uid,
        "operation": operation,
        "name": "test-instance",
        "resource": {
            "group": constants.GROUP,
            "version": constants.VERSION,
            "resource": constants.PLURAL,
        },
        "object": obj,
        "oldObject": old_obj,
    }


@pytest.fixture
def instance_handler(pipeline, mock_k8s_clients):
    return PostgresqlInstanceHandler(pipeline, mock_k8s_clients["custom_api"])


@pytest.fixture
def webhook(instance_handler):
    return Webhook([instance_handler])


@pytest.fixture
def client(webhook):
    """Flask test client"""
    return webhook.app.test_client()


class TestPostgresqlInstanceHandler:
    """Tests for PostgresqlInstanceHandler.admit"""

    def test_create_returns_defaulting_patch(self, instance_handler, make_instance):
        obj = make_instance().to_dict()
        operations = instance_handler.admit(instance_request("CREATE", obj))
        paths = {op["path"] for op in operations}
        assert "/spec/availability" in paths
        assert "/metadata/annotations" in paths

    def test_create_defaulted_object_yields_no_patch(self, instance_handler, admitted_instance):
        obj = admitted_instance().to_dict()
        assert instance_handler.admit(instance_request("CREATE", obj)) == []

    def test_update_with_immutable_change(self, instance_handler, admitted_instance):
        previous = admitted_instance()
        current = previous.clone()
        current.spec.location.region = "asia-east1"
        with pytest.raises(ValidationError, match="region"):
            instance_handler.admit(
                instance_request("UPDATE", current.to_dict(), previous.to_dict())
            )

    def test_delete_without_annotation(self, instance_handler, admitted_instance):
        old = admitted_instance().to_dict()
        with pytest.raises(ValidationError, match="cannot be deleted"):
            instance_handler.admit(instance_request("DELETE", old_obj=old))

    def test_delete_with_annotation(self, instance_handler, admitted_instance):
        instance = admitted_instance()
        instance.set_annotation(constants.ALLOW_DELETION_ANNOTATION, "true")
        assert instance_handler.admit(instance_request("DELETE", old_obj=instance.to_dict())) == []

    def test_delete_reads_object_when_old_object_missing(
        self, instance_handler, admitted_instance, mock_k8s_clients
    ):
        instance = admitted_instance()
        instance.set_annotation(constants.ALLOW_DELETION_ANNOTATION, "true")
        mock_k8s_clients["custom_api"].get_cluster_custom_object.return_value = instance.to_dict()
        assert instance_handler.admit(instance_request("DELETE")) == []

    def test_delete_of_missing_object(self, instance_handler, mock_k8s_clients):
        mock_k8s_clients["custom_api"].get_cluster_custom_object.side_effect = api_exception(404)
        with pytest.raises(ValidationError, match="does not exist"):
            instance_handler.admit(instance_request("DELETE"))

    def test_undecodable_object(self, instance_handler):
        with pytest.raises(ValidationError, match="failed to deserialize the current object"):
            instance_handler.admit(instance_request("CREATE", {"spec": {"flags": "nope"}}))

    def test_unsupported_operation(self, instance_handler, make_instance):
        with pytest.raises(ValidationError, match="unsupported operation"):
            instance_handler.admit(instance_request("CONNECT", make_instance().to_dict()))


class TestWebhookHTTP:
    """Tests for the HTTP endpoints"""

    def test_healthz(self, client):
        response = client.get("/healthz")
        assert response.status_code == 200

    def test_rejects_non_json(self, client):
        response = client.post(ADMISSION_PATH, data="hello", content_type="text/plain")
        assert response.status_code == 415

    def test_rejects_get(self, client):
        response = client.get(ADMISSION_PATH)
        assert response.status_code == 405

    def test_malformed_body(self, client):
        response = client.post(ADMISSION_PATH, data="{not json", content_type="application/json")
        body = response.get_json()
        assert response.status_code == 200
        assert body["response"]["allowed"] is False
        assert body["response"]["status"]["message"].startswith("failed to decode admissionreview")

    def test_allowed_with_patch(self, client, make_instance):
        request = instance_request("CREATE", make_instance().to_dict(), uid="abc")
        response = client.post(ADMISSION_PATH, json=review(request))
        body = response.get_json()

        assert body["apiVersion"] == "admission.k8s.io/v1"
        assert body["kind"] == "AdmissionReview"
        assert body["response"]["uid"] == "abc"
        assert body["response"]["allowed"] is True
        assert body["response"]["patchType"] == "JSONPatch"
        paths = {op["path"] for op in decode_patch(body["response"])}
        assert "/spec/resources" in paths

    def test_allowed_without_patch(self, client, admitted_instance):
        request = instance_request("CREATE", admitted_instance().to_dict(), uid="abc")
        body = client.post(ADMISSION_PATH, json=review(request)).get_json()
        assert body["response"]["allowed"] is True
        assert "patch" not in body["response"]

    def test_denied_with_message(self, client, make_instance):
        obj = make_instance(availability={"type": "Global"}).to_dict()
        request = instance_request("CREATE", obj, uid="xyz")
        body = client.post(ADMISSION_PATH, json=review(request)).get_json()
        assert body["response"]["uid"] == "xyz"
        assert body["response"]["allowed"] is False
        assert "availability type" in body["response"]["status"]["message"]

    def test_unsupported_resource(self, client):
        request = {
            "uid": "u",
            "operation": "CREATE",
            "resource": {"group": "apps", "version": "v1", "resource": "deployments"},
            "object": {},
        }
        body = client.post(ADMISSION_PATH, json=review(request)).get_json()
        assert body["response"]["allowed"] is False
        assert "unsupported gvr apps/v1/deployments" in body["response"]["status"]["message"]

    def test_unexpected_handler_error(self, webhook, client, make_instance):
        handler = webhook.handlers[(constants.GROUP, constants.VERSION, constants.PLURAL)]
        handler.pipeline = [lambda candidate, previous: 1 / 0]
        request = instance_request("CREATE", make_instance().to_dict(), uid="e")
        body = client.post(ADMISSION_PATH, json=review(request)).get_json()
        assert body["response"]["uid"] == "e"
        assert body["response"]["allowed"] is False
