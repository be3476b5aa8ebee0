"""
Tests for the injection of the Cloud SQL proxy into pods
"""
import base64

import pytest

from cloudsql_operator import constants
from cloudsql_operator.admission import PodHandler, ValidationError, Webhook
from cloudsql_operator.admission.pod import (
    PROXY_CONTAINER_NAME,
    PROXY_PORT_MAX,
    PROXY_PORT_MIN,
    escape_pgpass,
    get_free_random_port,
)
from cloudsql_operator.admission.register import ADMISSION_PATH

from .conftest import api_exception


def b64(value):
    return base64.b64encode(value.encode()).decode()


def make_pod(annotations=None, containers=None):
    return {
        "apiVersion": "v1",
        "kind": "Pod",
        "metadata": {"name": "app", "namespace": "team-a", "annotations": annotations or {}},
        "spec": {
            "containers": containers
            or [{"name": "app", "image": "app:1.0", "ports": [{"containerPort": 8080}]}]
        },
    }


def pod_request(pod, dry_run=False):
    return {
        "uid": "pod-req",
        "operation": "CREATE",
        "namespace": "team-a",
        "resource": {"group": "", "version": "v1", "resource": "pods"},
        "object": pod,
        "dryRun": dry_run,
    }


ANNOTATIONS = {constants.POSTGRESQL_INSTANCE_NAME_ANNOTATION: "test-instance"}


@pytest.fixture
def ready_instance(admitted_instance):
    instance = admitted_instance()
    instance.status.connectionName = "my-project:europe-west1:test-db"
    return instance


@pytest.fixture
def pod_handler(mock_k8s_clients, ready_instance):
    core_v1 = mock_k8s_clients["core_v1"]
    custom_api = mock_k8s_clients["custom_api"]
    custom_api.get_cluster_custom_object.return_value = ready_instance.to_dict()
    core_v1.read_namespaced_secret.return_value = {
        "metadata": {"name": "test-instance", "namespace": constants.DEFAULT_NAMESPACE},
        "data": {"username": b64("postgres"), "password": b64("s3:cr\\t")},
    }
    return PodHandler(
        core_v1,
        custom_api,
        constants.DEFAULT_NAMESPACE,
        constants.DEFAULT_CLOUD_SQL_PROXY_IMAGE,
        '{"type": "service_account"}',
    )


class TestHelpers:
    def test_escape_pgpass(self):
        assert escape_pgpass("a:b\\c") == "a\\:b\\\\c"

    def test_free_port_avoids_used_ports(self, monkeypatch):
        draws = iter([8080, 50000])
        monkeypatch.setattr("random.randint", lambda a, b: next(draws))
        pod = make_pod(containers=[{"name": "a", "ports": [{"containerPort": 8080}]}])
        assert get_free_random_port(pod) == 50000

    def test_free_port_in_dynamic_range(self):
        port = get_free_random_port(make_pod())
        assert PROXY_PORT_MIN <= port <= PROXY_PORT_MAX


class TestPodHandler:
    """Tests for PodHandler.mutate"""

    def test_pod_without_annotation_is_untouched(self, pod_handler, mock_k8s_clients):
        pod = make_pod()
        assert pod_handler.admit(pod_request(pod)) == []
        mock_k8s_clients["custom_api"].get_cluster_custom_object.assert_not_called()

    def test_already_injected_pod_is_untouched(self, pod_handler):
        annotations = {**ANNOTATIONS, constants.PROXY_INJECTED_ANNOTATION: "true"}
        assert pod_handler.admit(pod_request(make_pod(annotations))) == []

    def test_injection(self, pod_handler, mock_k8s_clients):
        pod = make_pod(ANNOTATIONS)
        mutated = pod_handler.mutate("team-a", pod)

        containers = mutated["spec"]["containers"]
        assert [c["name"] for c in containers] == ["app", PROXY_CONTAINER_NAME]
        proxy = containers[1]
        port = proxy["ports"][0]["containerPort"]
        assert port != 8080
        assert f"-instances=my-project:europe-west1:test-db=tcp:{port}" in proxy["command"]
        assert "-ip_address_types=PUBLIC" in proxy["command"]

        env = {e["name"]: e["value"] for e in containers[0]["env"]}
        assert env == {
            "PGHOST": "localhost",
            "PGPORT": str(port),
            "PGUSER": "postgres",
            "PGPASSFILE": "/secret/pgpass.conf",
        }
        assert containers[0]["volumeMounts"][0]["readOnly"] is True
        assert mutated["spec"]["volumes"][0]["secret"]["secretName"] == "test-instance-cloud-sql-proxy"
        assert mutated["metadata"]["annotations"][constants.PROXY_INJECTED_ANNOTATION] == "true"
        # The admitted object itself is left alone.
        assert len(pod["spec"]["containers"]) == 1

    def test_local_secret(self, pod_handler, mock_k8s_clients):
        pod_handler.mutate("team-a", make_pod(ANNOTATIONS))

        create = mock_k8s_clients["core_v1"].create_namespaced_secret
        create.assert_called_once()
        namespace, secret = create.call_args[0]
        assert namespace == "team-a"
        assert secret["metadata"]["ownerReferences"][0]["kind"] == constants.KIND
        pgpass = base64.b64decode(secret["data"]["pgpass.conf"]).decode()
        assert pgpass == "*:*:*:postgres:s3\\:cr\\\\t"
        assert base64.b64decode(secret["data"]["credentials.json"]).decode() == '{"type": "service_account"}'

    def test_local_secret_is_patched_when_present(self, pod_handler, mock_k8s_clients):
        core_v1 = mock_k8s_clients["core_v1"]
        core_v1.create_namespaced_secret.side_effect = api_exception(409)
        pod_handler.mutate("team-a", make_pod(ANNOTATIONS))
        core_v1.patch_namespaced_secret.assert_called_once()

    def test_dry_run_writes_nothing(self, pod_handler, mock_k8s_clients):
        operations = pod_handler.admit(pod_request(make_pod(ANNOTATIONS), dry_run=True))
        assert operations
        mock_k8s_clients["core_v1"].create_namespaced_secret.assert_not_called()

    def test_missing_instance(self, pod_handler, mock_k8s_clients):
        mock_k8s_clients["custom_api"].get_cluster_custom_object.side_effect = api_exception(404)
        with pytest.raises(ValidationError, match="does not exist"):
            pod_handler.mutate("team-a", make_pod(ANNOTATIONS))

    def test_missing_secret(self, pod_handler, mock_k8s_clients):
        mock_k8s_clients["core_v1"].read_namespaced_secret.side_effect = api_exception(404)
        with pytest.raises(ValidationError, match="secret associated with postgresqlinstance"):
            pod_handler.mutate("team-a", make_pod(ANNOTATIONS))

    def test_connection_name_not_reported(self, pod_handler, mock_k8s_clients, admitted_instance):
        mock_k8s_clients["custom_api"].get_cluster_custom_object.return_value = (
            admitted_instance().to_dict()
        )
        with pytest.raises(ValidationError, match="has not been reported yet"):
            pod_handler.mutate("team-a", make_pod(ANNOTATIONS))

    def test_connection_name_not_reported_over_http(
        self, pod_handler, mock_k8s_clients, admitted_instance
    ):
        """The webhook answers with a denial instead of failing"""
        mock_k8s_clients["custom_api"].get_cluster_custom_object.return_value = (
            admitted_instance().to_dict()
        )
        client = Webhook([pod_handler]).app.test_client()
        body = client.post(
            ADMISSION_PATH,
            json={"apiVersion": "admission.k8s.io/v1", "request": pod_request(make_pod(ANNOTATIONS))},
        ).get_json()
        assert body["response"]["allowed"] is False
        assert "has not been reported yet" in body["response"]["status"]["message"]
        assert client.get("/healthz").status_code == 200
