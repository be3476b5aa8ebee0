"""
Pytest configuration and fixtures
"""
import copy
from unittest.mock import MagicMock

import kopf
import pytest
from kubernetes.client.exceptions import ApiException

from cloudsql_operator import constants
from cloudsql_operator.admission.postgresqlinstance import build_pipeline, run_pipeline
from cloudsql_operator.cloudsql.errors import CloudSQLAPIError
from cloudsql_operator.models import PostgresqlInstance

PROJECT_ID = "my-project"


# ============================================
# Fakes
# ============================================

class FakeCloudSQLClient:
    """In-memory stand-in for CloudSQLAdminClient"""

    def __init__(self, project_id=PROJECT_ID):
        self.project_id = project_id
        self.instances = {}
        self.operations = {}
        self.passwords = {}
        self.calls = []
        self.insert_error = None
        self.update_error = None
        self.get_error = None

    def _not_found(self, name):
        return CloudSQLAPIError(404, f"instance {name} does not exist")

    def get_instance(self, name):
        self.calls.append(("get", name))
        if self.get_error is not None:
            raise self.get_error
        if name not in self.instances:
            raise self._not_found(name)
        return copy.deepcopy(self.instances[name])

    def insert_instance(self, body):
        self.calls.append(("insert", body["name"]))
        if self.insert_error is not None:
            raise self.insert_error
        instance = copy.deepcopy(body)
        instance["state"] = constants.INSTANCE_STATE_RUNNABLE
        instance["connectionName"] = f"{self.project_id}:{body['region']}:{body['name']}"
        instance["ipAddresses"] = [{"type": "PRIMARY", "ipAddress": "203.0.113.10"}]
        self.instances[body["name"]] = instance
        self.operations[body["name"]] = [
            {"name": "op-1", "operationType": "CREATE", "status": "DONE"}
        ]
        return {"name": "op-1"}

    def update_instance(self, name, body):
        self.calls.append(("update", name))
        if self.update_error is not None:
            raise self.update_error
        self.instances[name] = copy.deepcopy(body)
        return {"name": "op-2"}

    def delete_instance(self, name):
        self.calls.append(("delete", name))
        if name not in self.instances:
            raise self._not_found(name)
        del self.instances[name]
        return {"name": "op-3"}

    def list_operations(self, name):
        self.calls.append(("list_operations", name))
        return copy.deepcopy(self.operations.get(name, []))

    def set_user_password(self, instance, user, password):
        self.calls.append(("set_user_password", instance))
        self.passwords[(instance, user)] = password
        return {"name": "op-4"}

    def count(self, kind):
        return sum(1 for call in self.calls if call[0] == kind)


def api_exception(status):
    return ApiException(status=status, reason="Error")


# ============================================
# Fixtures
# ============================================

@pytest.fixture
def cloudsql_client():
    """Fake Cloud SQL client with no instances"""
    return FakeCloudSQLClient()


@pytest.fixture
def pipeline(cloudsql_client):
    """Admission pipeline backed by the fake Cloud SQL client"""
    return build_pipeline(cloudsql_client, PROJECT_ID)


@pytest.fixture
def make_instance():
    """Factory for minimal PostgresqlInstance objects"""

    def _make(name="test-instance", spec_name="test-db", **spec):
        spec = {"name": spec_name, "networking": {"publicIp": {"enabled": True}}, **spec}
        return PostgresqlInstance.from_dict(
            {
                "apiVersion": constants.API_VERSION,
                "kind": constants.KIND,
                "metadata": {
                    "name": name,
                    "uid": "00000000-0000-0000-0000-000000000001",
                    "resourceVersion": "1",
                },
                "spec": spec,
            }
        )

    return _make


@pytest.fixture
def admitted_instance(make_instance, pipeline):
    """Factory for PostgresqlInstance objects defaulted by the admission pipeline"""

    def _make(*args, **kwargs):
        return run_pipeline(pipeline, make_instance(*args, **kwargs))

    return _make


@pytest.fixture
def mock_k8s_clients():
    """Mock Kubernetes clients"""
    return {
        "core_v1": MagicMock(),
        "custom_api": MagicMock(),
        "admission_api": MagicMock(),
    }


@pytest.fixture
def kopf_events(monkeypatch):
    """Capture events posted with kopf.info and kopf.warn"""
    events = MagicMock()
    monkeypatch.setattr(kopf, "info", events.info)
    monkeypatch.setattr(kopf, "warn", events.warn)
    return events
