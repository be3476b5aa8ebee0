"""Cloud SQL Admin API client for cloudsql-postgres-operator."""

import logging
import threading
from typing import Any, Dict, List, Optional

import google.auth
import google.auth.transport.requests
import httpx
from google.oauth2 import service_account

from .errors import CloudSQLAPIError

logger = logging.getLogger(__name__)

BASE_URL = "https://sqladmin.googleapis.com/sql/v1beta4"
SCOPES = ["https://www.googleapis.com/auth/sqlservice.admin"]


class CloudSQLAdminClient:
    """HTTP client for the subset of the Cloud SQL Admin API used by the operator.

    Every request opens its own connection so that a single instance may be
    shared by the controller workers and the webhook request threads.
    """

    def __init__(
        self,
        project_id: str,
        credentials=None,
        base_url: str = BASE_URL,
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.project_id = project_id
        self.credentials = credentials
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._credentials_lock = threading.Lock()

    @classmethod
    def from_service_account_file(cls, path: str, project_id: str, **kwargs):
        credentials = service_account.Credentials.from_service_account_file(
            path, scopes=SCOPES
        )
        logger.info(f"Loaded Cloud SQL admin credentials from {path}")
        return cls(project_id, credentials=credentials, **kwargs)

    @classmethod
    def from_default_credentials(cls, project_id: str = "", **kwargs):
        """Use Application Default Credentials, e.g. from workload identity.
        """
        credentials, default_project_id = google.auth.default(scopes=SCOPES)
        logger.info("Loaded Cloud SQL admin credentials from the environment")
        return cls(project_id or default_project_id, credentials=credentials, **kwargs)

    def _get_headers(self):
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if self.credentials is not None:
            with self._credentials_lock:
                if not self.credentials.valid:
                    self.credentials.refresh(google.auth.transport.requests.Request())
                headers["Authorization"] = f"Bearer {self.credentials.token}"
        return headers

    def _request(self, method: str, path: str, data=None, params=None):
        url = f"{self.base_url}/projects/{self.project_id}{path}"
        logger.debug(f"{method} {url}")
        with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
            response = client.request(
                method, url, headers=self._get_headers(), json=data, params=params
            )
        if response.is_error:
            raise CloudSQLAPIError.from_response(response)
        return response.json() if response.content else {}

    def get_instance(self, name: str) -> Dict[str, Any]:
        return self._request("GET", f"/instances/{name}")

    def insert_instance(self, instance: Dict[str, Any]) -> Dict[str, Any]:
        """Request creation of an instance. Returns the resulting operation.
        """
        return self._request("POST", "/instances", instance)

    def update_instance(self, name: str, instance: Dict[str, Any]) -> Dict[str, Any]:
        """Replace the settings of an instance. Returns the resulting operation.
        """
        return self._request("PUT", f"/instances/{name}", instance)

    def delete_instance(self, name: str) -> Dict[str, Any]:
        return self._request("DELETE", f"/instances/{name}")

    def list_operations(self, name: str) -> List[Dict[str, Any]]:
        """List the operations of an instance, most recent first.
        """
        response = self._request("GET", "/operations", params={"instance": name})
        return response.get("items") or []

    def set_user_password(self, instance: str, user: str, password: str):
        """Set the password of a database user of an instance.
        """
        return self._request(
            "PUT",
            f"/instances/{instance}/users",
            {"name": user, "password": password},
            params={"name": user},
        )
