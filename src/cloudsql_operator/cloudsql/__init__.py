"""Access to the Cloud SQL Admin API."""

from .client import CloudSQLAdminClient
from .errors import CloudSQLAPIError, is_bad_request, is_conflict, is_not_found

__all__ = [
    "CloudSQLAdminClient",
    "CloudSQLAPIError",
    "is_bad_request",
    "is_conflict",
    "is_not_found",
]
