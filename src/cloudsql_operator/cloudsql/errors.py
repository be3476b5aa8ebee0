"""Errors raised by the Cloud SQL Admin API client."""

import httpx


class CloudSQLAPIError(Exception):
    """An error response returned by the Cloud SQL Admin API."""

    def __init__(self, status: int, message: str):
        super().__init__(message)
        self.status = status
        self.message = message

    @classmethod
    def from_response(cls, response: httpx.Response) -> "CloudSQLAPIError":
        try:
            body = response.json()
        except ValueError:
            body = {}
        error = body.get("error") if isinstance(body, dict) else None
        message = (error or {}).get("message") or response.reason_phrase
        return cls(response.status_code, message)

    def __str__(self):
        return f"cloud sql admin api returned {self.status}: {self.message}"


def _has_status(e: Exception, status: int) -> bool:
    return isinstance(e, CloudSQLAPIError) and e.status == status


def is_bad_request(e: Exception) -> bool:
    return _has_status(e, 400)


def is_not_found(e: Exception) -> bool:
    return _has_status(e, 404)


def is_conflict(e: Exception) -> bool:
    return _has_status(e, 409)
