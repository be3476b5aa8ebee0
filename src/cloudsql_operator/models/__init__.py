"""Pydantic models for the PostgresqlInstance CRD."""

from .postgresqlinstance import (
    PostgresqlInstance,
    PostgresqlInstanceSpec,
    PostgresqlInstanceStatus,
)

__all__ = ["PostgresqlInstance", "PostgresqlInstanceSpec", "PostgresqlInstanceStatus"]
