"""CRD management for the PostgresqlInstance resource."""

from .base import CRDCondition, CRDSpec, CRDStatus

__all__ = ["CRDCondition", "CRDSpec", "CRDStatus"]
