"""Kubernetes operator managing Cloud SQL for PostgreSQL instances."""

__version__ = "0.1.0"
