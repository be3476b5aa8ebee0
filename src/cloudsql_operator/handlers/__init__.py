"""Handler modules for the operator."""

# Import handlers so that kopf registers them
from . import postgresqlinstance_handler

__all__ = ["postgresqlinstance_handler"]
