"""Admission webhook for PostgresqlInstance resources and pods."""

from .errors import ValidationError
from .handlers import PostgresqlInstanceHandler
from .pod import PodHandler
from .webhook import Webhook

__all__ = ["PodHandler", "PostgresqlInstanceHandler", "ValidationError", "Webhook"]
