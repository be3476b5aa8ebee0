"""Reasons used in conditions and events."""

CONFLICT = "Conflict"
INSTANCE_CREATED = "InstanceCreated"
INSTANCE_NOT_READY = "InstanceNotReady"
INSTANCE_READY = "InstanceReady"
INSTANCE_UPDATED = "InstanceUpdated"
INSTANCE_UP_TO_DATE = "InstanceUpToDate"
INVALID_SPEC = "InvalidSpec"
NAME_UNAVAILABLE = "NameUnavailable"
OPERATION_IN_PROGRESS = "OperationInProgress"
UNEXPECTED_ERROR = "UnexpectedError"
