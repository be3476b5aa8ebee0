"""Errors raised while admitting resources."""


class ValidationError(Exception):
    """The object under admission violates a constraint.

    The message is returned verbatim to the client as the denial reason.
    """
