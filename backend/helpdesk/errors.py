"""Domain exceptions raised by the service layer.

Route handlers in ``main.py`` translate these into HTTP responses.
"""


class HelpdeskError(Exception):
    """Base class for helpdesk domain errors."""


class NotFoundError(HelpdeskError):
    """A requested record does not exist."""


class PermissionDeniedError(HelpdeskError):
    """The acting user may not perform the operation."""


class ValidationError(HelpdeskError):
    """Input failed a domain rule (lengths, enums, deadlines)."""


class ConflictError(HelpdeskError):
    """The operation clashes with existing state."""
