"""
Exceptions raised by the ticket services.

Services raise, blueprints translate: each type below has exactly one
handler in ``hostel_tickets.utils.errors.register_error_handlers``.

    raise NotFoundError("Ticket", 42)
    raise IllegalTransitionError("OPEN", "RESOLVED")
"""


class TicketingError(Exception):
    """Root of every domain error in the package."""


class NotFoundError(TicketingError):
    """404.  *resource* is a model name such as "Ticket" or "StaffMapping"."""

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        where = f" id={resource_id}" if resource_id is not None else ""
        super().__init__(f"{resource}{where} not found")


class ValidationError(TicketingError):
    """422.  *details* maps field name to problem for the response body."""

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(TicketingError):
    """409.  Raised before a unique key (email, staff mapping triple) is duplicated."""

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(f"{resource} with {field}={value!r} already exists")


class ConcurrentUpdateError(ConflictError):
    """409.  The (id, status, version) compare-and-set matched no row; re-read and retry."""

    def __init__(self, resource: str, resource_id: int, expected: str | None = None) -> None:
        self.resource_id = resource_id
        self.expected = expected
        message = f"{resource} id={resource_id} was modified concurrently"
        if expected:
            message += f" (expected status {expected})"
        TicketingError.__init__(self, message)
        self.resource = resource
        self.field = "version"
        self.value = None


class NoEligibleStaffError(TicketingError):
    """409.  Routing found nobody for the ticket; it stays OPEN for an admin."""

    def __init__(self, ticket_id: int | None, category: str, hostel_block: str | None,
                 reason: str = "no matching mapping") -> None:
        self.ticket_id = ticket_id
        self.category = category
        self.hostel_block = hostel_block
        self.reason = reason
        super().__init__(
            f"No eligible staff for ticket {ticket_id} "
            f"(category={category}, block={hostel_block or '*'}): {reason}"
        )


class IllegalTransitionError(TicketingError):
    """409.  The status pair is not in the lifecycle table; nothing was written."""

    def __init__(self, from_status: str, to_status: str, message: str | None = None) -> None:
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(message or f"Cannot move ticket from {from_status} to {to_status}")


class InvalidLevelError(TicketingError):
    """422.  Manual escalation level outside 1..5 or not above the current one."""

    def __init__(self, level, message: str | None = None) -> None:
        self.level = level
        super().__init__(message or f"Invalid escalation level: {level}")


class NotAuthorizedError(TicketingError):
    """403."""


class AlreadyResolvedError(TicketingError):
    """409."""

    def __init__(self, escalation_id: int) -> None:
        self.escalation_id = escalation_id
        super().__init__(f"Escalation id={escalation_id} is already resolved")
