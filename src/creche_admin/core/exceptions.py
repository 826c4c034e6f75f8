class DomainError(Exception):
    """Base exception for business rule violations."""

    http_status = 400


class ValidationError(DomainError):
    """Raised when input data is invalid or violates domain rules."""


class AuthenticationError(DomainError):
    """Raised when login credentials are invalid."""

    http_status = 401


class AuthorizationError(DomainError):
    """Raised when a user lacks permission for an action."""

    http_status = 403


class NotFound(DomainError):
    """A child, parent or enrollment id does not resolve."""

    http_status = 404


class ChildNotFound(NotFound):
    pass


class ParentNotFound(NotFound):
    """The id is unknown or does not belong to a parent account."""


class EnrollmentNotFound(NotFound):
    pass


class InvalidTransition(DomainError):
    """The requested status change is not allowed from the current status."""

    http_status = 409


class DuplicateActiveEnrollment(DomainError):
    """The child already has an approved (or pending) link."""

    http_status = 409


class MultipleActiveEnrollments(DomainError):
    """More than one approved link exists for a child (invariant violation)."""

    http_status = 409

    def __init__(self, child_id: int, enrollment_ids):
        self.child_id = int(child_id)
        self.enrollment_ids = tuple(int(i) for i in enrollment_ids)
        super().__init__(
            f"Child {self.child_id} has {len(self.enrollment_ids)} approved enrollments "
            f"({', '.join(str(i) for i in self.enrollment_ids)})"
        )


class NotArchived(DomainError):
    """Restore was attempted on a child that is still active."""

    http_status = 409
