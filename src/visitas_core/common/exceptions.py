"""Visitas-Core exception hierarchy."""


class VisitasError(Exception):
    """Base exception for all Visitas errors."""

    def __init__(self, message: str = "", code: str = "VISITAS_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


class NotFoundError(VisitasError):
    """Raised when no live row matches the lookup."""

    def __init__(self, message: str = "Resource not found"):
        super().__init__(message, code="NOT_FOUND")


class ValidationError(VisitasError):
    """Raised when an argument is malformed or a transition is not allowed."""

    def __init__(self, message: str = "Validation failed"):
        super().__init__(message, code="VALIDATION")


class ConflictError(VisitasError):
    """Raised when an optimistic update carries a stale version.

    Retryable: re-read the entity and resubmit against its current version.
    """

    def __init__(
        self,
        message: str = "",
        expected_version: int | None = None,
        actual_version: int | None = None,
    ):
        self.expected_version = expected_version
        self.actual_version = actual_version
        if not message:
            message = (
                "Record was modified by another writer: expected version "
                f"{expected_version} but found {actual_version}"
            )
        super().__init__(message, code="CONFLICT")


class AuthenticationError(VisitasError):
    """Raised when a ciphertext fails authentication (wrong key or AAD)."""

    def __init__(self, message: str = "Ciphertext failed authentication"):
        super().__init__(message, code="AUTHENTICATION")


class DependencyUnavailableError(VisitasError):
    """Raised when the row store or the key service cannot be reached."""

    def __init__(self, message: str = "Dependency unavailable", dependency: str = ""):
        self.dependency = dependency
        super().__init__(message, code="DEPENDENCY_UNAVAILABLE")


class AuditWriteError(DependencyUnavailableError):
    """Raised when an audit entry could not be written.

    Fatal to the enclosing operation: protected data is never returned
    without its audit record.
    """

    def __init__(self, message: str = "Audit entry could not be written"):
        super().__init__(message, dependency="audit")
        self.code = "AUDIT_WRITE_FAILED"
