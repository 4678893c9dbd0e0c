"""Visitas-Core: secure data access for clinical records."""

from visitas_core.common.exceptions import (
    AuditWriteError,
    AuthenticationError,
    ConflictError,
    DependencyUnavailableError,
    NotFoundError,
    ValidationError,
    VisitasError,
)
from visitas_core.common.statements import Dialect, Statement, StatementBuilder

__all__ = [
    "AuditWriteError",
    "AuthenticationError",
    "ConflictError",
    "DependencyUnavailableError",
    "NotFoundError",
    "ValidationError",
    "VisitasError",
    "Dialect",
    "Statement",
    "StatementBuilder",
]
__version__ = "0.1.0"
