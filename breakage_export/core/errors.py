"""
Exception types and per-reason error records.

Only ``PermissionDenied`` and ``UnsupportedPlatform`` abort a whole export
call. Everything else is captured per reason as a ``ReasonError``.
"""

from dataclasses import dataclass
from enum import Enum


class ValidationError(ValueError):
    """Raised when an entry submission carries an unusable quantity."""


class FormatError(ValueError):
    """Raised when a record cannot be rendered in the fixed-width format."""


class ExportError(Exception):
    """Base class for failures that terminate an export invocation."""


class PermissionDenied(ExportError):
    """The user declined the directory access request."""


class UnsupportedPlatform(ExportError):
    """The running platform cannot grant access to an external directory."""


class ErrorKind(Enum):
    """Classification of a failure isolated to one reason."""
    IO = "io"
    FORMAT = "format"
    STORE = "store"


@dataclass(frozen=True)
class ReasonError:
    """One reason's failure inside an export invocation."""
    reason_code: str
    kind: ErrorKind
    detail: str

    def __str__(self) -> str:
        return f"Erro ao exportar motivo {self.reason_code}: {self.detail}"
