"""Exceptions raised by the audit pipeline.

Only :class:`StructuralFailure` ends a run. Every other error is caught at the
plugin boundary and recorded as that plugin's outcome.
"""


class AuditError(Exception):
    """Base class for audit pipeline errors."""


class StructuralFailure(AuditError):
    """The run cannot continue (installed list unreadable, cache unwritable, ...)."""


class RepositoryResolutionFailure(AuditError):
    """Repository metadata could not be resolved for one plugin."""


class RepositoryNotFoundError(RepositoryResolutionFailure):
    """The repository string is invalid, renamed or deleted."""


class RepositoryForbiddenError(RepositoryResolutionFailure):
    """Access denied, usually an exhausted unauthenticated rate limit."""


class UnexpectedStatusError(RepositoryResolutionFailure):
    """The repository host answered with a status outside the known taxonomy."""

    def __init__(self, message: str, status: int):
        super().__init__(message)
        self.status = status


class AcquisitionFailure(AuditError):
    """A mandatory file could not be downloaded."""


class AuditToolFailure(AuditError):
    """The audit tool could not be run or produced unusable output."""
