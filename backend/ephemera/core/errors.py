# ephemera/core/errors.py


class EphemeraError(Exception):
    """Base class for lifecycle errors."""


class InvalidDuration(EphemeraError, ValueError):
    """Self-destruct interval is negative, non-numeric or not finite."""


class StorageError(EphemeraError):
    """The underlying database failed an insert, read or delete."""


class SchedulerFault(EphemeraError):
    """A scheduled deletion raised instead of completing."""

    def __init__(self, record_id: int, cause: BaseException):
        super().__init__(f"self-destruct of record {record_id} failed: {cause}")
        self.record_id = record_id
        self.cause = cause
