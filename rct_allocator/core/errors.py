class AllocationError(ValueError):
    """Base class for assignment requests the allocation engine refuses."""


class AssignmentValidationError(AllocationError):
    """The request is missing the severity stratum required in stratified mode."""

    def __init__(self, message: str = "severity required for stratified randomization"):
        super().__init__(message)


class CapacityExhaustedError(AllocationError):
    """No group has a remaining slot under the active criterion."""

    def __init__(self, message: str = "all groups full under current criteria"):
        super().__init__(message)


class PersistenceCorruptionError(RuntimeError):
    """Stored configuration or participant rows could not be parsed."""
