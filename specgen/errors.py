"""Custom error types for specgen."""


class SpecGenError(Exception):
    """Base error for specgen operations."""
    pass


class SpecNotFoundError(SpecGenError):
    """Requested specification does not exist."""

    def __init__(self, message: str, spec_id: int = None):
        super().__init__(message)
        self.spec_id = spec_id


class StoreError(SpecGenError):
    """Error while reading or writing stored specifications."""

    def __init__(self, message: str, path: str = None):
        super().__init__(message)
        self.path = path


class InternalError(SpecGenError):
    """Unexpected fault inside a specgen component."""

    def __init__(self, message: str, operation: str = None):
        super().__init__(message)
        self.operation = operation
