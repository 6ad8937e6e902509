from typing import Optional


class ValidationError(ValueError):
    """Bad input shape or range, detected before the store is touched."""

    def __init__(self, message: str, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.field = field


class NotFoundError(ValueError):
    pass


class StoreError(RuntimeError):
    """Persistence failure. The message is safe to show to callers."""
