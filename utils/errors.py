"""
Error types shared across the check-in system.
"""

from typing import Dict, List, Optional


class EmpowHerError(Exception):
    """Base class for all check-in system errors"""
    pass


class CheckinValidationError(EmpowHerError):
    """
    Raised when a check-in submission is malformed.

    Raised before the pipeline starts, so nothing has been written.
    """

    def __init__(self, errors: List[Dict[str, str]]):
        self.errors = errors
        summary = "; ".join(f"{e['field']}: {e['message']}" for e in errors)
        super().__init__(f"Invalid check-in submission ({summary})")


class OutcomeValidationError(EmpowHerError):
    """Raised when intervention feedback is malformed"""
    pass


class StorageError(EmpowHerError):
    """Backing store failure. Fatal for the current check-in."""

    def __init__(self, message: str, operation: Optional[str] = None):
        self.operation = operation
        super().__init__(message)


class InsightCapabilityError(EmpowHerError):
    """
    Generative capability failure (unavailable, timeout, malformed output).

    Never escapes the insight service; always converted into the
    deterministic fallback.
    """
    pass


class JournalVaultError(EmpowHerError):
    """Journal ciphertext could not be produced or opened"""
    pass
