"""Error types raised by the dispatch services."""
from typing import Optional


class DispatchError(Exception):
    """Base class for every error the dispatch services raise."""


class ValidationError(DispatchError, ValueError):
    """Malformed input rejected before any network call."""


class InvalidTransition(DispatchError):
    def __init__(self, source: str, target: str):
        self.source = source
        self.target = target
        super().__init__(f"Invalid transition from '{source}' to '{target}'")


class StaleStateConflict(DispatchError):
    """Another writer changed the dispatch first; retry with fresh state."""

    def __init__(
        self,
        dispatch_id: int,
        expected: Optional[str] = None,
        actual: Optional[str] = None,
        expected_ambulance_id: Optional[int] = None,
        actual_ambulance_id: Optional[int] = None,
    ):
        self.dispatch_id = dispatch_id
        self.expected = expected
        self.actual = actual
        self.expected_ambulance_id = expected_ambulance_id
        self.actual_ambulance_id = actual_ambulance_id
        detail = f"Dispatch {dispatch_id} changed concurrently"
        if expected != actual:
            detail += f" (expected state '{expected}', found '{actual}')"
        elif expected_ambulance_id != actual_ambulance_id:
            detail += f" (expected ambulance {expected_ambulance_id}, found {actual_ambulance_id})"
        super().__init__(detail + "; retry with fresh state")


class NotFound(DispatchError):
    def __init__(self, resource: str, identifier):
        self.resource = resource
        self.identifier = identifier
        super().__init__(f"{resource} {identifier} not found")


class Unavailable(DispatchError):
    """A backend or ML service could not be reached or answered badly."""
