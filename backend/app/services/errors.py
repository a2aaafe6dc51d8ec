"""
Error taxonomy for the PLS tracker.

  - ValidationFailed  — user input or an imported document failed required-field
                        checks; carries the full field list, nothing is applied.
  - ResolutionError   — a single-cell edit names an item or unit that does not
                        exist in the project.
  - BoundaryError     — persistence or extraction collaborator failed.
"""
from typing import List


class PlsError(Exception):
    """Base class for every domain error raised by the services layer."""


class ValidationFailed(PlsError):
    def __init__(self, errors: List[str], message: str = "Validation failed"):
        self.errors = list(errors)
        super().__init__(f"{message}: {'; '.join(self.errors)}" if self.errors else message)


class ResolutionError(PlsError):
    pass


class BoundaryError(PlsError):
    pass


class StoreError(BoundaryError):
    pass


class ExtractionError(BoundaryError):
    pass
