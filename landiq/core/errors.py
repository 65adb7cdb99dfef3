"""Error taxonomy shared by the provider client, storage and HTTP layer.

Each error carries the HTTP status the API answers with, so routers never
have to translate exceptions themselves.
"""

from __future__ import annotations

from typing import Any, Dict, List


class LandIQError(Exception):
    status_code: int = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_payload(self) -> Dict[str, Any]:
        return {"message": self.message}


class ValidationError(LandIQError):
    """Client-supplied data violates the property input contract."""

    status_code = 400

    def __init__(self, errors: List[Dict[str, str]], message: str = "Invalid input data"):
        super().__init__(message)
        self.errors = errors

    @property
    def fields(self) -> List[str]:
        return [e["field"] for e in self.errors]

    def to_payload(self) -> Dict[str, Any]:
        return {"message": self.message, "errors": self.errors}


class ValuationGenerationError(LandIQError):
    """The upstream model call failed."""

    status_code = 500


class StorageError(LandIQError):
    status_code = 500


class NotFoundError(LandIQError):
    status_code = 404
