"""Error taxonomy shared by the store layer, the recorder and the routes."""

from __future__ import annotations

from typing import Optional, Dict, Any


class EcoGuideError(Exception):
    status_code = 500

    def __init__(self, message: str, field: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.field = field
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message}


class ValidationError(EcoGuideError):
    status_code = 400


class AuthorizationError(EcoGuideError):
    """401 when no verified identity is present, 403 when it names someone else."""

    status_code = 401


class NotFoundError(EcoGuideError):
    status_code = 404


class PersistenceError(EcoGuideError):
    status_code = 500
