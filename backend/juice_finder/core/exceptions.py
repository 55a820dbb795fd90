"""
Error taxonomy shared by the services and the API layer.
Each exception carries the HTTP status it is rendered with.
"""

from typing import Any, Dict, Optional


class JuiceFinderError(Exception):
    """Base class for all application errors."""

    status_code = 500
    error = "Erreur interne"

    def __init__(self, details: str = "", *, error: Optional[str] = None,
                 extra: Optional[Dict[str, Any]] = None):
        super().__init__(details or self.error)
        self.details = details
        if error is not None:
            self.error = error
        self.extra = extra or {}

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.error}
        if self.details:
            payload["details"] = self.details
        payload.update(self.extra)
        return payload


class ValidationError(JuiceFinderError):
    """A required request field is missing or malformed."""

    status_code = 400
    error = "Requête invalide"


class AuthenticationError(JuiceFinderError):
    """Missing user identity or wrong password."""

    status_code = 401
    error = "Non authentifié"


class NotFoundError(JuiceFinderError):
    status_code = 404
    error = "Introuvable"


class ConflictError(JuiceFinderError):
    """Duplicate unique key, or an ingestion run already in progress."""

    status_code = 409
    error = "Conflit"


class UpstreamError(JuiceFinderError):
    """The external dataset could not be fetched."""

    status_code = 502
    error = "Erreur lors de la récupération des données externes"


class StoreUnavailableError(JuiceFinderError):
    """The database is unreachable. Retryable."""

    status_code = 503
    error = "Erreur de connexion à la base de données"
