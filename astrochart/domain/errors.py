"""Taxonomie des erreurs du pipeline de thème natal.

Chaque erreur porte un `code` stable et se sérialise dans l'enveloppe d'erreur standard
`{code, message, details}` exposée par la couche API.

- Erreurs fatales: `ConnectivityRequired`, `RateLimited`, erreurs fournisseur, `MappingError`.
- Avertissements non fatals: `PartialAssetFailure`, `CacheWriteFailure` (le thème est renvoyé).
"""

from __future__ import annotations

from typing import Any


class ErrorCodes:
    """Codes d'erreur stables du pipeline."""

    CONNECTIVITY_REQUIRED = "CONNECTIVITY_REQUIRED"
    RATE_LIMITED = "RATE_LIMITED"
    UNAUTHORIZED = "UNAUTHORIZED"
    PROVIDER_RATE_LIMITED = "PROVIDER_RATE_LIMITED"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    NETWORK_ERROR = "NETWORK_ERROR"
    INVALID_RESPONSE = "INVALID_RESPONSE"
    MAPPING_ERROR = "MAPPING_ERROR"
    PARTIAL_ASSET_FAILURE = "PARTIAL_ASSET_FAILURE"
    CACHE_WRITE_FAILURE = "CACHE_WRITE_FAILURE"


class ChartPipelineError(Exception):
    """Erreur de base du pipeline."""

    code = "CHART_PIPELINE_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            **({"details": self.details} if self.details else {}),
        }


class ConnectivityRequired(ChartPipelineError):
    """Hors ligne et aucun thème en cache pour cette requête."""

    code = ErrorCodes.CONNECTIVITY_REQUIRED

    def __init__(self, message: str = "No cached chart available; connectivity required") -> None:
        super().__init__(message)


class RateLimited(ChartPipelineError):
    """Quota local atteint: aucune requête réseau n'a été tentée."""

    code = ErrorCodes.RATE_LIMITED

    def __init__(self, retry_after: float, message: str | None = None) -> None:
        self.retry_after = max(0.0, float(retry_after))
        super().__init__(
            message or f"Request limit reached; retry in {self.retry_after:.0f}s",
            {"retry_after": self.retry_after},
        )


class ProviderError(ChartPipelineError):
    """Échec d'un appel au fournisseur distant."""

    code = "PROVIDER_ERROR"
    retryable = False

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.status_code = status_code
        merged = dict(details or {})
        if status_code is not None:
            merged.setdefault("status_code", status_code)
        super().__init__(message, merged)


class Unauthorized(ProviderError):
    code = ErrorCodes.UNAUTHORIZED


class RateLimitedByServer(ProviderError):
    """Le fournisseur a répondu 429, avec éventuellement un délai conseillé."""

    code = ErrorCodes.PROVIDER_RATE_LIMITED
    retryable = True

    def __init__(
        self,
        message: str = "Provider rate limit exceeded",
        retry_after: float | None = None,
        status_code: int | None = 429,
    ) -> None:
        self.retry_after = retry_after
        details = {"retry_after": retry_after} if retry_after is not None else None
        super().__init__(message, status_code, details)


class ServiceUnavailable(ProviderError):
    code = ErrorCodes.SERVICE_UNAVAILABLE
    retryable = True


class NetworkError(ProviderError):
    """Erreur de transport ou dépassement de délai."""

    code = ErrorCodes.NETWORK_ERROR
    retryable = True


class InvalidResponse(ProviderError):
    code = ErrorCodes.INVALID_RESPONSE


class MappingError(ChartPipelineError):
    """Enregistrement fournisseur invalide: le thème entier est rejeté."""

    code = ErrorCodes.MAPPING_ERROR

    def __init__(self, field: str, value: Any, reason: str | None = None) -> None:
        self.field = field
        self.value = value
        message = f"Invalid value for {field}: {value!r}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message, {"field": field, "value": repr(value)})


class PartialAssetFailure(ChartPipelineError):
    """Le visuel n'a pas pu être obtenu ou stocké; le thème reste valide."""

    code = ErrorCodes.PARTIAL_ASSET_FAILURE


class CacheWriteFailure(ChartPipelineError):
    """Le thème n'a pas pu être mis en cache; il est tout de même renvoyé."""

    code = ErrorCodes.CACHE_WRITE_FAILURE


def is_retryable(exc: BaseException) -> bool:
    """Prédicat de retry pour les appels fournisseur."""
    return isinstance(exc, ProviderError) and exc.retryable
