"""Client HTTP du fournisseur distant de thèmes astrologiques.

Objectif du module
------------------
- Encapsuler les deux appels réseau (données du thème, visuel de la roue).
- Traduire les statuts HTTP et erreurs de transport en erreurs typées du domaine.
- Rejouer les échecs transitoires (5xx, 429, réseau) avec backoff exponentiel.

Aucune logique de cache ni de quota ici: c'est le rôle de l'orchestrateur.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import Any, TypeVar

import httpx
import structlog

from astrochart.app.metrics import PROVIDER_CALLS, PROVIDER_LATENCY, PROVIDER_RETRIES
from astrochart.core.http_constants import (
    HTTP_FORBIDDEN,
    HTTP_STATUS_CLIENT_ERROR_MIN,
    HTTP_STATUS_SERVER_ERROR_MAX,
    HTTP_STATUS_SERVER_ERROR_MIN,
    HTTP_TOO_MANY_REQUESTS,
    HTTP_UNAUTHORIZED,
)
from astrochart.domain.entities import BirthQuery
from astrochart.domain.errors import (
    InvalidResponse,
    NetworkError,
    ProviderError,
    RateLimitedByServer,
    ServiceUnavailable,
    Unauthorized,
    is_retryable,
)
from astrochart.infra.retry import RetryPolicy, Sleep, retry_async

T = TypeVar("T")

_CONTENT_TYPES = {
    "image/svg+xml": "svg",
    "image/png": "png",
}


@dataclass
class ChartImage:
    """Visuel brut renvoyé par le fournisseur."""

    data: bytes
    format: str
    content_type: str
    source_url: str


def parse_retry_after(value: str | None, now: datetime | None = None) -> float | None:
    """Retry-After en secondes (forme numérique ou date HTTP), None si illisible."""
    if not value:
        return None
    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=UTC)
    current = now or datetime.now(UTC)
    return max(0.0, (when - current).total_seconds())


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or response.reason_phrase
    if isinstance(body, dict):
        return str(body.get("message") or body.get("msg") or body.get("error") or body)[:200]
    return str(body)[:200]


def raise_for_provider_status(response: httpx.Response) -> None:
    """Lève l'erreur typée correspondant au statut HTTP (rien si 2xx/3xx)."""
    status = response.status_code
    if status < HTTP_STATUS_CLIENT_ERROR_MIN:
        return
    message = _error_message(response)
    if status in (HTTP_UNAUTHORIZED, HTTP_FORBIDDEN):
        raise Unauthorized(f"Provider rejected credentials: {message}", status)
    if status == HTTP_TOO_MANY_REQUESTS:
        raise RateLimitedByServer(
            f"Provider rate limit exceeded: {message}",
            retry_after=parse_retry_after(response.headers.get("Retry-After")),
        )
    if HTTP_STATUS_SERVER_ERROR_MIN <= status <= HTTP_STATUS_SERVER_ERROR_MAX:
        raise ServiceUnavailable(f"Provider unavailable: {message}", status)
    raise InvalidResponse(f"Provider rejected request: {message}", status)


def build_request_body(
    query: BirthQuery,
    *,
    image_format: str | None = None,
    image_size: int | None = None,
) -> dict[str, Any]:
    """Corps de requête commun aux deux appels."""
    body: dict[str, Any] = {
        "day": query.day,
        "month": query.month,
        "year": query.year,
        "hour": query.hour,
        "min": query.minute,
        "lat": query.latitude,
        "lon": query.longitude,
        "tzone": query.tz_offset_hours,
        "house_type": query.house_system,
    }
    if image_format is not None:
        body["image_type"] = image_format
    if image_size is not None:
        body["chart_size"] = image_size
    return body


def _image_format(content_type: str, url: str) -> str:
    media = content_type.split(";")[0].strip().lower()
    if media in _CONTENT_TYPES:
        return _CONTENT_TYPES[media]
    path = httpx.URL(url).path.lower()
    for suffix in ("svg", "png"):
        if path.endswith(f".{suffix}"):
            return suffix
    raise InvalidResponse(f"Unsupported image content type: {content_type or 'unknown'}")


class ChartProviderClient:
    """Client asynchrone du fournisseur d'éphémérides (httpx).

    Les deux appels partagent les mêmes en-têtes (`Authorization: Bearer <clé>`), les mêmes
    timeouts et la même politique de retry. Un visuel hébergé sur un autre hôte que l'API
    (CDN) est téléchargé par un client sans en-tête d'authentification.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        data_path: str = "/western_horoscope",
        image_path: str = "/natal_wheel_chart",
        image_format: str = "svg",
        image_size: int = 600,
        policy: RetryPolicy | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.policy = policy or RetryPolicy()
        self.data_path = data_path
        self.image_path = image_path
        self.image_format = image_format
        self.image_size = image_size
        self._sleep = sleep
        self._log = structlog.get_logger(__name__).bind(component="chart_provider")
        headers: dict[str, str] = {"Accept": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        timeout = httpx.Timeout(
            self.policy.total_timeout,
            connect=self.policy.connect_timeout,
            write=self.policy.connect_timeout,
        )
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )
        self._asset_client = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def aclose(self) -> None:
        await self._client.aclose()
        await self._asset_client.aclose()

    def _client_for(self, url: str) -> httpx.AsyncClient:
        """Client authentifié pour l'hôte de l'API, client anonyme pour tout autre hôte."""
        target = httpx.URL(url)
        if target.is_relative_url:
            return self._client
        base = self._client.base_url
        if (target.scheme, target.host, target.port) == (base.scheme, base.host, base.port):
            return self._client
        return self._asset_client

    async def _send(
        self,
        method: str,
        url: str,
        *,
        client: httpx.AsyncClient | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        """Une requête bornée par le timeout total; transport et timeout → NetworkError."""
        http = client or self._client
        try:
            response = await asyncio.wait_for(
                http.request(method, url, **kwargs),
                timeout=self.policy.total_timeout,
            )
        except TimeoutError as exc:
            raise NetworkError(f"Provider request timed out after {self.policy.total_timeout}s") from exc
        except httpx.HTTPError as exc:
            raise NetworkError(f"Provider transport error: {exc}") from exc
        raise_for_provider_status(response)
        return response

    async def _call(self, call: str, attempt_once: Callable[[], Awaitable[T]]) -> T:
        def on_retry(_attempt: int, exc: BaseException, _delay: float) -> None:
            PROVIDER_RETRIES.labels(call=call, reason=type(exc).__name__).inc()

        start = time.perf_counter()
        try:
            result = await retry_async(
                attempt_once,
                self.policy,
                is_retryable,
                sleep=self._sleep,
                on_retry=on_retry,
                label=f"provider.{call}",
            )
        except ProviderError as exc:
            PROVIDER_CALLS.labels(call=call, outcome=exc.code.lower()).inc()
            self._log.warning("provider_call_failed", call=call, code=exc.code, error=exc.message)
            raise
        finally:
            PROVIDER_LATENCY.labels(call=call).observe(time.perf_counter() - start)
        PROVIDER_CALLS.labels(call=call, outcome="ok").inc()
        return result

    async def fetch_chart_data(self, query: BirthQuery) -> dict[str, Any]:
        """Récupère les données brutes du thème (planètes, maisons, aspects)."""
        body = build_request_body(query)

        async def attempt_once() -> dict[str, Any]:
            response = await self._send("POST", self.data_path, json=body)
            try:
                payload = response.json()
            except ValueError as exc:
                raise InvalidResponse("Provider returned a non-JSON chart payload") from exc
            if not isinstance(payload, dict):
                raise InvalidResponse("Provider chart payload is not an object")
            return payload

        return await self._call("data", attempt_once)

    async def fetch_chart_image(self, query: BirthQuery) -> ChartImage:
        """Demande le rendu de la roue puis télécharge le visuel indiqué."""
        body = build_request_body(query, image_format=self.image_format, image_size=self.image_size)

        async def attempt_once() -> ChartImage:
            response = await self._send("POST", self.image_path, json=body)
            try:
                payload = response.json()
            except ValueError as exc:
                raise InvalidResponse("Provider returned a non-JSON image descriptor") from exc
            if not isinstance(payload, dict):
                raise InvalidResponse("Provider image descriptor is not an object")
            if not payload.get("success", True):
                raise InvalidResponse(
                    f"Provider could not render chart: {payload.get('message') or 'unknown error'}"
                )
            location = payload.get("assetLocation") or payload.get("chart_url")
            if not isinstance(location, str) or not location:
                raise InvalidResponse("Provider image descriptor has no asset location")

            asset = await self._send("GET", location, client=self._client_for(location))
            content_type = asset.headers.get("Content-Type", "")
            if not asset.content:
                raise InvalidResponse("Provider returned an empty chart image")
            image_format = _image_format(content_type, location)
            if image_format != self.image_format:
                raise InvalidResponse(
                    f"Provider returned a {image_format} chart image, expected {self.image_format}"
                )
            return ChartImage(
                data=asset.content,
                format=image_format,
                content_type=content_type,
                source_url=str(asset.url),
            )

        return await self._call("image", attempt_once)
