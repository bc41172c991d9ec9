"""Configurer le backoff et rejouer les appels fournisseur.

Objectif du module
------------------
- Décrire une politique de retry (stratégie, tentatives, délais bornés).
- Calculer le délai d'une tentative, en respectant un délai conseillé par le serveur.
- Rejouer une coroutine tant que l'erreur est jugée transitoire.
"""

from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import TypeVar

import structlog

from astrochart.core.http_constants import (
    DEFAULT_CONNECT_TIMEOUT,
    DEFAULT_TOTAL_TIMEOUT,
    MAX_RETRY_ATTEMPTS,
    RETRY_BASE_DELAY,
)

log = structlog.get_logger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]


class RetryStrategy(Enum):
    """Stratégies de retry disponibles."""

    EXPONENTIAL = "exponential"
    LINEAR = "linear"
    FIXED = "fixed"


@dataclass
class RetryPolicy:
    """Configuration des timeouts et retries d'un appel sortant."""

    # Timeouts en secondes
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT
    total_timeout: float = DEFAULT_TOTAL_TIMEOUT

    # Configuration des retries (max_attempts inclut la première tentative)
    max_attempts: int = MAX_RETRY_ATTEMPTS
    retry_strategy: RetryStrategy = RetryStrategy.EXPONENTIAL
    base_delay: float = RETRY_BASE_DELAY
    max_delay: float = 60.0
    jitter: bool = False


def calculate_retry_delay(
    attempt: int,
    policy: RetryPolicy,
    hint: float | None = None,
) -> float:
    """Calculate the delay before retry number `attempt` (0-based).

    A server-provided hint (Retry-After) replaces the computed backoff, still capped
    at `max_delay`.
    """
    if hint is not None and hint >= 0:
        return min(float(hint), policy.max_delay)

    if policy.retry_strategy == RetryStrategy.EXPONENTIAL:
        delay = policy.base_delay * (2**attempt)
    elif policy.retry_strategy == RetryStrategy.LINEAR:
        delay = policy.base_delay * (attempt + 1)
    else:  # FIXED
        delay = policy.base_delay

    if policy.jitter:
        delay *= random.uniform(0.5, 1.5)

    return min(delay, policy.max_delay)


def _retry_hint(exc: BaseException) -> float | None:
    hint = getattr(exc, "retry_after", None)
    return float(hint) if isinstance(hint, int | float) else None


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    is_retryable: Callable[[BaseException], bool],
    *,
    sleep: Sleep = asyncio.sleep,
    on_retry: Callable[[int, BaseException, float], None] | None = None,
    label: str = "operation",
) -> T:
    """Exécute `operation` avec retries.

    Args:
        operation: Fabrique de coroutine, rappelée à chaque tentative.
        policy: Nombre de tentatives et calcul des délais.
        is_retryable: Prédicat appliqué à l'exception levée.
        sleep: Attente injectable (tests).
        on_retry: Callback (tentative, erreur, délai) avant chaque attente.
        label: Libellé de journalisation.

    Returns:
        Le résultat de la première tentative réussie.

    Raises:
        La dernière exception si elle n'est pas rejouable ou si les tentatives sont épuisées.
    """
    attempts = max(1, policy.max_attempts)
    for attempt in range(attempts):
        try:
            return await operation()
        except Exception as exc:
            last_attempt = attempt + 1 >= attempts
            if last_attempt or not is_retryable(exc):
                log.warning(
                    "retry_give_up",
                    operation=label,
                    attempt=attempt + 1,
                    error=type(exc).__name__,
                )
                raise
            delay = calculate_retry_delay(attempt, policy, _retry_hint(exc))
            log.info(
                "retry_scheduled",
                operation=label,
                attempt=attempt + 1,
                delay_s=delay,
                error=type(exc).__name__,
            )
            if on_retry is not None:
                on_retry(attempt + 1, exc, delay)
            await sleep(delay)
    raise AssertionError("unreachable")
