"""Configuration de logging basée sur structlog.

Objectif du module
------------------
- Logs structurés lisibles en développement, JSON ailleurs (`APP_ENV != "dev"`).
- Les loggers stdlib des stores bas niveau (Redis, disque) sortent sur le même flux.
- Les logs par requête de httpx sont ramenés au niveau WARNING: le client fournisseur journalise
  déjà chaque appel avec son résultat.
"""

import logging
import sys

import structlog

_NOISY_LOGGERS = ("httpx", "httpcore")


def setup_logging(debug: bool = True, env: str = "dev") -> None:
    """Configure structlog (et le logging stdlib) pour le service de thèmes."""
    level = logging.DEBUG if debug else logging.INFO
    renderer = (
        structlog.dev.ConsoleRenderer()
        if env == "dev"
        else structlog.processors.JSONRenderer(sort_keys=True)
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.TimeStamper(fmt="ISO", utc=True),
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )
    logging.basicConfig(
        level=level,
        stream=sys.stdout,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
