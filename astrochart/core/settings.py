"""Définition et chargement des paramètres de configuration applicative.

Objectif du module
------------------
- Centraliser les paramètres (env/.env) via Pydantic Settings
- Résoudre le fichier `.env` à utiliser selon la stratégie: ENV_FILE > .env.{APP_ENV} > .env
"""

import os
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

# Détermination du fichier .env à utiliser avec priorité:
# 1) ENV_FILE (chemin explicite)
# 2) .env.{APP_ENV} si présent
# 3) .env (défaut)
_cwd = Path.cwd()
_env_file_from_env = os.getenv("ENV_FILE")
if _env_file_from_env:
    _ENV_FILE_PATH = _env_file_from_env
else:
    _app_env = os.getenv("APP_ENV", "dev")
    _candidate_specific = _cwd / f".env.{_app_env}"
    _candidate_default = _cwd / ".env"
    if _candidate_specific.exists():
        _ENV_FILE_PATH = _candidate_specific
    else:
        _ENV_FILE_PATH = _candidate_default


class Settings(BaseSettings):
    """Modèle de configuration chargé depuis l'environnement et .env."""

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE_PATH,
        env_file_encoding="utf-8",
        env_ignore_empty=True,
        case_sensitive=False,
    )
    APP_NAME: str = "astrochart"
    APP_ENV: str = "dev"
    APP_DEBUG: bool = True

    # Stockage
    REDIS_URL: str | None = None
    REQUIRE_REDIS: bool = False
    ASSET_CACHE_DIR: str = "var/chart_images"
    ASSET_CACHE_MAX_BYTES: int = 100 * 1024 * 1024

    # Fournisseur d'éphémérides distant
    PROVIDER_BASE_URL: str = "https://json.astrologyapi.com/v1"
    PROVIDER_API_KEY: str = ""
    PROVIDER_DATA_PATH: str = "/western_horoscope"
    PROVIDER_IMAGE_PATH: str = "/natal_wheel_chart"
    PROVIDER_CONNECT_TIMEOUT_S: float = 10.0
    PROVIDER_TOTAL_TIMEOUT_S: float = 30.0
    PROVIDER_MAX_ATTEMPTS: int = 3
    PROVIDER_BACKOFF_BASE_S: float = 1.0
    PROVIDER_BACKOFF_MAX_S: float = 60.0

    # Quotas (fenêtre glissante + budget mensuel)
    RL_MAX_REQ_PER_WINDOW: int = 5
    RL_WINDOW_SECONDS: float = 60.0
    RL_REQUESTS_PER_CHART: int = 2
    MONTHLY_CREDIT_BUDGET: int = 5000

    # Cache des thèmes
    CHART_CACHE_MAX_ENTRIES: int = 200
    CHART_CACHE_STALE_DAYS: int = 30

    # Paramètres de calcul
    HOUSE_SYSTEM: str = "placidus"
    IMAGE_FORMAT: str = "svg"
    IMAGE_SIZE: int = 600

    # Connectivité forcée hors-ligne (tests, mode avion)
    OFFLINE_MODE: bool = False


def get_settings() -> Settings:
    """Construit et retourne la configuration de l'application."""
    return Settings()
