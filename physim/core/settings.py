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
    APP_NAME: str = "physim-backend"
    APP_ENV: str = "dev"
    APP_DEBUG: bool = True
    APP_HOST: str = "0.0.0.0"
    APP_PORT: int = 8000

    REDIS_URL: str | None = None
    REQUIRE_REDIS: bool = False
    OTLP_ENDPOINT: str | None = None
    # jeton des routes opérateur (/v1/admin); non défini: routes désactivées
    ADMIN_TOKEN: str | None = None
    CELERY_BROKER_URL: str = "redis://redis:6379/0"
    CELERY_RESULT_BACKEND: str = "redis://redis:6379/1"
    # "celery" | "thread" (exécuteur borné en process)
    JOB_QUEUE_BACKEND: str = "thread"
    JOB_WORKER_THREADS: int = 2
    JOB_QUEUE_MAX: int = 256

    # Embeddings
    OPENAI_API_KEY: str | None = None
    EMBEDDINGS_PROVIDER: str = "hashing"  # "openai" | "local" | "hashing"
    EMBEDDINGS_MODEL: str = "text-embedding-3-small"
    EMBEDDINGS_DIM: int = 1536
    LOCAL_EMBEDDINGS_MODEL: str = "all-MiniLM-L6-v2"

    # Génération
    GENERATION_PROVIDER: str = "openai"  # "openai" | "http"
    GENERATION_MODEL: str = "gpt-4o-mini"
    GENERATION_URL: str | None = None
    GENERATION_TIMEOUT_S: float = 4.0
    GENERATION_VALIDATION_RETRIES: int = 1
    TEXT_LATENCY_BUDGET_S: float = 5.0
    IMAGE_LATENCY_BUDGET_S: float = 8.0
    IMAGE_CONFIDENCE_MIN: float = 0.7
    ASYNC_COST_THRESHOLD: float = 1.0
    MAX_TEXT_LEN: int = 4000
    MAX_IMAGE_BYTES: int = 10 * 1024 * 1024

    # Cache de similarité
    CACHE_SIMILARITY_THRESHOLD: float = 0.85
    CACHE_TTL_SECONDS: int = 7 * 24 * 3600
    CACHE_MAX_ENTRIES: int = 10_000
    CACHE_INDEX_BACKEND: str = "numpy"  # "numpy" | "faiss"

    # Circuit breaker
    BREAKER_FAILURE_THRESHOLD: int = 5
    BREAKER_WINDOW_SECONDS: float = 60.0
    BREAKER_OPEN_SECONDS: float = 30.0

    # Retry executor
    RETRY_MAX_RETRIES: int = 3
    RETRY_BASE_DELAY_S: float = 1.0
    RETRY_FACTOR: float = 2.0

    # Jobs
    JOB_MAX_ATTEMPTS: int = 3
    JOB_TERMINAL_TTL_SECONDS: int = 24 * 3600
    DEAD_LETTER_TTL_SECONDS: int = 14 * 24 * 3600
    JOB_CLAIM_TTL_SECONDS: int = 300
    JOB_DEFER_SECONDS: int = 30

    # Catalogue / assets
    FEATURED_CATALOG_PATH: str | None = None
    ASSETS_ROOT: str = "./assets"
    FALLBACK_COUNT: int = 3

    # Limitation de cardinalité des labels métriques (CSV via .env, peut être vide)
    ALLOWED_PHYSICS_TYPES: list[str] = []


def get_settings() -> Settings:
    """Construit et retourne la configuration de l'application."""
    return Settings()
