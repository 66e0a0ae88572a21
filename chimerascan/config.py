"""Runtime settings, read from the environment."""

import os
from dataclasses import dataclass


def _int_env(name: str, default: int) -> int:
    try:
        value = os.getenv(name)
        return int(value) if value is not None else default
    except ValueError:
        return default


def _float_env(name: str, default: float) -> float:
    try:
        value = os.getenv(name)
        return float(value) if value is not None else default
    except ValueError:
        return default


def _bool_env(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


@dataclass
class Settings:
    database_url: str = "sqlite:///./chimerascan.db"
    reports_dir: str = "reports"
    # executable prefix only; scan flags are fixed in runner.SCANNER_FLAGS
    scanner_command: str = "docker run --rm projectdiscovery/nuclei:latest"
    inference_url: str = "http://localhost:11434"
    inference_model: str = "phi:2.7b"
    inference_timeout: float = 0.0
    translation_language: str = "Russian"
    max_workers: int = 4
    require_all_reports: bool = True
    log_level: str = "INFO"


def load_settings() -> Settings:
    """Build settings from CHIMERASCAN_* environment variables."""
    defaults = Settings()
    return Settings(
        database_url=os.getenv("CHIMERASCAN_DATABASE_URL", defaults.database_url),
        reports_dir=os.getenv("CHIMERASCAN_REPORTS_DIR", defaults.reports_dir),
        scanner_command=os.getenv("CHIMERASCAN_SCANNER_CMD", defaults.scanner_command),
        inference_url=os.getenv("CHIMERASCAN_OLLAMA_URL", defaults.inference_url),
        inference_model=os.getenv("CHIMERASCAN_OLLAMA_MODEL", defaults.inference_model),
        inference_timeout=_float_env("CHIMERASCAN_OLLAMA_TIMEOUT", defaults.inference_timeout),
        translation_language=os.getenv(
            "CHIMERASCAN_TRANSLATION_LANGUAGE", defaults.translation_language
        ),
        max_workers=max(1, _int_env("CHIMERASCAN_MAX_WORKERS", defaults.max_workers)),
        require_all_reports=_bool_env(
            "CHIMERASCAN_REQUIRE_ALL_REPORTS", defaults.require_all_reports
        ),
        log_level=os.getenv("CHIMERASCAN_LOG_LEVEL", defaults.log_level).upper(),
    )
