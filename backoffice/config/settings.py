"""Settings loader with environment variable and Docker secrets integration."""
from __future__ import annotations
import logging
import os
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)


def _load_secret_from_file(secret_name: str, env_var: str | None = None) -> str | None:
    """
    Load secret from /run/secrets (Docker secrets pattern).

    Priority:
    1. /run/secrets/{secret_name} (Docker secrets mount)
    2. Environment variable (fallback)

    Returns:
        Secret value or None if not found
    """
    secret_file = Path("/run/secrets") / secret_name

    if secret_file.exists() and secret_file.is_file():
        try:
            secret_value = secret_file.read_text().strip()
            if secret_value:
                logger.debug("Loaded %s from /run/secrets", secret_name)
                return secret_value
        except OSError as e:
            logger.warning("Failed to read /run/secrets/%s: %s", secret_name, e)

    if env_var:
        secret_value = os.getenv(env_var)
        if secret_value:
            return secret_value

    return None


def _get_bool(var_name: str, default: bool) -> bool:
    value = os.environ.get(var_name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _get_float(var_name: str, default: float) -> float:
    value = os.environ.get(var_name)
    if value is None or not value.strip():
        return default
    try:
        parsed = float(value)
    except ValueError:
        raise RuntimeError(f"Environment variable {var_name} must be a number, got {value!r}")
    if parsed <= 0:
        raise RuntimeError(f"Environment variable {var_name} must be positive, got {value!r}")
    return parsed


@dataclass
class AppConfig:
    """Application configuration container."""
    # Remote API
    api_base_url: str = "http://localhost:5000/api"
    request_timeout: float = 10.0

    # Session persistence
    state_dir: str = ".runtime/session"
    warn_on_logout_failure: bool = True

    # Audit
    audit_log_signing_key: str = ""

    # Logging
    log_level: str = "INFO"


def load_settings() -> AppConfig:
    """Load application settings from environment and /run/secrets."""
    api_base_url = os.environ.get("BACKOFFICE_API_URL", "http://localhost:5000/api").strip().rstrip("/")
    if not api_base_url.startswith(("http://", "https://")):
        raise RuntimeError(f"BACKOFFICE_API_URL must be an http(s) URL, got {api_base_url!r}")

    audit_log_signing_key = _load_secret_from_file("audit_log_signing_key", "AUDIT_LOG_SIGNING_KEY") or ""
    if audit_log_signing_key:
        # The audit module reads the key lazily from the environment.
        os.environ["AUDIT_LOG_SIGNING_KEY"] = audit_log_signing_key
    else:
        logger.warning("AUDIT_LOG_SIGNING_KEY not set; audit events will be unsigned")

    log_level = os.environ.get("BACKOFFICE_LOG_LEVEL", "INFO").strip().upper()
    if log_level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
        raise RuntimeError(f"BACKOFFICE_LOG_LEVEL has unknown level {log_level!r}")

    cfg = AppConfig(
        api_base_url=api_base_url,
        request_timeout=_get_float("BACKOFFICE_REQUEST_TIMEOUT", 10.0),
        state_dir=os.environ.get("BACKOFFICE_STATE_DIR", ".runtime/session"),
        warn_on_logout_failure=_get_bool("BACKOFFICE_WARN_ON_LOGOUT_FAILURE", True),
        audit_log_signing_key=audit_log_signing_key,
        log_level=log_level,
    )
    logger.debug("Settings loaded: api=%s; state_dir=%s", cfg.api_base_url, cfg.state_dir)
    return cfg
