import json
import logging
import os
import threading
from urllib.parse import urlparse

from dotenv import load_dotenv
from pydantic import BaseModel, Field


load_dotenv()

_TRUE_WORDS = {"1", "true", "yes", "on"}
_FALSE_WORDS = {"0", "false", "no", "off"}


def _parse_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name, str(default)).strip().lower()
    if raw in _TRUE_WORDS:
        return True
    if raw in _FALSE_WORDS:
        return False
    raise ValueError(f"{name} must be a boolean value")


def _parse_allowed_origins(raw_allowed_origins: str) -> list[str]:
    if not raw_allowed_origins:
        return []

    # Support both CSV format and JSON array format
    allowed_origins: list[str] = []
    if raw_allowed_origins.startswith("["):
        try:
            parsed_list = json.loads(raw_allowed_origins)
        except json.JSONDecodeError as exc:
            raise ValueError(f"ALLOWED_ORIGINS JSON is malformed: {exc}") from exc
        if not isinstance(parsed_list, list):
            raise ValueError("ALLOWED_ORIGINS JSON must be an array")
        allowed_origins = [
            origin.strip() for origin in parsed_list if isinstance(origin, str) and origin.strip()
        ]
    else:
        allowed_origins = [
            origin.strip() for origin in raw_allowed_origins.split(",") if origin.strip()
        ]

    if "*" in allowed_origins:
        raise ValueError(
            "ALLOWED_ORIGINS cannot contain '*' when credentialed requests are used"
        )

    for origin in allowed_origins:
        parsed = urlparse(origin)
        if parsed.scheme not in {"http", "https"} or not parsed.netloc:
            raise ValueError(
                "ALLOWED_ORIGINS must contain valid http/https origins with host"
            )
    return allowed_origins


class Settings(BaseModel):
    app_name: str = Field(default="Console Backend")
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO")
    allowed_origins: list[str] = Field(default_factory=list)
    # Organization grants may satisfy project checks through the cascade table.
    org_grant_cascade: bool = Field(default=True)
    # Project grants may satisfy secret checks through the cascade table.
    project_grant_cascade: bool = Field(default=True)

    @classmethod
    def from_env(cls) -> "Settings":
        log_level = os.getenv("LOG_LEVEL", cls.model_fields["log_level"].default).strip().upper()
        if not isinstance(logging.getLevelName(log_level), int):
            raise ValueError(f"LOG_LEVEL '{log_level}' is not a valid logging level")

        return cls(
            app_name=os.getenv("APP_NAME", cls.model_fields["app_name"].default),
            debug=_parse_bool("DEBUG", cls.model_fields["debug"].default),
            log_level=log_level,
            allowed_origins=_parse_allowed_origins(os.getenv("ALLOWED_ORIGINS", "").strip()),
            org_grant_cascade=_parse_bool(
                "ORG_GRANT_CASCADE", cls.model_fields["org_grant_cascade"].default
            ),
            project_grant_cascade=_parse_bool(
                "PROJECT_GRANT_CASCADE", cls.model_fields["project_grant_cascade"].default
            ),
        )


_settings_instance: Settings | None = None
_settings_lock = threading.Lock()


def get_settings() -> Settings:
    """Get settings instance, creating it on first access.

    Settings are read once at startup and handed to ``create_app``; the
    authorization code receives what it needs as constructor arguments.

    Raises:
        ValueError: If an environment variable is invalid
    """
    global _settings_instance

    if _settings_instance is not None:
        return _settings_instance

    with _settings_lock:
        if _settings_instance is None:
            _settings_instance = Settings.from_env()

    return _settings_instance
