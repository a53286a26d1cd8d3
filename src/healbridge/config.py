"""
Configuration loader — merges YAML config with environment variables.
Supports ${VAR:default} interpolation in YAML values.
"""
import os
import re
import yaml
from pathlib import Path
from dataclasses import dataclass, field
from typing import Any, Dict, Optional
from dotenv import load_dotenv

load_dotenv()

_ENV_PATTERN = re.compile(r"\$\{([^}:]+)(?::([^}]*))?\}")


def _resolve_env(value: Any) -> Any:
    if isinstance(value, str):
        def replacer(m):
            var, default = m.group(1), m.group(2)
            return os.environ.get(var, default if default is not None else "")
        resolved = _ENV_PATTERN.sub(replacer, value)
        if resolved.isdigit():
            return int(resolved)
        if resolved.replace(".", "", 1).isdigit():
            return float(resolved)
        if resolved.lower() in ("true", "false"):
            return resolved.lower() == "true"
        return resolved
    if isinstance(value, dict):
        return {k: _resolve_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_resolve_env(v) for v in value]
    return value


@dataclass
class AppConfig:
    name: str = "HealBridge Gateway"
    version: str = "1.0.0"
    host: str = "0.0.0.0"
    port: int = 3000
    env: str = "production"
    log_level: str = "INFO"
    frontend_url: str = "http://localhost:5173"


@dataclass
class ApiConfig:
    prefix: str = "/api/v1"
    default_page_limit: int = 20
    max_page_limit: int = 100


@dataclass
class AuthConfig:
    jwt_secret_key: str = ""
    jwt_refresh_secret_key: str = ""
    jwt_algorithm: str = "HS256"
    access_token_expire_seconds: int = 900
    refresh_token_expire_days: int = 7
    two_factor_expire_minutes: int = 5
    bcrypt_rounds: int = 12


@dataclass
class DatabaseConfig:
    url: str = "sqlite+aiosqlite:///./data/healbridge.db"
    echo: bool = False


@dataclass
class CopilotConfig:
    api_key: str = ""
    model: str = "gemini-2.5-flash"
    base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    timeout_seconds: float = 30.0
    retry_attempts: int = 2
    append_retries: int = 5


@dataclass
class Config:
    app: AppConfig = field(default_factory=AppConfig)
    api: ApiConfig = field(default_factory=ApiConfig)
    auth: AuthConfig = field(default_factory=AuthConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    copilot: CopilotConfig = field(default_factory=CopilotConfig)


def _section(cls, data: Dict[str, Any]):
    """Build a config section, ignoring keys it does not declare."""
    defaults = cls()
    return cls(**{k: v for k, v in (data or {}).items() if hasattr(defaults, k)})


_CONFIG: Optional[Config] = None


def load_config(config_path: Optional[str] = None) -> Config:
    """Load and cache application configuration."""
    global _CONFIG
    if _CONFIG is not None:
        return _CONFIG

    if config_path is None:
        config_path = os.environ.get("HEALBRIDGE_CONFIG")
    if config_path is None:
        candidates = [
            Path("config/app.yaml"),
            Path(__file__).parent.parent.parent / "config" / "app.yaml",
            Path.home() / ".healbridge" / "app.yaml",
        ]
        for c in candidates:
            if c.exists():
                config_path = str(c)
                break

    raw = {}
    if config_path and Path(config_path).exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}

    resolved = _resolve_env(raw)

    cfg = Config()
    if "app" in resolved:
        cfg.app = _section(AppConfig, resolved["app"])
    if "api" in resolved:
        cfg.api = _section(ApiConfig, resolved["api"])
    if "auth" in resolved:
        cfg.auth = _section(AuthConfig, resolved["auth"])
    if "database" in resolved:
        cfg.database = _section(DatabaseConfig, resolved["database"])
    if "copilot" in resolved:
        cfg.copilot = _section(CopilotConfig, resolved["copilot"])

    # Secrets always win from the environment, even without a YAML file
    cfg.auth.jwt_secret_key = os.environ.get("JWT_SECRET_KEY", cfg.auth.jwt_secret_key)
    cfg.auth.jwt_refresh_secret_key = os.environ.get(
        "JWT_REFRESH_SECRET_KEY", cfg.auth.jwt_refresh_secret_key
    )
    cfg.copilot.api_key = os.environ.get("GOOGLE_AI_API_KEY", cfg.copilot.api_key)
    cfg.copilot.model = os.environ.get("GOOGLE_AI_MODEL", cfg.copilot.model)
    cfg.database.url = os.environ.get("DATABASE_URL", cfg.database.url)

    _CONFIG = cfg
    return _CONFIG


def get_config() -> Config:
    """Get the cached config, loading if necessary."""
    if _CONFIG is None:
        return load_config()
    return _CONFIG


def reset_config() -> None:
    """Drop the cached config so the next access reloads it."""
    global _CONFIG
    _CONFIG = None
