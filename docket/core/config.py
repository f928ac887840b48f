"""docket.core.config

Three config surfaces only:
1) `config/default.yaml` (+ optional `config/user.yaml`)
2) Environment variables (secrets only), prefix ``DOCKET_``
3) Per-workspace settings in the database (webhook secrets, closure policy)

Everything else is derived.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings

from docket.core.exceptions import ConfigError


def _deep_merge(base: dict[str, Any], overlay: dict[str, Any]) -> dict[str, Any]:
    result: dict[str, Any] = dict(base)
    for k, v in overlay.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


class ApiConfig(BaseModel):
    host: str = "127.0.0.1"
    port: int = 5060
    auth_token: str = ""
    cors_origins: list[str] = Field(default_factory=list)
    ingest_timeout_seconds: float = 10.0


class DatabaseConfig(BaseModel):
    filename: str = "docket.db"


class SummaryConfig(BaseModel):
    """OpenAI-compatible chat completions endpoint (OpenRouter by default)."""

    api_key: str = ""
    base_url: str = "https://openrouter.ai/api/v1"
    primary_model: str = "mistralai/devstral-2512:free"
    fast_model: str = "xiaomi/mimo-v2-flash:free"
    deep_model: str = "z-ai/glm-4.5-air:free"
    timeout_seconds: float = 30.0
    temperature: float = 0.0
    max_tokens: int = 200

    @field_validator("timeout_seconds")
    @classmethod
    def timeout_must_be_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("timeout_seconds must be > 0")
        return v


class RateLimitRule(BaseModel):
    max_requests: int
    window_seconds: int = 60


class RateLimitConfig(BaseModel):
    backend: Literal["memory", "sqlite"] = "memory"
    sweep_interval_seconds: float = 300.0
    webhooks: RateLimitRule = Field(default_factory=lambda: RateLimitRule(max_requests=100))
    api: RateLimitRule = Field(default_factory=lambda: RateLimitRule(max_requests=1000))
    auth: RateLimitRule = Field(default_factory=lambda: RateLimitRule(max_requests=10))


class PolicyTierConfig(BaseModel):
    required_approvals: int
    require_ci_pass: bool = True
    require_linked_issue: bool = False
    require_all_checks_pass: bool = False
    veto_window_hours: float


class ClosureConfig(BaseModel):
    default_tier: Literal["agile", "standard", "hardened"] = "standard"
    tiers: dict[str, PolicyTierConfig] = Field(
        default_factory=lambda: {
            "agile": PolicyTierConfig(required_approvals=1, veto_window_hours=24),
            "standard": PolicyTierConfig(
                required_approvals=2, require_linked_issue=True, veto_window_hours=48
            ),
            "hardened": PolicyTierConfig(
                required_approvals=3,
                require_linked_issue=True,
                require_all_checks_pass=True,
                veto_window_hours=72,
            ),
        }
    )

    @field_validator("tiers")
    @classmethod
    def all_tiers_present(cls, v: dict[str, PolicyTierConfig]) -> dict[str, PolicyTierConfig]:
        missing = {"agile", "standard", "hardened"} - set(v)
        if missing:
            raise ValueError(f"closure tiers missing: {sorted(missing)}")
        return v


class LoggingConfig(BaseModel):
    level: str = "INFO"
    json_output: bool = False


class Config(BaseSettings):
    """Root configuration. Single source of truth."""

    data_dir: Path = Path("data")
    config_dir: Path = Path("config")

    api: ApiConfig = Field(default_factory=ApiConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    summary: SummaryConfig = Field(default_factory=SummaryConfig)
    rate_limits: RateLimitConfig = Field(default_factory=RateLimitConfig)
    closure: ClosureConfig = Field(default_factory=ClosureConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"env_prefix": "DOCKET_", "env_nested_delimiter": "__"}

    @property
    def db_path(self) -> Path:
        return self.data_dir / self.database.filename

    @classmethod
    def from_yaml(cls, path: Path) -> Config:
        if not path.exists():
            raise ConfigError(f"Config file not found: {path}")

        try:
            raw = yaml.safe_load(path.read_text()) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Config file is not valid YAML: {path}: {e}") from e

        # user.yaml overlays default.yaml when loaded directly
        if path.name == "user.yaml":
            default_path = path.parent / "default.yaml"
            if default_path.exists():
                base = yaml.safe_load(default_path.read_text()) or {}
                raw = _deep_merge(base, raw)

        return cls(**raw)

    @classmethod
    def from_repo_defaults(cls, repo_root: Path | None = None) -> Config:
        root = repo_root or Path.cwd()
        user_path = root / "config" / "user.yaml"
        if user_path.exists():
            return cls.from_yaml(user_path)
        return cls.from_yaml(root / "config" / "default.yaml")
