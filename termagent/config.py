"""
Configuration management for termagent.

Uses Pydantic for type-safe configuration with YAML file support.
"""

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator

RISK_LEVELS = ("low", "medium", "high")


class GatewayConfig(BaseModel):
    """LLM endpoint and model settings."""

    provider: str = Field(default="ollama", description="Gateway backend: ollama | openai")
    host: str = "http://localhost:11434"
    base_url: str = "https://api.openai.com/v1"
    api_key: str = ""
    model: str = "llama3.2"
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(default=4096, ge=1)
    timeout: int = Field(default=120, ge=1, description="Request timeout in seconds")
    proxy_url: str | None = None

    @field_validator("provider")
    @classmethod
    def _normalize_provider(cls, value: str) -> str:
        normalized = (value or "ollama").strip().lower()
        if normalized not in {"ollama", "openai"}:
            raise ValueError(f"Unknown gateway provider: {value}")
        return normalized

    @field_validator("base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.strip().rstrip("/")

    @field_validator("proxy_url")
    @classmethod
    def _blank_proxy_is_none(cls, value: str | None) -> str | None:
        if value is None or not value.strip():
            return None
        return value.strip()


class AgentConfig(BaseModel):
    """Agent loop, auto-execution and context compaction settings."""

    auto_run: bool = Field(default=False, description="Dispatch commands without confirmation")
    max_allowed_risk: str = Field(
        default="low",
        description="Highest command risk that may run automatically: low | medium | high",
    )
    max_history_length: int = Field(default=10, ge=1)
    max_output_lines: int = Field(default=50, ge=1)
    max_output_length: int = Field(default=500, ge=1)
    poll_interval: float = Field(default=0.1, ge=0.0, description="Seconds between output polls")
    max_polls: int = Field(default=100, ge=1, description="Polls before forcing progress")
    skip_output: str = "Command skipped"

    @field_validator("max_allowed_risk")
    @classmethod
    def _normalize_risk(cls, value: str) -> str:
        normalized = (value or "low").strip().lower()
        if normalized not in RISK_LEVELS:
            raise ValueError(f"max_allowed_risk must be one of {', '.join(RISK_LEVELS)}")
        return normalized


class TokensConfig(BaseModel):
    """Token counting settings."""

    mode: str = Field(
        default="approx",
        description="Token counting mode: tiktoken | approx | disabled",
    )
    encoding: str = "cl100k_base"
    approx_chars_per_token: int = Field(default=4, ge=1)

    @field_validator("mode")
    @classmethod
    def _normalize_mode(cls, value: str) -> str:
        normalized = (value or "approx").lower()
        if normalized not in {"tiktoken", "approx", "disabled"}:
            return "approx"
        return normalized


class ShellConfig(BaseModel):
    """Local shell session settings for the console front-end."""

    prompt: str = "{user}@{host}:{cwd}$ "
    timeout: int = Field(default=30, ge=1)
    cwd: Path | None = None


class Config(BaseModel):
    """Main configuration model for termagent."""

    gateway: GatewayConfig = Field(default_factory=GatewayConfig)
    agent: AgentConfig = Field(default_factory=AgentConfig)
    shell: ShellConfig = Field(default_factory=ShellConfig)
    tokens: TokensConfig = Field(default_factory=TokensConfig)

    @classmethod
    def load(cls, path: Path | str) -> "Config":
        """Load configuration from a YAML file.

        Args:
            path: Path to the YAML configuration file.

        Returns:
            Loaded Config instance.

        Raises:
            FileNotFoundError: If config file doesn't exist.
            ValueError: If config file is invalid.
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with open(path, "r", encoding="utf-8") as f:
            raw_data = yaml.safe_load(f) or {}

        data, migration_warnings = migrate_config_data(raw_data)

        config = cls.model_validate(data)
        object.__setattr__(config, "_migration_warnings", migration_warnings)
        return config

    def save(self, path: Path | str) -> None:
        """Save configuration to a YAML file.

        Args:
            path: Path to save the configuration to.
        """
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, "w", encoding="utf-8") as f:
            yaml.safe_dump(
                self.model_dump(mode="json"),
                f,
                default_flow_style=False,
                sort_keys=False,
            )


# Global config singleton
_config: Config | None = None


def get_config() -> Config:
    """Get the global configuration instance.

    Returns:
        The loaded Config instance.

    Raises:
        RuntimeError: If config hasn't been loaded yet.
    """
    if _config is None:
        raise RuntimeError("Config not loaded. Call load_config() first.")
    return _config


def load_config(path: Path | str | None = None) -> Config:
    """Load configuration from file or create default.

    Args:
        path: Path to config file. If None, looks for config.yaml
              in current directory or uses defaults.

    Returns:
        The loaded Config instance.
    """
    global _config

    if path is None:
        path = Path("config.yaml")

    path = Path(path)

    if path.exists():
        _config = Config.load(path)
    else:
        _config = Config()

    return _config


def get_default_config_yaml() -> str:
    """Generate default configuration as YAML string.

    Returns:
        YAML string with default configuration.
    """
    config = Config()
    return yaml.safe_dump(
        config.model_dump(mode="json"),
        default_flow_style=False,
        sort_keys=False,
    )


# Keys from the older flat settings layout.
_LEGACY_KEYS: dict[str, tuple[str, str]] = {
    "agentAutoRun": ("agent", "auto_run"),
    "agentRiskLevel": ("agent", "max_allowed_risk"),
    "baseURL": ("gateway", "base_url"),
    "apiKey": ("gateway", "api_key"),
    "maxTokens": ("gateway", "max_tokens"),
    "proxyURL": ("gateway", "proxy_url"),
    "model": ("gateway", "model"),
    "temperature": ("gateway", "temperature"),
}


def migrate_config_data(data: dict[str, Any]) -> tuple[dict[str, Any], list[str]]:
    """Apply backward-compatible migrations to configuration data.

    Args:
        data: Raw configuration dictionary from YAML.

    Returns:
        Tuple of (migrated data, warnings emitted during migration).
    """
    warnings: list[str] = []
    migrated = dict(data)

    for legacy_key, (section, key) in _LEGACY_KEYS.items():
        if legacy_key not in migrated:
            continue
        value = migrated.pop(legacy_key)
        section_cfg = dict(migrated.get(section) or {})
        if key in section_cfg:
            warnings.append(
                f"Ignoring legacy '{legacy_key}'; '{section}.{key}' is already set."
            )
            continue
        section_cfg[key] = value
        migrated[section] = section_cfg
        warnings.append(
            f"Detected legacy '{legacy_key}' setting; using it for '{section}.{key}'. "
            "Please update your config to the sectioned layout."
        )

    # Flat-layout configs always targeted an OpenAI-compatible endpoint.
    gateway_cfg = migrated.get("gateway") or {}
    if "base_url" in gateway_cfg and "provider" not in gateway_cfg:
        gateway_cfg["provider"] = "openai"
        migrated["gateway"] = gateway_cfg

    return migrated, warnings
