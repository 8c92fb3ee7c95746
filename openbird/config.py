"""Configuration management for openbird."""

import os
from pathlib import Path

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Paths
DEFAULT_CONFIG_PATH = Path("~/.openbird/config.yaml").expanduser()
LOCAL_CONFIG_FILENAME = "config.yaml"


def _env_default(name: str, fallback: str) -> str:
    value = os.getenv(name, "").strip()
    return value or fallback


class ModelConfig(BaseModel):
    """Model backend configuration."""

    base_url: str = Field(default_factory=lambda: _env_default("OLLAMA_HOST", "http://localhost:11434"))
    default_model: str = Field(default_factory=lambda: _env_default("BIRD_MODEL", "llama3.2:latest"))
    timeout: float = 300.0
    tools_enabled: bool = True


class AgentConfig(BaseModel):
    """Agent loop configuration."""

    max_iterations: int = 20
    format_retries: int = 0


class ShellToolConfig(BaseModel):
    """Shell tool configuration."""

    executable: str = "sh"
    cwd: str = ""
    kill_grace_seconds: float = 2.0


class ToolsConfig(BaseModel):
    """Tools configuration."""

    enabled: list[str] = [
        "bash",
        "read_file",
        "write_file",
    ]
    shell: ShellToolConfig = Field(default_factory=ShellToolConfig)


class WebConfig(BaseModel):
    """HTTP server configuration."""

    host: str = "127.0.0.1"
    port: int = Field(default_factory=lambda: int(_env_default("PORT", "3000")))


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: str = "console"


class Config(BaseSettings):
    """Main configuration for openbird."""

    model: ModelConfig = Field(default_factory=ModelConfig)
    agent: AgentConfig = Field(default_factory=AgentConfig)
    tools: ToolsConfig = Field(default_factory=ToolsConfig)
    web: WebConfig = Field(default_factory=WebConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = SettingsConfigDict(
        env_prefix="OPENBIRD_",
        env_file=".env",
        env_nested_delimiter="__",
        extra="ignore",
    )

    @classmethod
    def resolve_default_config_path(cls) -> Path:
        """Resolve default config path with local-first precedence."""
        local_path = Path.cwd() / LOCAL_CONFIG_FILENAME
        if local_path.exists():
            return local_path
        return DEFAULT_CONFIG_PATH

    @classmethod
    def from_yaml(cls, path: Path | str | None = None) -> "Config":
        """Load configuration from YAML file."""
        config_path = Path(path).expanduser() if path else cls.resolve_default_config_path()

        if not config_path.exists():
            return cls()

        with open(config_path) as f:
            data = yaml.safe_load(f) or {}

        return cls(**data)

    @classmethod
    def load(cls, path: Path | str | None = None) -> "Config":
        """Load configuration from YAML; environment variables are applied by pydantic-settings."""
        return cls.from_yaml(path)

    def resolved_shell_cwd(self) -> Path:
        """Working directory for spawned shell commands."""
        raw = (self.tools.shell.cwd or "").strip()
        if not raw:
            return Path.cwd().resolve()
        return Path(raw).expanduser().resolve()


# Global config instance
_config: Config | None = None


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = Config.load()
    return _config


def set_config(config: Config) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config
