"""
Configuration management for the plan-graph engine.
"""

from typing import Any, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


def _parse_csv(raw: str) -> List[str]:
    """
    Parse a comma-separated setting into a list of non-empty tokens.

    Examples:
        "prd.core, persona.builder" -> ["prd.core", "persona.builder"]
        "" -> []
    """
    if not raw or not raw.strip():
        return []
    return [token.strip() for token in raw.split(",") if token.strip()]


class Settings(BaseSettings):
    """Engine settings."""

    model_config = SettingsConfigDict(
        env_prefix="PLAN_GRAPH_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Runtime
    default_model: str = Field(default="qwen/qwen-2.5-72b-instruct")
    skills_model: Optional[str] = Field(
        default=None,
        description="Model used for skill steps. Falls back to default_model when unset.",
    )
    fallback_model: Optional[str] = Field(default=None)
    default_temperature: float = Field(default=0.2, ge=0, le=2)
    max_output_tokens: int = Field(default=8000, gt=0)
    retry_attempts: int = Field(default=3, ge=1)
    retry_backoff_ms: int = Field(default=500, ge=0)
    request_timeout_seconds: float = Field(default=60.0, gt=0)

    # Model provider
    openrouter_api_key: Optional[str] = Field(default=None)
    openrouter_base_url: str = Field(default="https://openrouter.ai/api/v1")

    # Workspace
    workspace_root: str = Field(default="data/runs")
    workspace_persist_artifacts: bool = Field(default=True)
    workspace_temp_subdir: str = Field(default="tmp")
    workspace_retention_days: int = Field(default=30, ge=0)

    # Skills and subagents
    skill_packs: str = Field(
        default="prd.core",
        description="Comma-separated list of enabled skill pack ids.",
    )
    subagents: str = Field(
        default="persona.builder,storymap.builder",
        description="Comma-separated list of enabled built-in subagent manifests.",
    )

    # Resumable run table
    run_state_url: str = Field(
        default="memory://",
        description="memory:// for the in-process table, or a SQLAlchemy URL.",
    )
    required_subagent_failure: str = Field(
        default="isolate",
        description="isolate: record and continue; fail-run: fail the run.",
    )

    # Logging
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="console")

    @property
    def enabled_skill_packs(self) -> List[str]:
        return _parse_csv(self.skill_packs)

    @property
    def enabled_subagents(self) -> List[str]:
        return _parse_csv(self.subagents)


class RunSettings(BaseModel):
    """Effective settings for a single run."""

    model: str
    temperature: float
    max_output_tokens: int
    skill_packs: List[str] = Field(default_factory=list)
    workspace_root: str
    log_level: str = "INFO"


class RunOverrides(BaseModel):
    """Per-request overrides accepted from RunRequest.attributes["overrides"]."""

    model_config = ConfigDict(extra="forbid")

    model: Optional[str] = Field(default=None, min_length=1)
    temperature: Optional[float] = Field(default=None, ge=0, le=2)
    max_output_tokens: Optional[int] = Field(default=None, gt=0)
    skill_pack_id: Optional[str] = Field(default=None, min_length=1)
    additional_skill_packs: List[str] = Field(default_factory=list)
    workspace_root: Optional[str] = Field(default=None, min_length=1)
    log_level: Optional[str] = None


def resolve_run_settings(
    config: Settings, overrides: Optional[Mapping[str, Any]] = None
) -> RunSettings:
    """Merge per-request overrides onto the engine settings.

    Raises:
        ConfigurationError: If the overrides do not validate
    """
    if not overrides:
        return RunSettings(
            model=config.default_model,
            temperature=config.default_temperature,
            max_output_tokens=config.max_output_tokens,
            skill_packs=config.enabled_skill_packs,
            workspace_root=config.workspace_root,
            log_level=config.log_level,
        )

    try:
        parsed = RunOverrides.model_validate(dict(overrides))
    except ValidationError as e:
        raise ConfigurationError(
            f"Invalid run overrides: {e.errors()[0]['msg']}",
            details={"errors": e.errors(include_url=False)},
        ) from e

    if parsed.log_level and parsed.log_level.upper() not in LOG_LEVELS:
        raise ConfigurationError(f"Unsupported log level: {parsed.log_level}")

    packs = (
        [parsed.skill_pack_id]
        if parsed.skill_pack_id is not None
        else config.enabled_skill_packs
    )
    for pack in parsed.additional_skill_packs:
        if pack not in packs:
            packs.append(pack)

    return RunSettings(
        model=parsed.model or config.default_model,
        temperature=(
            parsed.temperature
            if parsed.temperature is not None
            else config.default_temperature
        ),
        max_output_tokens=parsed.max_output_tokens or config.max_output_tokens,
        skill_packs=packs,
        workspace_root=parsed.workspace_root or config.workspace_root,
        log_level=(parsed.log_level or config.log_level).upper(),
    )


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Get engine settings."""
    return settings
