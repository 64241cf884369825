"""agentsched configuration schema — YAML + Pydantic + env override."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# ════════════════════════════════════════════════════════════
# SUB-CONFIGS (nested BaseModel)
# ════════════════════════════════════════════════════════════


class ProviderConfig(BaseModel):
    """Single LLM provider."""

    api_key: str = ""
    api_base: str | None = None


class AwsConfig(BaseModel):
    """Bedrock credentials (litellm reads them from the environment)."""

    access_key_id: str = ""
    secret_access_key: str = ""
    session_token: str = ""


class ProvidersConfig(BaseModel):
    """LLM providers (LiteLLM multi-provider)."""

    anthropic: ProviderConfig = Field(default_factory=ProviderConfig)
    openai: ProviderConfig = Field(default_factory=ProviderConfig)
    openrouter: ProviderConfig = Field(default_factory=ProviderConfig)
    gemini: ProviderConfig = Field(default_factory=ProviderConfig)
    aws: AwsConfig = Field(default_factory=AwsConfig)


class ModelConfig(BaseModel):
    """Default model and sampling parameters."""

    default: str = "bedrock/anthropic.claude-3-5-sonnet-20240620-v1:0"
    temperature: float = 0.7
    max_tokens: int = 4096


class ResilienceConfig(BaseModel):
    """Retry, failover and payload-shrink policy for model calls."""

    max_retries: int = 30
    retry_delay_s: float = 5.0
    token_retry_delay_s: float = 1.0
    shrink_ratio: float = Field(default=0.5, gt=0, lt=1)
    enable_region_failover: bool = False
    region: str | None = None
    failover_regions: list[str] = Field(default_factory=list)


class OrchestratorConfig(BaseModel):
    """Defaults for one orchestrator run (scheduled firings use these)."""

    enable_tool_execution: bool = True
    max_tool_executions: int = 10
    timeout_s: float = 600.0
    tool_timeout_s: float = 30.0


class SchedulerConfig(BaseModel):
    enabled: bool = True
    timezone: str | None = None  # None = local time
    history_limit: int = 100


class SessionsConfig(BaseModel):
    backend: str = "file"  # 'file' | 'memory'
    path: str = "data/sessions"
    max_age_days: int = 30


class DatabaseConfig(BaseModel):
    path: str = "data/agentsched.db"


class AgentDefinition(BaseModel):
    """Agent declared in config.yaml (agents: [...])."""

    id: str
    name: str = ""
    system_prompt: str = ""
    tools: list[str] = Field(default_factory=list)
    model: str | None = None


# ════════════════════════════════════════════════════════════
# ROOT CONFIG (BaseSettings, env + .env support)
# ════════════════════════════════════════════════════════════


class Config(BaseSettings):
    """
    Root configuration.

    Priority: env vars > .env > YAML (init kwargs) > defaults

    Env override examples:
        AGENTSCHED_MODEL__DEFAULT=openai/gpt-4o
        AGENTSCHED_RESILIENCE__MAX_RETRIES=5
        AGENTSCHED_PROVIDERS__ANTHROPIC__API_KEY=sk-...
    """

    model_config = SettingsConfigDict(
        env_prefix="AGENTSCHED_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    providers: ProvidersConfig = Field(default_factory=ProvidersConfig)
    model: ModelConfig = Field(default_factory=ModelConfig)
    resilience: ResilienceConfig = Field(default_factory=ResilienceConfig)
    orchestrator: OrchestratorConfig = Field(default_factory=OrchestratorConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    sessions: SessionsConfig = Field(default_factory=SessionsConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    agents: list[AgentDefinition] = Field(default_factory=list)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        # YAML arrives as init kwargs; env must win over it
        return env_settings, dotenv_settings, init_settings, file_secret_settings

    # ── Computed properties ─────────────────────────────────

    @property
    def db_path(self) -> Path:
        return Path(self.database.path)

    @property
    def sessions_path(self) -> Path:
        return Path(self.sessions.path).expanduser()

    def get_api_base(self, model: str | None = None) -> str | None:
        """Get API base URL for model name."""
        model_name = (model or self.model.default).lower()
        if "openrouter" in model_name:
            return self.providers.openrouter.api_base or "https://openrouter.ai/api/v1"
        for name in ("anthropic", "openai", "gemini"):
            p: ProviderConfig = getattr(self.providers, name)
            if name in model_name and p.api_base:
                return p.api_base
        return None
