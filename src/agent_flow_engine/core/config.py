"""Core configuration for the flow engine."""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from agent_flow_engine.core.logging import configure_logging


class LLMConfig(BaseSettings):
    """Configuration for agent executors."""

    provider: Literal["echo", "openai"] = Field(
        default="echo",
        description="Agent executor to use",
    )

    # OpenAI settings
    openai_api_key: str | None = Field(
        default=None,
        description="OpenAI API key",
    )
    openai_model: str = Field(
        default="gpt-4o-mini",
        description="Model used when an agent does not name one",
    )
    openai_temperature: float = Field(
        default=0.7,
        ge=0.0,
        le=2.0,
        description="Temperature for OpenAI model",
    )
    openai_base_url: str | None = Field(
        default=None,
        description="Override for the OpenAI API base URL",
    )

    model_config = SettingsConfigDict(
        env_prefix="FLOW_ENGINE_LLM_",
        env_file=".env",
        extra="ignore",
    )


class ExecutionConfig(BaseSettings):
    """Configuration for flow execution."""

    loop_concurrency: int = Field(
        default=4,
        ge=1,
        description="Loop instances (and parallel children) running at once",
    )
    default_step_timeout: float | None = Field(
        default=None,
        gt=0,
        description="Timeout in seconds for steps that do not declare one",
    )
    label_separator: str = Field(
        default=" > ",
        min_length=1,
        description="Separator between breadcrumb segments",
    )

    model_config = SettingsConfigDict(
        env_prefix="FLOW_ENGINE_EXECUTION_",
        env_file=".env",
        extra="ignore",
    )


class FlowEngineConfig(BaseSettings):
    """Main configuration for the flow engine."""

    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )
    log_format: Literal["json", "text"] = Field(
        default="json",
        description="Log output format",
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode",
    )

    execution: ExecutionConfig = Field(
        default_factory=ExecutionConfig,
        description="Execution configuration",
    )
    llm: LLMConfig = Field(
        default_factory=LLMConfig,
        description="Agent executor configuration",
    )

    model_config = SettingsConfigDict(
        env_prefix="FLOW_ENGINE_",
        env_file=".env",
        extra="ignore",
    )

    def setup_logging(self) -> None:
        """Configure logging based on settings."""
        level = "DEBUG" if self.debug else self.log_level
        configure_logging(level, self.log_format)
