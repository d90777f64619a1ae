"""
Configuration management for huddle.

Environment-based configuration using Pydantic Settings. Values load from
environment variables and a .env file, with startup validation that fails
fast on production misconfiguration.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field, ValidationInfo, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from huddle.models.discussion import TriggerType
from huddle.models.project import ProjectConfig
from huddle.utils.logging import get_logger

logger = get_logger(__name__)


class AppSettings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Priority: Environment variables > .env file > defaults.
    ``PROJECTS`` is a JSON list of project objects.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ======================
    # Slack Configuration
    # ======================
    slack_bot_token: Optional[str] = None
    """Bot token (xoxb-...) used to post and read threads."""
    slack_signing_secret: Optional[str] = None
    """Signing secret for verifying Events API requests."""
    slack_bot_user_id: Optional[str] = None
    """The bot's own user id; its messages are ignored."""

    slack_channel_prs: Optional[str] = None
    """Channel for pr_review discussions."""
    slack_channel_incidents: Optional[str] = None
    """Channel for build_failure discussions."""
    slack_channel_eng: Optional[str] = None
    """Channel for every other discussion type."""

    # ======================
    # GitHub Configuration
    # ======================
    github_token: Optional[str] = None
    """GitHub token used by the board provider."""
    gh_binary: str = "gh"
    """Path or name of the GitHub CLI executable."""

    # ======================
    # AI/LLM Configuration
    # ======================
    anthropic_api_key: Optional[str] = None
    """Anthropic API key for Claude models."""
    openai_api_key: Optional[str] = None
    """OpenAI API key for GPT models."""
    default_model: str = "anthropic/claude-sonnet-4-5-20250929"
    """LiteLLM model string used when a persona has no override."""
    default_max_tokens: int = 512
    """Token cap for a single persona contribution."""
    default_temperature: float = 0.8
    """Sampling temperature for persona contributions."""

    # ======================
    # Database Configuration
    # ======================
    database_url: str = "sqlite:///./data/huddle.db"
    """Database connection URL for personas and discussions."""

    # ======================
    # Application Settings
    # ======================
    log_level: str = "INFO"
    """Logging level (DEBUG, INFO, WARNING, ERROR)."""
    environment: str = "development"
    """Application environment (development, staging, production)."""
    personas_file: str = "config/personas.yaml"
    """YAML roster seeded into the repository at startup."""
    projects: list[ProjectConfig] = Field(default_factory=list)
    """Registered projects (JSON in the PROJECTS variable)."""

    # Deliberation Settings
    max_rounds: int = 2
    """Maximum deliberation rounds per discussion."""
    max_contributions_per_round: int = 2
    """Maximum persona contributions in one round."""
    max_agent_thread_replies: int = 4
    """Maximum agent replies in one thread, opener excluded."""
    human_delay_min_seconds: float = 20.0
    """Lower bound of the pause between agent posts."""
    human_delay_max_seconds: float = 60.0
    """Upper bound of the pause between agent posts."""
    discussion_replay_guard_seconds: int = 30 * 60
    """A trigger seen again within this window reuses its discussion."""
    discussion_resume_delay_seconds: float = 60.0
    """Quiet period after a human message before the lead re-evaluates."""

    # Context Fetching
    url_fetch_timeout_seconds: float = 5.0
    """Overall deadline for fetching link summaries."""
    url_fetch_max_urls: int = 4
    """Maximum links summarized per message."""
    gh_timeout_seconds: float = 10.0
    """Timeout for a single gh CLI call."""
    gh_max_urls: int = 5
    """Maximum GitHub issue/PR links resolved per message."""

    # Persona Memory
    memory_enabled: bool = True
    """Inject per-project persona memory into prompts and reflect after posts."""
    memory_dir: str = "~/.huddle"
    """Root directory for persona memory files."""

    # Proactive Behaviour
    proactive_enabled: bool = True
    """Post unprompted messages into idle project channels."""
    proactive_idle_minutes: float = 20.0
    """A channel quiet for this long is eligible for a proactive message."""
    proactive_min_interval_minutes: float = 90.0
    """Minimum gap between proactive messages in one channel."""
    proactive_sweep_seconds: float = 60.0
    """How often idle channels are checked."""
    proactive_code_watch_interval_minutes: float = 180.0
    """Minimum gap between scheduled code-watch audits of one project."""
    persona_intros_enabled: bool = True
    """Introduce newly added personas in the engineering channel at startup."""

    # ======================
    # Validators
    # ======================
    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate that log level is a valid Python logging level."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper_v = v.upper()
        if upper_v not in valid_levels:
            raise ValueError(
                f"Invalid log level '{v}'. Must be one of: {', '.join(sorted(valid_levels))}"
            )
        return upper_v

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        valid_envs = {"development", "staging", "production"}
        lower_v = v.lower()
        if lower_v not in valid_envs:
            raise ValueError(
                f"Invalid environment '{v}'. Must be one of: {', '.join(sorted(valid_envs))}"
            )
        return lower_v

    @field_validator("max_rounds", "max_contributions_per_round", "max_agent_thread_replies")
    @classmethod
    def validate_positive(cls, v: int, info: ValidationInfo) -> int:
        if v < 1:
            raise ValueError(f"{info.field_name} must be at least 1, got {v}")
        return v

    @field_validator("human_delay_min_seconds", "human_delay_max_seconds")
    @classmethod
    def validate_non_negative_delay(cls, v: float, info: ValidationInfo) -> float:
        if v < 0:
            raise ValueError(f"{info.field_name} must not be negative, got {v}")
        return v

    @model_validator(mode="after")
    def validate_delay_window(self) -> "AppSettings":
        if self.human_delay_min_seconds > self.human_delay_max_seconds:
            raise ValueError(
                "human_delay_min_seconds must not exceed human_delay_max_seconds"
            )
        return self

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    @property
    def has_slack_token(self) -> bool:
        return bool(self.slack_bot_token and self.slack_bot_token.startswith("xoxb-"))

    @property
    def has_signing_secret(self) -> bool:
        return bool(self.slack_signing_secret)

    @property
    def has_github_token(self) -> bool:
        return bool(self.github_token)

    @property
    def has_llm_key(self) -> bool:
        return bool(self.anthropic_api_key or self.openai_api_key)

    def channel_for_trigger(self, trigger_type: TriggerType) -> Optional[str]:
        """Default channel for a trigger type when the trigger names none."""
        if trigger_type == TriggerType.PR_REVIEW:
            return self.slack_channel_prs
        if trigger_type == TriggerType.BUILD_FAILURE:
            return self.slack_channel_incidents
        return self.slack_channel_eng

    def find_project_by_path(self, project_path: str) -> Optional[ProjectConfig]:
        normalized = project_path.rstrip("/")
        for project in self.projects:
            if project.path.rstrip("/") == normalized:
                return project
        return None

    def validate_for_startup(self) -> list[str]:
        """
        Validate configuration for startup and return warnings.

        Raises:
            ValueError: Critical configuration is missing in production.
        """
        warnings = []
        errors = []

        if not self.has_slack_token:
            if self.is_production:
                errors.append("SLACK_BOT_TOKEN is required in production")
            else:
                warnings.append("SLACK_BOT_TOKEN not configured - agents cannot post")

        if not self.has_signing_secret:
            if self.is_production:
                errors.append("SLACK_SIGNING_SECRET is required in production")
            else:
                warnings.append(
                    "SLACK_SIGNING_SECRET not configured - event signature validation disabled"
                )

        if not self.slack_bot_user_id:
            warnings.append("SLACK_BOT_USER_ID not configured - own messages only filtered by bot_id")

        if not self.has_llm_key:
            if self.is_production:
                errors.append("ANTHROPIC_API_KEY or OPENAI_API_KEY is required in production")
            else:
                warnings.append("No LLM API key configured - personas cannot speak")

        if not self.has_github_token:
            warnings.append("GITHUB_TOKEN not configured - board escalation disabled")

        if not self.projects:
            warnings.append("No PROJECTS registered - project hints cannot be resolved")

        if errors:
            error_msg = "Configuration errors:\n" + "\n".join(f"  - {e}" for e in errors)
            raise ValueError(error_msg)

        return warnings

    def log_configuration_summary(self) -> None:
        """Log a summary of the current configuration (without secrets)."""
        logger.info(
            "configuration_summary",
            environment=self.environment,
            log_level=self.log_level,
            database_url=self.database_url,
            slack_configured=self.has_slack_token,
            signing_secret_configured=self.has_signing_secret,
            github_configured=self.has_github_token,
            llm_configured=self.has_llm_key,
            default_model=self.default_model,
            projects=[project.name for project in self.projects],
            max_rounds=self.max_rounds,
            max_agent_thread_replies=self.max_agent_thread_replies,
        )


@lru_cache()
def get_settings() -> AppSettings:
    """
    Get the global application settings (cached).

    Returns:
        AppSettings: The configured application settings.
    """
    return AppSettings()
