"""Pydantic configuration schema for the inbox triage engine.

This module defines the configuration schema that mirrors config.yaml structure.
All configuration is validated against these models on startup and hot-reload.

Usage:
    from inbox_triage.config_schema import AppConfig

    # Validate a config dict
    config = AppConfig(**yaml_data)
"""

from typing import Literal

from pydantic import BaseModel, Field, field_validator

from inbox_triage.classifier.category import (
    CATEGORY_CONFIDENCE_THRESHOLD,
    DEFAULT_CATEGORY_RULES,
)
from inbox_triage.classifier.direction import TeamMember
from inbox_triage.classifier.intent import LOW_VALUE_SNIPPET_MAX_CHARS
from inbox_triage.engine.workflow import Actor

# Current schema version - increment when adding new required fields
CURRENT_SCHEMA_VERSION = 1

_RULE_NAMES = frozenset(r.name for r in DEFAULT_CATEGORY_RULES)


def _check_email(v: str) -> str:
    v = v.strip()
    if "@" not in v or v.startswith("@") or v.endswith("@"):
        raise ValueError(f"'{v}' is not a valid email address")
    return v


class ActorConfig(BaseModel):
    """The signed-in user the engine acts as."""

    email: str = Field(description="Actor's email; also the assignment key for 'my-actions'")
    display_name: str | None = Field(default=None, description="Preferred display name")
    full_name: str | None = Field(default=None, description="Fallback display name")
    id: str | None = Field(default=None, description="Remote user ID (optional)")

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        return _check_email(v)

    def to_actor(self) -> Actor:
        return Actor(email=self.email, display_name=self.display_name, full_name=self.full_name)


class TeamMemberConfig(BaseModel):
    """A team member whose addresses count as the organization's."""

    email: str = Field(description="Primary address")
    display_name: str | None = Field(default=None, description="Name shown for assignments")
    aliases: list[str] = Field(default_factory=list, description="Extra addresses they send from")
    org_emails: list[str] = Field(
        default_factory=list,
        description="Shared organization mailboxes this member writes from",
    )

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        return _check_email(v)

    def to_member(self) -> TeamMember:
        return TeamMember(
            email=self.email,
            display_name=self.display_name,
            aliases=tuple(self.aliases) + tuple(self.org_emails),
        )


class RemoteConfig(BaseModel):
    """Remote record store and function endpoint."""

    base_url: str = Field(
        default="http://localhost:8000/api",
        description="Base URL; functions at {base_url}/functions/{name}, "
        "entities at {base_url}/entities/{Entity}",
    )
    api_key: str | None = Field(
        default=None,
        description="Bearer token (prefer INBOX_TRIAGE_API_KEY in .env)",
    )
    timeout_seconds: float = Field(default=30.0, gt=0, le=300, description="Per-request timeout")
    max_retries: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts for 429/5xx/transport errors (including the first)",
    )
    requests_per_second: float = Field(
        default=10.0,
        gt=0,
        le=100,
        description="Proactive client-side request pacing",
    )

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("base_url must start with http:// or https://")
        return v.rstrip("/")


class ClassifierConfig(BaseModel):
    """Heuristic classification tuning."""

    category_threshold: int = Field(
        default=CATEGORY_CONFIDENCE_THRESHOLD,
        ge=0,
        le=100,
        description="Minimum winning score for a category suggestion",
    )
    category_scores: dict[str, int] = Field(
        default_factory=dict,
        description="Per-rule score overrides, keyed by rule name",
    )
    low_value_snippet_max_chars: int = Field(
        default=LOW_VALUE_SNIPPET_MAX_CHARS,
        ge=1,
        le=500,
        description="Longest snippet that can count as a bare acknowledgement",
    )

    @field_validator("category_scores")
    @classmethod
    def validate_category_scores(cls, v: dict[str, int]) -> dict[str, int]:
        unknown = sorted(set(v) - _RULE_NAMES)
        if unknown:
            raise ValueError(
                f"Unknown category rule(s): {', '.join(unknown)}. "
                f"Valid rules: {', '.join(sorted(_RULE_NAMES))}"
            )
        for name, score in v.items():
            if not 0 <= score <= 100:
                raise ValueError(f"Score for '{name}' must be between 0 and 100")
        return v


class SyncConfig(BaseModel):
    """Sync orchestration timing."""

    throttle_seconds: float = Field(
        default=60.0,
        ge=0,
        description="Minimum time between successful syncs",
    )
    visibility_stale_minutes: float = Field(
        default=10.0,
        ge=0,
        description="Visibility regain only syncs when the cache is at least this old",
    )
    visibility_debounce_seconds: float = Field(
        default=0.5,
        ge=0,
        description="Quiet period before a visibility change is acted on",
    )
    live_update_debounce_seconds: float = Field(
        default=1.0,
        ge=0,
        description="Quiet period before a live-update refetch",
    )
    live_update_min_age_minutes: float = Field(
        default=5.0,
        ge=0,
        description="Live updates are ignored while the cache is younger than this",
    )
    interval_seconds: int = Field(
        default=60,
        ge=10,
        le=86400,
        description="How often `watch` triggers a sync",
    )


class BulkConfig(BaseModel):
    """Bulk operation pacing."""

    chunk_size: int = Field(default=10, ge=1, le=100, description="Requests issued together")
    pause_seconds: float = Field(
        default=0.1,
        ge=0,
        le=10,
        description="Pause between chunks",
    )


class ThreadsConfig(BaseModel):
    """Thread list paging."""

    page_size: int = Field(default=100, ge=1, le=500, description="Threads per page")


class LoggingConfig(BaseModel):
    """Structured logging output."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Minimum log level",
    )
    json_output: bool = Field(
        default=False,
        description="Render JSON lines instead of console output",
    )

    @field_validator("level", mode="before")
    @classmethod
    def normalize_level(cls, v: object) -> object:
        return v.upper() if isinstance(v, str) else v


class AppConfig(BaseModel):
    """Root configuration schema for the inbox triage engine.

    This model validates the entire config.yaml structure. On startup and
    hot-reload, the YAML is parsed and validated against this schema.

    If validation fails on startup, the application exits with a clear error.
    If validation fails on hot-reload, the previous valid config is kept.
    """

    schema_version: int = Field(
        default=CURRENT_SCHEMA_VERSION,
        ge=1,
        description="Config schema version for migration tracking",
    )

    actor: ActorConfig
    team: list[TeamMemberConfig] = Field(
        default_factory=list,
        description="Team members whose addresses identify outgoing mail",
    )
    remote: RemoteConfig = Field(default_factory=RemoteConfig)

    classifier: ClassifierConfig = Field(default_factory=ClassifierConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    bulk: BulkConfig = Field(default_factory=BulkConfig)
    threads: ThreadsConfig = Field(default_factory=ThreadsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    def team_members(self) -> list[TeamMember]:
        return [m.to_member() for m in self.team]
