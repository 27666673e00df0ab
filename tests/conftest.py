"""Pytest fixtures and configuration for inbox triage tests.

Provides common fixtures for configuration, thread records, clocks and notices.
"""

import os
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Generator

import pytest

from inbox_triage.config import reset_config
from inbox_triage.config_schema import AppConfig
from inbox_triage.core.notices import NoticeBuffer
from inbox_triage.engine.threads import Thread
from inbox_triage.engine.workflow import Actor

ACTOR_EMAIL = "me@acme.test"
BASE_TIME = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(autouse=True)
def reset_config_singleton() -> Generator[None, None, None]:
    """Reset the config singleton before each test."""
    reset_config()
    yield
    reset_config()


@pytest.fixture
def temp_config_dir(tmp_path: Path) -> Path:
    """Create a temporary config directory."""
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    return config_dir


@pytest.fixture
def sample_config_yaml() -> str:
    """Return a minimal valid config.yaml content."""
    return """
schema_version: 1

actor:
  email: "me@acme.test"
  display_name: "Me"

team:
  - email: "sam@acme.test"
    display_name: "Sam"
    aliases: ["sales@acme.test"]

remote:
  base_url: "https://remote.test/api"
"""


@pytest.fixture
def sample_config_dict() -> dict[str, Any]:
    """Return a minimal valid config as a dictionary."""
    return {
        "schema_version": 1,
        "actor": {"email": ACTOR_EMAIL, "display_name": "Me"},
        "team": [
            {
                "email": "sam@acme.test",
                "display_name": "Sam",
                "aliases": ["sales@acme.test"],
            }
        ],
        "remote": {"base_url": "https://remote.test/api"},
    }


@pytest.fixture
def sample_config(sample_config_dict: dict[str, Any]) -> AppConfig:
    """Return a minimal valid AppConfig instance."""
    return AppConfig(**sample_config_dict)


@pytest.fixture
def config_file(temp_config_dir: Path, sample_config_yaml: str) -> Path:
    """Create a temporary config file with valid content."""
    config_path = temp_config_dir / "config.yaml"
    config_path.write_text(sample_config_yaml)
    return config_path


@pytest.fixture
def set_config_env(config_file: Path) -> Generator[None, None, None]:
    """Set the INBOX_TRIAGE_CONFIG_PATH environment variable."""
    old_value = os.environ.get("INBOX_TRIAGE_CONFIG_PATH")
    os.environ["INBOX_TRIAGE_CONFIG_PATH"] = str(config_file)
    yield
    if old_value is None:
        del os.environ["INBOX_TRIAGE_CONFIG_PATH"]
    else:
        os.environ["INBOX_TRIAGE_CONFIG_PATH"] = old_value


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def notices() -> NoticeBuffer:
    return NoticeBuffer()


@pytest.fixture
def actor() -> Actor:
    return Actor(email=ACTOR_EMAIL, display_name="Me")


@pytest.fixture
def org_addresses() -> frozenset[str]:
    return frozenset({ACTOR_EMAIL, "sam@acme.test", "sales@acme.test"})


def make_record(thread_id: str = "t1", **overrides: Any) -> dict[str, Any]:
    """Build a raw thread record as the remote thread source returns it."""
    record: dict[str, Any] = {
        "id": thread_id,
        "subject": "Hello",
        "last_message_snippet": "",
        "last_message_date": BASE_TIME.isoformat(),
        "from_address": "customer@example.com",
        "to_addresses": [ACTOR_EMAIL],
    }
    record.update(overrides)
    return record


@pytest.fixture
def make_thread() -> Callable[..., Thread]:
    """Factory: make_thread("t1", subject=..., userStatus=...) -> Thread."""

    def _make(thread_id: str = "t1", **overrides: Any) -> Thread:
        return Thread.from_record(make_record(thread_id, **overrides))

    return _make
