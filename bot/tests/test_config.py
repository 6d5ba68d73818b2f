from __future__ import annotations

from pathlib import Path

import pytest

from core.config import ConfigError, load_config

ENV_KEYS = (
    "DISCORD_TOKEN",
    "BOT_PREFIX",
    "DATABASE_URL",
    "MIDDLEMAN_CATEGORY_ID",
    "MIDDLEMAN_ROLE_ID",
    "TRANSCRIPTS_CHANNEL_ID",
    "REDIS_ENABLED",
    "STATUS_API_KEY",
)

BASE_YAML = """
discord:
  token: test-token
  prefix: "?"
database:
  url: "sqlite:///./data/test.db"
tickets:
  category_id: 111
  staff_role_id: 222
  transcript_channel_id: 333
""".strip()


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


def _write_config(tmp_path: Path, body: str) -> Path:
    config_dir = tmp_path / "config"
    config_dir.mkdir(parents=True, exist_ok=True)
    config_path = config_dir / "config.yaml"
    config_path.write_text(body, encoding="utf-8")
    return config_path


def test_load_config_reads_yaml(tmp_path: Path) -> None:
    cfg = load_config(_write_config(tmp_path, BASE_YAML))

    assert cfg.discord.token == "test-token"
    assert cfg.discord.prefix == "?"
    assert cfg.database.url.startswith("sqlite:///")
    assert cfg.tickets.category_id == 111
    assert cfg.tickets.staff_role_id == 222
    assert cfg.tickets.transcript_channel_id == 333
    assert cfg.tickets.channel_delete_delay_seconds == 3
    assert cfg.tickets.close_confirmation_ttl_seconds is None
    assert cfg.tickets.history_page_size == 100
    assert cfg.redis.enabled is False
    assert cfg.enabled_extensions == ["cogs.tickets"]


def test_env_overrides_token_and_ids(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DISCORD_TOKEN", "env-token")
    monkeypatch.setenv("MIDDLEMAN_ROLE_ID", "999")
    cfg = load_config(_write_config(tmp_path, BASE_YAML))

    assert cfg.discord.token == "env-token"
    assert cfg.tickets.staff_role_id == 999
    assert cfg.tickets.category_id == 111


def test_placeholder_token_is_rejected(tmp_path: Path) -> None:
    body = BASE_YAML.replace("test-token", '"${DISCORD_TOKEN}"')
    with pytest.raises(ConfigError):
        load_config(_write_config(tmp_path, body))


def test_missing_ticket_ids_are_rejected(tmp_path: Path) -> None:
    body = """
discord:
  token: test-token
tickets:
  category_id: 111
""".strip()
    with pytest.raises(ConfigError, match="MIDDLEMAN_ROLE_ID"):
        load_config(_write_config(tmp_path, body))


def test_close_confirmation_ttl_is_optional(tmp_path: Path) -> None:
    cfg = load_config(_write_config(tmp_path, BASE_YAML + "\n  close_confirmation_ttl_seconds: 300"))
    assert cfg.tickets.close_confirmation_ttl_seconds == 300

    cfg = load_config(_write_config(tmp_path, BASE_YAML + "\n  close_confirmation_ttl_seconds: 0"))
    assert cfg.tickets.close_confirmation_ttl_seconds is None


def test_missing_file_raises(tmp_path: Path) -> None:
    with pytest.raises(ConfigError):
        load_config(tmp_path / "config" / "absent.yaml")
