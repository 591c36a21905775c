"""Unit tests for configuration loading."""

from pathlib import Path

import pytest

from whatsrelay.config import DEFAULT_CONFIG, _deep_merge, build_config, load_config


def test_missing_file_yields_defaults(tmp_path: Path):
    cfg = load_config(tmp_path / "absent.yml")

    assert cfg.failover.max_attempts == 2
    assert cfg.failover.restart_delay_s == 2.0
    assert cfg.web.init_retries == 3
    assert cfg.web.reconnect_delay_s == 10.0
    assert cfg.socket.reconnect_delay_s == 5.0
    assert cfg.degraded.settle_delay_s == 1.0
    assert cfg.phone.default_country_code == "1"
    assert cfg.messages.log_limit == 1000
    assert cfg.api.port == 3001


def test_yaml_overrides_and_env_expansion(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("TEST_BRIDGE_KEY", "s3cret")
    path = tmp_path / "config.yml"
    path.write_text(
        """
failover:
  max_attempts: 3
web:
  url: http://localhost:3000/
  api_key: ${TEST_BRIDGE_KEY}
  init_retries: 5
socket:
  url: http://localhost:3001
  session: lite
phone:
  default_country_code: ""
messages:
  lab_name: Acme Labs
""",
        encoding="utf-8",
    )

    cfg = load_config(path)

    assert cfg.failover.max_attempts == 3
    assert cfg.web.url == "http://localhost:3000"
    assert cfg.web.api_key == "s3cret"
    assert cfg.web.init_retries == 5
    assert cfg.web.auth_retries == 2
    assert cfg.socket.session == "lite"
    assert cfg.phone.default_country_code == ""
    assert cfg.messages.lab_name == "Acme Labs"


def test_unset_env_reference_is_kept(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.delenv("TEST_UNSET_KEY", raising=False)
    path = tmp_path / "config.yml"
    path.write_text("web:\n  api_key: ${TEST_UNSET_KEY}\n", encoding="utf-8")

    assert load_config(path).web.api_key == "${TEST_UNSET_KEY}"


def test_unknown_top_level_keys_are_ignored():
    cfg = build_config(_deep_merge(DEFAULT_CONFIG, {"legacy": {"token": "x"}}))

    assert not hasattr(cfg, "legacy")


def test_deep_merge_keeps_nested_defaults():
    merged = _deep_merge({"a": {"x": 1, "y": 2}, "b": 1}, {"a": {"y": 3}})

    assert merged == {"a": {"x": 1, "y": 3}, "b": 1}
