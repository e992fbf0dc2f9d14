"""Tests for configuration loading and validation."""

from pathlib import Path

import pytest

from chat_ledger.config import (
    Config,
    FeedbackConfig,
    PolicyConfig,
    create_default_config,
    load_config,
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep host environment out of config tests."""
    for name in (
        "CHAT_LEDGER_DB",
        "EXTRACTION_API_URL",
        "EXTRACTION_API_KEY",
        "GROQ_API_KEY",
        "EXTRACTION_MODEL",
        "EXTRACTION_TIMEOUT",
        "GATEWAY_URL",
        "GATEWAY_TOKEN",
        "CHAT_LEDGER_CRON_SECRET",
        "CHAT_LEDGER_POLICY_REVERSIBLE",
    ):
        monkeypatch.delenv(name, raising=False)


class TestDefaults:
    def test_defaults_are_valid(self):
        assert Config().validate() == []

    def test_default_thresholds(self):
        config = Config()
        assert config.confirmation.ttl_minutes == 30
        assert config.policy.min_accuracy == 90.0
        assert config.policy.min_verified == 1000
        assert config.policy.reversible is False
        assert config.default_cohort == "BOL"

    def test_weight_ordering(self):
        fb = FeedbackConfig()
        assert fb.edit_weight > fb.reaction_weight > fb.timeout_weight


class TestValidation:
    def test_edit_weight_must_exceed_reaction(self):
        config = Config(feedback=FeedbackConfig(edit_weight=1.0, reaction_weight=1.0))
        errors = config.validate()
        assert any("edit_weight" in e for e in errors)

    def test_timeout_weight_must_be_lower_than_reaction(self):
        config = Config(feedback=FeedbackConfig(timeout_weight=1.0))
        errors = config.validate()
        assert any("timeout_weight" in e for e in errors)

    def test_non_positive_weight(self):
        config = Config(feedback=FeedbackConfig(rejection_weight=0))
        assert any("rejection_weight" in e for e in config.validate())

    def test_accuracy_range(self):
        config = Config(policy=PolicyConfig(min_accuracy=120))
        assert any("min_accuracy" in e for e in config.validate())

    def test_revert_above_min_accuracy_when_reversible(self):
        config = Config(policy=PolicyConfig(reversible=True, revert_accuracy=95.0))
        assert any("revert_accuracy" in e for e in config.validate())


class TestLoadConfig:
    def test_missing_file_uses_defaults(self, tmp_path):
        config = load_config(tmp_path / "missing.yaml")
        assert config.extraction.model == "llama-3.1-8b-instant"
        assert config.state_db_path == Path("data/state.db")

    def test_yaml_values(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            """
confirmation:
  ttl_minutes: 15
policy:
  min_verified: 50
  reversible: true
default_cohort: PER
state_db_path: /tmp/ledger.db
"""
        )
        config = load_config(path)
        assert config.confirmation.ttl_minutes == 15
        assert config.policy.min_verified == 50
        assert config.policy.reversible is True
        assert config.default_cohort == "PER"
        assert config.state_db_path == Path("/tmp/ledger.db")

    def test_env_overrides(self, tmp_path, monkeypatch):
        monkeypatch.setenv("EXTRACTION_API_KEY", "key-123")
        monkeypatch.setenv("CHAT_LEDGER_CRON_SECRET", "s3cret")
        monkeypatch.setenv("CHAT_LEDGER_DB", str(tmp_path / "env.db"))
        monkeypatch.setenv("EXTRACTION_TIMEOUT", "12")

        config = load_config(tmp_path / "missing.yaml")
        assert config.extraction.api_key == "key-123"
        assert config.extraction.timeout_seconds == 12
        assert config.sweeper.secret == "s3cret"
        assert config.state_db_path == tmp_path / "env.db"

    def test_groq_key_fallback(self, tmp_path, monkeypatch):
        monkeypatch.setenv("GROQ_API_KEY", "gsk-abc")
        config = load_config(tmp_path / "missing.yaml")
        assert config.extraction.api_key == "gsk-abc"

    def test_reversible_env_override(self, tmp_path, monkeypatch):
        monkeypatch.setenv("CHAT_LEDGER_POLICY_REVERSIBLE", "true")
        config = load_config(tmp_path / "missing.yaml")
        assert config.policy.reversible is True


class TestCreateDefaultConfig:
    def test_round_trip_matches_defaults(self, tmp_path):
        path = tmp_path / "nested" / "config.yaml"
        create_default_config(path)

        assert path.exists()
        config = load_config(path)
        defaults = Config()
        assert config.feedback == defaults.feedback
        assert config.policy == defaults.policy
        assert config.confirmation == defaults.confirmation
        assert config.validate() == []
