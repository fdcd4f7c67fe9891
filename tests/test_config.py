"""Tests for configuration loading."""

import os
from pathlib import Path

from libcirc.tracker.auth import AllowAllAuthorizer, StaticRoleAuthorizer, default_authorizer
from libcirc.tracker.config import Config, get_config


class TestConfig:
    """Tests for Config.from_env."""

    def test_defaults(self):
        """Test defaults with no environment set."""
        config = Config.from_env()

        assert config.db_path == Path.home() / ".libcirc" / "circulation.db"
        assert config.policy_file is None
        assert config.log_level == "WARNING"
        assert config.retry_max == 5
        assert config.retry_base_delay == 0.05
        assert config.busy_timeout == 5.0
        assert not config.has_librarians()

    def test_from_env(self, tmp_path):
        """Test every setting can come from the environment."""
        os.environ.update({
            "LIBCIRC_DB_PATH": str(tmp_path / "c.db"),
            "LIBCIRC_POLICY_FILE": str(tmp_path / "p.json"),
            "LIBCIRC_LOG_LEVEL": "debug",
            "LIBCIRC_RETRY_MAX": "2",
            "LIBCIRC_RETRY_DELAY": "0.5",
            "LIBCIRC_BUSY_TIMEOUT": "1",
            "LIBCIRC_LIBRARIANS": "alice, bob,,",
        })

        config = Config.from_env()

        assert config.db_path == tmp_path / "c.db"
        assert config.policy_file == tmp_path / "p.json"
        assert config.log_level == "DEBUG"
        assert config.retry_max == 2
        assert config.retry_base_delay == 0.5
        assert config.busy_timeout == 1.0
        assert config.librarians == frozenset({"alice", "bob"})

    def test_validate(self, tmp_path):
        """Test validation reports each problem."""
        os.environ.update({
            "LIBCIRC_DB_PATH": str(tmp_path / "c.db"),
            "LIBCIRC_POLICY_FILE": str(tmp_path / "missing.json"),
            "LIBCIRC_LOG_LEVEL": "LOUD",
            "LIBCIRC_RETRY_MAX": "0",
        })

        errors = Config.from_env().validate()

        assert len(errors) == 3
        assert any("Policy file not found" in e for e in errors)

    def test_validate_clean(self, tmp_path):
        """Test a good configuration has no errors."""
        os.environ["LIBCIRC_DB_PATH"] = str(tmp_path / "sub" / "c.db")

        assert Config.from_env().validate() == []
        assert (tmp_path / "sub").is_dir()

    def test_global_config_cached(self):
        """Test get_config returns one instance."""
        assert get_config() is get_config()


class TestDefaultAuthorizer:
    """Tests for the configured authorizer."""

    def test_no_librarians_allows_all(self):
        """Test every actor is trusted when no librarians are set."""
        assert isinstance(default_authorizer(), AllowAllAuthorizer)

    def test_librarians_configured(self):
        """Test configured librarians are the only privileged actors."""
        os.environ["LIBCIRC_LIBRARIANS"] = "alice"

        authorizer = default_authorizer()

        assert isinstance(authorizer, StaticRoleAuthorizer)
        assert authorizer.can_perform("alice", "create_item")
        assert not authorizer.can_perform("bob", "modify_item")
