"""Tests for environment-driven configuration."""

import logging

import pytest

from ppa_analytics import config


class TestEnvBool:

    @pytest.mark.parametrize("value", ["1", "true", "TRUE", "yes", " on "])
    def test_truthy_values(self, monkeypatch, value):
        monkeypatch.setenv("PPA_TEST_FLAG", value)
        assert config.env_bool("PPA_TEST_FLAG") is True

    @pytest.mark.parametrize("value", ["0", "false", "no", ""])
    def test_falsy_values(self, monkeypatch, value):
        monkeypatch.setenv("PPA_TEST_FLAG", value)
        assert config.env_bool("PPA_TEST_FLAG", default=True) is False

    def test_default_when_unset(self, monkeypatch):
        monkeypatch.delenv("PPA_TEST_FLAG", raising=False)
        assert config.env_bool("PPA_TEST_FLAG", default=True) is True


class TestForceApiTokenHeader:

    def test_reread_on_every_call(self, monkeypatch):
        assert config.is_force_api_token_header_enabled() is False
        monkeypatch.setenv("PPA_FORCE_API_TOKEN_HEADER", "1")
        assert config.is_force_api_token_header_enabled() is True


class TestSetupLogging:

    def test_adds_single_handler(self, monkeypatch):
        logger = logging.getLogger("ppa_analytics")
        monkeypatch.setattr(logger, "handlers", [])
        monkeypatch.setattr(config, "LOG_LEVEL", "DEBUG")

        config.setup_logging()
        config.setup_logging()

        assert len(logger.handlers) == 1
        assert logger.level == logging.DEBUG
        logger.setLevel(logging.NOTSET)
