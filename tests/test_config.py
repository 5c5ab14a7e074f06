"""Tests for settings and logging setup."""

import logging
from pathlib import Path

import pytest

from hostpulse.config import DEFAULT_PORT, STATIC_DIR, Settings, setup_logging
from hostpulse.errors import ConfigError


def test_defaults():
    """Test defaults match the documented listener and cadence."""
    settings = Settings.from_env({})
    assert settings.port == DEFAULT_PORT == 3000
    assert settings.host == "0.0.0.0"
    assert settings.interval == 1.0
    assert settings.tunnel is True
    assert settings.subdomain is None
    assert settings.shared_sampling is False
    assert settings.static_dir == STATIC_DIR
    assert (STATIC_DIR / "index.html").is_file()


def test_environment():
    """Test HOSTPULSE_* variables are read."""
    settings = Settings.from_env(
        {
            "HOSTPULSE_PORT": "8080",
            "HOSTPULSE_HOST": "127.0.0.1",
            "HOSTPULSE_INTERVAL": "2.5",
            "HOSTPULSE_TUNNEL": "off",
            "HOSTPULSE_SUBDOMAIN": "monitor-home",
            "HOSTPULSE_SHARED_SAMPLING": "yes",
            "HOSTPULSE_STATIC_DIR": "/srv/www",
            "HOSTPULSE_LOG_LEVEL": "debug",
        }
    )
    assert settings.port == 8080
    assert settings.host == "127.0.0.1"
    assert settings.interval == 2.5
    assert settings.tunnel is False
    assert settings.subdomain == "monitor-home"
    assert settings.shared_sampling is True
    assert settings.static_dir == Path("/srv/www")
    assert settings.log_level == "debug"


def test_port_fallback():
    """Test PORT is used when HOSTPULSE_PORT is absent."""
    assert Settings.from_env({"PORT": "5000"}).port == 5000
    assert Settings.from_env({"PORT": "5000", "HOSTPULSE_PORT": "6000"}).port == 6000


def test_overrides_win():
    """Test explicit overrides beat the environment, None does not."""
    settings = Settings.from_env({"HOSTPULSE_PORT": "8080"}, port=9090, host=None)
    assert settings.port == 9090
    assert settings.host == "0.0.0.0"


@pytest.mark.parametrize(
    "environ",
    [
        {"HOSTPULSE_PORT": "eighty"},
        {"HOSTPULSE_PORT": "70000"},
        {"HOSTPULSE_INTERVAL": "0.01"},
        {"HOSTPULSE_TUNNEL": "maybe"},
        {"HOSTPULSE_LOG_LEVEL": "chatty"},
    ],
)
def test_invalid_values(environ):
    """Test invalid settings raise ConfigError."""
    with pytest.raises(ConfigError):
        Settings.from_env(environ)


@pytest.fixture
def clean_logger():
    logger = logging.getLogger("hostpulse")
    saved = (list(logger.handlers), logger.level, logger.propagate)
    logger.handlers.clear()
    yield logger
    logger.handlers[:] = saved[0]
    logger.setLevel(saved[1])
    logger.propagate = saved[2]


def test_setup_logging_idempotent(clean_logger):
    """Test repeated setup does not stack handlers."""
    setup_logging("debug")
    setup_logging("debug")

    assert len(clean_logger.handlers) == 1
    assert clean_logger.level == logging.DEBUG
