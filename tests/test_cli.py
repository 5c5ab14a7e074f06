"""Tests for the command line entry point."""

from pathlib import Path

import pytest

from hostpulse import cli
from hostpulse.viewer import DEFAULT_URL


@pytest.fixture
def captured(monkeypatch):
    """Replace the server loop with one that records its settings."""
    seen = []

    async def fake_run(settings):
        seen.append(settings)

    monkeypatch.setattr(cli, "run", fake_run)
    monkeypatch.setattr(cli, "setup_logging", lambda level: None)
    for name in ("PORT", "HOSTPULSE_PORT", "HOSTPULSE_TUNNEL", "HOSTPULSE_INTERVAL"):
        monkeypatch.delenv(name, raising=False)
    return seen


def test_serve_defaults(captured):
    """Test `serve` with no flags uses the defaults."""
    assert cli.main(["serve"]) == 0
    settings = captured[0]
    assert settings.port == 3000
    assert settings.tunnel is True
    assert settings.shared_sampling is False


def test_serve_flags(captured):
    """Test `serve` flags reach the settings."""
    code = cli.main(
        [
            "serve",
            "--port",
            "8080",
            "--no-tunnel",
            "--shared-sampling",
            "--interval",
            "0.5",
            "--static-dir",
            "/srv/www",
            "--subdomain",
            "monitor-home",
        ]
    )
    assert code == 0
    settings = captured[0]
    assert settings.port == 8080
    assert settings.tunnel is False
    assert settings.shared_sampling is True
    assert settings.interval == 0.5
    assert settings.static_dir == Path("/srv/www")
    assert settings.subdomain == "monitor-home"


def test_serve_invalid_settings(captured, capsys):
    """Test invalid settings exit with status 2 without serving."""
    assert cli.main(["serve", "--interval", "0"]) == 2
    assert captured == []
    assert "interval" in capsys.readouterr().err


def test_view_default_url():
    """Test `view` defaults to the local server."""
    args = cli.build_parser().parse_args(["view"])
    assert args.url == DEFAULT_URL


def test_command_required():
    """Test a subcommand is required."""
    with pytest.raises(SystemExit):
        cli.build_parser().parse_args([])
