import json
from unittest.mock import MagicMock

import pytest
from typer.testing import CliRunner

from switchboard.cli import api


@pytest.fixture
def cli_runner():
    return CliRunner()


@pytest.fixture
def temp_config(tmp_path, monkeypatch):
    """Point the CLI at a throwaway config directory."""
    config_dir = tmp_path / ".switchboard"
    monkeypatch.setattr(api, "CONFIG_DIR", config_dir)
    monkeypatch.setattr(api, "CONFIG_FILE", config_dir / "config.json")
    monkeypatch.delenv("SWITCHBOARD_URL", raising=False)
    monkeypatch.delenv("SWITCHBOARD_TOKEN", raising=False)
    return config_dir


@pytest.fixture
def env_token(temp_config, monkeypatch):
    monkeypatch.setenv("SWITCHBOARD_URL", "http://switchboard.test")
    monkeypatch.setenv("SWITCHBOARD_TOKEN", "jwt-test-token")


@pytest.fixture
def mock_response():
    """Build a urlopen() context manager returning ``payload`` as JSON."""
    def build(payload):
        response = MagicMock()
        response.read.return_value = json.dumps(payload).encode()
        response.__enter__ = lambda s: response
        response.__exit__ = MagicMock(return_value=False)
        return response
    return build
