"""
Tests for configuration and the CLI.
"""

import asyncio
import json

import pytest
from click.testing import CliRunner

from rendezvous.cli import main
from rendezvous.config import MAX_EXPIRY_MS, Config, get_config, reset_config, set_config
from rendezvous.server import SignalingServer


class TestConfig:
    """Tests for Config."""

    def test_defaults(self):
        config = Config()
        assert config.port == 8080
        assert config.max_expiry_ms == MAX_EXPIRY_MS == 300_000

    def test_save_load(self, tmp_path):
        config = Config(data_dir=tmp_path, port=9000, max_expiry_ms=1000)
        config.save()

        loaded = Config.load(tmp_path)
        assert loaded.port == 9000
        assert loaded.max_expiry_ms == 1000
        assert loaded.data_dir == tmp_path

    def test_load_missing(self, tmp_path):
        config = Config.load(tmp_path / "nowhere")
        assert config.port == 8080

    def test_from_dict_ignores_unknown(self):
        config = Config.from_dict({"host": "127.0.0.1", "relay_url": "wss://old"})
        assert config.host == "127.0.0.1"

    def test_apply_env(self):
        config = Config().apply_env({
            "HOST": "127.0.0.1",
            "PORT": "9999",
            "LOG_LEVEL": "debug",
            "MAX_EXPIRY_MS": "60000",
        })
        assert config.host == "127.0.0.1"
        assert config.port == 9999
        assert config.log_level == "DEBUG"
        assert config.max_expiry_ms == 60_000

    def test_apply_env_empty(self):
        config = Config().apply_env({})
        assert config.to_dict() == Config().to_dict()

    def test_global_config(self):
        reset_config()
        custom = Config(port=1234)
        set_config(custom)
        assert get_config() is custom
        reset_config()


class TestCli:
    """Tests for the command line."""

    def test_config_command(self, tmp_path):
        (tmp_path / "config.json").write_text(json.dumps({"port": 7777}))

        result = CliRunner().invoke(main, ["config", "--data-dir", str(tmp_path)], env={"PORT": ""})

        assert result.exit_code == 0
        assert "7777" in result.output
        assert "max_expiry_ms" in result.output

    def test_config_save(self, tmp_path):
        result = CliRunner().invoke(main, ["config", "--data-dir", str(tmp_path), "--save"])
        assert result.exit_code == 0
        assert (tmp_path / "config.json").exists()

    def test_agents_unreachable(self):
        result = CliRunner().invoke(main, ["agents", "--url", "ws://127.0.0.1:1/"])
        assert result.exit_code == 1
        assert "Failed to query" in result.output

    @pytest.mark.asyncio
    async def test_agents_not_a_websocket_endpoint(self):
        """A plain HTTP URL fails the handshake and is reported, not raised."""
        server = SignalingServer(Config(host="127.0.0.1", port=0, log_level="warning"))
        await server.start()
        try:
            url = f"http://127.0.0.1:{server.port}/health"
            result = await asyncio.to_thread(CliRunner().invoke, main, ["agents", "--url", url])
        finally:
            await server.stop()

        assert result.exit_code == 1
        assert "Failed to query" in result.output
        assert result.exception is None or isinstance(result.exception, SystemExit)

    def test_data_dir_option(self):
        """Both server and config commands read config.json from --data-dir."""
        for command in ("serve", "config"):
            result = CliRunner().invoke(main, [command, "--help"])
            assert result.exit_code == 0
            assert "--data-dir" in result.output


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
