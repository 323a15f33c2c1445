"""Tests for application wiring in main."""

import asyncio

import pytest

from cuebridge.config import DEFAULT_CONFIG, load_config
from cuebridge.generation import GeminiClient
from cuebridge.main import CueBridgeApp, create_generation_client


@pytest.fixture
def config(tmp_path):
    """A fresh default configuration."""
    return load_config(tmp_path / "missing.yaml")


class TestCreateGenerationClient:
    """Test choosing the generation client from config."""

    def test_provider_none(self, config):
        config["generation"]["provider"] = "none"
        assert create_generation_client(config) is None

    def test_unknown_provider(self, config):
        config["generation"]["provider"] = "mystery"
        config["generation"]["api_key"] = "secret"
        assert create_generation_client(config) is None

    def test_no_api_key(self, config, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        monkeypatch.delenv("GEMINI_API_KEY", raising=False)
        assert create_generation_client(config) is None

    def test_gemini_client_from_config(self, config):
        config["generation"]["api_key"] = "secret"
        config["generation"]["model"] = "some-model"
        config["trigger"]["request_timeout_s"] = 3.0
        client = create_generation_client(config)
        assert isinstance(client, GeminiClient)
        assert client.api_key == "secret"
        assert client.model == "some-model"
        assert client.timeout_s == 3.0

    def test_gemini_client_from_environment(self, config, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("GEMINI_API_KEY", "from-env")
        client = create_generation_client(config)
        assert isinstance(client, GeminiClient)
        assert client.api_key == "from-env"


class TestCueBridgeApp:
    """Test building the app from config."""

    def test_settings_flow_into_engine_and_server(self, config, fake_client):
        config["matching"]["window_size"] = 7
        config["trigger"]["debounce_ms"] = 300
        config["merge"]["staleness_limit_chars"] = 250
        config["generation"]["temperature"] = 0.9

        app = CueBridgeApp(config, script_text="one two three", port=8123, client=fake_client)
        assert app.engine.script.text == "one two three"
        assert app.engine.matcher.window_size == 7
        assert app.engine.trigger.debounce_ms == 300
        assert app.engine.trigger.temperature == 0.9
        assert app.engine.merge.staleness_limit == 250
        assert app.engine.trigger.client is fake_client
        assert app.server.window_size == 7
        assert app.server.port == 8123

    def test_defaults_unchanged(self, config):
        CueBridgeApp(config)
        assert DEFAULT_CONFIG["matching"]["window_size"] == 20

    @pytest.mark.asyncio
    async def test_stop_closes_client(self, config, fake_client, unused_tcp_port):
        app = CueBridgeApp(config, port=unused_tcp_port, client=fake_client)
        task = asyncio.create_task(app.start())
        for _ in range(100):
            if app.running:
                break
            await asyncio.sleep(0.01)
        assert app.running

        await app.stop()
        await asyncio.wait_for(task, timeout=2.0)
        assert not app.running
        assert fake_client.closed
