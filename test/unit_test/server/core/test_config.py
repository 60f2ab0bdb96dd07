"""Unit tests for server configuration settings model.

Tests verify that the Settings model binds environment variables by alias and
that the grouped provider configurations are derived from them.
"""

import pytest
from pydantic import ValidationError

from studio_copilot.server.core.config import CORSConfig, OpenRouterConfig, Settings


@pytest.fixture
def clean_env(monkeypatch):
    for name in (
        "ORCHESTRATOR_MAX_TURNS",
        "STUDIO_COPILOT_DATA_DIR",
        "OPENROUTER_API_KEY",
        "OPENROUTER_MODEL",
        "CORS_ORIGINS",
    ):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestSettings:
    def test_defaults(self, clean_env):
        settings = Settings(_env_file=None)

        assert settings.orchestrator_max_turns == 4
        assert settings.data_dir is None
        assert settings.checkpoint_max_keep == 10
        assert settings.stream_max_per_key == 200
        assert settings.provider_max_attempts == 3

    def test_binds_environment_variables(self, clean_env):
        clean_env.setenv("ORCHESTRATOR_MAX_TURNS", "8")
        clean_env.setenv("STUDIO_COPILOT_DATA_DIR", "/tmp/copilot")
        clean_env.setenv("CORS_ORIGINS", '["http://localhost:3000"]')

        settings = Settings(_env_file=None)

        assert settings.orchestrator_max_turns == 8
        assert settings.data_dir == "/tmp/copilot"
        assert settings.cors.origins == ["http://localhost:3000"]

    def test_max_turns_ceiling(self, clean_env):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, ORCHESTRATOR_MAX_TURNS=17)

    def test_env_file(self, clean_env, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text("OPENROUTER_API_KEY=from-file\nOPENROUTER_MODEL=router/model\n", "utf-8")

        settings = Settings(_env_file=env_file)

        assert isinstance(settings.openrouter, OpenRouterConfig)
        assert settings.openrouter.api_key == "from-file"
        assert settings.openrouter.model == "router/model"


class TestGroupedConfigs:
    def test_cors_defaults(self):
        cors = CORSConfig()
        assert cors.origins == ["*"]
        assert cors.allow_credentials is True

    def test_populate_by_name(self):
        assert OpenRouterConfig(api_key="k").api_key == "k"
        assert OpenRouterConfig.model_validate({"OPENROUTER_API_KEY": "k"}).api_key == "k"
