"""Unit tests for LLM utilities."""

import os

import pytest
from pydantic_ai import Agent

from storylens.libs.llm import create_agent


class TestCreateAgent:
    """Test the create_agent function."""

    def test_create_agent_with_defaults(self):
        """Test creating agent with default configuration."""
        config_map = {
            "openai": {
                "api_key": "test-key",
                "organization": "test-org",
                "model": "gpt-4o-mini",
                "pydantic_ai_settings": {}
            }
        }

        agent = create_agent(config_map)

        assert isinstance(agent, Agent)

    def test_create_agent_does_not_touch_environment(self, monkeypatch):
        """Credentials stay in the config and never leak into the environment."""
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        create_agent({"openai": {"api_key": "secret-key"}})
        assert "OPENAI_API_KEY" not in os.environ

    def test_create_agent_with_model_override(self):
        """Test creating agent with custom model."""
        custom_configs = {
            "openai": {
                "api_key": "custom-key",
                "model": "gpt-4o-mini"
            }
        }

        agent = create_agent(configs=custom_configs, model="gpt-4o")

        assert agent is not None

    def test_create_agent_with_system_prompt(self):
        """Test creating agent with custom system prompt."""
        test_configs = {
            "openai": {
                "api_key": "test-key",
                "organization": "test-org"
            }
        }

        agent = create_agent(
            configs=test_configs,
            model="gpt-4o",
            system_prompt="You are a writing coach."
        )

        assert agent is not None

    def test_create_agent_missing_api_key(self):
        """Test that missing API key raises KeyError."""
        with pytest.raises(KeyError, match="Key.*not found.*"):
            create_agent({})

    def test_create_agent_with_settings_dict(self):
        """Test creating agent with custom settings dictionary."""
        test_configs = {
            "openai": {
                "api_key": "test-key",
                "pydantic_ai_settings": {"temperature": 0.2}
            }
        }

        agent = create_agent(
            configs=test_configs,
            model="gpt-4o",
            settings_dict={"temperature": 0.7, "max_tokens": 1000}
        )

        assert agent is not None
