"""LLM utilities for creating and configuring AI agents."""


import logging
from typing import Optional, Dict, Any

from openai import AsyncOpenAI
from pydantic_ai import Agent
from pydantic_ai.models.openai import OpenAIResponsesModel, OpenAIResponsesModelSettings
from pydantic_ai.providers.openai import OpenAIProvider

from storylens.libs.config_loader import ConfigType, get_config


# Fix up logging level for httpx to WARNING to reduce noise
logging.getLogger("httpx").setLevel(logging.WARNING)


DEFAULT_SYSTEM_PROMPT = (
    "You are an experienced college admissions reader. You evaluate student-written "
    "descriptions of activities and essays honestly and rigorously. You never invent "
    "facts or quotations, and you always answer with a single JSON object in exactly "
    "the format requested."
)


def create_agent(configs: ConfigType,
                 model: Optional[str] = None,
                 settings_dict: Optional[Dict[str, Any]] = None,
                 system_prompt: Optional[str] = None) -> Agent:
    """
    Create a pydantic-ai Agent configured with OpenAI models.

    Credentials come from the configuration only; the process environment is
    never consulted or modified.

    Args:
        configs: Configuration dictionary (required)
        model: Model to use (overrides config value)
        settings_dict: Pydantic AI settings dict (overrides config values)
        system_prompt: System prompt for the agent (optional)

    Returns:
        Configured Agent

    Raises:
        KeyError: If the OpenAI API key is not found in config
    """
    api_key = get_config("openai.api_key", configs)
    organization = get_config("openai.organization", configs, default=None)
    model = model or get_config("openai.model", configs, default="gpt-4o-mini")
    base_settings = get_config("openai.pydantic_ai_settings", configs, default={}) or {}

    client = AsyncOpenAI(api_key=api_key, organization=organization)
    provider = OpenAIProvider(openai_client=client)

    settings_dict = base_settings | (settings_dict or {})
    model_settings = OpenAIResponsesModelSettings(**settings_dict) if settings_dict else None
    openai_model = OpenAIResponsesModel(model, provider=provider)

    # Retries are owned by the model gateway, not by the agent.
    return Agent(
        model=openai_model,
        model_settings=model_settings,
        system_prompt=system_prompt or DEFAULT_SYSTEM_PROMPT,
        retries=0,
    )
