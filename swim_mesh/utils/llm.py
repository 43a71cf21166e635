"""Centralized LLM construction for intent extraction and answer composition"""

import os
from typing import Any, Dict

from langchain_openai import AzureChatOpenAI

from .config import get_llm_config
from .logging import get_logger

logger = get_logger("system")


def create_chat_model(**kwargs) -> AzureChatOpenAI:
    """Create an Azure OpenAI chat model from configuration.

    Args:
        **kwargs: Optional overrides for any AzureChatOpenAI argument

    Returns:
        Configured AzureChatOpenAI instance

    Raises:
        ValueError: if the endpoint or API key is not configured
    """
    llm_config = get_llm_config()
    llm_kwargs: Dict[str, Any] = {
        "azure_endpoint": os.environ.get("AZURE_OPENAI_ENDPOINT"),
        "azure_deployment": llm_config.azure_deployment or os.environ.get("AZURE_OPENAI_CHAT_DEPLOYMENT_NAME"),
        "openai_api_version": os.environ.get("AZURE_OPENAI_API_VERSION", llm_config.api_version),
        "openai_api_key": os.environ.get("AZURE_OPENAI_API_KEY"),
        "model": llm_config.model,
        "temperature": llm_config.temperature,
        "max_tokens": llm_config.max_tokens,
        "timeout": llm_config.timeout,
    }
    llm_kwargs.update(kwargs)

    if not llm_kwargs.get("azure_endpoint"):
        raise ValueError("AZURE_OPENAI_ENDPOINT environment variable is required")
    if not llm_kwargs.get("openai_api_key"):
        raise ValueError("AZURE_OPENAI_API_KEY environment variable is required")

    logger.info("creating_llm_instance",
        deployment=llm_kwargs.get("azure_deployment"),
        temperature=llm_kwargs.get("temperature"),
        max_tokens=llm_kwargs.get("max_tokens")
    )

    return AzureChatOpenAI(**llm_kwargs)
