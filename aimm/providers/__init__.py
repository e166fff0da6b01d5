"""Music generation providers."""

from typing import Optional, Union

from loguru import logger

from aimm.config import Settings, settings as default_settings

from .base import HTTPMusicProvider, MusicProvider
from .chain import ProviderChain
from .cqtai import CQTAIProvider
from .mock import MockProvider
from .suno import SunoProvider

# Fallback order when the chain is enabled
PROVIDER_ORDER = ("cqtai", "suno")


def create_provider(name: str, config: Optional[Settings] = None) -> MusicProvider:
    """Build one provider, or its mock when no credential is configured."""
    config = config or default_settings

    if name == "cqtai":
        if not config.cqtai_api_key:
            logger.info("No CQTAI API key, using mock provider")
            return MockProvider(name="cqtai")
        return CQTAIProvider(
            api_key=config.cqtai_api_key,
            base_url=config.cqtai_api_base_url,
            timeout=config.provider_timeout,
        )

    if name == "suno":
        if not config.suno_api_key:
            logger.info("No Suno API key, using mock provider")
            return MockProvider(name="suno")
        return SunoProvider(
            api_key=config.suno_api_key,
            base_url=config.suno_api_base_url,
            timeout=config.provider_timeout,
        )

    raise ValueError(f"Unknown provider: {name}")


def get_active_provider(
    config: Optional[Settings] = None,
) -> Union[MusicProvider, ProviderChain]:
    """The chain when fallback is enabled, else the primary provider alone."""
    config = config or default_settings

    if config.provider_fallback_enabled:
        logger.info("Using provider chain with fallback enabled")
        return ProviderChain(
            providers=[create_provider(name, config) for name in PROVIDER_ORDER],
            max_retries=config.provider_max_retries,
            retry_delay=config.provider_retry_delay,
        )

    logger.info(f"Using single provider: {PROVIDER_ORDER[0]}")
    return create_provider(PROVIDER_ORDER[0], config)


__all__ = [
    "MusicProvider",
    "HTTPMusicProvider",
    "CQTAIProvider",
    "SunoProvider",
    "MockProvider",
    "ProviderChain",
    "create_provider",
    "get_active_provider",
]
