"""
Provider Selection

Static, first-configured-wins: fal.ai when FAL_API_KEY is set, Replicate when
only REPLICATE_API_TOKEN is set. The choice is made once per process; a
provider failing mid-call never hands over to the other one.
"""

from dataclasses import dataclass
from functools import lru_cache
from typing import Optional, Type, Tuple

import httpx

from airchives.core.config import Settings, settings as default_settings
from airchives.core.exceptions import ProviderConfigurationError
from airchives.engines.providers.base import SynthesisProvider
from airchives.engines.providers.fal import FalProvider
from airchives.engines.providers.replicate import ReplicateProvider

# (credential setting, adapter) in precedence order
PROVIDER_PRECEDENCE: Tuple[Tuple[str, Type[SynthesisProvider]], ...] = (
    ("FAL_API_KEY", FalProvider),
    ("REPLICATE_API_TOKEN", ReplicateProvider),
)


@dataclass(frozen=True)
class ProviderSelection:
    name: str
    provider_class: Type[SynthesisProvider]
    api_key: str

    def create(self, config: Settings, client: Optional[httpx.AsyncClient] = None) -> SynthesisProvider:
        return self.provider_class(self.api_key, config=config, client=client)


def select_provider(config: Settings) -> ProviderSelection:
    for credential_name, provider_class in PROVIDER_PRECEDENCE:
        api_key = getattr(config, credential_name)
        if api_key:
            return ProviderSelection(provider_class.name, provider_class, api_key)

    raise ProviderConfigurationError(
        "No inference provider configured: set FAL_API_KEY or REPLICATE_API_TOKEN",
        stage="configuration"
    )


def providers_configured(config: Settings) -> bool:
    return any(getattr(config, credential_name) for credential_name, _ in PROVIDER_PRECEDENCE)


@lru_cache(maxsize=1)
def get_provider_selection() -> ProviderSelection:
    """Process-wide selection for the global settings."""
    return select_provider(default_settings)


def resolve_provider(
    config: Optional[Settings] = None,
    client: Optional[httpx.AsyncClient] = None
) -> SynthesisProvider:
    """Build the active adapter. Raises ProviderConfigurationError before any I/O."""
    if config is None or config is default_settings:
        return get_provider_selection().create(default_settings, client=client)
    return select_provider(config).create(config, client=client)
