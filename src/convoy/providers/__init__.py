"""
Providers module.

This package contains the analysis provider variants. Every provider inherits
from BaseProvider and is selected by the `kind` of its configuration:

- BuiltinProvider: fallback, location-based analysis
- CommandProvider: external provider reached through its binary
"""

from typing import Dict, Iterable, Type

from .base_provider import (
    BUILTIN_PROVIDER_NAME,
    AnalysisMode,
    BaseProvider,
    DependencyFetchError,
    FatalProviderInitError,
    InitConfig,
    ProviderConfig,
    ProviderError,
    ProviderInitError,
    ProviderKind,
    ProviderState,
    ProviderStateError,
    Proxy,
    normalize_location,
)
from .builtin_provider import BuiltinProvider
from .command_provider import CommandProvider, ProviderCommandError


PROVIDER_TYPES: Dict[ProviderKind, Type[BaseProvider]] = {
    ProviderKind.BUILTIN: BuiltinProvider,
    ProviderKind.COMMAND: CommandProvider,
}


def create_provider(config: ProviderConfig) -> BaseProvider:
    """
    Create the provider handle for a configuration.

    Args:
        config: Final provider configuration

    Returns:
        Provider in the Created state
    """
    return PROVIDER_TYPES[config.kind](config)


def create_providers(configs: Iterable[ProviderConfig]) -> Dict[str, BaseProvider]:
    """Create provider handles keyed by provider name, in configuration order"""
    return {config.name: create_provider(config) for config in configs}


__all__ = [
    # Base classes
    "BaseProvider",
    "ProviderConfig",
    "InitConfig",
    "Proxy",
    "AnalysisMode",
    "ProviderKind",
    "ProviderState",
    "BUILTIN_PROVIDER_NAME",
    "normalize_location",
    # Exceptions
    "ProviderError",
    "ProviderInitError",
    "FatalProviderInitError",
    "ProviderStateError",
    "DependencyFetchError",
    "ProviderCommandError",
    # Providers
    "BuiltinProvider",
    "CommandProvider",
    "PROVIDER_TYPES",
    "create_provider",
    "create_providers",
]
