"""
Provider Lifecycle Manager - Sequences provider start-up and shutdown.

Start-up order:
1. Every non-fallback provider is initialized, one at a time. Each may hand
   back extra init configs (project locations it discovered) for the
   fallback provider.
2. The fallback ("builtin") provider is initialized last with its own
   locations plus everything contributed in step 1.

Shutdown stops every provider that was brought up (Ready or Failed) exactly
once. Used as an async context manager, shutdown runs on every exit path.
"""

from typing import Dict, Iterable, List, Optional

import structlog

from ..providers.base_provider import (
    BaseProvider,
    FatalProviderInitError,
    InitConfig,
    ProviderInitError,
    ProviderState,
)


class ProviderLifecycleManager:
    """
    Brings providers to Ready and tears them down.

    Example:
        >>> async with ProviderLifecycleManager(providers) as lifecycle:
        ...     ready = await lifecycle.start(needed=["java", "builtin"])
        ...     ...  # use ready providers
        >>> # every started provider is stopped here
    """

    def __init__(self, providers: Dict[str, BaseProvider]):
        """
        Initialize the lifecycle manager.

        Args:
            providers: Provider handles keyed by name
        """
        self.providers = providers
        self._stopped: List[str] = []

        self.logger = structlog.get_logger(__name__)

    async def __aenter__(self) -> "ProviderLifecycleManager":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.stop_all()

    @property
    def ready_providers(self) -> List[BaseProvider]:
        """Providers currently in the Ready state, in configuration order"""
        return [p for p in self.providers.values() if p.is_ready]

    async def start(self, needed: Optional[Iterable[str]] = None) -> List[BaseProvider]:
        """
        Initialize providers in dependency order.

        Args:
            needed: Names of the providers to start (None = all)

        Returns:
            Ready providers

        Raises:
            FatalProviderInitError: If a non-fallback provider failed
            ProviderInitError: If the fallback provider failed
        """
        if needed is None:
            selected = list(self.providers.values())
        else:
            wanted = set(needed)
            unknown = sorted(wanted - set(self.providers))
            if unknown:
                self.logger.warning("unknown_providers_requested", providers=unknown)
            selected = [p for name, p in self.providers.items() if name in wanted]

        fallback = [p for p in selected if p.is_fallback]
        others = [p for p in selected if not p.is_fallback]

        additional_configs: List[InitConfig] = []
        for provider in others:
            self.logger.info("starting_provider", provider=provider.name)
            try:
                discovered = await provider.init()
            except ProviderInitError as e:
                self.logger.error(
                    "provider_start_failed",
                    provider=provider.name,
                    fatal=True,
                    error=str(e),
                )
                raise FatalProviderInitError(provider.name, e.reason) from e

            if discovered:
                self.logger.info(
                    "provider_discovered_locations",
                    provider=provider.name,
                    locations=[c.location for c in discovered],
                )
                additional_configs.extend(discovered)

        for provider in fallback:
            self.logger.info(
                "starting_provider",
                provider=provider.name,
                additional_configs=len(additional_configs),
            )
            try:
                await provider.init(additional_configs)
            except ProviderInitError as e:
                self.logger.error(
                    "provider_start_failed",
                    provider=provider.name,
                    fatal=False,
                    error=str(e),
                )
                raise

        ready = self.ready_providers
        self.logger.info("providers_ready", providers=[p.name for p in ready])
        return ready

    async def stop_all(self):
        """Stop every provider that was started, exactly once"""
        for provider in self.providers.values():
            if provider.state not in (ProviderState.READY, ProviderState.FAILED):
                continue
            try:
                await provider.stop()
            except Exception as e:
                self.logger.error(
                    "provider_stop_failed",
                    provider=provider.name,
                    error=str(e),
                    exc_info=True,
                )
            self._stopped.append(provider.name)

    @property
    def stopped(self) -> List[str]:
        """Names of providers stopped by this manager, in stop order"""
        return list(self._stopped)

    def get_states(self) -> Dict[str, str]:
        """Current state of every provider"""
        return {name: p.state.value for name, p in self.providers.items()}
