"""
Base Provider - Capability contract shared by every analysis provider.

This module defines the provider configuration model, the provider state
machine and the abstract interface (init / get_dependencies / stop) that every
provider variant implements.

Design Pattern: Strategy Pattern
"""

import os
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, List, Optional
from urllib.parse import unquote, urlparse

import structlog
from pydantic import BaseModel, ConfigDict, Field, model_validator


BUILTIN_PROVIDER_NAME = "builtin"


class AnalysisMode(str, Enum):
    """Analysis depth requested for a location"""
    FULL = "full"
    SOURCE_ONLY = "source-only"


class ProviderKind(str, Enum):
    """Closed set of provider implementations"""
    BUILTIN = "builtin"
    COMMAND = "command"


class ProviderState(Enum):
    """Provider lifecycle states"""
    CREATED = "created"
    INITIALIZING = "initializing"
    READY = "ready"
    STOPPED = "stopped"
    FAILED = "failed"


_ALLOWED_TRANSITIONS = {
    ProviderState.CREATED: {ProviderState.INITIALIZING},
    ProviderState.INITIALIZING: {ProviderState.READY, ProviderState.FAILED},
    ProviderState.READY: {ProviderState.STOPPED},
    ProviderState.FAILED: {ProviderState.STOPPED},
    ProviderState.STOPPED: set(),
}


class Proxy(BaseModel):
    """Proxy settings handed to providers that reach the network"""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    http_proxy: Optional[str] = Field(default=None, alias="httpproxy")
    https_proxy: Optional[str] = Field(default=None, alias="httpsproxy")
    no_proxy: Optional[str] = Field(default=None, alias="noproxy")


class InitConfig(BaseModel):
    """
    Location- and mode-scoped configuration unit passed to a provider.

    A location is only meaningful once normalized to an absolute path,
    see normalize_location().
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    location: str = ""
    analysis_mode: Optional[AnalysisMode] = Field(default=None, alias="analysisMode")
    provider_specific_config: Optional[Dict[str, Any]] = Field(
        default=None, alias="providerSpecificConfig"
    )
    proxy: Optional[Proxy] = None
    context_lines: Optional[int] = Field(default=None, alias="contextLines")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the canonical settings document shape"""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ProviderConfig(BaseModel):
    """
    Configuration of one provider. Identity is the name.

    The provider implementation is selected from `kind`; when a settings
    document leaves it out, the entry named "builtin" is the builtin provider
    and everything else is reached through its binary.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str
    kind: ProviderKind = ProviderKind.COMMAND
    binary_path: Optional[str] = Field(default=None, alias="binaryPath")
    init_config: List[InitConfig] = Field(default_factory=list, alias="initConfig")

    @model_validator(mode="before")
    @classmethod
    def _default_kind(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("kind") is None:
            data = dict(data)
            if data.get("name") == BUILTIN_PROVIDER_NAME:
                data["kind"] = ProviderKind.BUILTIN
            else:
                data["kind"] = ProviderKind.COMMAND
        return data

    @property
    def is_fallback(self) -> bool:
        return self.name == BUILTIN_PROVIDER_NAME

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the canonical settings document shape"""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def normalize_location(location: str) -> str:
    """
    Normalize a location to an absolute path.

    `file://` URIs are converted to paths; other URIs are returned unchanged.
    If the path cannot be made absolute the original string is returned, so
    callers using the result as a dedup key may under-deduplicate.

    Args:
        location: Filesystem path or URI

    Returns:
        Absolute normalized path, or the original string
    """
    parsed = urlparse(location)
    if parsed.scheme == "file":
        path = unquote(parsed.path)
    elif parsed.scheme and len(parsed.scheme) > 1:
        return location
    else:
        path = location

    try:
        return os.path.abspath(path)
    except (OSError, ValueError):
        return location


class BaseProvider(ABC):
    """
    Abstract base class for all analysis providers.

    Subclasses implement _initialize() and _fetch_dependencies(); this class
    owns the state machine so every provider transitions the same way:

        Created -> Initializing -> {Ready | Failed} -> Stopped

    Example:
        >>> provider = BuiltinProvider(config)
        >>> additional = await provider.init()
        >>> deps = await provider.get_dependencies()
        >>> await provider.stop()
    """

    def __init__(self, config: ProviderConfig):
        """
        Initialize the provider handle.

        Args:
            config: Final (merged) configuration for this provider
        """
        self.config = config
        self.name = config.name
        self.state = ProviderState.CREATED
        self.init_configs: List[InitConfig] = list(config.init_config)

        self.logger = structlog.get_logger(__name__, provider=self.name)

    @property
    def is_fallback(self) -> bool:
        return self.config.is_fallback

    @property
    def is_ready(self) -> bool:
        return self.state is ProviderState.READY

    def _transition(self, new_state: ProviderState):
        if new_state not in _ALLOWED_TRANSITIONS[self.state]:
            raise ProviderStateError(
                f"Provider {self.name} cannot move from "
                f"{self.state.value} to {new_state.value}"
            )
        self.logger.debug(
            "provider_state_changed",
            old_state=self.state.value,
            new_state=new_state.value,
        )
        self.state = new_state

    async def init(
        self, extra_configs: Optional[List[InitConfig]] = None
    ) -> List[InitConfig]:
        """
        Initialize the provider.

        Args:
            extra_configs: Additional init configs contributed by other providers

        Returns:
            Init configs discovered by this provider that belong to the
            fallback provider (may be empty)

        Raises:
            ProviderInitError: If the provider failed to initialize
        """
        self._transition(ProviderState.INITIALIZING)
        if extra_configs:
            self.init_configs.extend(extra_configs)

        try:
            additional = await self._initialize(self.init_configs)
        except Exception as e:
            self._transition(ProviderState.FAILED)
            self.logger.error("provider_init_failed", error=str(e))
            raise ProviderInitError(self.name, str(e)) from e

        self._transition(ProviderState.READY)
        self.logger.info(
            "provider_ready",
            locations=[c.location for c in self.init_configs],
            additional_configs=len(additional or []),
        )
        return list(additional or [])

    async def get_dependencies(self) -> Dict[str, List[Dict[str, Any]]]:
        """
        Get the dependency inventory of this provider.

        Returns:
            Mapping of file location -> list of dependency descriptors

        Raises:
            ProviderStateError: If the provider is not ready
            DependencyFetchError: If the inventory could not be produced
        """
        if not self.is_ready:
            raise ProviderStateError(
                f"Provider {self.name} is {self.state.value}, not ready"
            )

        try:
            return await self._fetch_dependencies()
        except DependencyFetchError:
            raise
        except Exception as e:
            raise DependencyFetchError(
                f"Provider {self.name} failed to list dependencies: {e}"
            ) from e

    async def stop(self):
        """Stop the provider and release its resources"""
        if self.state not in (ProviderState.READY, ProviderState.FAILED):
            raise ProviderStateError(
                f"Provider {self.name} is {self.state.value} and cannot be stopped"
            )

        try:
            await self._shutdown()
        finally:
            self._transition(ProviderState.STOPPED)
            self.logger.info("provider_stopped")

    @abstractmethod
    async def _initialize(self, init_configs: List[InitConfig]) -> List[InitConfig]:
        """
        Bring the underlying capability up.

        Args:
            init_configs: Every init config this provider must serve

        Returns:
            Additional init configs for the fallback provider
        """
        pass

    @abstractmethod
    async def _fetch_dependencies(self) -> Dict[str, List[Dict[str, Any]]]:
        """Produce the dependency inventory keyed by file location"""
        pass

    async def _shutdown(self):
        """Release provider resources (no-op by default)"""
        return None

    def __repr__(self) -> str:
        """String representation"""
        return (
            f"{type(self).__name__}("
            f"name={self.name}, "
            f"state={self.state.value}, "
            f"locations={len(self.init_configs)})"
        )


class ProviderError(Exception):
    """Base exception for provider errors"""
    pass


class ProviderInitError(ProviderError):
    """Raised when a provider fails to initialize"""

    def __init__(self, provider: str, message: str):
        super().__init__(f"Provider {provider} failed to initialize: {message}")
        self.provider = provider
        self.reason = message


class FatalProviderInitError(ProviderInitError):
    """Raised when a non-fallback provider fails to initialize"""
    pass


class ProviderStateError(ProviderError):
    """Raised on an illegal provider state transition"""
    pass


class DependencyFetchError(ProviderError):
    """Raised when a provider cannot produce its dependency inventory"""
    pass
