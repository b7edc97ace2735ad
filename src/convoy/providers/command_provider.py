"""
Command Provider - External analysis provider reached through its binary.

Each capability call runs the provider binary once with a verb argument and
exchanges JSON documents:

    <binary> init          stdin: {"name", "initConfig": [...]}
                           stdout: {"additionalConfigs": [...]}
    <binary> dependencies  stdin: {"name", "initConfig": [...]}
                           stdout: {"dependencies": {location: [dep, ...]}}

Empty stdout is accepted as an empty answer.
"""

import asyncio
import json
import shutil
from typing import Any, Dict, List, Optional

from .base_provider import BaseProvider, InitConfig, ProviderConfig, ProviderError


class CommandProvider(BaseProvider):
    """
    Provider backed by an external executable.

    Example:
        >>> provider = CommandProvider(config, timeout=300)
        >>> additional = await provider.init()
        >>> deps = await provider.get_dependencies()
    """

    def __init__(self, config: ProviderConfig, timeout: Optional[float] = 600):
        """
        Initialize the command provider.

        Args:
            config: Final configuration for this provider (binary_path required)
            timeout: Timeout for each invocation in seconds (None = no timeout)
        """
        super().__init__(config)
        self.binary_path = config.binary_path
        self.timeout = timeout

    async def _initialize(self, init_configs: List[InitConfig]) -> List[InitConfig]:
        if not self.binary_path:
            raise ProviderCommandError(f"Provider {self.name} has no binary path")
        if shutil.which(self.binary_path) is None:
            raise ProviderCommandError(
                f"Provider binary not found or not executable: {self.binary_path}"
            )

        response = await self._invoke("init")
        return [
            InitConfig.model_validate(item)
            for item in response.get("additionalConfigs") or []
        ]

    async def _fetch_dependencies(self) -> Dict[str, List[Dict[str, Any]]]:
        response = await self._invoke("dependencies")
        dependencies = response.get("dependencies") or {}
        if not isinstance(dependencies, dict):
            raise ProviderCommandError(
                f"Provider {self.name} returned malformed dependencies"
            )
        return {str(location): list(deps or []) for location, deps in dependencies.items()}

    def _build_request(self) -> bytes:
        request = {
            "name": self.name,
            "initConfig": [c.to_dict() for c in self.init_configs],
        }
        return json.dumps(request).encode()

    async def _invoke(self, verb: str) -> Dict[str, Any]:
        """
        Run the provider binary for one capability call.

        Args:
            verb: Capability verb ("init" or "dependencies")

        Returns:
            Decoded JSON response

        Raises:
            ProviderCommandError: If the binary fails or answers garbage
        """
        cmd = [self.binary_path, verb]
        self.logger.debug("executing_provider", command=" ".join(cmd))

        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(self._build_request()),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise ProviderCommandError(
                f"Provider {self.name} timed out after {self.timeout}s ({verb})"
            )

        if process.returncode != 0:
            raise ProviderCommandError(
                f"Provider {self.name} exited with {process.returncode} ({verb}): "
                f"{stderr.decode(errors='replace').strip()}"
            )

        if not stdout.strip():
            return {}

        try:
            response = json.loads(stdout)
        except json.JSONDecodeError as e:
            raise ProviderCommandError(
                f"Provider {self.name} returned invalid JSON ({verb}): {e}"
            ) from e

        if not isinstance(response, dict):
            raise ProviderCommandError(
                f"Provider {self.name} returned a non-object response ({verb})"
            )
        return response


class ProviderCommandError(ProviderError):
    """Raised when the provider binary cannot serve a call"""
    pass
