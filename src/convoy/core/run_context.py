"""
Run Context - Resources scoped to one analysis run.

Temporary directories and cleanup callbacks registered here are released
when the run ends, whether it succeeded, failed or was cancelled.
"""

import tempfile
from contextlib import ExitStack
from datetime import datetime
from pathlib import Path
from typing import Callable, List

import structlog


class RunContext:
    """
    Owner of the run's scoped resources.

    Example:
        >>> with RunContext() as ctx:
        ...     staging = ctx.temp_dir("analyze-rules-")
        ...     ...  # staging is deleted on exit
    """

    def __init__(self, run_id: str = None):
        self.run_id = run_id or f"run_{datetime.now().strftime('%Y%m%d_%H%M%S')}"
        self._stack = ExitStack()
        self._temp_dirs: List[Path] = []

        self.logger = structlog.get_logger(__name__, run_id=self.run_id)

    def __enter__(self) -> "RunContext":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def temp_dir(self, prefix: str = "convoy-") -> Path:
        """Create a temporary directory removed when the run ends"""
        path = Path(self._stack.enter_context(tempfile.TemporaryDirectory(prefix=prefix)))
        self._temp_dirs.append(path)
        self.logger.debug("temp_dir_created", dir=str(path))
        return path

    def callback(self, fn: Callable, *args, **kwargs):
        """Register a cleanup callback (run in reverse registration order)"""
        self._stack.callback(fn, *args, **kwargs)

    @property
    def temp_dirs(self) -> List[Path]:
        return list(self._temp_dirs)

    def close(self):
        """Release every scoped resource"""
        try:
            self._stack.close()
        except Exception as e:
            self.logger.error("run_cleanup_failed", error=str(e), exc_info=True)
        else:
            self.logger.debug("run_resources_released", temp_dirs=len(self._temp_dirs))
